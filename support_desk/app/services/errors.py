"""
Exceptions raised by the service layer.

All of them derive from ``ValueError`` so callers that only care about
"the request could not be honoured" can keep catching that.  Each
class carries a stable ``code`` for API clients and the HTTP status
the endpoints answer with.
"""


class SupportError(ValueError):
    code = "support_error"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def as_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class TicketNotFoundError(SupportError):
    code = "ticket_not_found"
    http_status = 404


class AttachmentNotFoundError(SupportError):
    code = "attachment_not_found"
    http_status = 404


class StaffNotFoundError(SupportError):
    code = "staff_not_found"
    http_status = 404


class CustomerNotFoundError(SupportError):
    code = "customer_not_found"
    http_status = 404


class AccessDeniedError(SupportError):
    code = "forbidden"
    http_status = 403


class TicketClosedError(SupportError):
    """The ticket's status does not accept replies from the caller's role."""

    code = "ticket_closed"
    http_status = 409


class EmptyReplyError(SupportError):
    code = "empty_reply"
    http_status = 422


class UploadRejectedError(SupportError):
    code = "upload_rejected"
    http_status = 400


class UploadTooLargeError(UploadRejectedError):
    code = "upload_too_large"
    http_status = 413


class DuplicateAccountError(SupportError):
    code = "duplicate_account"
    http_status = 409
