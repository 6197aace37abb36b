"""
Errors surfaced by the support desk client and the conversation workflow.

The API client raises these; :class:`~support_desk.console.conversation.TicketConversation`
catches them at each operation boundary and turns them into a single
inline status message, so none of them ever escapes a console
operation.
"""

from typing import Optional


class SupportDeskError(Exception):
    """Base class.  ``user_message`` is what the console shows."""

    default_message = "Something went wrong"

    def __init__(self, message: str = "", status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.status_code = status_code
        self.code = code

    @property
    def user_message(self) -> str:
        return self.message


class ValidationError(SupportDeskError):
    default_message = "The request is not valid"


class EmptyReplyError(ValidationError):
    default_message = "Write a message or attach a file before sending"

    @property
    def user_message(self) -> str:
        return self.default_message


class NotFoundError(SupportDeskError):
    default_message = "Not found"


class AttachmentNotFoundError(NotFoundError):
    default_message = "An attachment could not be found; upload it again"

    @property
    def user_message(self) -> str:
        return self.default_message


class ForbiddenError(SupportDeskError):
    default_message = "You do not have permission to do this"

    @property
    def user_message(self) -> str:
        return self.default_message


class AuthenticationError(ForbiddenError):
    """The session is missing, expired or revoked (HTTP 401)."""

    default_message = "Your session has expired; sign in again"


class TicketClosedError(SupportDeskError):
    default_message = "This ticket no longer accepts replies"

    @property
    def user_message(self) -> str:
        return self.default_message


class TransportError(SupportDeskError):
    """Network failure or an unexpected server answer."""

    default_message = "Could not reach the support desk"
