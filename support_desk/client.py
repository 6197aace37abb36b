"""Support desk API client.

This module defines a thin client around the support desk REST API.
It uses the ``requests`` library internally and is what the console
workflow talks to.  The client exposes high-level methods for the
operations a ticket conversation needs:

* :meth:`get_ticket` – fetch a single ticket by its identifier.
* :meth:`get_ticket_messages` – download a ticket's message thread.
* :meth:`upload_files` – store a batch of attachments.
* :meth:`submit_reply` – append a reply referencing uploaded attachments.
* :meth:`change_ticket_status` – set a ticket's status (staff only).
* :meth:`assign_ticket` – set a ticket's handler (staff only).
* :meth:`list_staff` – list the staff members tickets can be assigned to.

Ticket creation and listing, and :meth:`me`, round out the surface
for the command line console.

Every HTTP exchange goes through :meth:`SupportDeskClient._request`,
which returns a ``(data, error)`` tuple.  The public methods translate
an error into one of the exceptions in
:mod:`support_desk.console.errors`, chosen from the HTTP status and
the ``code`` the server puts in its error detail.

Any object with a ``requests``-style ``request`` method can serve as
the session, which lets tests pass FastAPI's ``TestClient``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from support_desk.console import errors
from support_desk.console.models import (
    Attachment,
    Message,
    PersonRef,
    ReplyResult,
    Ticket,
    TicketPage,
)


logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# (file name, raw bytes, content type)
UploadPart = Tuple[str, bytes, str]


class SupportDeskClient:
    """Client for the support desk API.

    The client is stateless apart from its base URL, bearer token and
    session; a single instance may be shared by several
    conversations.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: Optional[str] = None,
        session: Optional[Any] = None,
        timeout: float = 15,
    ) -> None:
        """Initialise the API client.

        Args:
            base_url: Base URL of the server, e.g. ``http://localhost:8000``.
            token: Optional bearer token.  If set, an ``Authorization``
                header with the value ``Bearer <token>`` is sent with
                every request.
            session: Optional requests session.  If not supplied a
                session will be created automatically.
            timeout: Seconds to wait for each request.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        json_body: Any | None = None,
        files: Sequence[Tuple[str, UploadPart]] | None = None,
    ) -> Tuple[Optional[Any], Optional[Dict[str, Any]]]:
        """Perform an HTTP request to the API.

        Args:
            method: HTTP method (``GET``, ``POST``, ``PATCH``).
            path: Path relative to the API prefix (e.g. ``/tickets``).
            params: Query parameters; ``None`` values are dropped.
            json_body: JSON body to send with the request.
            files: Multipart parts as ``(field, (name, content, type))``.
        Returns:
            A tuple ``(data, error)``. ``data`` contains the parsed JSON
            response on success and ``error`` is ``None``. On failure,
            ``data`` is ``None`` and ``error`` is a dictionary with keys
            ``status_code``, ``code`` and ``message`` describing the issue.
        """
        url = f"{self.base_url}{API_PREFIX}{path}"
        headers: Dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            logger.debug("Sending %s request to %s", method, url)
            response = self.session.request(
                method=method,
                url=url,
                params=params or None,
                json=json_body,
                files=list(files) if files else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("API request failed: %s", exc)
            return None, {"status_code": None, "code": None, "message": str(exc)}

        if response.status_code >= 400:
            code, message = None, ""
            try:
                err_json = response.json()
            except ValueError:
                err_json = None
            detail = err_json.get("detail") if isinstance(err_json, dict) else None
            if isinstance(detail, dict):
                code = detail.get("code")
                message = detail.get("message") or ""
            elif isinstance(detail, str):
                message = detail
            elif detail:
                message = str(detail)
            if not message:
                message = response.text or f"HTTP {response.status_code}"
            logger.error("API request failed (%s): %s", response.status_code, message)
            return None, {"status_code": response.status_code, "code": code, "message": message}

        if not response.content:
            return None, None
        try:
            return response.json(), None
        except ValueError:
            logger.error("API answered %s %s with a non-JSON body", method, url)
            return None, {"status_code": response.status_code, "code": None, "message": "Malformed response"}

    @staticmethod
    def _raise(error: Dict[str, Any]) -> None:
        """Raise the console exception matching an error tuple."""
        status = error.get("status_code")
        code = error.get("code")
        message = error.get("message") or ""
        if status is None or status >= 500:
            raise errors.TransportError(message, status_code=status, code=code)
        if status == 401:
            raise errors.AuthenticationError(message, status_code=status, code=code)
        if status == 403:
            raise errors.ForbiddenError(message, status_code=status, code=code)
        if status == 404:
            if code == "attachment_not_found":
                raise errors.AttachmentNotFoundError(message, status_code=status, code=code)
            raise errors.NotFoundError(message, status_code=status, code=code)
        if code == "ticket_closed":
            raise errors.TicketClosedError(message, status_code=status, code=code)
        if code == "empty_reply":
            raise errors.EmptyReplyError(message, status_code=status, code=code)
        if status in (400, 409, 413, 422):
            raise errors.ValidationError(message, status_code=status, code=code)
        raise errors.TransportError(message, status_code=status, code=code)

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        data, error = self._request(method, path, **kwargs)
        if error:
            self._raise(error)
        return data

    @staticmethod
    def _expect(data: Any, kind: type, what: str) -> Any:
        if not isinstance(data, kind):
            raise errors.TransportError(f"Unexpected response for {what}")
        return data

    @staticmethod
    def _decode(what: str, build: Callable[[], Any]) -> Any:
        """Build client models from a payload; a malformed one is a transport failure."""
        try:
            return build()
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error("Malformed %s in API response: %r", what, exc)
            raise errors.TransportError(f"Malformed {what}: {exc!r}") from exc

    # ------------------------------------------------------------------
    # Ticket operations
    # ------------------------------------------------------------------
    def get_ticket(self, ticket_id: str) -> Ticket:
        """Fetch one ticket.

        Raises:
            NotFoundError: the ticket does not exist.
            ForbiddenError: the caller may not see it.
        """
        data = self._expect(self._call("GET", f"/tickets/{ticket_id}"), dict, "ticket")
        return self._decode("ticket", lambda: Ticket.from_dict(data))

    def get_ticket_messages(
        self,
        ticket_id: str,
        sender_type: Optional[str] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Message]:
        """Return a ticket's messages oldest first."""
        params = {"sender_type": sender_type, "page": page, "page-size": page_size}
        data = self._expect(
            self._call("GET", f"/tickets/{ticket_id}/messages", params=params), dict, "messages"
        )
        return self._decode(
            "message list", lambda: [Message.from_dict(m, ticket_id=ticket_id) for m in data.get("data") or []]
        )

    def list_tickets(self, **filters: Any) -> TicketPage:
        """List tickets visible to the caller.

        Accepts the query filters of ``GET /tickets``; ``page_size`` is
        sent as ``page-size``.
        """
        if "page_size" in filters:
            filters["page-size"] = filters.pop("page_size")
        data = self._expect(self._call("GET", "/tickets", params=filters), dict, "ticket list")
        return self._decode("ticket list", lambda: TicketPage.from_dict(data))

    def create_ticket(
        self,
        subject: str,
        body: str = "",
        priority: str = "MEDIUM",
        attachment_ids: Sequence[str] = (),
        customer_id: Optional[str] = None,
    ) -> Tuple[Ticket, Message]:
        """Open a ticket with its first message."""
        payload: Dict[str, Any] = {
            "subject": subject,
            "body": body,
            "priority": priority,
            "attachment_ids": list(attachment_ids),
        }
        if customer_id:
            payload["customer_id"] = customer_id
        data = self._expect(self._call("POST", "/tickets", json_body=payload), dict, "ticket creation")
        ticket = self._decode("ticket", lambda: Ticket.from_dict(data["ticket"]))
        return ticket, self._decode("message", lambda: Message.from_dict(data["message"], ticket_id=ticket.id))

    def submit_reply(self, ticket_id: str, body: str, attachment_ids: Sequence[str] = ()) -> ReplyResult:
        """Append a reply to a ticket.

        Raises:
            TicketClosedError: the ticket does not accept the caller's replies.
            AttachmentNotFoundError: an attachment id is unknown or already used.
            EmptyReplyError: neither text nor attachments were given.
        """
        payload = {"body": body, "attachment_ids": list(attachment_ids)}
        data = self._expect(
            self._call("POST", f"/tickets/{ticket_id}/reply", json_body=payload), dict, "reply"
        )
        return self._decode("reply result", lambda: ReplyResult.from_dict(data, ticket_id=ticket_id))

    def change_ticket_status(self, ticket_id: str, status: str) -> Ticket:
        """Set a ticket's status.  Staff only."""
        data = self._expect(
            self._call("PATCH", f"/tickets/{ticket_id}/status", json_body={"status": status}),
            dict,
            "status change",
        )
        return self._decode("ticket", lambda: Ticket.from_dict(data))

    def assign_ticket(self, ticket_id: str, staff_id: str) -> Ticket:
        """Set a ticket's handler.  Staff only."""
        data = self._expect(
            self._call("PATCH", f"/tickets/{ticket_id}/assign", json_body={"staff_id": staff_id}),
            dict,
            "assignment",
        )
        return self._decode("ticket", lambda: Ticket.from_dict(data))

    # ------------------------------------------------------------------
    # Files, staff and account
    # ------------------------------------------------------------------
    def upload_files(self, files: Sequence[UploadPart]) -> List[Attachment]:
        """Upload a batch of files and return their references in order.

        An empty batch returns an empty list without a request.  A
        server answering with a different number of references than
        files sent is treated as a transport failure.
        """
        if not files:
            return []
        parts = [("files", (name, content, content_type or "application/octet-stream"))
                 for name, content, content_type in files]
        data = self._expect(self._call("POST", "/files", files=parts), list, "upload")
        if len(data) != len(files):
            raise errors.TransportError(
                f"Server returned {len(data)} attachment references for {len(files)} files"
            )
        return self._decode("attachment list", lambda: [Attachment.from_dict(item) for item in data])

    def list_staff(self) -> List[PersonRef]:
        """Return staff members tickets can be assigned to."""
        data = self._expect(self._call("GET", "/staff"), list, "staff list")
        return self._decode("staff list", lambda: [PersonRef.from_dict(item) for item in data])

    def me(self) -> Dict[str, Any]:
        """Return the authenticated user's profile."""
        return self._expect(self._call("GET", "/auth/me"), dict, "profile")

    def login(self, email: str, password: str) -> str:
        """Exchange credentials for a token and keep it for later requests."""
        data = self._expect(
            self._call("POST", "/auth/login", json_body={"email": email, "password": password}),
            dict,
            "login",
        )
        self.token = self._decode("token", lambda: data["access_token"])
        return self.token
