"""
Controller for one ticket conversation, seen by one participant.

:class:`TicketConversation` holds everything a participant's screen
needs: the ticket, the message thread, the reply composer text, the
staged attachments and the busy flags of the operation in flight.
Each public operation:

* refuses to start while another one is running (single-flight),
* catches every :class:`~support_desk.console.errors.SupportDeskError`
  at its boundary and turns it into :attr:`status_message`,
* returns ``True`` on success and ``False`` otherwise.

Sending a reply is two-phase.  Staged files are uploaded first; only
when that batch succeeds is the reply submitted with the returned
attachment ids.  The created message is appended to the thread as
the server returned it and the ticket status is taken from the
response, without reloading the thread.  On any failure the composer
text and the staged files are kept for a retry.

Status changes and assignments are staff operations and are followed
by a re-fetch of the ticket; the console never guesses their outcome.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from support_desk.console import errors
from support_desk.console.models import Message, PersonRef, Ticket
from support_desk.console.projector import ConversationView, project
from support_desk.console.uploads import AttachmentStager, StagedFile
from support_desk.lifecycle import Role, can_assign, can_change_status, parse_status, reply_allowed

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Please wait for the current operation to finish"
NOT_LOADED_MESSAGE = "The ticket has not been loaded yet"


class _Busy(Exception):
    pass


class TicketConversation:
    """State and operations of one ticket conversation screen.

    Parameters
    ----------
    client : SupportDeskClient
        API client used for every network operation.
    ticket_id : str
        Ticket to show.
    role : Role
        The viewer's role; decides which variant of the screen applies.
    """

    def __init__(self, client, ticket_id: str, role: Role) -> None:
        self.client = client
        self.ticket_id = ticket_id
        self.role = Role(role)
        self.ticket: Optional[Ticket] = None
        self.messages: Tuple[Message, ...] = ()
        self.staff: Tuple[PersonRef, ...] = ()
        self.composer = ""
        self.stager = AttachmentStager()
        self.status_message: Optional[str] = None

        self.loading = False
        self.uploading = False
        self.replying = False
        self.assigning = False
        self.updating_status = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def _operation(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise _Busy()
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def _flag(self, name: str) -> Iterator[None]:
        setattr(self, name, True)
        try:
            yield
        finally:
            setattr(self, name, False)

    def _fail(self, exc: errors.SupportDeskError, action: str) -> bool:
        logger.warning("%s failed on ticket %s: %s", action, self.ticket_id, exc)
        self.status_message = exc.user_message
        return False

    def _refuse(self, message: str) -> bool:
        self.status_message = message
        return False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load(self) -> bool:
        """Fetch the ticket and its whole thread, replacing local state."""
        try:
            with self._operation(), self._flag("loading"):
                ticket = self.client.get_ticket(self.ticket_id)
                messages = self.client.get_ticket_messages(self.ticket_id)
        except _Busy:
            return self._refuse(BUSY_MESSAGE)
        except errors.SupportDeskError as exc:
            return self._fail(exc, "Loading")
        self.ticket = ticket
        self.messages = tuple(messages)
        self.status_message = None
        return True

    def refresh_ticket(self) -> bool:
        """Re-fetch only the ticket record."""
        try:
            with self._operation(), self._flag("loading"):
                self.ticket = self.client.get_ticket(self.ticket_id)
        except _Busy:
            return self._refuse(BUSY_MESSAGE)
        except errors.SupportDeskError as exc:
            return self._fail(exc, "Refreshing")
        return True

    def load_staff(self) -> bool:
        """Fill :attr:`staff` for the assignment picker.  Staff only."""
        if not can_assign(self.role):
            return self._refuse(errors.ForbiddenError().user_message)
        try:
            with self._operation(), self._flag("loading"):
                self.staff = tuple(self.client.list_staff())
        except _Busy:
            return self._refuse(BUSY_MESSAGE)
        except errors.SupportDeskError as exc:
            return self._fail(exc, "Loading staff")
        return True

    # ------------------------------------------------------------------
    # Composer and attachments
    # ------------------------------------------------------------------
    def set_composer(self, text: str) -> None:
        self.composer = text

    def stage_file(self, name: str, content: bytes, content_type: Optional[str] = None) -> Optional[StagedFile]:
        if self.busy:
            self._refuse(BUSY_MESSAGE)
            return None
        return self.stager.stage(name, content, content_type)

    def stage_files(self, paths: Sequence[str]) -> List[StagedFile]:
        """Stage files from disk.  Unreadable paths are reported and skipped."""
        if self.busy:
            self._refuse(BUSY_MESSAGE)
            return []
        staged = []
        for path in paths:
            try:
                staged.append(self.stager.stage_path(path))
            except OSError as exc:
                logger.warning("Cannot stage %s: %s", path, exc)
                self.status_message = f"Cannot read {path}"
        return staged

    def remove_staged(self, local_id: int) -> bool:
        if self.busy:
            return self._refuse(BUSY_MESSAGE)
        return self.stager.remove(local_id)

    # ------------------------------------------------------------------
    # Reply
    # ------------------------------------------------------------------
    def can_reply(self) -> bool:
        return self.ticket is not None and reply_allowed(self.ticket.status, self.role)

    def submit_reply(self) -> bool:
        """Send the composer text and staged files as one reply."""
        if self.ticket is None:
            return self._refuse(NOT_LOADED_MESSAGE)
        if not reply_allowed(self.ticket.status, self.role):
            return self._refuse(errors.TicketClosedError().user_message)
        body = self.composer.strip()
        if not body and not len(self.stager):
            return self._refuse(errors.EmptyReplyError().user_message)

        try:
            with self._operation():
                with self._flag("uploading"):
                    refs = self.stager.upload_all(self.client)
                with self._flag("replying"):
                    result = self.client.submit_reply(self.ticket.id, body, [r.id for r in refs])
        except _Busy:
            return self._refuse(BUSY_MESSAGE)
        except errors.AttachmentNotFoundError as exc:
            self.stager.forget_uploads()
            return self._fail(exc, "Reply")
        except errors.SupportDeskError as exc:
            return self._fail(exc, "Reply")

        self.messages = self.messages + (result.message,)
        if result.status is not None:
            self.ticket = self.ticket.with_status(result.status, result.message.created_at)
        self.composer = ""
        self.stager.clear()
        self.status_message = None
        logger.info("Replied to ticket %s with %d attachment(s)", self.ticket_id, len(refs))
        return True

    # ------------------------------------------------------------------
    # Staff operations
    # ------------------------------------------------------------------
    def change_status(self, status: str) -> bool:
        """Set the ticket status directly, then reload the ticket.  Staff only."""
        if not can_change_status(self.role):
            return self._refuse(errors.ForbiddenError().user_message)
        try:
            new_status = parse_status(status)
        except ValueError as exc:
            return self._refuse(str(exc))
        try:
            with self._operation(), self._flag("updating_status"):
                self.client.change_ticket_status(self.ticket_id, new_status.value)
                self.ticket = self.client.get_ticket(self.ticket_id)
        except _Busy:
            return self._refuse(BUSY_MESSAGE)
        except errors.SupportDeskError as exc:
            return self._fail(exc, "Status change")
        self.status_message = None
        return True

    def assign(self, staff_id: str) -> bool:
        """Hand the ticket to ``staff_id``, then reload the ticket.  Staff only."""
        if not can_assign(self.role):
            return self._refuse(errors.ForbiddenError().user_message)
        try:
            with self._operation(), self._flag("assigning"):
                self.client.assign_ticket(self.ticket_id, staff_id)
                self.ticket = self.client.get_ticket(self.ticket_id)
        except _Busy:
            return self._refuse(BUSY_MESSAGE)
        except errors.SupportDeskError as exc:
            return self._fail(exc, "Assignment")
        self.status_message = None
        return True

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------
    def view(self) -> Optional[ConversationView]:
        if self.ticket is None:
            return None
        return project(self.ticket, self.messages, self.role)
