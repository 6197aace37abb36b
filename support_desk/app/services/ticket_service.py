"""
Business logic for support tickets and their conversations.

This module implements the support workflow: opening tickets, listing
and reading them, reading and appending to the message thread,
changing status and assigning a handler.  It uses SQLite via the
``get_connection`` helper and enforces the two-role access model:
staff see every ticket, a customer person only the tickets of their
own customer.

Replies go through the lifecycle rules in :mod:`support_desk.lifecycle`:
the reply gate rejects replies the caller's role may not make in the
ticket's current status, and an accepted reply may move the ticket to
a new status.  Message bodies are stored and returned as submitted;
escaping them for display is up to the renderer.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from support_desk.app.core.db import get_connection, new_id, utcnow
from support_desk.app.schemas.ticket import (
    CustomerRef,
    MessageList,
    MessageRead,
    ReplyCreate,
    ReplyResult,
    TicketCreate,
    TicketCreated,
    TicketList,
    TicketRead,
    TicketStatusRead,
)
from support_desk.app.schemas.user import PersonRef
from support_desk.lifecycle import (
    Role,
    SenderType,
    TicketStatus,
    closed_at_for,
    reply_allowed,
    sender_for,
    status_after_reply,
)

from .audit_service import AuditService
from .errors import (
    AccessDeniedError,
    CustomerNotFoundError,
    EmptyReplyError,
    StaffNotFoundError,
    TicketClosedError,
    TicketNotFoundError,
)
from .file_service import attachments_for_messages, claim_attachments

logger = logging.getLogger(__name__)

TICKET_SELECT = """
    SELECT t.id, t.subject, t.priority, t.status, t.customer_id, t.assigned_to_id,
           t.created_at, t.updated_at, t.closed_at,
           c.title AS customer_title, c.code AS customer_code,
           c.type AS customer_type, c.category AS customer_category,
           cr.id AS creator_id, cr.first_name AS creator_first_name, cr.last_name AS creator_last_name,
           a.first_name AS assignee_first_name, a.last_name AS assignee_last_name
    FROM support_tickets t
    JOIN customers c ON c.id = t.customer_id
    JOIN users cr ON cr.id = t.creator_id
    LEFT JOIN users a ON a.id = t.assigned_to_id
"""

MESSAGE_SELECT = """
    SELECT m.id, m.ticket_id, m.sender_type, m.sender_id, m.body, m.created_at,
           u.first_name AS sender_first_name, u.last_name AS sender_last_name
    FROM support_messages m
    JOIN users u ON u.id = m.sender_id
"""

SORT_FIELDS = {
    "created_at": "t.created_at",
    "updated_at": "t.updated_at",
    "last_message": "(SELECT MAX(created_at) FROM support_messages WHERE ticket_id = t.id)",
}


def _ticket_from_row(row: sqlite3.Row) -> TicketRead:
    assigned_to = None
    if row["assigned_to_id"]:
        assigned_to = PersonRef(
            id=row["assigned_to_id"],
            first_name=row["assignee_first_name"] or "",
            last_name=row["assignee_last_name"] or "",
        )
    return TicketRead(
        id=row["id"],
        subject=row["subject"],
        priority=row["priority"],
        status=row["status"],
        customer=CustomerRef(
            id=row["customer_id"],
            title=row["customer_title"],
            code=row["customer_code"],
            type=row["customer_type"],
            category=row["customer_category"],
        ),
        creator=PersonRef(
            id=row["creator_id"],
            first_name=row["creator_first_name"],
            last_name=row["creator_last_name"],
        ),
        assigned_to=assigned_to,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        closed_at=row["closed_at"],
    )


def _message_from_row(row: sqlite3.Row, attachments) -> MessageRead:
    return MessageRead(
        id=row["id"],
        ticket_id=row["ticket_id"],
        sender_type=row["sender_type"],
        sender=PersonRef(
            id=row["sender_id"],
            first_name=row["sender_first_name"],
            last_name=row["sender_last_name"],
        ),
        body=row["body"] or "",
        attachments=attachments,
        created_at=row["created_at"],
    )


def _role(current_user: dict) -> Role:
    return Role(current_user.get("role"))


def _load_ticket(cursor: sqlite3.Cursor, ticket_id: str, current_user: dict) -> sqlite3.Row:
    """Fetch a ticket row the caller may see.

    Raises ``TicketNotFoundError`` or ``AccessDeniedError``.
    """
    row = cursor.execute(TICKET_SELECT + " WHERE t.id = ?", (ticket_id,)).fetchone()
    if not row:
        raise TicketNotFoundError(f"Support ticket {ticket_id} not found")
    if _role(current_user) is Role.CUSTOMER and row["customer_id"] != current_user.get("customer_id"):
        raise AccessDeniedError("Not authorized to view this ticket")
    return row


def _next_message_time(cursor: sqlite3.Cursor, ticket_id: str) -> str:
    """Creation time for a new message, never earlier than the thread's last one."""
    now = utcnow()
    last = cursor.execute(
        "SELECT MAX(created_at) AS last FROM support_messages WHERE ticket_id = ?",
        (ticket_id,),
    ).fetchone()["last"]
    if last and last >= now:
        return (datetime.fromisoformat(last) + timedelta(microseconds=1)).isoformat(timespec="microseconds")
    return now


def _insert_message(
    cursor: sqlite3.Cursor,
    ticket_id: str,
    current_user: dict,
    body: str,
    attachment_ids: List[str],
) -> MessageRead:
    message_id = new_id()
    cursor.execute(
        """
        INSERT INTO support_messages (id, ticket_id, sender_type, sender_id, body, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            message_id,
            ticket_id,
            sender_for(_role(current_user)).value,
            current_user.get("user_id"),
            body,
            _next_message_time(cursor, ticket_id),
        ),
    )
    claimed = claim_attachments(cursor, attachment_ids, message_id, current_user.get("user_id"))
    row = cursor.execute(MESSAGE_SELECT + " WHERE m.id = ?", (message_id,)).fetchone()
    return _message_from_row(row, claimed)


def _clean_body(body: str, attachment_ids: List[str]) -> str:
    body = (body or "").strip()
    if not body and not attachment_ids:
        raise EmptyReplyError("A message needs text or at least one attachment")
    return body


class TicketService:
    """Service for handling support tickets and messages."""

    @classmethod
    async def create_ticket(cls, data: TicketCreate, current_user: dict) -> TicketCreated:
        """Open a ticket with its first message.

        A customer person always opens tickets for their own customer;
        staff must name the customer.

        Raises
        ------
        CustomerNotFoundError
            If staff name no customer or an unknown one.
        AccessDeniedError
            If a customer person names another customer.
        EmptyReplyError
            If the opening message has neither text nor attachments.
        AttachmentNotFoundError
            If an attachment id cannot be claimed by the caller.
        """
        role = _role(current_user)
        customer_id = data.customer_id
        if role is Role.CUSTOMER:
            if customer_id and customer_id != current_user.get("customer_id"):
                raise AccessDeniedError("Customers can only open tickets for themselves")
            customer_id = current_user.get("customer_id")
        body = _clean_body(data.body, data.attachment_ids)

        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not customer_id or not cursor.execute(
                "SELECT id FROM customers WHERE id = ?", (customer_id,)
            ).fetchone():
                raise CustomerNotFoundError(f"Customer {customer_id} not found")
            ticket_id = new_id()
            now = utcnow()
            cursor.execute(
                """
                INSERT INTO support_tickets (id, customer_id, creator_id, subject, priority, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ticket_id,
                    customer_id,
                    current_user.get("user_id"),
                    data.subject,
                    data.priority.value,
                    TicketStatus.OPEN.value,
                    now,
                    now,
                ),
            )
            message = _insert_message(cursor, ticket_id, current_user, body, data.attachment_ids)
            conn.commit()
            ticket = _ticket_from_row(_load_ticket(cursor, ticket_id, current_user))
        except Exception as e:
            conn.rollback()
            logger.error("Failed to create support ticket for %s: %s", current_user.get("user_id"), e)
            raise
        finally:
            conn.close()

        logger.info("User %s opened support ticket %s", current_user.get("user_id"), ticket_id)
        await AuditService.record(
            user_id=current_user.get("user_id"),
            action="create",
            object_type="support_ticket",
            object_id=ticket_id,
            details={"subject": data.subject, "priority": data.priority.value},
        )
        return TicketCreated(ticket=ticket, message=message)

    @classmethod
    async def list_tickets(
        cls,
        current_user: dict,
        status: Optional[TicketStatus] = None,
        priority: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> TicketList:
        """List tickets visible to the current user.

        Staff see all tickets; a customer person sees only their
        customer's tickets, whatever ``customer_id`` filter is given.
        Sorting accepts ``created_at``, ``updated_at`` or
        ``last_message``; the default is newest update first.
        """
        where_clauses: List[str] = []
        params: list = []
        if _role(current_user) is Role.CUSTOMER:
            where_clauses.append("t.customer_id = ?")
            params.append(current_user.get("customer_id"))
        elif customer_id:
            where_clauses.append("t.customer_id = ?")
            params.append(customer_id)
        if status:
            where_clauses.append("t.status = ?")
            params.append(TicketStatus(status).value)
        if priority:
            where_clauses.append("t.priority = ?")
            params.append(priority)
        if assigned_to_id:
            where_clauses.append("t.assigned_to_id = ?")
            params.append(assigned_to_id)
        if search:
            where_clauses.append("t.subject LIKE ?")
            params.append(f"%{search}%")
        where = (" WHERE " + " AND ".join(where_clauses)) if where_clauses else ""
        sort_field = SORT_FIELDS.get(sort_by or "", "t.updated_at")
        direction = "ASC" if (sort_order or "").lower() == "asc" else "DESC"

        conn = get_connection()
        try:
            count = conn.execute(
                "SELECT COUNT(*) AS n FROM support_tickets t" + where, tuple(params)
            ).fetchone()["n"]
            rows = conn.execute(
                TICKET_SELECT + where + f" ORDER BY {sort_field} {direction}, t.id LIMIT ? OFFSET ?",
                tuple(params) + (page_size, (page - 1) * page_size),
            ).fetchall()
        finally:
            conn.close()
        logger.info("User %s listed %s of %s tickets", current_user.get("user_id"), len(rows), count)
        return TicketList(
            count=count,
            page=page,
            page_size=page_size,
            data=[_ticket_from_row(row) for row in rows],
        )

    @classmethod
    async def get_ticket(cls, ticket_id: str, current_user: dict) -> TicketRead:
        """Retrieve one ticket.

        Raises
        ------
        TicketNotFoundError
            If the ticket does not exist.
        AccessDeniedError
            If a customer person asks for another customer's ticket.
        """
        conn = get_connection()
        try:
            row = _load_ticket(conn.cursor(), ticket_id, current_user)
        finally:
            conn.close()
        return _ticket_from_row(row)

    @classmethod
    async def list_messages(
        cls,
        ticket_id: str,
        current_user: dict,
        sender_type: Optional[SenderType] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> MessageList:
        """Return a ticket's messages oldest first, optionally filtered by sender side.

        ``count`` is the total number of matching messages; ``page`` and
        ``page_size`` slice the result when both are given.
        """
        conn = get_connection()
        try:
            cursor = conn.cursor()
            _load_ticket(cursor, ticket_id, current_user)
            where = " WHERE m.ticket_id = ?"
            params: list = [ticket_id]
            if sender_type:
                where += " AND m.sender_type = ?"
                params.append(SenderType(sender_type).value)
            count = cursor.execute(
                "SELECT COUNT(*) AS n FROM support_messages m" + where, tuple(params)
            ).fetchone()["n"]
            query = MESSAGE_SELECT + where + " ORDER BY m.created_at ASC, m.rowid ASC"
            if page and page_size:
                query += " LIMIT ? OFFSET ?"
                params.extend([page_size, (page - 1) * page_size])
            rows = cursor.execute(query, tuple(params)).fetchall()
            attachments = attachments_for_messages(cursor, [row["id"] for row in rows])
        finally:
            conn.close()
        messages = [_message_from_row(row, attachments[row["id"]]) for row in rows]
        logger.info(
            "User %s retrieved %s messages of ticket %s",
            current_user.get("user_id"),
            len(messages),
            ticket_id,
        )
        return MessageList(count=count, data=messages)

    @classmethod
    async def reply_to_ticket(cls, ticket_id: str, data: ReplyCreate, current_user: dict) -> ReplyResult:
        """Append a reply to a ticket's conversation.

        The reply gate of :func:`support_desk.lifecycle.reply_allowed`
        is applied for the caller's role, referenced attachments are
        bound to the new message in the given order and the ticket may
        move to a new status (see
        :func:`support_desk.lifecycle.status_after_reply`).  The
        ticket's ``updated_at`` is refreshed.

        Raises
        ------
        EmptyReplyError
            If there is neither text nor an attachment.
        TicketNotFoundError, AccessDeniedError
            If the ticket is missing or not visible to the caller.
        TicketClosedError
            If the ticket's status does not accept the caller's reply.
        AttachmentNotFoundError
            If an attachment id cannot be claimed by the caller.
        """
        body = _clean_body(data.body, data.attachment_ids)
        role = _role(current_user)
        conn = get_connection()
        try:
            # Serialise writers so message timestamps stay ordered per ticket.
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.cursor()
            row = _load_ticket(cursor, ticket_id, current_user)
            status = TicketStatus(row["status"])
            if not reply_allowed(status, role):
                raise TicketClosedError(f"Ticket {ticket_id} is {status.value} and does not accept replies")
            message = _insert_message(cursor, ticket_id, current_user, body, data.attachment_ids)
            new_status = status_after_reply(status, sender_for(role))
            cursor.execute(
                "UPDATE support_tickets SET status = ?, updated_at = ? WHERE id = ?",
                (new_status.value, utcnow(), ticket_id),
            )
            conn.commit()
        except TicketClosedError:
            conn.rollback()
            logger.warning("User %s tried to reply to %s ticket %s", current_user.get("user_id"), status.value, ticket_id)
            raise
        except Exception as e:
            conn.rollback()
            logger.error("Failed to reply to ticket %s by user %s: %s", ticket_id, current_user.get("user_id"), e)
            raise
        finally:
            conn.close()

        logger.info(
            "User %s replied to ticket %s as %s (%s -> %s)",
            current_user.get("user_id"),
            ticket_id,
            role.value,
            status.value,
            new_status.value,
        )
        await AuditService.record(
            user_id=current_user.get("user_id"),
            action="reply",
            object_type="support_ticket",
            object_id=ticket_id,
            details={"message_id": message.id, "attachments": len(message.attachments)},
        )
        return ReplyResult(message=message, ticket=TicketStatusRead(id=ticket_id, status=new_status))

    @classmethod
    async def update_ticket_status(cls, ticket_id: str, status: TicketStatus, current_user: dict) -> TicketRead:
        """Set a ticket's status directly (staff override).

        Any of the six statuses may be set from any status.  Entering
        ``CLOSED`` stamps ``closed_at``; leaving it clears the stamp.

        Raises
        ------
        AccessDeniedError
            If the caller is not staff.
        TicketNotFoundError
            If the ticket does not exist.
        """
        if _role(current_user) is not Role.STAFF:
            raise AccessDeniedError("Only staff can change ticket status")
        status = TicketStatus(status)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            row = _load_ticket(cursor, ticket_id, current_user)
            previous = row["status"]
            if previous != status.value:
                now = utcnow()
                cursor.execute(
                    "UPDATE support_tickets SET status = ?, closed_at = ?, updated_at = ? WHERE id = ?",
                    (status.value, closed_at_for(status, now, row["closed_at"]), now, ticket_id),
                )
                conn.commit()
                row = _load_ticket(cursor, ticket_id, current_user)
        finally:
            conn.close()

        if previous != status.value:
            logger.info("Staff %s moved ticket %s from %s to %s", current_user.get("user_id"), ticket_id, previous, status.value)
            await AuditService.record(
                user_id=current_user.get("user_id"),
                action="status",
                object_type="support_ticket",
                object_id=ticket_id,
                details={"from": previous, "to": status.value},
            )
        return _ticket_from_row(row)

    @classmethod
    async def assign_ticket(cls, ticket_id: str, staff_id: str, current_user: dict) -> TicketRead:
        """Make ``staff_id`` the ticket's single handler.

        The previous handler, if any, is replaced without conflict
        checks, and the ticket's status does not matter: closed tickets
        can be reassigned too.

        Raises
        ------
        AccessDeniedError
            If the caller is not staff.
        TicketNotFoundError
            If the ticket does not exist.
        StaffNotFoundError
            If ``staff_id`` is not an active staff account.
        """
        if _role(current_user) is not Role.STAFF:
            raise AccessDeniedError("Only staff can assign tickets")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            row = _load_ticket(cursor, ticket_id, current_user)
            staff = cursor.execute(
                "SELECT id FROM users WHERE id = ? AND role = 'staff' AND disabled = 0",
                (staff_id,),
            ).fetchone()
            if not staff:
                raise StaffNotFoundError(f"Staff member {staff_id} not found")
            previous = row["assigned_to_id"]
            cursor.execute(
                "UPDATE support_tickets SET assigned_to_id = ?, updated_at = ? WHERE id = ?",
                (staff_id, utcnow(), ticket_id),
            )
            conn.commit()
            row = _load_ticket(cursor, ticket_id, current_user)
        finally:
            conn.close()

        logger.info("Staff %s assigned ticket %s to %s", current_user.get("user_id"), ticket_id, staff_id)
        await AuditService.record(
            user_id=current_user.get("user_id"),
            action="assign",
            object_type="support_ticket",
            object_id=ticket_id,
            details={"from": previous, "to": staff_id},
        )
        return _ticket_from_row(row)

    @classmethod
    async def ticket_history(cls, ticket_id: str, current_user: dict, limit: int = 100) -> List[dict]:
        """Audit trail of a ticket, newest first (staff only)."""
        if _role(current_user) is not Role.STAFF:
            raise AccessDeniedError("Only staff can read ticket history")
        await cls.get_ticket(ticket_id, current_user)
        return await AuditService.list_logs(object_type="support_ticket", object_id=ticket_id, limit=limit)
