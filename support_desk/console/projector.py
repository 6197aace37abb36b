"""
Role-specific read model of a ticket conversation.

:func:`project` turns a ticket, its messages and the viewer's role
into a :class:`ConversationView`: the labels and colours to show, the
controls to enable, and one row per message placed on the viewer's
side or the counterpart's.  It is a pure function; the console
renders whatever it returns.

Staff and customers share one data model but not one vocabulary.
Staff read ``WAITING_CUSTOMER`` as "Waiting for customer" while the
customer reads it as "Waiting for you", and the middle priority is
"Normal" for staff but "Medium" for customers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from support_desk.console.models import Attachment, Message, Ticket
from support_desk.lifecycle import (
    Role,
    SenderType,
    TicketPriority,
    TicketStatus,
    can_assign,
    can_change_status,
    reply_allowed,
    sender_for,
)

STATUS_COLORS: Dict[TicketStatus, str] = {
    TicketStatus.OPEN: "green",
    TicketStatus.WAITING_CUSTOMER: "blue",
    TicketStatus.WAITING_SUPPORT: "purple",
    TicketStatus.RESOLVED: "green",
    TicketStatus.CLOSED: "gray",
    TicketStatus.REOPENED: "yellow",
}

STATUS_LABELS: Dict[Role, Dict[TicketStatus, str]] = {
    Role.STAFF: {
        TicketStatus.OPEN: "Open",
        TicketStatus.WAITING_CUSTOMER: "Waiting for customer",
        TicketStatus.WAITING_SUPPORT: "Waiting for support",
        TicketStatus.RESOLVED: "Resolved",
        TicketStatus.CLOSED: "Closed",
        TicketStatus.REOPENED: "Reopened",
    },
    Role.CUSTOMER: {
        TicketStatus.OPEN: "Open",
        TicketStatus.WAITING_CUSTOMER: "Waiting for you",
        TicketStatus.WAITING_SUPPORT: "Waiting for support",
        TicketStatus.RESOLVED: "Resolved",
        TicketStatus.CLOSED: "Closed",
        TicketStatus.REOPENED: "Reopened",
    },
}

PRIORITY_LABELS: Dict[Role, Dict[TicketPriority, str]] = {
    Role.STAFF: {
        TicketPriority.LOW: "Low",
        TicketPriority.MEDIUM: "Normal",
        TicketPriority.HIGH: "High",
        TicketPriority.URGENT: "Urgent",
    },
    Role.CUSTOMER: {
        TicketPriority.LOW: "Low",
        TicketPriority.MEDIUM: "Medium",
        TicketPriority.HIGH: "High",
        TicketPriority.URGENT: "Urgent",
    },
}

PRIORITY_COLORS: Dict[Role, Dict[TicketPriority, str]] = {
    Role.STAFF: {
        TicketPriority.LOW: "blue",
        TicketPriority.MEDIUM: "yellow",
        TicketPriority.HIGH: "orange",
        TicketPriority.URGENT: "red",
    },
    Role.CUSTOMER: {
        TicketPriority.LOW: "gray",
        TicketPriority.MEDIUM: "blue",
        TicketPriority.HIGH: "orange",
        TicketPriority.URGENT: "red",
    },
}

CLOSED_HINT = "This ticket is closed; replies are disabled."
RESOLVED_HINT = "This ticket has been resolved; replies are disabled."


@dataclass(frozen=True)
class MessageRow:
    """One message as the viewer sees it."""

    id: str
    side: str
    is_own: bool
    sender_type: SenderType
    sender_name: str
    body: str
    created_at: str
    attachments: Tuple[Attachment, ...] = ()


@dataclass(frozen=True)
class ConversationView:
    ticket_id: str
    subject: str
    customer_title: str
    status: TicketStatus
    status_label: str
    status_color: str
    priority_label: str
    priority_color: str
    assigned_to_label: str
    composer_enabled: bool
    composer_hint: Optional[str]
    show_admin_controls: bool
    status_options: Tuple[Tuple[TicketStatus, str], ...]
    assign_label: Optional[str]
    rows: Tuple[MessageRow, ...]


def _sender_name(message: Message) -> str:
    if message.sender is not None:
        return message.sender.display_name
    return "Support" if message.sender_type is SenderType.STAFF else "Customer"


def project_message(message: Message, viewer_role: Role) -> MessageRow:
    is_own = message.sender_type is sender_for(viewer_role)
    return MessageRow(
        id=message.id,
        side="right" if is_own else "left",
        is_own=is_own,
        sender_type=message.sender_type,
        sender_name=_sender_name(message),
        body=message.body,
        created_at=message.created_at,
        attachments=message.attachments,
    )


def project(ticket: Ticket, messages: Sequence[Message], viewer_role: Role) -> ConversationView:
    """Build the view of ``ticket`` and ``messages`` for ``viewer_role``.

    Parameters
    ----------
    ticket : Ticket
        Current ticket record.
    messages : Sequence[Message]
        The thread, oldest first.  Rows keep this order.
    viewer_role : Role
        ``Role.STAFF`` or ``Role.CUSTOMER`` (or their string values).

    Returns
    -------
    ConversationView
        Everything the console needs to draw the conversation.
    """
    role = Role(viewer_role)
    status = ticket.status
    composer_enabled = reply_allowed(status, role)
    hint = None
    if not composer_enabled:
        hint = CLOSED_HINT if status is TicketStatus.CLOSED else RESOLVED_HINT

    admin = can_change_status(role) and can_assign(role)
    if admin:
        status_options = tuple((s, STATUS_LABELS[role][s]) for s in TicketStatus)
        assign_label = "Change assignment" if ticket.assigned_to else "Assign"
    else:
        status_options = ()
        assign_label = None

    return ConversationView(
        ticket_id=ticket.id,
        subject=ticket.subject,
        customer_title=ticket.customer.title,
        status=status,
        status_label=STATUS_LABELS[role][status],
        status_color=STATUS_COLORS[status],
        priority_label=PRIORITY_LABELS[role][ticket.priority],
        priority_color=PRIORITY_COLORS[role][ticket.priority],
        assigned_to_label=ticket.assigned_to.display_name if ticket.assigned_to else "Unassigned",
        composer_enabled=composer_enabled,
        composer_hint=hint,
        show_admin_controls=admin,
        status_options=status_options,
        assign_label=assign_label,
        rows=tuple(project_message(m, role) for m in messages),
    )
