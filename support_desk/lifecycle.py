"""
Ticket lifecycle rules shared by the API server and the console client.

A ticket moves between six statuses.  Staff may set any status
directly; customers only influence the status by replying.  Whether a
participant may reply at all depends on the current status and the
participant's role.  Both sides of the system import these rules so
that the reply gate shown in the console is the same one the server
enforces.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional


class TicketStatus(str, Enum):
    """Lifecycle status of a support ticket."""

    OPEN = "OPEN"
    WAITING_CUSTOMER = "WAITING_CUSTOMER"
    WAITING_SUPPORT = "WAITING_SUPPORT"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"


class TicketPriority(str, Enum):
    """Ticket priority.

    Staff screens historically called the middle level ``NORMAL`` while
    the customer screens called it ``MEDIUM``.  ``MEDIUM`` is stored;
    ``NORMAL`` is accepted on input through :func:`parse_priority`.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Role(str, Enum):
    """The two viewer roles of a ticket conversation."""

    STAFF = "staff"
    CUSTOMER = "customer"


class SenderType(str, Enum):
    """Who wrote a message."""

    STAFF = "STAFF"
    CUSTOMER = "CUSTOMER"


PRIORITY_ALIASES: Dict[str, TicketPriority] = {"NORMAL": TicketPriority.MEDIUM}

# Statuses in which each role may no longer reply.
REPLY_BLOCKED: Dict[Role, FrozenSet[TicketStatus]] = {
    Role.STAFF: frozenset({TicketStatus.CLOSED}),
    Role.CUSTOMER: frozenset({TicketStatus.CLOSED, TicketStatus.RESOLVED}),
}

# Status a ticket moves to after a reply from the given sender.  Statuses
# missing from a mapping are left unchanged.
_AFTER_REPLY: Dict[SenderType, Dict[TicketStatus, TicketStatus]] = {
    SenderType.CUSTOMER: {
        TicketStatus.OPEN: TicketStatus.WAITING_SUPPORT,
        TicketStatus.REOPENED: TicketStatus.WAITING_SUPPORT,
        TicketStatus.WAITING_CUSTOMER: TicketStatus.WAITING_SUPPORT,
    },
    SenderType.STAFF: {
        TicketStatus.OPEN: TicketStatus.WAITING_CUSTOMER,
        TicketStatus.REOPENED: TicketStatus.WAITING_CUSTOMER,
        TicketStatus.WAITING_SUPPORT: TicketStatus.WAITING_CUSTOMER,
    },
}


def parse_status(value: str) -> TicketStatus:
    """Return the :class:`TicketStatus` named by ``value``.

    Raises ``ValueError`` for unknown names.  Matching is case
    insensitive.
    """
    try:
        return TicketStatus(str(value).strip().upper())
    except ValueError:
        raise ValueError(f"Unknown ticket status: {value!r}") from None


def parse_priority(value: str) -> TicketPriority:
    """Return the :class:`TicketPriority` named by ``value``, honouring aliases."""
    name = str(value).strip().upper()
    if name in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[name]
    try:
        return TicketPriority(name)
    except ValueError:
        raise ValueError(f"Unknown ticket priority: {value!r}") from None


def sender_for(role: Role) -> SenderType:
    return SenderType.STAFF if Role(role) is Role.STAFF else SenderType.CUSTOMER


def reply_allowed(status: TicketStatus, role: Role) -> bool:
    """Whether a participant with ``role`` may reply to a ticket in ``status``.

    Staff may reply to everything except a closed ticket (notes on a
    resolved ticket are allowed).  Customers may reply to neither a
    closed nor a resolved ticket.
    """
    return TicketStatus(status) not in REPLY_BLOCKED[Role(role)]


def status_after_reply(status: TicketStatus, sender: SenderType) -> TicketStatus:
    """Status a ticket takes after a reply from ``sender``.

    A customer reply hands the ticket back to support; a staff reply
    hands it to the customer.  Resolved and closed tickets keep their
    status.
    """
    status = TicketStatus(status)
    return _AFTER_REPLY[SenderType(sender)].get(status, status)


def can_change_status(role: Role) -> bool:
    """Only staff have a direct status-change operation."""
    return Role(role) is Role.STAFF


def can_assign(role: Role) -> bool:
    return Role(role) is Role.STAFF


def closed_at_for(status: TicketStatus, now: str, previous: Optional[str] = None) -> Optional[str]:
    """Value of ``closed_at`` after moving a ticket to ``status``.

    Entering ``CLOSED`` stamps ``now`` unless the ticket was already
    closed; any other status clears the stamp.
    """
    if TicketStatus(status) is TicketStatus.CLOSED:
        return previous or now
    return None
