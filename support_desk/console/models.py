"""
Client-side records for tickets, messages and attachments.

These mirror the API payloads.  They are immutable dataclasses built
from decoded JSON with ``from_dict``; the conversation workflow only
ever replaces them, never mutates them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from support_desk.lifecycle import SenderType, TicketPriority, TicketStatus


@dataclass(frozen=True)
class PersonRef:
    """A staff member or customer person."""

    id: str
    first_name: str = ""
    last_name: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PersonRef"]:
        if not data:
            return None
        return cls(id=data["id"], first_name=data.get("first_name") or "", last_name=data.get("last_name") or "")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id[:8]


@dataclass(frozen=True)
class CustomerRef:
    id: str
    title: str
    code: int
    type: str
    category: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomerRef":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            code=int(data.get("code") or 0),
            type=data.get("type", ""),
            category=data.get("category", ""),
        )


@dataclass(frozen=True)
class Attachment:
    """A stored file reference.  ``thumbnail_url`` is only set for images."""

    id: str
    url: str
    name: str = ""
    content_type: str = ""
    size: int = 0
    thumbnail_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            id=data["id"],
            url=data.get("url", ""),
            name=data.get("name", ""),
            content_type=data.get("type", ""),
            size=int(data.get("size") or 0),
            thumbnail_url=data.get("thumbnail"),
        )


@dataclass(frozen=True)
class Message:
    id: str
    ticket_id: str
    sender_type: SenderType
    sender: Optional[PersonRef]
    body: str
    created_at: str
    attachments: Tuple[Attachment, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], ticket_id: Optional[str] = None) -> "Message":
        return cls(
            id=data["id"],
            ticket_id=data.get("ticket_id") or ticket_id or "",
            sender_type=SenderType(data["sender_type"]),
            sender=PersonRef.from_dict(data.get("sender")),
            body=data.get("body") or "",
            created_at=data["created_at"],
            attachments=tuple(Attachment.from_dict(a) for a in data.get("attachments") or ()),
        )


@dataclass(frozen=True)
class Ticket:
    id: str
    subject: str
    priority: TicketPriority
    status: TicketStatus
    customer: CustomerRef
    creator: Optional[PersonRef]
    created_at: str
    updated_at: str
    assigned_to: Optional[PersonRef] = None
    closed_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ticket":
        return cls(
            id=data["id"],
            subject=data.get("subject", ""),
            priority=TicketPriority(data["priority"]),
            status=TicketStatus(data["status"]),
            customer=CustomerRef.from_dict(data["customer"]),
            creator=PersonRef.from_dict(data.get("creator")),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            assigned_to=PersonRef.from_dict(data.get("assigned_to")),
            closed_at=data.get("closed_at"),
        )

    def with_status(self, status: TicketStatus, updated_at: Optional[str] = None) -> "Ticket":
        return replace(self, status=TicketStatus(status), updated_at=updated_at or self.updated_at)


@dataclass(frozen=True)
class ReplyResult:
    """What the server answers to a reply: the new message and, when
    reported, the ticket's status after the reply."""

    message: Message
    status: Optional[TicketStatus] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], ticket_id: str) -> "ReplyResult":
        ticket = data.get("ticket") or {}
        status = ticket.get("status")
        return cls(
            message=Message.from_dict(data["message"], ticket_id=ticket_id),
            status=TicketStatus(status) if status else None,
        )


@dataclass(frozen=True)
class TicketPage:
    count: int
    page: int
    page_size: int
    tickets: Tuple[Ticket, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TicketPage":
        return cls(
            count=int(data.get("count") or 0),
            page=int(data.get("page") or 1),
            page_size=int(data.get("page_size") or 0),
            tickets=tuple(Ticket.from_dict(t) for t in data.get("data") or ()),
        )
