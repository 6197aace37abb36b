"""
Pydantic schemas for support tickets, messages and attachments.

A ticket groups an append-only thread of messages exchanged between a
customer and support staff.  Each message records which side sent it,
who exactly sent it, its text and the attachments bound to it.

Timestamps are ISO-8601 strings as stored in SQLite.
"""

from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from support_desk.lifecycle import (
    SenderType,
    TicketPriority,
    TicketStatus,
    parse_priority,
    parse_status,
)

from .user import PersonRef


class CustomerRef(BaseModel):
    """The customer organisation a ticket belongs to."""

    id: str
    title: str
    code: int
    type: str
    category: str

    model_config = ConfigDict(from_attributes=True)


class AttachmentRead(BaseModel):
    """A stored file.  ``thumbnail`` is only set for images."""

    id: str
    name: str
    type: str
    size: int
    url: str
    thumbnail: Optional[str] = None


class MessageRead(BaseModel):
    """One entry of a ticket's conversation.

    ``body`` is the text exactly as submitted; renderers escape it for
    their own medium.  ``attachments`` keep the order they
    were given in when the message was submitted.
    """

    id: str
    ticket_id: str
    sender_type: SenderType
    sender: PersonRef
    body: str
    attachments: List[AttachmentRead] = Field(default_factory=list)
    created_at: str


class MessageList(BaseModel):
    count: int
    data: List[MessageRead]


class TicketRead(BaseModel):
    """A ticket without its messages."""

    id: str
    subject: str
    priority: TicketPriority
    status: TicketStatus
    customer: CustomerRef
    creator: PersonRef
    assigned_to: Optional[PersonRef] = None
    created_at: str
    updated_at: str
    closed_at: Optional[str] = None


class TicketList(BaseModel):
    count: int
    page: int
    page_size: int
    data: List[TicketRead]


class TicketStatusRead(BaseModel):
    id: str
    status: TicketStatus


def _parse_priority(value):
    if isinstance(value, TicketPriority):
        return value
    return parse_priority(value)


def _parse_status(value):
    if isinstance(value, TicketStatus):
        return value
    return parse_status(value)


PriorityField = Annotated[TicketPriority, BeforeValidator(_parse_priority)]
StatusField = Annotated[TicketStatus, BeforeValidator(_parse_status)]


class TicketCreate(BaseModel):
    """Payload for opening a ticket.

    Staff must name the customer; a customer person's own customer is
    used when ``customer_id`` is omitted.  The opening message follows
    the same rules as a reply: text, attachments or both.
    """

    customer_id: Optional[str] = Field(None, description="Customer the ticket is about")
    subject: str = Field(..., min_length=1, description="Subject line")
    priority: PriorityField = Field(TicketPriority.MEDIUM, description="LOW, MEDIUM (or NORMAL), HIGH, URGENT")
    body: str = Field("", description="Opening message")
    attachment_ids: List[str] = Field(default_factory=list)

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject must not be blank")
        return value


class TicketCreated(BaseModel):
    ticket: TicketRead
    message: MessageRead


class ReplyCreate(BaseModel):
    """Payload for replying to a ticket.

    Attachments must have been uploaded through ``POST /files`` by the
    same account beforehand; only their identifiers are sent here.
    """

    body: str = Field("", description="Reply text")
    attachment_ids: List[str] = Field(default_factory=list, description="Uploaded attachment ids, in display order")


class ReplyResult(BaseModel):
    """The created message and the ticket status after the reply."""

    message: MessageRead
    ticket: TicketStatusRead


class TicketStatusUpdate(BaseModel):
    status: StatusField = Field(..., description="New status for the ticket")


class TicketAssign(BaseModel):
    staff_id: str = Field(..., description="Staff member who will handle the ticket")
