"""
API endpoints for support tickets and their conversations.

This router exposes the ticket resource under ``/tickets``: opening
and listing tickets, reading a ticket and its message thread,
replying, and the staff-only status change and assignment
operations.  Access to each operation follows the caller's role, as
resolved by the authentication dependency.

Service errors are answered with ``{"detail": {"code", "message"}}``
so clients can tell a closed ticket from a missing attachment.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from support_desk.app.core.security import get_current_user, require_roles
from support_desk.app.schemas.ticket import (
    MessageList,
    ReplyCreate,
    ReplyResult,
    TicketAssign,
    TicketCreate,
    TicketCreated,
    TicketList,
    TicketRead,
    TicketStatusUpdate,
)
from support_desk.app.services.errors import SupportError
from support_desk.app.services.ticket_service import TicketService
from support_desk.lifecycle import SenderType, TicketStatus, parse_priority

router = APIRouter()


def _http_error(exc: SupportError) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=exc.as_detail())


@router.post(
    "",
    response_model=TicketCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new support ticket",
)
async def create_ticket(
    ticket_data: TicketCreate,
    current_user: dict = Depends(get_current_user),
) -> TicketCreated:
    """Open a ticket with its first message and optional attachments."""
    try:
        return await TicketService.create_ticket(ticket_data, current_user)
    except SupportError as e:
        raise _http_error(e)


@router.get("", response_model=TicketList, summary="List support tickets")
async def list_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    priority: Optional[str] = Query(None, description="LOW, MEDIUM (or NORMAL), HIGH or URGENT"),
    assigned_to_id: Optional[str] = Query(None),
    customer_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Substring of the subject"),
    sort_by: Optional[str] = Query(None, description="'created_at', 'updated_at' or 'last_message'"),
    sort_order: Optional[str] = Query(None, description="'asc' or 'desc'"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="page-size"),
    current_user: dict = Depends(get_current_user),
) -> TicketList:
    """Return tickets visible to the current user, one page at a time.

    Staff see every ticket; customer persons only their customer's.
    """
    if priority:
        try:
            priority = parse_priority(priority).value
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"code": "invalid_priority", "message": str(e)},
            )
    return await TicketService.list_tickets(
        current_user=current_user,
        status=status_filter,
        priority=priority,
        assigned_to_id=assigned_to_id,
        customer_id=customer_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )


@router.get("/{ticket_id}", response_model=TicketRead, summary="Get ticket details")
async def get_ticket(
    ticket_id: str,
    current_user: dict = Depends(get_current_user),
) -> TicketRead:
    """Retrieve one ticket.  Customers may only read their own customer's tickets."""
    try:
        return await TicketService.get_ticket(ticket_id, current_user)
    except SupportError as e:
        raise _http_error(e)


@router.get("/{ticket_id}/messages", response_model=MessageList, summary="Get a ticket's messages")
async def list_messages(
    ticket_id: str,
    sender_type: Optional[SenderType] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=500, alias="page-size"),
    current_user: dict = Depends(get_current_user),
) -> MessageList:
    """Return the conversation oldest first, with attachments in submission order."""
    try:
        return await TicketService.list_messages(
            ticket_id,
            current_user,
            sender_type=sender_type,
            page=page,
            page_size=page_size,
        )
    except SupportError as e:
        raise _http_error(e)


@router.post(
    "/{ticket_id}/reply",
    response_model=ReplyResult,
    status_code=status.HTTP_201_CREATED,
    summary="Reply to a ticket",
)
async def reply_to_ticket(
    ticket_id: str,
    reply: ReplyCreate,
    current_user: dict = Depends(get_current_user),
) -> ReplyResult:
    """Append a reply.

    Returns the created message and the ticket's status after the
    reply.  A ticket whose status does not accept the caller's reply
    answers 409 ``ticket_closed``.
    """
    try:
        return await TicketService.reply_to_ticket(ticket_id, reply, current_user)
    except SupportError as e:
        raise _http_error(e)


@router.patch("/{ticket_id}/status", response_model=TicketRead, summary="Change ticket status")
async def update_ticket_status(
    ticket_id: str,
    update: TicketStatusUpdate,
    current_user: dict = Depends(require_roles("staff")),
) -> TicketRead:
    """Set any of the six statuses directly.  Staff only."""
    try:
        return await TicketService.update_ticket_status(ticket_id, update.status, current_user)
    except SupportError as e:
        raise _http_error(e)


@router.patch("/{ticket_id}/assign", response_model=TicketRead, summary="Assign a ticket to a staff member")
async def assign_ticket(
    ticket_id: str,
    assignment: TicketAssign,
    current_user: dict = Depends(require_roles("staff")),
) -> TicketRead:
    """Replace the ticket's handler, whatever its status.  Staff only."""
    try:
        return await TicketService.assign_ticket(ticket_id, assignment.staff_id, current_user)
    except SupportError as e:
        raise _http_error(e)


@router.get("/{ticket_id}/history", summary="Audit trail of a ticket")
async def ticket_history(
    ticket_id: str,
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_roles("staff")),
) -> List[dict]:
    """Creation, replies, status changes and assignments, newest first."""
    try:
        return await TicketService.ticket_history(ticket_id, current_user, limit=limit)
    except SupportError as e:
        raise _http_error(e)
