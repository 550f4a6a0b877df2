"""Support chats API: list, open, get, send message, mark read, resolve."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi_pagination import Page, Params, create_page

from support_chat.constants.support_chat import SenderRole, SessionStatus
from support_chat.routers.utils.dependencies import get_support_chat_engine
from support_chat.schemas.support_chat import (
    ChatSession,
    MarkReadRequest,
    MessageCreate,
    MessageRead,
    ResolveRequest,
    SessionListRow,
    SessionOpenRequest,
    SessionRead,
)
from support_chat.services.support_chat_engine import SupportChatEngine

support_chats_router = APIRouter(prefix="/support-chats", tags=["Support Chat"])


def _session_to_read(session: ChatSession) -> SessionRead:
    return SessionRead(**session.model_dump())


def _session_to_list_row(session: ChatSession, role: SenderRole) -> SessionListRow:
    """Convert session to SessionListRow with the unread count for ``role``."""
    return SessionListRow(
        **session.model_dump(),
        unread=session.unread_count(role),
        message_count=len(session.messages),
    )


@support_chats_router.get("", response_model=Page[SessionListRow])
def list_support_chats(
    params: Params = Depends(),
    customer_id: Optional[str] = Query(None),
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    role: SenderRole = Query(SenderRole.ADMIN),
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> Page[SessionListRow]:
    """List support chats, most recent activity first (admin inbox or a customer's chats)."""
    page = engine.page_sessions(params, customer_id=customer_id, status=status_filter)
    rows = [_session_to_list_row(s, role) for s in page.items]
    return create_page(rows, total=page.total, params=params)


@support_chats_router.post("", response_model=SessionRead)
def open_support_chat(
    body: SessionOpenRequest,
    response: Response,
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> SessionRead:
    """Open a support chat for an order, or return the customer's active one (200)."""
    session, created = engine.get_or_open_session(
        order_id=body.order_id,
        customer_id=body.customer_id,
        issue=body.issue,
        category=body.category,
        order_details=body.order_details,
        customer_details=body.customer_details,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return _session_to_read(session)


@support_chats_router.get("/by-order/{order_id}", response_model=SessionRead)
def get_support_chat_by_order(
    order_id: str,
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> SessionRead:
    """Get the most recent support chat for an order, active or resolved."""
    return _session_to_read(engine.get_session_for_order(order_id))


@support_chats_router.get("/{session_id}", response_model=SessionRead)
def get_support_chat(
    session_id: UUID,
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> SessionRead:
    """Get a support chat by ID."""
    return _session_to_read(engine.get_session(session_id))


@support_chats_router.post(
    "/{session_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
def send_support_chat_message(
    session_id: UUID,
    body: MessageCreate,
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> MessageRead:
    """Append a message from the customer or an admin."""
    message = engine.append_message(
        session_id, sender=body.sender, sender_id=body.sender_id, content=body.content
    )
    return MessageRead(**message.model_dump())


@support_chats_router.post("/{session_id}/read", response_model=SessionRead)
def mark_support_chat_read(
    session_id: UUID,
    body: MarkReadRequest,
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> SessionRead:
    """Mark the other party's messages as read by ``reader``."""
    return _session_to_read(engine.mark_read(session_id, body.reader))


@support_chats_router.post("/{session_id}/resolve", response_model=SessionRead)
def resolve_support_chat(
    session_id: UUID,
    body: ResolveRequest,
    engine: SupportChatEngine = Depends(get_support_chat_engine),
) -> SessionRead:
    """Resolve a support chat. Resolving twice returns 409 already_resolved."""
    return _session_to_read(engine.resolve_session(session_id, body.resolved_by))
