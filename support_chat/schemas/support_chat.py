"""Pydantic schemas for support chat sessions and messages.

``ChatSession`` and ``ChatMessage`` are immutable snapshots: the store builds
them from ORM rows and the engine derives new snapshots with ``model_copy``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from support_chat.constants.support_chat import SenderRole, SessionStatus


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by some drivers) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# -----------------------------------------------------------------------------
# Snapshots
# -----------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """One utterance in a session. Only ``read`` may change after append."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    sender: SenderRole
    sender_id: str
    content: str
    timestamp: datetime
    read: bool = False

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.timestamp, str(self.id))


class ChatSession(BaseModel):
    """Support conversation about one order, with its ordered message history."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    order_id: str
    customer_id: str
    issue: str
    category: str
    status: SessionStatus = SessionStatus.ACTIVE
    messages: tuple[ChatMessage, ...] = ()
    created_at: datetime
    last_message_at: datetime
    order_details: Optional[dict[str, Any]] = None
    customer_details: Optional[dict[str, Any]] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @field_validator("created_at", "last_message_at", "resolved_at")
    @classmethod
    def normalize_datetimes(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def is_resolved(self) -> bool:
        return self.status == SessionStatus.RESOLVED

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None

    def unread_count(self, reader: SenderRole) -> int:
        """Messages from the other party that ``reader`` has not read yet."""
        other = SenderRole(reader).counterpart
        return sum(1 for m in self.messages if m.sender == other and not m.read)


class SessionDraft(BaseModel):
    """Fields supplied by the caller when opening a session."""

    order_id: str
    customer_id: str
    issue: str
    category: str
    order_details: Optional[dict[str, Any]] = None
    customer_details: Optional[dict[str, Any]] = None


# -----------------------------------------------------------------------------
# API request / response bodies
# -----------------------------------------------------------------------------


class SessionOpenRequest(BaseModel):
    """Body for opening (or reusing) a support session."""

    order_id: str
    customer_id: str
    issue: str
    category: Optional[str] = None
    order_details: Optional[dict[str, Any]] = None
    customer_details: Optional[dict[str, Any]] = None


class MessageCreate(BaseModel):
    """Body for appending a message."""

    sender: SenderRole
    sender_id: str
    content: str


class MarkReadRequest(BaseModel):
    reader: SenderRole


class ResolveRequest(BaseModel):
    resolved_by: str


class MessageRead(ChatMessage):
    """Message for API responses."""

    pass


class SessionRead(ChatSession):
    """Session for API responses."""

    pass


class SessionListRow(SessionRead):
    """Session row for list endpoints, with unread count for the requesting side."""

    unread: Optional[int] = None
    message_count: int = 0
