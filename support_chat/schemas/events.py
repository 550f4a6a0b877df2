"""
Events emitted by the support chat engine after a change has been committed.

Consumers (live refresh, toasts) receive these through a Notifier. Delivery
is best-effort and at-most-once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from support_chat.constants.support_chat import SenderRole
from support_chat.schemas.support_chat import ChatMessage, ChatSession


class OpenEvent(BaseModel):
    """A new session was opened (admins get a "new chat" notification)."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal["support_chat.opened"] = "support_chat.opened"
    session: ChatSession

    @property
    def session_id(self) -> UUID:
        return self.session.id


class AppendEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: Literal["support_chat.message_appended"] = (
        "support_chat.message_appended"
    )
    session_id: UUID
    message: ChatMessage


class ReadEvent(BaseModel):
    """``reader`` marked the listed messages from the other party as read."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal["support_chat.messages_read"] = "support_chat.messages_read"
    session_id: UUID
    reader: SenderRole
    message_ids: tuple[UUID, ...] = Field(default_factory=tuple)


class ResolveEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: Literal["support_chat.resolved"] = "support_chat.resolved"
    session_id: UUID
    resolved_by: str
    resolved_at: datetime


SupportChatEvent = Union[OpenEvent, AppendEvent, ReadEvent, ResolveEvent]

# Rebuilds an event from its JSON form (e.g. a task payload) by event_type.
support_chat_event_adapter: TypeAdapter[SupportChatEvent] = TypeAdapter(
    Annotated[SupportChatEvent, Field(discriminator="event_type")]
)
