"""SupportMessage model: one row per message appended to a support session."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from support_chat.db import Base


class SupportMessage(Base):
    """One row per message; ``position`` is the message's index within its session."""

    __tablename__ = "support_messages"

    __table_args__ = (
        UniqueConstraint(
            "session_id", "position", name="uq_support_messages_session_position"
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid,
        ForeignKey("support_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    position = Column(Integer, nullable=False)
    sender = Column(String(16), nullable=False)  # 'customer' | 'admin'
    sender_id = Column(String(256), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    read = Column(Boolean, nullable=False, default=False)

    session = relationship("SupportSession", back_populates="messages")
