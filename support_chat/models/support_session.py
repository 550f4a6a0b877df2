"""SupportSession model: one row per customer/admin support conversation about an order."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from support_chat.constants.support_chat import SessionStatus
from support_chat.db import Base
from support_chat.models.mixins import TimestampMixin, utcnow


class SupportSession(Base, TimestampMixin):
    """Support conversation tied to an order. ``version`` guards concurrent writers."""

    __tablename__ = "support_sessions"

    __table_args__ = (
        Index(
            "ix_support_sessions_order_customer_status",
            "order_id",
            "customer_id",
            "status",
        ),
        Index("ix_support_sessions_last_message_at", "last_message_at"),
        # At most one active session per order and customer, across processes.
        Index(
            "uq_support_sessions_active_order_customer",
            "order_id",
            "customer_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(String(256), nullable=False)
    customer_id = Column(String(256), nullable=False, index=True)
    issue = Column(Text, nullable=False)
    category = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=SessionStatus.ACTIVE.value)
    order_details = Column(JSON, nullable=True)
    customer_details = Column(JSON, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_by = Column(String(256), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    messages = relationship(
        "SupportMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SupportMessage.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}
