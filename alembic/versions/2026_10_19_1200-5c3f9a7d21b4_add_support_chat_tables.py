"""add support chat tables

Revision ID: 5c3f9a7d21b4
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c3f9a7d21b4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema: support_sessions and support_messages tables."""
    op.create_table(
        "support_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.String(length=256), nullable=False),
        sa.Column("customer_id", sa.String(length=256), nullable=False),
        sa.Column("issue", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("order_details", sa.JSON(), nullable=True),
        sa.Column("customer_details", sa.JSON(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_by", sa.String(length=256), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_support_sessions_customer_id",
        "support_sessions",
        ["customer_id"],
        unique=False,
    )
    op.create_index(
        "ix_support_sessions_order_customer_status",
        "support_sessions",
        ["order_id", "customer_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_support_sessions_last_message_at",
        "support_sessions",
        ["last_message_at"],
        unique=False,
    )

    op.create_table(
        "support_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("sender", sa.String(length=16), nullable=False),
        sa.Column("sender_id", sa.String(length=256), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "read", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["session_id"], ["support_sessions.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint(
            "session_id", "position", name="uq_support_messages_session_position"
        ),
    )


def downgrade() -> None:
    """Drop support_messages and support_sessions tables."""
    op.drop_table("support_messages")
    op.drop_index("ix_support_sessions_last_message_at", table_name="support_sessions")
    op.drop_index(
        "ix_support_sessions_order_customer_status", table_name="support_sessions"
    )
    op.drop_index("ix_support_sessions_customer_id", table_name="support_sessions")
    op.drop_table("support_sessions")
