"""unique active support session per order and customer

Revision ID: 8e2b6c4d19a7
Revises: 5c3f9a7d21b4
Create Date: 2026-10-19 13:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "8e2b6c4d19a7"
down_revision: Union[str, None] = "5c3f9a7d21b4"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Allow at most one active session per (order_id, customer_id)."""
    op.create_index(
        "uq_support_sessions_active_order_customer",
        "support_sessions",
        ["order_id", "customer_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )


def downgrade() -> None:
    op.drop_index(
        "uq_support_sessions_active_order_customer", table_name="support_sessions"
    )
