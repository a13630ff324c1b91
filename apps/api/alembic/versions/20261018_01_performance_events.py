"""Performance event log and metric cache.

Revision ID: 20261018_01
Revises: 
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "performance_events",
        sa.Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("product_id", _ID_TYPE, nullable=True),
        sa.Column("order_id", _ID_TYPE, nullable=True),
        sa.Column("user_id", _ID_TYPE, nullable=True),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("revenue", sa.Numeric(10, 2), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_performance_events_event_type", "performance_events", ["event_type"])
    op.create_index("ix_performance_events_product_id", "performance_events", ["product_id"])
    op.create_index("ix_performance_events_created_at", "performance_events", ["created_at"])
    op.create_index("ix_performance_events_session_id", "performance_events", ["session_id"])

    op.create_table(
        "metric_cache_entries",
        sa.Column("cache_key", sa.String(length=255), primary_key=True),
        sa.Column("namespace", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_metric_cache_entries_namespace", "metric_cache_entries", ["namespace"])


def downgrade() -> None:
    op.drop_index("ix_metric_cache_entries_namespace", table_name="metric_cache_entries")
    op.drop_table("metric_cache_entries")

    op.drop_index("ix_performance_events_session_id", table_name="performance_events")
    op.drop_index("ix_performance_events_created_at", table_name="performance_events")
    op.drop_index("ix_performance_events_product_id", table_name="performance_events")
    op.drop_index("ix_performance_events_event_type", table_name="performance_events")
    op.drop_table("performance_events")
