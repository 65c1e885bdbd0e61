"""create stored_items, bus_deliveries and dead_letter_events

Revision ID: 4f2a9c1d7e3b
Revises:
Create Date: 2026-10-16 12:00:00.000000

Initial schema: the keyed store, the database-backed message bus and the
dead-letter table for deliveries that could not be processed.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "4f2a9c1d7e3b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "stored_items",
        sa.Column("item_type", sa.Text(), nullable=False, comment="Item category; low-cardinality partition key."),
        sa.Column("item_id", sa.Text(), nullable=False, comment="Idempotency key (the submission requestId)."),
        sa.Column("payload", JSON_TYPE, nullable=False, comment="Normalized submission fields."),
        sa.Column("status", sa.Text(), nullable=False, comment="Moderation state."),
        sa.Column("received_at", sa.TIMESTAMP(timezone=True), nullable=False, comment="Capture timestamp."),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, comment="First write timestamp."),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True, comment="Last status change."),
        sa.PrimaryKeyConstraint("item_type", "item_id", name="pk_stored_item"),
        sa.CheckConstraint("item_id <> ''", name="ck_stored_item_item_id_not_empty"),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_stored_item_status"),
    )

    op.create_table(
        "bus_deliveries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("message_id", sa.Text(), nullable=False),
        sa.Column("topic", sa.Text(), nullable=False),
        sa.Column("subscriber", sa.Text(), nullable=False),
        sa.Column("envelope", JSON_TYPE, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("published_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("visible_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id", "subscriber", name="uq_bus_delivery_message_subscriber"),
    )
    op.create_index(
        "idx_bus_delivery_subscriber_visible_at", "bus_deliveries", ["subscriber", "visible_at"], unique=False
    )

    op.create_table(
        "dead_letter_events",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("message_id", sa.Text(), nullable=False, comment="Identifier of the original envelope."),
        sa.Column("topic", sa.Text(), nullable=False),
        sa.Column("subscriber", sa.Text(), nullable=False),
        sa.Column("event_payload", JSON_TYPE, nullable=True, comment="Envelope that failed."),
        sa.Column("processing_component", sa.Text(), nullable=True, comment="Component where processing failed."),
        sa.Column("error_msg", sa.Text(), nullable=True, comment="Error message detailing the failure."),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=False, comment="Timestamp of failure."),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_dle_message_id", "dead_letter_events", ["message_id"], unique=False)
    op.create_index("idx_dle_failed_at", "dead_letter_events", ["failed_at"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_dle_failed_at", table_name="dead_letter_events")
    op.drop_index("idx_dle_message_id", table_name="dead_letter_events")
    op.drop_table("dead_letter_events")
    op.drop_index("idx_bus_delivery_subscriber_visible_at", table_name="bus_deliveries")
    op.drop_table("bus_deliveries")
    op.drop_table("stored_items")
