"""
SQLAlchemy ORM model for the 'stored_items' table (the keyed store).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, PrimaryKeyConstraint, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType


class StoredItemORM(Base):
    """
    SQLAlchemy ORM model representing one persisted submission.

    Attributes:
        item_type (str): Enumerated discriminator ("comment", "subscription"). Leading
                         part of the primary key.
        item_id (str): The submission's request id. Second part of the primary key.
        payload (dict): Normalized submission fields.
        status (str): Moderation state; "pending" on first write.
        received_at (datetime): When the edge captured the submission.
        created_at (datetime): When the row was first written.
        updated_at (datetime, optional): When the moderation status last changed.
    """
    __tablename__ = "stored_items"

    item_type: Mapped[str] = mapped_column(Text, nullable=False, comment="Item category; low-cardinality partition key.")
    item_id: Mapped[str] = mapped_column(Text, nullable=False, comment="Idempotency key (the submission requestId).")
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, comment="Normalized submission fields.")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", comment="Moderation state.")
    received_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, comment="Capture timestamp.")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, comment="First write timestamp.")
    updated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True, comment="Last status change.")

    __table_args__ = (
        PrimaryKeyConstraint("item_type", "item_id", name="pk_stored_item"),
        CheckConstraint("item_id <> ''", name="ck_stored_item_item_id_not_empty"),
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_stored_item_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<StoredItemORM(item_type='{self.item_type}', item_id='{self.item_id}', "
            f"status='{self.status}')>"
        )
