"""
SQLAlchemy ORM model for the 'bus_deliveries' table.

Each published envelope is fanned out to one row per subscriber. A row is
deleted when its subscriber acknowledges it, so the table only ever holds
in-flight deliveries.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Index, Integer, Text, TIMESTAMP, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, JSONType


class BusDeliveryORM(Base):
    """
    SQLAlchemy ORM model representing a pending delivery of one envelope to one subscriber.

    Attributes:
        id (int): Primary key, auto-incrementing.
        message_id (str): Identifier of the published envelope.
        topic (str): Topic the envelope was published to.
        subscriber (str): Name of the subscriber this delivery is for.
        envelope (dict): The envelope as published (camelCase wire form).
        attempts (int): Number of times the delivery has been leased.
        published_at (datetime): Publish timestamp.
        visible_at (datetime): The delivery can be claimed once this time has passed.
    """
    __tablename__ = "bus_deliveries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    subscriber: Mapped[str] = mapped_column(Text, nullable=False)
    envelope: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    published_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    visible_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "subscriber", name="uq_bus_delivery_message_subscriber"),
        Index("idx_bus_delivery_subscriber_visible_at", "subscriber", "visible_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BusDeliveryORM(id={self.id}, message_id='{self.message_id}', "
            f"subscriber='{self.subscriber}', attempts={self.attempts})>"
        )
