"""
SQLAlchemy ORM model for the 'dead_letter_events' table.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Index, Integer, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, JSONType


class DeadLetterEventORM(Base):
    """
    SQLAlchemy ORM model representing a bus delivery that was given up on.

    Attributes:
        id (int): Primary key, auto-incrementing.
        message_id (str): Identifier of the envelope that failed.
        topic (str): Topic the envelope was published to.
        subscriber (str): Subscriber that could not process it.
        event_payload (dict, optional): The envelope as it was delivered.
        processing_component (str, optional): The component where processing failed.
        error_msg (str, optional): The error message or reason for failure.
        attempts (int): Delivery attempts made before giving up.
        failed_at (datetime): Timestamp when the event was recorded as a dead letter.
    """
    __tablename__ = "dead_letter_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(Text, nullable=False, comment="Identifier of the original envelope.")
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    subscriber: Mapped[str] = mapped_column(Text, nullable=False)
    event_payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True, comment="Envelope that failed.")
    processing_component: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Component where processing failed.")
    error_msg: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Error message detailing the failure.")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, comment="Timestamp of failure.")

    __table_args__ = (
        Index("idx_dle_message_id", "message_id"),
        Index("idx_dle_failed_at", "failed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeadLetterEventORM(id={self.id}, message_id='{self.message_id}', "
            f"failed_at='{self.failed_at}', error='{(self.error_msg or '')[:50]}...')>"
        )
