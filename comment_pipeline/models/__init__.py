"""
Models package for the comment pipeline.

This package contains SQLAlchemy ORM models and Pydantic DTOs.
"""

# Ensure all ORM models are registered with the Base metadata when this package is imported.
from .base import Base
from .bus_delivery_orm import BusDeliveryORM
from .dead_letter_event_orm import DeadLetterEventORM
from .stored_item_orm import StoredItemORM

from .dtos import (
    Envelope,
    ItemType,
    ModerationStatus,
    StatusTransitionRequest,
    StoredItemDTO,
    StoreOutcome,
    Submission,
)

__all__ = [
    # Base
    "Base",
    # ORMs
    "BusDeliveryORM",
    "DeadLetterEventORM",
    "StoredItemORM",
    # DTOs
    "Envelope",
    "ItemType",
    "ModerationStatus",
    "StatusTransitionRequest",
    "StoredItemDTO",
    "StoreOutcome",
    "Submission",
]
