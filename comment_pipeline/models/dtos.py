"""
Pydantic Data Transfer Objects (DTOs) for the comment pipeline.

Submission and Envelope are the wire models that travel on the message bus;
they serialize with camelCase names (``requestId``, ``receivedAt`` ...).
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ItemType(str, Enum):
    """Discriminator for stored items; the store's partition key."""
    COMMENT = "comment"
    SUBSCRIPTION = "subscription"


class ModerationStatus(str, Enum):
    """Moderation state of a stored item. Only PENDING is produced by ingestion."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StoreOutcome(str, Enum):
    """Result of a conditional create in the keyed store."""
    CREATED = "created"
    DUPLICATE = "duplicate"


class Submission(BaseModel):
    """
    The payload extracted at the edge.

    ``request_id`` is not validated here: an empty id still travels on the bus
    and is rejected by the processor.
    """
    request_id: str
    fields: Dict[str, str] = Field(default_factory=dict)
    received_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Envelope(BaseModel):
    """What travels on the message bus. Immutable once published."""
    message_id: str
    topic: str
    published_at: datetime
    raw_query: str = ""
    submission: Submission

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class StoredItemDTO(BaseModel):
    """
    DTO for items in the keyed store.

    Mirrors StoredItemORM and is used for store results and API responses.
    """
    item_type: ItemType
    item_id: str
    payload: Dict[str, str]
    status: ModerationStatus = ModerationStatus.PENDING
    received_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StatusTransitionRequest(BaseModel):
    """Request body for a moderation status change."""
    status: ModerationStatus

