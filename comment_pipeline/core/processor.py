"""
Durable Processor for the comment pipeline.

Handles envelopes delivered by the message bus: validates the submission,
normalizes its fields and performs an idempotent create in the keyed store.
Failures are classified, not retried here: ``ValidationError`` is permanent,
``TransientStoreError`` asks the bus to redeliver.
"""
import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from comment_pipeline.config.settings import settings
from comment_pipeline.core.errors import DuplicateKeyConflict, TransientStoreError, ValidationError
from comment_pipeline.core.item_store import ItemStore
from comment_pipeline.models import (
    Envelope,
    ItemType,
    ModerationStatus,
    StoredItemDTO,
    StoreOutcome,
)
from comment_pipeline.monitoring.metrics import ITEMS_PROCESSED

logger = logging.getLogger(__name__)

REQUEST_ID_FIELD = "requestId"
ITEM_TYPE_FIELD = "itemType"
ROUTING_FIELDS = frozenset({REQUEST_ID_FIELD, ITEM_TYPE_FIELD})


def normalize_fields(fields: Mapping[str, str]) -> Dict[str, str]:
    """Strips keys and values and drops blank keys and routing keys."""
    normalized: Dict[str, str] = {}
    for key, value in fields.items():
        key = key.strip()
        if not key or key in ROUTING_FIELDS:
            continue
        normalized[key] = value.strip()
    return normalized


class CommentProcessor:
    """
    Turns delivered envelopes into stored items.
    """
    def __init__(self, store: Optional[ItemStore] = None, store_timeout: Optional[float] = None):
        """
        Initializes the CommentProcessor.

        Args:
            store: The keyed store to write to. Defaults to an ItemStore on the
                   application database.
            store_timeout: Upper bound in seconds for one store write. Defaults to
                           ``settings.STORE_TIMEOUT_SECONDS``.
        """
        self.store = store or ItemStore()
        self.store_timeout = store_timeout if store_timeout is not None else settings.STORE_TIMEOUT_SECONDS

    @staticmethod
    def parse_envelope(data: Union[Envelope, Mapping[str, Any]]) -> Envelope:
        if isinstance(data, Envelope):
            return data
        try:
            return Envelope.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed envelope: {e.error_count()} validation error(s)") from e

    @staticmethod
    def to_stored_item(envelope: Envelope) -> StoredItemDTO:
        """
        Validates the submission and builds the item to create.

        Raises:
            ValidationError: The request id is missing or blank, or the item
                             type is not one of ``ItemType``.
        """
        submission = envelope.submission
        # Kept verbatim as the item key.
        request_id = submission.request_id
        if not request_id.strip():
            raise ValidationError(f"Submission in message {envelope.message_id} has an empty requestId")

        raw_item_type = submission.fields.get(ITEM_TYPE_FIELD, "").strip() or ItemType.COMMENT.value
        try:
            item_type = ItemType(raw_item_type)
        except ValueError as e:
            raise ValidationError(f"Unknown itemType '{raw_item_type}'", request_id=request_id) from e

        return StoredItemDTO(
            item_type=item_type,
            item_id=request_id,
            payload=normalize_fields(submission.fields),
            status=ModerationStatus.PENDING,
            received_at=submission.received_at,
        )

    async def process(self, data: Union[Envelope, Mapping[str, Any]]) -> StoreOutcome:
        """
        Processes one delivered envelope.

        Safe under redelivery: the first successful create wins and every later
        delivery of the same request id is a no-op reported as DUPLICATE.

        Args:
            data: The envelope, either parsed or in its wire form.

        Returns:
            StoreOutcome.CREATED or StoreOutcome.DUPLICATE.

        Raises:
            ValidationError: Permanent failure; the envelope must not be retried.
            TransientStoreError: Retryable failure; the bus should redeliver.
        """
        try:
            envelope = self.parse_envelope(data)
            item = self.to_stored_item(envelope)
        except ValidationError as e:
            logger.warning(f"Discarding invalid submission: {e}")
            ITEMS_PROCESSED.labels(outcome="invalid").inc()
            raise

        try:
            await asyncio.wait_for(self.store.create_if_absent(item), timeout=self.store_timeout)
        except DuplicateKeyConflict:
            logger.info(
                f"Duplicate delivery of ({item.item_type.value}, {item.item_id}) "
                f"in message {envelope.message_id}; leaving stored item untouched"
            )
            ITEMS_PROCESSED.labels(outcome="duplicate").inc()
            return StoreOutcome.DUPLICATE
        except asyncio.TimeoutError as e:
            logger.warning(f"Store write for {item.item_id} exceeded {self.store_timeout}s")
            ITEMS_PROCESSED.labels(outcome="transient").inc()
            raise TransientStoreError(
                f"Store write timed out after {self.store_timeout}s", request_id=item.item_id
            ) from e
        except TransientStoreError:
            ITEMS_PROCESSED.labels(outcome="transient").inc()
            raise

        logger.info(f"Stored {item.item_type.value} {item.item_id} from message {envelope.message_id}")
        ITEMS_PROCESSED.labels(outcome="created").inc()
        return StoreOutcome.CREATED
