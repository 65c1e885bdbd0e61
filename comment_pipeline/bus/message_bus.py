"""
Durable publish/subscribe bus backed by the ``bus_deliveries`` table.

Publishing fans an envelope out to one delivery row per subscriber. Subscribers
claim rows with a lease (``visible_at`` pushed into the future); a delivery
that is not acknowledged before its lease runs out becomes visible again and is
redelivered. Delivery is therefore at-least-once, unordered and without
deduplication.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from comment_pipeline.config.settings import settings
from comment_pipeline.core.errors import BusPublishError
from comment_pipeline.models import BusDeliveryORM, DeadLetterEventORM, Envelope
from comment_pipeline.utils.db_session import session_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivery:
    """One leased delivery of an envelope to a subscriber."""
    delivery_id: int
    message_id: str
    topic: str
    subscriber: str
    attempts: int
    envelope: Dict[str, Any]


class MessageBus(ABC):
    """Publisher side of the bus, as seen by edge capture."""

    @abstractmethod
    async def publish(self, envelope: Envelope) -> None:
        """Accepts the envelope for delivery to every current subscriber, or raises BusPublishError."""


class DatabaseMessageBus(MessageBus):
    """
    Message bus stored in the application database.
    """
    def __init__(
        self,
        subscribers: Sequence[str],
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        if not subscribers:
            raise ValueError("DatabaseMessageBus needs at least one subscriber")
        self.subscribers = list(subscribers)
        self._session_factory = session_factory

    async def publish(self, envelope: Envelope) -> None:
        now = datetime.now(timezone.utc)
        wire = envelope.to_wire()
        try:
            async with session_scope(self._session_factory) as session:
                session.add_all([
                    BusDeliveryORM(
                        message_id=envelope.message_id,
                        topic=envelope.topic,
                        subscriber=subscriber,
                        envelope=wire,
                        attempts=0,
                        published_at=envelope.published_at,
                        visible_at=now,
                    )
                    for subscriber in self.subscribers
                ])
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database error publishing message {envelope.message_id}: {e}", exc_info=True)
            raise BusPublishError(f"Publish of message {envelope.message_id} failed") from e

        logger.debug(f"Published message {envelope.message_id} to {len(self.subscribers)} subscriber(s)")

    @staticmethod
    def visible_ids_query(subscriber: str, now: datetime, batch_size: int):
        """Oldest visible deliveries for ``subscriber``, row-locked and skipping rows other workers hold."""
        return (
            select(BusDeliveryORM.id)
            .where(
                (BusDeliveryORM.subscriber == subscriber) &
                (BusDeliveryORM.visible_at <= now)
            )
            .order_by(BusDeliveryORM.visible_at.asc(), BusDeliveryORM.id.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )

    async def claim(
        self,
        subscriber: str,
        batch_size: int,
        visibility_timeout: float,
    ) -> List[Delivery]:
        """
        Leases up to ``batch_size`` visible deliveries for ``subscriber``.

        Rows are selected oldest first with ``FOR UPDATE SKIP LOCKED`` so that
        concurrent workers never lease the same row, then their lease is
        extended and their attempt counter incremented in the same transaction.

        Args:
            subscriber: The subscriber to claim deliveries for.
            batch_size: Maximum number of deliveries to lease.
            visibility_timeout: Lease length in seconds.

        Returns:
            The leased deliveries; empty when nothing is visible.
        """
        now = datetime.now(timezone.utc)
        lease_until = now + timedelta(seconds=visibility_timeout)
        async with session_scope(self._session_factory) as session:
            ids_result = await session.execute(self.visible_ids_query(subscriber, now, batch_size))
            ids = list(ids_result.scalars().all())
            if not ids:
                return []

            result = await session.execute(
                update(BusDeliveryORM)
                .where(BusDeliveryORM.id.in_(ids))
                .values(visible_at=lease_until, attempts=BusDeliveryORM.attempts + 1)
                .returning(
                    BusDeliveryORM.id,
                    BusDeliveryORM.message_id,
                    BusDeliveryORM.topic,
                    BusDeliveryORM.subscriber,
                    BusDeliveryORM.attempts,
                    BusDeliveryORM.envelope,
                )
                .execution_options(synchronize_session=False)
            )
            deliveries = [
                Delivery(
                    delivery_id=row.id,
                    message_id=row.message_id,
                    topic=row.topic,
                    subscriber=row.subscriber,
                    attempts=row.attempts,
                    envelope=row.envelope,
                )
                for row in result.all()
            ]

        logger.info(f"Claimed {len(deliveries)} deliveries for subscriber '{subscriber}'")
        return sorted(deliveries, key=lambda d: d.delivery_id)

    async def ack(self, delivery: Delivery) -> None:
        """Removes a successfully handled delivery."""
        async with session_scope(self._session_factory) as session:
            await session.execute(delete(BusDeliveryORM).where(BusDeliveryORM.id == delivery.delivery_id))

    async def nack(self, delivery: Delivery, delay_seconds: float) -> None:
        """Makes a delivery visible again after ``delay_seconds``."""
        visible_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(BusDeliveryORM)
                .where(BusDeliveryORM.id == delivery.delivery_id)
                .values(visible_at=visible_at)
            )

    async def dead_letter(self, delivery: Delivery, error_message: str, component: str) -> None:
        """Records the delivery in ``dead_letter_events`` and removes it from the bus."""
        async with session_scope(self._session_factory) as session:
            session.add(DeadLetterEventORM(
                message_id=delivery.message_id,
                topic=delivery.topic,
                subscriber=delivery.subscriber,
                event_payload=delivery.envelope,
                processing_component=component,
                error_msg=error_message,
                attempts=delivery.attempts,
                failed_at=datetime.now(timezone.utc),
            ))
            await session.execute(delete(BusDeliveryORM).where(BusDeliveryORM.id == delivery.delivery_id))
        logger.info(
            f"Moved message {delivery.message_id} for '{delivery.subscriber}' to dead-letter table. "
            f"Stage: {component}"
        )


@lru_cache
def get_message_bus() -> DatabaseMessageBus:
    """Returns the application's bus, bound to the configured subscribers."""
    return DatabaseMessageBus(subscribers=settings.BUS_SUBSCRIBERS)
