"""
Subscription worker: the invocation environment for one bus subscriber.

Claims leased deliveries, invokes the subscriber's handler once per delivery
and settles each delivery according to the outcome: ack on success, dead
letter on a permanent failure, nack with backoff on a retryable one until the
retry budget is spent.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from comment_pipeline.bus.message_bus import DatabaseMessageBus, Delivery, get_message_bus
from comment_pipeline.config.settings import settings
from comment_pipeline.core.errors import ProcessingError
from comment_pipeline.core.processor import CommentProcessor
from comment_pipeline.monitoring.metrics import DELIVERIES

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


class DeliveryOutcome(str, Enum):
    ACKED = "acked"
    RETRIED = "retried"
    DEAD_LETTERED = "dead_lettered"


class SubscriptionWorker:
    """
    Delivers envelopes from the bus to a single subscriber handler.
    """
    def __init__(
        self,
        bus: DatabaseMessageBus,
        handler: Handler,
        subscriber: Optional[str] = None,
        component: str = "durable_processor",
        batch_size: Optional[int] = None,
        handler_timeout: Optional[float] = None,
        visibility_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.bus = bus
        self.handler = handler
        self.subscriber = subscriber or settings.PROCESSOR_SUBSCRIBER
        self.component = component
        self.batch_size = batch_size or settings.BUS_FETCH_BATCH_SIZE
        self.handler_timeout = handler_timeout or settings.PROCESSOR_TIMEOUT_SECONDS
        self.visibility_timeout = visibility_timeout or settings.BUS_VISIBILITY_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or settings.BUS_MAX_DELIVERY_ATTEMPTS
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.BUS_RETRY_BACKOFF_SECONDS
        self.backoff_max_seconds = backoff_max_seconds or settings.BUS_RETRY_BACKOFF_MAX_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.BUS_POLL_INTERVAL_SECONDS
        self.last_claimed = 0

        if self.handler_timeout >= self.visibility_timeout:
            logger.warning(
                f"Handler timeout ({self.handler_timeout}s) is not shorter than the visibility timeout "
                f"({self.visibility_timeout}s); deliveries may be redelivered while still in flight"
            )

    def retry_delay(self, attempts: int) -> float:
        """Exponential backoff for the given attempt number (1-based)."""
        return min(self.backoff_seconds * (2 ** max(attempts - 1, 0)), self.backoff_max_seconds)

    async def _retry_or_give_up(self, delivery: Delivery, reason: str) -> DeliveryOutcome:
        if delivery.attempts >= self.max_attempts:
            logger.error(
                f"Message {delivery.message_id} exhausted its retry budget "
                f"({delivery.attempts}/{self.max_attempts}): {reason}"
            )
            await self.bus.dead_letter(
                delivery,
                error_message=f"Retry budget exhausted after {delivery.attempts} attempts: {reason}",
                component=self.component,
            )
            return DeliveryOutcome.DEAD_LETTERED

        delay = self.retry_delay(delivery.attempts)
        logger.warning(
            f"Message {delivery.message_id} failed attempt {delivery.attempts}/{self.max_attempts}: "
            f"{reason}. Redelivering in {delay:.1f}s"
        )
        await self.bus.nack(delivery, delay_seconds=delay)
        return DeliveryOutcome.RETRIED

    async def deliver(self, delivery: Delivery) -> DeliveryOutcome:
        """
        Invokes the handler for one delivery and settles it.

        Returns:
            How the delivery was settled.
        """
        try:
            await asyncio.wait_for(self.handler(delivery.envelope), timeout=self.handler_timeout)
        except asyncio.TimeoutError:
            outcome = await self._retry_or_give_up(
                delivery, f"handler timed out after {self.handler_timeout}s"
            )
        except ProcessingError as e:
            if e.retryable:
                outcome = await self._retry_or_give_up(delivery, str(e))
            else:
                logger.warning(f"Message {delivery.message_id} failed permanently: {e}")
                await self.bus.dead_letter(delivery, error_message=str(e), component=self.component)
                outcome = DeliveryOutcome.DEAD_LETTERED
        except Exception as e:
            logger.error(
                f"Unexpected error handling message {delivery.message_id}: {e}",
                exc_info=True,
            )
            outcome = await self._retry_or_give_up(delivery, f"{e.__class__.__name__}: {e}")
        else:
            await self.bus.ack(delivery)
            outcome = DeliveryOutcome.ACKED

        DELIVERIES.labels(subscriber=self.subscriber, outcome=outcome.value).inc()
        return outcome

    async def run_once(self) -> int:
        """
        Runs one cycle: claims a batch and delivers it concurrently.

        A delivery that cannot be settled (e.g. the database went away between
        handling and ack) is left to its lease and will be redelivered.

        Returns:
            The number of deliveries acknowledged.
        """
        try:
            deliveries = await self.bus.claim(
                self.subscriber,
                batch_size=self.batch_size,
                visibility_timeout=self.visibility_timeout,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to claim deliveries for '{self.subscriber}': {e}", exc_info=True)
            self.last_claimed = 0
            return 0

        self.last_claimed = len(deliveries)
        if not deliveries:
            return 0

        results = await asyncio.gather(
            *(self.deliver(delivery) for delivery in deliveries),
            return_exceptions=True,
        )

        acked = 0
        for delivery, result in zip(deliveries, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Could not settle message {delivery.message_id}; it will be redelivered "
                    f"after its lease expires: {result}"
                )
            elif result is DeliveryOutcome.ACKED:
                acked += 1

        logger.info(
            f"Delivery cycle for '{self.subscriber}' finished. "
            f"Claimed: {len(deliveries)}, Acknowledged: {acked}"
        )
        return acked

    async def run_forever(self) -> None:
        """Polls the bus until cancelled, sleeping only when a cycle found nothing to do."""
        logger.info(
            f"Subscription worker for '{self.subscriber}' started. "
            f"Poll interval: {self.poll_interval}s, batch size: {self.batch_size}"
        )
        try:
            while True:
                try:
                    await self.run_once()
                except Exception as e:
                    # Deliveries of a failed cycle are still leased and come back on expiry.
                    logger.error(f"Error in delivery cycle for '{self.subscriber}': {e}", exc_info=True)
                    self.last_claimed = 0
                if not self.last_claimed:
                    await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.info(f"Subscription worker for '{self.subscriber}' cancelled. Shutting down.")
            raise


def build_processor_worker() -> SubscriptionWorker:
    """Wires the durable processor to its subscription on the application bus."""
    processor = CommentProcessor()
    return SubscriptionWorker(
        bus=get_message_bus(),
        handler=processor.process,
        subscriber=settings.PROCESSOR_SUBSCRIBER,
    )
