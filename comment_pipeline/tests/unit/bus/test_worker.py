import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from comment_pipeline.bus.message_bus import Delivery
from comment_pipeline.bus.worker import DeliveryOutcome, SubscriptionWorker
from comment_pipeline.core.errors import TransientStoreError, ValidationError


def make_delivery(delivery_id=1, attempts=1):
    return Delivery(
        delivery_id=delivery_id,
        message_id=f"msg-{delivery_id}",
        topic="comments",
        subscriber="comment-processor",
        attempts=attempts,
        envelope={"messageId": f"msg-{delivery_id}"},
    )


@pytest.fixture
def mock_bus():
    bus = MagicMock()
    bus.claim = AsyncMock(return_value=[])
    bus.ack = AsyncMock()
    bus.nack = AsyncMock()
    bus.dead_letter = AsyncMock()
    return bus


def make_worker(bus, handler, **overrides):
    options = dict(
        subscriber="comment-processor",
        batch_size=10,
        handler_timeout=1.0,
        visibility_timeout=30.0,
        max_attempts=3,
        backoff_seconds=2.0,
        backoff_max_seconds=10.0,
        poll_interval=0.01,
    )
    options.update(overrides)
    return SubscriptionWorker(bus=bus, handler=handler, **options)


def test_retry_delay_is_exponential_and_capped(mock_bus):
    worker = make_worker(mock_bus, AsyncMock())

    assert worker.retry_delay(1) == 2.0
    assert worker.retry_delay(2) == 4.0
    assert worker.retry_delay(3) == 8.0
    assert worker.retry_delay(4) == 10.0


@pytest.mark.asyncio
async def test_successful_handler_acks(mock_bus):
    handler = AsyncMock(return_value=None)
    worker = make_worker(mock_bus, handler)
    delivery = make_delivery()

    outcome = await worker.deliver(delivery)

    assert outcome == DeliveryOutcome.ACKED
    handler.assert_awaited_once_with(delivery.envelope)
    mock_bus.ack.assert_awaited_once_with(delivery)
    mock_bus.nack.assert_not_awaited()
    mock_bus.dead_letter.assert_not_awaited()


@pytest.mark.asyncio
async def test_permanent_failure_is_dead_lettered_without_retry(mock_bus):
    worker = make_worker(mock_bus, AsyncMock(side_effect=ValidationError("empty requestId")))
    delivery = make_delivery(attempts=1)

    outcome = await worker.deliver(delivery)

    assert outcome == DeliveryOutcome.DEAD_LETTERED
    mock_bus.dead_letter.assert_awaited_once()
    assert mock_bus.dead_letter.await_args.kwargs["error_message"] == "empty requestId"
    assert mock_bus.dead_letter.await_args.kwargs["component"] == "durable_processor"
    mock_bus.nack.assert_not_awaited()
    mock_bus.ack.assert_not_awaited()


@pytest.mark.asyncio
async def test_retryable_failure_is_nacked_with_backoff(mock_bus):
    worker = make_worker(mock_bus, AsyncMock(side_effect=TransientStoreError("store down")))
    delivery = make_delivery(attempts=2)

    outcome = await worker.deliver(delivery)

    assert outcome == DeliveryOutcome.RETRIED
    mock_bus.nack.assert_awaited_once_with(delivery, delay_seconds=4.0)
    mock_bus.dead_letter.assert_not_awaited()


@pytest.mark.asyncio
async def test_retryable_failure_is_dead_lettered_when_budget_is_spent(mock_bus):
    worker = make_worker(mock_bus, AsyncMock(side_effect=TransientStoreError("store down")))
    delivery = make_delivery(attempts=3)

    outcome = await worker.deliver(delivery)

    assert outcome == DeliveryOutcome.DEAD_LETTERED
    mock_bus.dead_letter.assert_awaited_once()
    assert "Retry budget exhausted" in mock_bus.dead_letter.await_args.kwargs["error_message"]
    mock_bus.nack.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_exception_is_retried(mock_bus):
    worker = make_worker(mock_bus, AsyncMock(side_effect=RuntimeError("boom")))

    outcome = await worker.deliver(make_delivery(attempts=1))

    assert outcome == DeliveryOutcome.RETRIED
    mock_bus.nack.assert_awaited_once()


@pytest.mark.asyncio
async def test_handler_timeout_is_retried(mock_bus):
    async def slow_handler(envelope):
        await asyncio.sleep(1)

    worker = make_worker(mock_bus, slow_handler, handler_timeout=0.01)

    outcome = await worker.deliver(make_delivery(attempts=1))

    assert outcome == DeliveryOutcome.RETRIED


@pytest.mark.asyncio
async def test_run_once_returns_acked_count(mock_bus):
    calls = []

    async def handler(envelope):
        calls.append(envelope["messageId"])
        if envelope["messageId"] == "msg-2":
            raise ValidationError("bad")

    mock_bus.claim.return_value = [make_delivery(1), make_delivery(2), make_delivery(3)]
    worker = make_worker(mock_bus, handler)

    acked = await worker.run_once()

    assert acked == 2
    assert sorted(calls) == ["msg-1", "msg-2", "msg-3"]
    assert worker.last_claimed == 3
    mock_bus.claim.assert_awaited_once_with("comment-processor", batch_size=10, visibility_timeout=30.0)


@pytest.mark.asyncio
async def test_run_once_survives_claim_failure(mock_bus):
    mock_bus.claim.side_effect = OperationalError("SELECT", {}, Exception("db down"))
    worker = make_worker(mock_bus, AsyncMock())

    assert await worker.run_once() == 0
    assert worker.last_claimed == 0


@pytest.mark.asyncio
async def test_run_once_leaves_unsettled_delivery_to_its_lease(mock_bus):
    mock_bus.claim.return_value = [make_delivery(1)]
    mock_bus.ack.side_effect = OperationalError("DELETE", {}, Exception("db down"))
    worker = make_worker(mock_bus, AsyncMock())

    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_run_forever_stops_on_cancel(mock_bus):
    worker = make_worker(mock_bus, AsyncMock())

    task = asyncio.create_task(worker.run_forever())
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert mock_bus.claim.await_count >= 1


@pytest.mark.asyncio
async def test_run_forever_keeps_polling_after_unexpected_cycle_error(mock_bus):
    claims = []

    async def claim(*args, **kwargs):
        claims.append(args)
        if len(claims) == 1:
            raise RuntimeError("unexpected driver error")
        return []

    mock_bus.claim.side_effect = claim
    worker = make_worker(mock_bus, AsyncMock())

    task = asyncio.create_task(worker.run_forever())
    await asyncio.sleep(0.05)

    assert not task.done()
    assert len(claims) >= 2
    assert worker.last_claimed == 0

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
