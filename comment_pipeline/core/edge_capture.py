"""
Edge Capture for the comment pipeline.

Runs in the caller's request path: turns the query string into a Submission,
publishes it once and reports only whether the bus accepted it. No field is
validated here; that is left to the durable processor.
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Mapping, Optional

from comment_pipeline.bus.message_bus import MessageBus
from comment_pipeline.config.settings import settings
from comment_pipeline.core.errors import BusPublishError, CaptureError
from comment_pipeline.core.processor import REQUEST_ID_FIELD
from comment_pipeline.models import Envelope, Submission
from comment_pipeline.monitoring.metrics import CAPTURE_PUBLISH_DURATION, SUBMISSIONS_CAPTURED

logger = logging.getLogger(__name__)


class EdgeCapture:
    """
    Publishes one envelope per inbound edge request.
    """
    def __init__(self, bus: MessageBus, topic: Optional[str] = None, timeout: Optional[float] = None):
        """
        Args:
            bus: Where envelopes are published.
            topic: Topic name recorded on the envelope. Defaults to ``settings.BUS_TOPIC``.
            timeout: Upper bound in seconds for the publish acknowledgment.
                     Defaults to ``settings.CAPTURE_TIMEOUT_SECONDS``.
        """
        self.bus = bus
        self.topic = topic or settings.BUS_TOPIC
        self.timeout = timeout if timeout is not None else settings.CAPTURE_TIMEOUT_SECONDS

    @staticmethod
    def build_submission(query_params: Mapping[str, str]) -> Submission:
        # A caller-supplied requestId is kept verbatim, even when empty.
        fields = {str(key): str(value) for key, value in query_params.items()}
        request_id = fields[REQUEST_ID_FIELD] if REQUEST_ID_FIELD in fields else uuid.uuid4().hex
        return Submission(
            request_id=request_id,
            fields=fields,
            received_at=datetime.now(timezone.utc),
        )

    async def capture(self, query_params: Mapping[str, str], raw_query: str = "") -> Envelope:
        """
        Builds the submission and publishes exactly one envelope for it.

        Args:
            query_params: The request's query parameters (last value per key).
            raw_query: The untouched query string.

        Returns:
            The published envelope.

        Raises:
            CaptureError: The bus failed or did not answer within the timeout.
        """
        submission = self.build_submission(query_params)
        envelope = Envelope(
            message_id=uuid.uuid4().hex,
            topic=self.topic,
            published_at=datetime.now(timezone.utc),
            raw_query=raw_query,
            submission=submission,
        )

        started = time.perf_counter()
        try:
            await asyncio.wait_for(self.bus.publish(envelope), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            SUBMISSIONS_CAPTURED.labels(outcome="timeout").inc()
            logger.error(f"Publish of request {submission.request_id} timed out after {self.timeout}s")
            raise CaptureError("Bus publish timed out") from e
        except BusPublishError as e:
            SUBMISSIONS_CAPTURED.labels(outcome="failed").inc()
            logger.error(f"Publish of request {submission.request_id} failed: {e}")
            raise CaptureError("Bus publish failed") from e
        except Exception as e:
            SUBMISSIONS_CAPTURED.labels(outcome="failed").inc()
            logger.error(f"Unexpected error publishing request {submission.request_id}: {e}", exc_info=True)
            raise CaptureError("Bus publish failed") from e
        finally:
            CAPTURE_PUBLISH_DURATION.observe(time.perf_counter() - started)

        SUBMISSIONS_CAPTURED.labels(outcome="published").inc()
        logger.info(f"Captured request {submission.request_id} as message {envelope.message_id}")
        return envelope
