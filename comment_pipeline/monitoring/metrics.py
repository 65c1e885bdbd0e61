"""Prometheus metrics for monitoring the comment pipeline."""

import logging

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

# Define metrics
SUBMISSIONS_CAPTURED = Counter(
    "comment_pipeline_submissions_captured_total",
    "Number of edge requests handled, by publish outcome",
    ["outcome"],
)

CAPTURE_PUBLISH_DURATION = Histogram(
    "comment_pipeline_capture_publish_seconds",
    "Time spent waiting for the bus to accept a published envelope",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ITEMS_PROCESSED = Counter(
    "comment_pipeline_items_processed_total",
    "Number of envelopes handled by the durable processor, by outcome",
    ["outcome"],
)

DELIVERIES = Counter(
    "comment_pipeline_deliveries_total",
    "Number of bus deliveries settled by subscription workers",
    ["subscriber", "outcome"],
)


class PrometheusExporter:
    """Serves the metrics over HTTP for processes that do not run the API."""

    def __init__(self, port: int):
        """
        Initialize the Prometheus exporter.

        Args:
            port: Port to expose metrics on
        """
        self.port = port
        self.server_started = False

    def start_server(self) -> None:
        """Start the Prometheus metrics server."""
        if not self.server_started:
            try:
                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Started Prometheus metrics server on port {self.port}")
            except OSError as e:
                logger.error(f"Failed to start Prometheus metrics server: {str(e)}")
