"""
Exception hierarchy for the comment pipeline.

Each error is recovered at the boundary closest to its cause: capture errors in
the edge route, processing errors in the subscription worker. The processor
classifies failures through ``ProcessingError.retryable`` and the worker acts
on that flag.
"""
from typing import Optional


class CommentPipelineError(Exception):
    """Base exception for all comment pipeline errors."""


class BusPublishError(CommentPipelineError):
    """The message bus could not accept an envelope."""


class CaptureError(CommentPipelineError):
    """Edge capture could not hand the submission to the bus."""


class ProcessingError(CommentPipelineError):
    """A delivered envelope could not be processed."""

    retryable: bool = False

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id


class ValidationError(ProcessingError):
    """Malformed envelope or submission. Redelivering it cannot succeed."""

    retryable = False


class TransientStoreError(ProcessingError):
    """The keyed store was unavailable, throttled or too slow. Safe to redeliver."""

    retryable = True


class DuplicateKeyConflict(CommentPipelineError):
    """A conditional create found the key already present. Expected under redelivery."""

    def __init__(self, item_type: str, item_id: str):
        super().__init__(f"Item already exists: ({item_type}, {item_id})")
        self.item_type = item_type
        self.item_id = item_id


class ItemNotFoundError(CommentPipelineError):
    """No stored item exists for the given key."""

    def __init__(self, item_type: str, item_id: str):
        super().__init__(f"Item not found: ({item_type}, {item_id})")
        self.item_type = item_type
        self.item_id = item_id


class InvalidStatusTransition(CommentPipelineError):
    """The requested moderation status change is not allowed."""
