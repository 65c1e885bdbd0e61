"""
Core components for the comment pipeline.
"""

from .errors import (
    CaptureError,
    DuplicateKeyConflict,
    ProcessingError,
    TransientStoreError,
    ValidationError,
)
from .item_store import ItemStore
from .processor import CommentProcessor

__all__ = [
    "CaptureError",
    "CommentProcessor",
    "DuplicateKeyConflict",
    "ItemStore",
    "ProcessingError",
    "TransientStoreError",
    "ValidationError",
]
