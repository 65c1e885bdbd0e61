"""
Message bus for the comment pipeline.
"""

from .message_bus import DatabaseMessageBus, Delivery, MessageBus, get_message_bus
from .worker import DeliveryOutcome, SubscriptionWorker, build_processor_worker

__all__ = [
    "DatabaseMessageBus",
    "Delivery",
    "DeliveryOutcome",
    "MessageBus",
    "SubscriptionWorker",
    "build_processor_worker",
    "get_message_bus",
]
