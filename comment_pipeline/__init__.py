"""
Comment pipeline: edge capture, durable bus relay and idempotent persistence of comments.
"""

__version__ = "0.1.0"
