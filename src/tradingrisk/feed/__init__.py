"""
Feed ingestion: bounded channels per source, plus the optional Kafka transport.
"""

from .channel import FeedChannel

__all__ = ["FeedChannel"]
