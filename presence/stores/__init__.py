"""
Event and claim persistence backends.
"""

from .base import ClaimLedger, EventStore
from .memory import InMemoryClaimLedger, InMemoryEventStore
from .redis_store import RedisClaimLedger, RedisEventStore

__all__ = [
    "ClaimLedger",
    "EventStore",
    "InMemoryClaimLedger",
    "InMemoryEventStore",
    "RedisClaimLedger",
    "RedisEventStore",
]
