"""Document store backends."""

from watchbadges.store.base import (
    ABORT,
    SERVER_TIMESTAMP,
    DocumentStore,
    Subscription,
    TransactionResult,
    join_path,
)
from watchbadges.store.memory import InMemoryDocumentStore
from watchbadges.store.redis_store import RedisDocumentStore

__all__ = [
    "ABORT",
    "SERVER_TIMESTAMP",
    "DocumentStore",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
    "Subscription",
    "TransactionResult",
    "join_path",
]
