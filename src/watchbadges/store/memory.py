"""In-process document store.

Backs unit tests and offline use. All writes go through one asyncio.Lock,
so transactions are trivially atomic within the process.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import itertools
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from watchbadges.store.base import (
    ABORT,
    ChangeCallback,
    Subscription,
    TransactionFn,
    TransactionResult,
    epoch_ms,
    get_in,
    is_related,
    resolve_server_values,
    set_in,
    split_path,
)

logger = structlog.get_logger()


class InMemoryDocumentStore:
    """Nested-dict implementation of the DocumentStore contract."""

    def __init__(
        self,
        initial: dict[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._subscribers: dict[int, tuple[str, ChangeCallback]] = {}
        self._ids = itertools.count(1)
        self.write_count = 0

    def dump(self) -> dict[str, Any]:
        """Deep copy of the whole tree (test helper)."""
        return copy.deepcopy(self._root)

    async def get(self, path: str) -> Any:
        return copy.deepcopy(get_in(self._root, split_path(path)))

    async def set(self, path: str, value: Any) -> None:
        async with self._lock:
            self._write(path, value)
        await self._notify(path)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        base = split_path(path)
        async with self._lock:
            for key, value in fields.items():
                self._write("/".join(base + split_path(key)), value)
        await self._notify(path)

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    async def transaction(self, path: str, fn: TransactionFn) -> TransactionResult:
        parts = split_path(path)
        async with self._lock:
            current = copy.deepcopy(get_in(self._root, parts))
            proposed = fn(current)
            if proposed is ABORT:
                return TransactionResult(committed=False, value=current)
            self._write(path, proposed)
            value = copy.deepcopy(get_in(self._root, parts))
        await self._notify(path)
        return TransactionResult(committed=True, value=value)

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription:
        sub = Subscription(sub_id=next(self._ids), path=path)
        self._subscribers[sub.sub_id] = (path, on_change)
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.pop(subscription.sub_id, None)

    def _write(self, path: str, value: Any) -> None:
        resolved = resolve_server_values(value, epoch_ms(self._clock()))
        self._root = set_in(self._root, split_path(path), resolved) or {}
        self.write_count += 1

    async def _notify(self, changed_path: str) -> None:
        for sub_path, callback in list(self._subscribers.values()):
            if not is_related(sub_path, changed_path):
                continue
            value = await self.get(sub_path)
            try:
                result = callback(sub_path, value)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("store_subscriber_failed", path=sub_path, exc_info=True)
