"""Redis-backed document store.

Layout: every document (the first two path segments, e.g.
"badgeCounters/u1") is one JSON string under "docstore:<doc>". Deeper
path segments address fields inside that JSON. Reads of a single-segment
path ("badges") SCAN all documents beneath it.

Transactions use WATCH/MULTI/EXEC optimistic locking on the document key,
so two tabs incrementing counters of the same user serialise through
retries instead of overwriting each other. Every write publishes the
changed path on the "docstore:changes" channel for subscribers.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import inspect
import itertools
import json
from collections.abc import AsyncIterator
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError, WatchError

from watchbadges.exceptions import StoreUnavailableError, TransactionConflictError
from watchbadges.store.base import (
    ABORT,
    ChangeCallback,
    Subscription,
    TransactionFn,
    TransactionResult,
    get_in,
    is_related,
    prune_empty,
    resolve_server_values,
    set_in,
    split_path,
)

logger = structlog.get_logger()

KEY_PREFIX = "docstore:"
CHANGES_CHANNEL = "docstore:changes"


@contextlib.asynccontextmanager
async def _translate_errors(op: str, path: str) -> AsyncIterator[None]:
    """Wrap transport failures into StoreUnavailableError."""
    try:
        yield
    except (RedisError, OSError) as exc:
        raise StoreUnavailableError(f"{op} {path!r} failed: {exc}") from exc


class RedisDocumentStore:
    """DocumentStore implementation on top of redis.asyncio."""

    def __init__(self, redis_client: aioredis.Redis, max_retries: int = 25) -> None:
        self.redis = redis_client
        self._max_retries = max_retries
        self._subscribers: dict[int, tuple[str, ChangeCallback]] = {}
        self._ids = itertools.count(1)
        self._listener: asyncio.Task[None] | None = None

    @staticmethod
    def _locate(path: str) -> tuple[str, list[str]]:
        parts = split_path(path)
        if len(parts) < 2:
            msg = f"Path {path!r} does not address a single document"
            raise ValueError(msg)
        return KEY_PREFIX + "/".join(parts[:2]), parts[2:]

    async def _now_ms(self) -> int:
        seconds, micros = await self.redis.time()
        return int(seconds) * 1000 + int(micros) // 1000

    # ── Reads ──

    async def get(self, path: str) -> Any:
        parts = split_path(path)
        async with _translate_errors("get", path):
            if len(parts) == 1:
                return await self._get_collection(parts[0])
            key, rest = self._locate(path)
            raw = await self.redis.get(key)
        if raw is None:
            return None
        return get_in(json.loads(raw), rest) if rest else json.loads(raw)

    async def _get_collection(self, name: str) -> dict[str, Any] | None:
        prefix = f"{KEY_PREFIX}{name}/"
        result: dict[str, Any] = {}
        async for key in self.redis.scan_iter(match=prefix + "*", count=500):
            key_str = key if isinstance(key, str) else key.decode()
            raw = await self.redis.get(key_str)
            if raw is not None:
                result[key_str[len(prefix):]] = json.loads(raw)
        return result or None

    # ── Writes ──

    async def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if len(parts) == 1:
            await self._set_collection(parts[0], value)
            return
        await self.transaction(path, lambda _current: value)

    async def _set_collection(self, name: str, value: Any) -> None:
        async with _translate_errors("set", name):
            now_ms = await self._now_ms()
            stale = [k async for k in self.redis.scan_iter(match=f"{KEY_PREFIX}{name}/*", count=500)]
            async with self.redis.pipeline(transaction=True) as pipe:
                if stale:
                    pipe.delete(*stale)
                for doc_id, doc in (value or {}).items():
                    pruned = prune_empty(resolve_server_values(doc, now_ms))
                    if pruned is not None:
                        pipe.set(f"{KEY_PREFIX}{name}/{doc_id}", json.dumps(pruned))
                pipe.publish(CHANGES_CHANNEL, name)
                await pipe.execute()

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        parts = split_path(path)
        if len(parts) == 1:
            for key, value in fields.items():
                await self.set(f"{parts[0]}/{key}", value)
            return

        def _merge(current: Any) -> Any:
            merged = current if isinstance(current, dict) else {}
            for key, value in fields.items():
                merged = set_in(merged, split_path(key), value) or {}
            return merged

        await self.transaction(path, _merge)

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    async def transaction(self, path: str, fn: TransactionFn) -> TransactionResult:
        key, rest = self._locate(path)
        async with _translate_errors("transaction", path):
            async with self.redis.pipeline(transaction=True) as pipe:
                for _attempt in range(self._max_retries):
                    now_ms = await self._now_ms()
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        doc = json.loads(raw) if raw is not None else None
                        current = get_in(doc, rest) if rest else doc
                        proposed = fn(copy.deepcopy(current))
                        if proposed is ABORT:
                            await pipe.unwatch()
                            return TransactionResult(committed=False, value=current)

                        resolved = resolve_server_values(proposed, now_ms)
                        new_doc = set_in(doc, rest, resolved) if rest else prune_empty(resolved)
                        pipe.multi()
                        if new_doc is None:
                            pipe.delete(key)
                        else:
                            pipe.set(key, json.dumps(new_doc))
                        pipe.publish(CHANGES_CHANNEL, "/".join(split_path(path)))
                        await pipe.execute()
                        return TransactionResult(
                            committed=True,
                            value=get_in(new_doc, rest) if rest else new_doc,
                        )
                    except WatchError:
                        logger.debug("store_transaction_retry", path=path)
                        continue
        raise TransactionConflictError(path, self._max_retries)

    # ── Subscriptions ──

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription:
        sub = Subscription(sub_id=next(self._ids), path=path)
        self._subscribers[sub.sub_id] = (path, on_change)
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen())
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.pop(subscription.sub_id, None)
        if not self._subscribers and self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None

    async def close(self) -> None:
        """Stop the change listener."""
        self._subscribers.clear()
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(CHANGES_CHANNEL)
        logger.info("store_listener_started", channel=CHANGES_CHANNEL)
        try:
            while self._subscribers:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                changed = message.get("data", "")
                if isinstance(changed, bytes):
                    changed = changed.decode()
                await self._dispatch(str(changed))
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()
            logger.info("store_listener_stopped")

    async def _dispatch(self, changed_path: str) -> None:
        for sub_path, callback in list(self._subscribers.values()):
            if not is_related(sub_path, changed_path):
                continue
            try:
                value = await self.get(sub_path)
                result = callback(sub_path, value)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("store_subscriber_failed", path=sub_path, exc_info=True)
