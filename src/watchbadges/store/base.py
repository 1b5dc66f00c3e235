"""Document store contract shared by the in-memory and Redis backends.

The engine only needs a handful of operations against a hierarchical,
JSON-valued key space:

    get(path) -> value | None
    set(path, value)
    update(path, fields)
    remove(path)
    transaction(path, fn) -> TransactionResult
    subscribe(path, on_change) / unsubscribe(handle)

Paths are "/"-separated ("badgeCounters/u1/currentStreak"). A value of
None means "absent"; writing None removes the node.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol


class _Abort:
    """Sentinel type returned by a transaction function to leave the node untouched."""

    _instance: _Abort | None = None

    def __new__(cls) -> _Abort:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABORT"


ABORT = _Abort()

# Placeholder resolved to the store's clock (epoch ms) at write time.
SERVER_TIMESTAMP: dict[str, str] = {".sv": "timestamp"}

TransactionFn = Callable[[Any], Any]
ChangeCallback = Callable[[str, Any], Awaitable[None] | None]


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of an atomic compare-and-apply."""

    committed: bool
    value: Any


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()."""

    sub_id: int
    path: str


class DocumentStore(Protocol):
    """Operations the achievement engine requires from the remote store."""

    async def get(self, path: str) -> Any: ...

    async def set(self, path: str, value: Any) -> None: ...

    async def update(self, path: str, fields: dict[str, Any]) -> None: ...

    async def remove(self, path: str) -> None: ...

    async def transaction(self, path: str, fn: TransactionFn) -> TransactionResult: ...

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription: ...

    async def unsubscribe(self, subscription: Subscription) -> None: ...


def split_path(path: str) -> list[str]:
    """Split a store path into its non-empty segments."""
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        msg = "Store path must not be empty"
        raise ValueError(msg)
    return parts


def join_path(*segments: object) -> str:
    """Join segments into a store path."""
    return "/".join(str(s).strip("/") for s in segments if str(s).strip("/"))


def is_related(a: str, b: str) -> bool:
    """True when one path is equal to, an ancestor of, or a descendant of the other."""
    pa, pb = split_path(a), split_path(b)
    n = min(len(pa), len(pb))
    return pa[:n] == pb[:n]


def epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def resolve_server_values(value: Any, now_ms: int) -> Any:
    """Return a copy of value with every SERVER_TIMESTAMP placeholder replaced."""
    if isinstance(value, dict):
        if value == SERVER_TIMESTAMP:
            return now_ms
        return {k: resolve_server_values(v, now_ms) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_server_values(v, now_ms) for v in value]
    return copy.copy(value)


def prune_empty(value: Any) -> Any:
    """Drop None leaves and empty containers, mirroring how the store treats absence."""
    if isinstance(value, dict):
        pruned = {k: prune_empty(v) for k, v in value.items()}
        pruned = {k: v for k, v in pruned.items() if v is not None}
        return pruned or None
    return value


def get_in(doc: Any, parts: list[str]) -> Any:
    """Read the nested value at parts, or None."""
    node = doc
    for part in parts:
        if isinstance(node, dict):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
        if node is None:
            return None
    return node


def set_in(doc: Any, parts: list[str], value: Any) -> Any:
    """Return doc with the nested node at parts replaced (None removes it)."""
    if not parts:
        return prune_empty(value)
    if isinstance(doc, dict):
        root = dict(doc)
    elif isinstance(doc, list):
        # Writing below an array turns it into an index-keyed object.
        root = {str(i): v for i, v in enumerate(doc) if v is not None}
    else:
        root = {}
    head, rest = parts[0], parts[1:]
    child = set_in(root.get(head), rest, value)
    if child is None:
        root.pop(head, None)
    else:
        root[head] = child
    return root or None
