"""Badge evaluator: recompute badges from a cached snapshot of durable facts."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from watchbadges.config import Settings, get_settings
from watchbadges.exceptions import StoreError
from watchbadges.gamification.catalog import DEFAULT_CATALOG, BadgeCatalog
from watchbadges.gamification.clock import Clock, to_ms, utc_now
from watchbadges.gamification.counter_service import CounterStore
from watchbadges.gamification.predicates import PREDICATES
from watchbadges.gamification.schemas import (
    BadgeCategory,
    BadgeDefinition,
    BadgeProgress,
    BingeRequirement,
    EarnedBadge,
    MovieRecord,
    PredicateResult,
    SeriesRecord,
    UserSnapshot,
)
from watchbadges.store import ABORT, SERVER_TIMESTAMP, DocumentStore, join_path

logger = structlog.get_logger()

BADGES_ROOT = "badges"
ACTIVITIES_ROOT = "activities"
# Collection keys written by the tracking app under the user's root node.
SERIES_COLLECTION = "serien"
MOVIES_COLLECTION = "filme"

RecordT = TypeVar("RecordT", SeriesRecord, MovieRecord)


def _values(raw: Any) -> list[Any]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        return list(raw.values())
    return [item for item in raw if item is not None]


def _records(model: type[RecordT], items: list[Any], user_id: str) -> list[RecordT]:
    """Validate each record on its own; a malformed one is logged and skipped."""
    records: list[RecordT] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError:
            logger.warning("snapshot_record_skipped", user_id=user_id, record=model.__name__, record_id=item.get("id"))
    return records


def _distinct_series(items: list[Any], user_id: str) -> list[SeriesRecord]:
    seen: set[Any] = set()
    series: list[SeriesRecord] = []
    for record in _records(SeriesRecord, items, user_id):
        if record.id is not None:
            if record.id in seen:
                continue
            seen.add(record.id)
        series.append(record)
    return series


@dataclass
class _EarnedCache:
    ids: set[str]
    loaded_at: float


class BadgeEvaluator:
    """Evaluates every not-yet-earned badge for a user and persists new grants.

    Grants are written with a write-if-absent transaction, so only the call
    that creates ``badges/<uid>/<badgeId>`` reports the badge. Concurrent
    evaluations for one user (tabs, devices) report each grant at most once.
    """

    def __init__(
        self,
        store: DocumentStore,
        counters: CounterStore | None = None,
        catalog: BadgeCatalog | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.counters = counters or CounterStore(store, self.settings, self.clock)
        self.catalog = catalog or DEFAULT_CATALOG
        self._snapshots: dict[str, UserSnapshot] = {}
        self._earned: dict[str, _EarnedCache] = {}

    def _now(self) -> float:
        return self.clock().timestamp()

    def _fresh(self, loaded_at: float) -> bool:
        return self._now() - loaded_at < self.settings.snapshot_ttl_seconds

    # ── Cache ──

    def invalidate_cache(self, user_id: str) -> None:
        """Drop the user's snapshot and earned-ids cache."""
        self._snapshots.pop(user_id, None)
        self._earned.pop(user_id, None)

    async def load_snapshot(self, user_id: str) -> UserSnapshot:
        """Cached snapshot of the user's facts. Raises StoreError or ValidationError."""
        cached = self._snapshots.get(user_id)
        if cached is not None and self._fresh(cached.loaded_at):
            return cached

        series_raw, movies_raw, activities_raw, counters, friends_raw = await asyncio.gather(
            self.store.get(join_path(user_id, SERIES_COLLECTION)),
            self.store.get(join_path(user_id, MOVIES_COLLECTION)),
            self.store.get(join_path(ACTIVITIES_ROOT, user_id)),
            self.counters.read_all(user_id),
            self.store.get(join_path("users", user_id, "friends")),
        )
        snapshot = UserSnapshot(
            user_id=user_id,
            series=_distinct_series(_values(series_raw), user_id),
            movies=_records(MovieRecord, _values(movies_raw), user_id),
            activities=[a for a in _values(activities_raw) if isinstance(a, dict)],
            counters=counters,
            friend_count=len(friends_raw) if isinstance(friends_raw, (dict, list)) else 0,
            loaded_at=self._now(),
        )
        self._snapshots[user_id] = snapshot
        return snapshot

    async def _earned_ids(self, user_id: str) -> set[str]:
        cached = self._earned.get(user_id)
        if cached is not None and self._fresh(cached.loaded_at):
            return cached.ids
        raw = await self.store.get(join_path(BADGES_ROOT, user_id))
        ids = set(raw) if isinstance(raw, dict) else set()
        self._earned[user_id] = _EarnedCache(ids=ids, loaded_at=self._now())
        return ids

    # ── Evaluation ──

    def evaluate(self, badge: BadgeDefinition, snapshot: UserSnapshot) -> PredicateResult:
        predicate = PREDICATES[badge.category]
        return predicate(badge.requirement, snapshot, to_ms(self.clock()))

    async def check_for_new_badges(self, user_id: str) -> list[EarnedBadge]:
        """Grant every badge whose requirement now holds. Returns only new grants."""
        try:
            snapshot = await self.load_snapshot(user_id)
            earned = await self._earned_ids(user_id)
        except (StoreError, ValidationError):
            logger.warning("badge_snapshot_load_failed", user_id=user_id, exc_info=True)
            self.invalidate_cache(user_id)
            return []

        new_badges: list[EarnedBadge] = []
        for badge in self.catalog.list():
            if badge.id in earned:
                continue
            result = self.evaluate(badge, snapshot)
            if not result.earned:
                continue
            try:
                granted = await self._grant(user_id, badge, result.details)
            except StoreError:
                logger.warning("badge_grant_failed", user_id=user_id, badge_id=badge.id, exc_info=True)
                continue
            earned.add(badge.id)
            if granted is not None:
                new_badges.append(granted)

        if new_badges:
            logger.info(
                "badges_earned",
                user_id=user_id,
                badge_ids=[b.id for b in new_badges],
            )
        return new_badges

    async def _grant(self, user_id: str, badge: BadgeDefinition, details: str) -> EarnedBadge | None:
        doc = EarnedBadge.from_definition(badge, details).to_document()
        doc["earnedAt"] = SERVER_TIMESTAMP
        path = join_path(BADGES_ROOT, user_id, badge.id)
        result = await self.store.transaction(path, lambda current: ABORT if current is not None else doc)
        if not result.committed:
            return None
        return EarnedBadge.from_document(result.value)

    async def recalculate_all_badges(self, user_id: str) -> list[EarnedBadge]:
        """Re-run evaluation against fully fresh data (migration and repair)."""
        self.invalidate_cache(user_id)
        return await self.check_for_new_badges(user_id)

    async def get_user_badges(self, user_id: str) -> list[EarnedBadge]:
        raw = await self.store.get(join_path(BADGES_ROOT, user_id))
        if not isinstance(raw, dict):
            return []
        badges = []
        for badge_id, doc in raw.items():
            try:
                badges.append(EarnedBadge.from_document(doc))
            except ValidationError:
                logger.warning("earned_badge_unreadable", user_id=user_id, badge_id=badge_id)
        return sorted(badges, key=lambda b: b.earned_at or 0)

    # ── Progress ──

    def _progress(self, badge: BadgeDefinition, snapshot: UserSnapshot) -> BadgeProgress:
        now_ms = to_ms(self.clock())
        result = self.evaluate(badge, snapshot)
        progress = BadgeProgress(
            badge_id=badge.id,
            current=result.current,
            total=result.target,
            last_updated=now_ms,
        )
        if isinstance(badge.requirement, BingeRequirement):
            window = snapshot.counters.binge_windows.get(badge.requirement.timeframe)
            if window is not None and now_ms < window.window_end:
                progress.time_remaining = math.ceil((window.window_end - now_ms) / 1000)
                progress.session_active = True
            elif window is not None:
                progress.time_remaining = 0
        return progress

    async def get_badge_progress(self, user_id: str, badge_id: str) -> BadgeProgress | None:
        badge = self.catalog.get(badge_id)
        if badge is None:
            return None
        try:
            snapshot = await self.load_snapshot(user_id)
        except (StoreError, ValidationError):
            logger.warning("badge_progress_load_failed", user_id=user_id, exc_info=True)
            return None
        return self._progress(badge, snapshot)

    async def get_all_badge_progress(self, user_id: str) -> dict[str, BadgeProgress]:
        try:
            snapshot = await self.load_snapshot(user_id)
        except (StoreError, ValidationError):
            logger.warning("badge_progress_load_failed", user_id=user_id, exc_info=True)
            return {}
        return {badge.id: self._progress(badge, snapshot) for badge in self.catalog.list()}

    async def get_category_progress(self, user_id: str, category: BadgeCategory | str) -> list[BadgeProgress]:
        badges = self.catalog.by_category(category)
        try:
            snapshot = await self.load_snapshot(user_id)
        except (StoreError, ValidationError):
            logger.warning("badge_progress_load_failed", user_id=user_id, exc_info=True)
            return []
        return [self._progress(badge, snapshot) for badge in badges]
