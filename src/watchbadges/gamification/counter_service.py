"""Per-user counters, daily streaks, binge windows and marathon weeks.

Everything lives in one document per user, ``badgeCounters/<uid>``:

    currentStreak, longestStreak, lastActivityDate
    quickwatchEpisodes, rewatchEpisodes, itemsAdded, seriesAdded, movieAdded
    bingeWindows/<timeframe>  -> {count, windowStart, windowEnd}
    marathonWeeks/<YYYY-Www>  -> episodes watched that ISO week

Every mutation goes through the store's transaction primitive. Failures are
logged and dropped: counters are best-effort, not a ledger.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog

from watchbadges.config import Settings, get_settings
from watchbadges.exceptions import StoreError
from watchbadges.gamification.clock import (
    Clock,
    get_week_iso,
    local_date,
    seconds_until_week_end,
    to_ms,
    utc_now,
)
from watchbadges.gamification.schemas import BINGE_TIMEFRAMES, BingeWindow, CounterSnapshot
from watchbadges.store import ABORT, DocumentStore, join_path

logger = structlog.get_logger()

COUNTERS_ROOT = "badgeCounters"

QUICKWATCH_COUNTER = "quickwatchEpisodes"
REWATCH_COUNTER = "rewatchEpisodes"


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _window(value: Any) -> BingeWindow | None:
    if not isinstance(value, dict) or not value.get("count"):
        return None
    return BingeWindow.model_validate(value)


class CounterStore:
    """Atomic counter operations for one document store."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    def _path(self, user_id: str, *parts: str) -> str:
        return join_path(COUNTERS_ROOT, user_id, *parts)

    # ── Generic counters ──

    async def increment(self, user_id: str, counter: str, amount: int = 1) -> int | None:
        """Atomically add amount. Returns the new value, or None if the write was lost."""
        try:
            result = await self.store.transaction(
                self._path(user_id, counter),
                lambda current: _as_int(current) + amount,
            )
        except StoreError:
            logger.warning("counter_increment_failed", user_id=user_id, counter=counter, exc_info=True)
            return None
        return _as_int(result.value)

    async def decrement(self, user_id: str, counter: str, amount: int = 1) -> int | None:
        """Atomically subtract amount, never going below zero."""
        try:
            result = await self.store.transaction(
                self._path(user_id, counter),
                lambda current: max(0, _as_int(current) - amount),
            )
        except StoreError:
            logger.warning("counter_decrement_failed", user_id=user_id, counter=counter, exc_info=True)
            return None
        return _as_int(result.value)

    async def read(self, user_id: str, counter: str) -> int:
        try:
            return _as_int(await self.store.get(self._path(user_id, counter)))
        except StoreError:
            logger.warning("counter_read_failed", user_id=user_id, counter=counter, exc_info=True)
            return 0

    async def read_all(self, user_id: str) -> CounterSnapshot:
        """Whole counter document. Raises StoreError so snapshot loads can fail as a unit."""
        doc = await self.store.get(self._path(user_id))
        return CounterSnapshot.from_document(doc if isinstance(doc, dict) else None)

    async def reset_counter(self, user_id: str, counter: str) -> None:
        try:
            await self.store.set(self._path(user_id, counter), 0)
        except StoreError:
            logger.warning("counter_reset_failed", user_id=user_id, counter=counter, exc_info=True)

    async def clear_all_counters(self, user_id: str) -> None:
        try:
            await self.store.remove(self._path(user_id))
        except StoreError:
            logger.warning("counter_clear_failed", user_id=user_id, exc_info=True)
            return
        logger.info("counters_cleared", user_id=user_id)

    async def increment_quickwatch(self, user_id: str) -> int | None:
        return await self.increment(user_id, QUICKWATCH_COUNTER)

    async def increment_rewatch(self, user_id: str) -> int | None:
        return await self.increment(user_id, REWATCH_COUNTER)

    async def increment_items_added(self, user_id: str, kind: str) -> None:
        """Count a series or movie added to the collection."""
        if kind not in ("series", "movie"):
            msg = f"kind must be 'series' or 'movie', got {kind!r}"
            raise ValueError(msg)
        await self.increment(user_id, "itemsAdded")
        await self.increment(user_id, f"{kind}Added")

    # ── Streak ──

    async def update_streak(self, user_id: str) -> int | None:
        """Advance the daily streak at most once per calendar day.

        Same day: no change. Yesterday: +1. Any gap or first use: reset to 1.
        Returns the current streak, or None if the update was lost.
        """
        today = local_date(self.clock(), self.settings.streak_timezone)
        today_key = today.isoformat()
        yesterday_key = (today - timedelta(days=1)).isoformat()

        def _apply(current: Any) -> Any:
            doc = current if isinstance(current, dict) else {}
            last = doc.get("lastActivityDate")
            if last == today_key:
                return ABORT
            streak = _as_int(doc.get("currentStreak")) + 1 if last == yesterday_key else 1
            doc["currentStreak"] = streak
            doc["longestStreak"] = max(streak, _as_int(doc.get("longestStreak")))
            doc["lastActivityDate"] = today_key
            return doc

        try:
            result = await self.store.transaction(self._path(user_id), _apply)
        except StoreError:
            logger.warning("streak_update_failed", user_id=user_id, exc_info=True)
            return None

        streak = _as_int((result.value or {}).get("currentStreak"))
        if result.committed:
            logger.debug("streak_updated", user_id=user_id, streak=streak, day=today_key)
        return streak

    # ── Binge windows ──

    async def record_binge_episode(self, user_id: str) -> dict[str, BingeWindow]:
        """Count one episode in every binge timeframe.

        Phase one clears windows whose end has passed. Phase two opens a
        window (count 1) where none exists and extends live ones; a live
        window keeps its original end.
        """
        now = to_ms(self.clock())
        windows: dict[str, BingeWindow] = {}

        for timeframe in BINGE_TIMEFRAMES:
            await self._clear_if_expired(user_id, timeframe, now)

        for timeframe, duration in BINGE_TIMEFRAMES.items():

            def _extend(current: Any, duration: int = duration) -> Any:
                window = _window(current)
                if window is None or now > window.window_end:
                    return BingeWindow(count=1, window_start=now, window_end=now + duration).to_document()
                window.count += 1
                return window.to_document()

            try:
                result = await self.store.transaction(self._path(user_id, "bingeWindows", timeframe), _extend)
            except StoreError:
                logger.warning("binge_window_update_failed", user_id=user_id, timeframe=timeframe, exc_info=True)
                continue
            window = _window(result.value)
            if window is not None:
                windows[timeframe] = window
        return windows

    async def _clear_if_expired(self, user_id: str, timeframe: str, now: int) -> bool:
        def _clear(current: Any) -> Any:
            window = _window(current)
            if window is None or now <= window.window_end:
                return ABORT
            return None

        try:
            result = await self.store.transaction(self._path(user_id, "bingeWindows", timeframe), _clear)
        except StoreError:
            logger.warning("binge_window_clear_failed", user_id=user_id, timeframe=timeframe, exc_info=True)
            return False
        return result.committed

    async def finalize_expired_sessions(self, user_id: str) -> list[str]:
        """Clear every binge window whose end has passed. Returns the cleared timeframes."""
        now = to_ms(self.clock())
        cleared = [tf for tf in BINGE_TIMEFRAMES if await self._clear_if_expired(user_id, tf, now)]
        if cleared:
            logger.info("binge_sessions_finalized", user_id=user_id, timeframes=cleared)
        return cleared

    async def get_binge_windows(self, user_id: str) -> dict[str, BingeWindow]:
        try:
            raw = await self.store.get(self._path(user_id, "bingeWindows"))
        except StoreError:
            logger.warning("binge_window_read_failed", user_id=user_id, exc_info=True)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {tf: w for tf, value in raw.items() if (w := _window(value)) is not None}

    # ── Marathon weeks ──

    def current_week_key(self) -> str:
        """ISO week of today in streak_timezone, so a day counts toward the same week as its streak day."""
        return get_week_iso(local_date(self.clock(), self.settings.streak_timezone))

    async def record_marathon_episode(self, user_id: str) -> int | None:
        return await self.record_marathon_episodes(user_id, 1)

    async def record_marathon_episodes(self, user_id: str, episode_count: int) -> int | None:
        """Add episode_count to the current ISO week."""
        if episode_count <= 0:
            return None
        return await self.increment(user_id, f"marathonWeeks/{self.current_week_key()}", episode_count)

    async def ensure_current_marathon_week(self, user_id: str) -> None:
        """Create the current week's entry with 0 so progress views have a row."""
        key = self.current_week_key()
        try:
            await self.store.transaction(
                self._path(user_id, "marathonWeeks", key),
                lambda current: ABORT if current is not None else 0,
            )
        except StoreError:
            logger.warning("marathon_week_init_failed", user_id=user_id, week=key, exc_info=True)

    async def marathon_stats(self, user_id: str) -> dict[str, Any]:
        """Current week count, best week count and seconds left in the week."""
        now = self.clock()
        key = self.current_week_key()
        try:
            raw = await self.store.get(self._path(user_id, "marathonWeeks"))
        except StoreError:
            logger.warning("marathon_stats_failed", user_id=user_id, exc_info=True)
            raw = None
        weeks = {k: _as_int(v) for k, v in raw.items()} if isinstance(raw, dict) else {}
        current = weeks.get(key, 0)
        return {
            "current_week": key,
            "current_week_episodes": current,
            "best_week_episodes": max([current, *weeks.values()]),
            "time_remaining_in_week": seconds_until_week_end(now, self.settings.streak_timezone),
        }
