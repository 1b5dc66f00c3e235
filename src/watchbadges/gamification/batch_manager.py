"""Activity batch manager: per-user ingestion of watch events.

Each event takes two paths. The immediate path updates counters (streak,
quickwatch, rewatch, marathon week, binge windows) and re-checks badges so
single-episode badges show up without delay. The event is then buffered;
after ``batch_delay_seconds`` of quiet the buffer is flushed, grouped by
(series, season) and classified into aggregate or individual activities.

Badge checks from both paths go through one per-user lock, and the badge
callback is invoked once per check with the full list of new badges.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from watchbadges.config import Settings, get_settings
from watchbadges.gamification.badge_evaluator import BadgeEvaluator
from watchbadges.gamification.classifier import BatchOptions, classify, describe_individual, is_quickwatch
from watchbadges.gamification.clock import Clock, to_ms, utc_now
from watchbadges.gamification.counter_service import CounterStore
from watchbadges.gamification.schemas import (
    ActivityRecord,
    BatchResult,
    EarnedBadge,
    FlushResult,
    PatternType,
    WatchEvent,
)

logger = structlog.get_logger()

BadgeCallback = Callable[[list[EarnedBadge]], Awaitable[None] | None]
ActivityCallback = Callable[[FlushResult], Awaitable[None] | None]
Classifier = Callable[[list[WatchEvent], BatchOptions], BatchResult]


class SessionState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class UserBatchSession:
    """Ingestion state owned by one user."""

    user_id: str
    state: SessionState = SessionState.IDLE
    pending: list[WatchEvent] = field(default_factory=list)
    timer: asyncio.Task[None] | None = None
    badge_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    flush_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    badge_callback: BadgeCallback | None = None
    activity_callback: ActivityCallback | None = None


async def _invoke(callback: Callable[[Any], Any], payload: Any, event: str, user_id: str) -> None:
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.warning(event, user_id=user_id, exc_info=True)


class ActivityBatchManager:
    """Registry of per-user batch sessions."""

    def __init__(
        self,
        counters: CounterStore,
        evaluator: BadgeEvaluator,
        settings: Settings | None = None,
        clock: Clock | None = None,
        classifier: Classifier = classify,
    ) -> None:
        self.counters = counters
        self.evaluator = evaluator
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self._classify = classifier
        self._options = BatchOptions(
            binge_window_minutes=self.settings.binge_window_minutes,
            quickwatch_hours_after_release=self.settings.quickwatch_hours_after_release,
        )
        self._sessions: dict[str, UserBatchSession] = {}

    # ── Registry ──

    def session(self, user_id: str) -> UserBatchSession:
        """Get or create the user's session."""
        session = self._sessions.get(user_id)
        if session is None:
            session = UserBatchSession(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def has_session(self, user_id: str) -> bool:
        return user_id in self._sessions

    def on_badge_earned(self, user_id: str, callback: BadgeCallback) -> None:
        self.session(user_id).badge_callback = callback

    def remove_badge_callback(self, user_id: str) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.badge_callback = None

    def on_activity(self, user_id: str, callback: ActivityCallback) -> None:
        self.session(user_id).activity_callback = callback

    def remove_activity_callback(self, user_id: str) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.activity_callback = None

    # ── Ingestion ──

    async def add_event(self, user_id: str, event: WatchEvent) -> list[EarnedBadge]:
        """Apply the event's counter effects, check badges, then buffer it.

        Returns the badges newly earned by the immediate check.
        """
        session = self.session(user_id)
        await self._apply_individual(user_id, event)
        new_badges = await self._check_badges(session)

        session.pending.append(event)
        if session.state == SessionState.IDLE:
            session.state = SessionState.ACCUMULATING
        self._restart_timer(session)
        return new_badges

    async def _apply_individual(self, user_id: str, event: WatchEvent) -> None:
        await self.counters.update_streak(user_id)
        if event.is_rewatch:
            await self.counters.increment_rewatch(user_id)
        elif is_quickwatch(event, self._options.quickwatch_hours_after_release):
            await self.counters.increment_quickwatch(user_id)
        await self.counters.record_marathon_episode(user_id)
        await self.counters.record_binge_episode(user_id)
        self.evaluator.invalidate_cache(user_id)

    def _restart_timer(self, session: UserBatchSession) -> None:
        if session.timer is not None and not session.timer.done():
            session.timer.cancel()
        session.timer = asyncio.create_task(self._debounce(session))

    async def _debounce(self, session: UserBatchSession) -> None:
        await asyncio.sleep(self.settings.batch_delay_seconds)
        # Detach first so a concurrent add_event does not cancel this flush.
        session.timer = None
        await self._flush(session)

    async def _cancel_timer(self, session: UserBatchSession) -> None:
        timer = session.timer
        session.timer = None
        if timer is None or timer.done():
            return
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass

    # ── Flushing ──

    async def flush_user(self, user_id: str) -> FlushResult:
        """Process the user's buffer now, cancelling the pending timer."""
        session = self._sessions.get(user_id)
        if session is None:
            return FlushResult()
        await self._cancel_timer(session)
        return await self._flush(session)

    async def flush_all(self) -> dict[str, FlushResult]:
        user_ids = list(self._sessions)
        results = await asyncio.gather(*(self.flush_user(uid) for uid in user_ids))
        return dict(zip(user_ids, results))

    async def _flush(self, session: UserBatchSession) -> FlushResult:
        async with session.flush_lock:
            if not session.pending:
                return FlushResult()
            events = session.pending
            session.pending = []
            session.state = SessionState.FLUSHING

            try:
                result = self._group_and_classify(session.user_id, events)
            except Exception:
                logger.warning(
                    "batch_classification_failed",
                    user_id=session.user_id,
                    event_count=len(events),
                    exc_info=True,
                )
                result = FlushResult(
                    individual=[self._individual(session.user_id, e) for e in events],
                    fallback=True,
                )

            logger.debug(
                "batch_flushed",
                user_id=session.user_id,
                aggregates=len(result.aggregates),
                individual=len(result.individual),
                fallback=result.fallback,
            )
            if session.activity_callback is not None:
                await _invoke(session.activity_callback, result, "activity_callback_failed", session.user_id)
            await self._check_badges(session)

            session.state = SessionState.ACCUMULATING if session.pending else SessionState.IDLE
            return result

    def _group_and_classify(self, user_id: str, events: list[WatchEvent]) -> FlushResult:
        groups: dict[tuple[int, int], list[WatchEvent]] = {}
        for event in events:
            groups.setdefault((event.series_id, event.season_number), []).append(event)

        result = FlushResult()
        for (series_id, _season), group in groups.items():
            batch = self._classify(group, self._options)
            emit = batch.should_batch and (
                batch.pattern_type != PatternType.BINGE or self.settings.emit_binge_activity
            )
            if emit:
                result.aggregates.append(
                    ActivityRecord(
                        user_id=user_id,
                        series_id=series_id,
                        description=batch.description,
                        pattern_type=batch.pattern_type,
                        episode_count=len(group),
                        timestamp=to_ms(self.clock()),
                    )
                )
            else:
                result.individual.extend(self._individual(user_id, e) for e in group)
        return result

    @staticmethod
    def _individual(user_id: str, event: WatchEvent) -> ActivityRecord:
        return ActivityRecord(
            user_id=user_id,
            series_id=event.series_id,
            description=describe_individual(event),
            pattern_type=None,
            episode_count=1,
            timestamp=to_ms(event.watched_at),
        )

    async def _check_badges(self, session: UserBatchSession) -> list[EarnedBadge]:
        async with session.badge_lock:
            new_badges = await self.evaluator.check_for_new_badges(session.user_id)
        if new_badges and session.badge_callback is not None:
            await _invoke(session.badge_callback, new_badges, "badge_callback_failed", session.user_id)
        return new_badges

    # ── Teardown ──

    async def close_user(self, user_id: str) -> FlushResult:
        """Flush the user's buffer and drop the session."""
        result = await self.flush_user(user_id)
        self._sessions.pop(user_id, None)
        return result

    async def shutdown(self) -> None:
        await self.flush_all()
        self._sessions.clear()
        logger.info("batch_manager_shutdown")
