"""Batch activity classifier.

Pure functions: decide whether a burst of watch events is one aggregate
pattern (quickwatch, season complete, binge) and describe it. No I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from watchbadges.gamification.schemas import BatchResult, PatternType, WatchEvent


@dataclass(frozen=True)
class BatchOptions:
    binge_window_minutes: float = 120.0
    quickwatch_hours_after_release: float = 24.0


DEFAULT_OPTIONS = BatchOptions()


def _parse_air_date(air_date: str | None) -> datetime | None:
    if not air_date:
        return None
    try:
        parsed = datetime.fromisoformat(air_date.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def is_quickwatch(event: WatchEvent, hours: float = DEFAULT_OPTIONS.quickwatch_hours_after_release) -> bool:
    """True when the episode was watched within `hours` after it aired."""
    aired = _parse_air_date(event.air_date)
    if aired is None:
        return False
    elapsed_hours = (_aware(event.watched_at) - aired).total_seconds() / 3600
    return 0 <= elapsed_hours <= hours


def detect_binge(events: list[WatchEvent], minutes: float = DEFAULT_OPTIONS.binge_window_minutes) -> bool:
    """True when two or more events fall inside one binge window."""
    if len(events) < 2:
        return False
    times = [_aware(e.watched_at) for e in events]
    return (max(times) - min(times)).total_seconds() / 60 <= minutes


def is_season_complete(events: list[WatchEvent]) -> bool:
    """Three or more events from one season that cover it.

    When the events know the season's episode count the distinct episode
    numbers must reach it; otherwise three same-season episodes suffice.
    """
    if len(events) < 3:
        return False
    seasons = {(e.series_id, e.season_number) for e in events}
    if len(seasons) != 1:
        return False
    expected = next((e.season_episode_count for e in events if e.season_episode_count), None)
    if expected is None:
        return True
    return len({e.episode_number for e in events}) >= expected


def describe_individual(event: WatchEvent) -> str:
    suffix = f" ({event.watch_count}x watched)" if event.is_rewatch and event.watch_count > 1 else ""
    return f"{event.title} - season {event.season_number} episode {event.episode_number}{suffix}"


def _no_batch(events: list[WatchEvent]) -> BatchResult:
    return BatchResult(should_batch=False, pattern_type=None, description="", events=tuple(events))


def classify(events: list[WatchEvent], options: BatchOptions = DEFAULT_OPTIONS) -> BatchResult:
    """Classify a list of watch events.

    Multi-event precedence: quickwatch, then season complete, then binge.
    Events from different series are never batched together.
    """
    if not events:
        return _no_batch(events)

    if len(events) == 1:
        event = events[0]
        if is_quickwatch(event, options.quickwatch_hours_after_release):
            return BatchResult(
                should_batch=True,
                pattern_type=PatternType.QUICKWATCH,
                description=(
                    f"{event.title} - season {event.season_number} episode {event.episode_number}"
                    " watched right after release"
                ),
                events=(event,),
            )
        return _no_batch(events)

    if len({e.series_id for e in events}) != 1:
        return _no_batch(events)

    title = events[0].title
    batch = tuple(sorted(events, key=lambda e: (e.season_number, e.episode_number)))

    quick = [e for e in events if is_quickwatch(e, options.quickwatch_hours_after_release)]
    if len(quick) >= 2:
        return BatchResult(
            should_batch=True,
            pattern_type=PatternType.QUICKWATCH,
            description=f"{title} - {len(quick)} new episodes watched right after release",
            events=batch,
        )

    if is_season_complete(events):
        return BatchResult(
            should_batch=True,
            pattern_type=PatternType.SEASON_COMPLETE,
            description=f"{title} - season {events[0].season_number} completed",
            events=batch,
        )

    if detect_binge(events, options.binge_window_minutes):
        seasons = sorted({e.season_number for e in events})
        where = f"season {seasons[0]}" if len(seasons) == 1 else f"seasons {seasons[0]}-{seasons[-1]}"
        return BatchResult(
            should_batch=True,
            pattern_type=PatternType.BINGE,
            description=f"{title} - {len(events)} episodes of {where} binged",
            events=batch,
        )

    return _no_batch(events)
