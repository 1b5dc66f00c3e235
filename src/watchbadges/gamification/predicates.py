"""Requirement predicates, one per badge category.

Each predicate measures a snapshot against a requirement and returns a
PredicateResult; the badge is earned when ``current >= target``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from watchbadges.gamification.schemas import (
    TIMEFRAME_LABELS,
    BadgeCategory,
    BingeRequirement,
    CollectorRequirement,
    CompletionRequirement,
    DedicationRequirement,
    EpisodeRecord,
    ExplorerRequirement,
    MarathonRequirement,
    PredicateResult,
    QuickwatchRequirement,
    RewatchRequirement,
    SeriesRecord,
    SocialRequirement,
    StreakRequirement,
    UserSnapshot,
)

Predicate = Callable[[Any, UserSnapshot, int], PredicateResult]

# Grants in these categories record a moment (a live session) that cannot be
# re-derived later, so re-validation keeps them.
TRANSIENT_CATEGORIES: frozenset[BadgeCategory] = frozenset({BadgeCategory.BINGE})


def has_valid_rating(rating: Any) -> bool:
    """A rating counts when it is a positive number or a mapping with any positive number."""
    if isinstance(rating, bool):
        return False
    if isinstance(rating, (int, float)):
        return rating > 0
    if isinstance(rating, dict):
        return any(
            isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0 for v in rating.values()
        )
    return False


def _episodes(series: SeriesRecord) -> Iterable[EpisodeRecord]:
    for season in series.seasons:
        yield from season.episodes


def is_series_complete(series: SeriesRecord) -> bool:
    """Every episode of every season watched; a series with no episodes is not complete."""
    episodes = list(_episodes(series))
    return bool(episodes) and all(ep.watched for ep in episodes)


def count_rewatches(series_list: Iterable[SeriesRecord]) -> int:
    return sum(
        ep.watch_count - 1
        for series in series_list
        for ep in _episodes(series)
        if ep.watched and ep.watch_count > 1
    )


def count_watched_episodes(series_list: Iterable[SeriesRecord]) -> int:
    return sum(1 for series in series_list for ep in _episodes(series) if ep.watched)


def binge_predicate(req: BingeRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    window = snapshot.counters.binge_windows.get(req.timeframe)
    current = window.count if window is not None and now_ms <= window.window_end else 0
    label = TIMEFRAME_LABELS.get(req.timeframe, req.timeframe)
    return PredicateResult(current, req.episodes, f"{current} episodes in {label}")


def quickwatch_predicate(req: QuickwatchRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = snapshot.counters.quickwatch_episodes
    return PredicateResult(current, req.episodes, f"{current} episodes watched on release day")


def marathon_predicate(req: MarathonRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    weeks = snapshot.counters.marathon_weeks
    best_week = max(weeks, key=lambda k: weeks[k], default=None)
    current = weeks[best_week] if best_week is not None else 0
    details = f"{current} episodes in one week"
    if best_week is not None:
        details += f" ({best_week})"
    return PredicateResult(current, req.episodes, details)


def streak_predicate(req: StreakRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    counters = snapshot.counters
    current = max(counters.current_streak, counters.longest_streak)
    return PredicateResult(current, req.days, f"{current} day streak")


def rewatch_predicate(req: RewatchRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = count_rewatches(snapshot.series)
    return PredicateResult(current, req.episodes, f"{current} episodes rewatched")


def explorer_predicate(req: ExplorerRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = len(snapshot.series)
    return PredicateResult(current, req.series, f"{current} different series")


def collector_predicate(req: CollectorRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = sum(1 for s in snapshot.series if has_valid_rating(s.rating))
    current += sum(1 for m in snapshot.movies if has_valid_rating(m.rating))
    return PredicateResult(current, req.ratings, f"{current} ratings given")


def social_predicate(req: SocialRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = snapshot.friend_count
    return PredicateResult(current, req.friends, f"{current} friends added")


def completion_predicate(req: CompletionRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = sum(1 for s in snapshot.series if is_series_complete(s))
    return PredicateResult(current, req.series, f"{current} series fully watched")


def dedication_predicate(req: DedicationRequirement, snapshot: UserSnapshot, now_ms: int) -> PredicateResult:
    current = count_watched_episodes(snapshot.series)
    return PredicateResult(current, req.episodes, f"{current} episodes watched")


PREDICATES: dict[BadgeCategory, Predicate] = {
    BadgeCategory.BINGE: binge_predicate,
    BadgeCategory.QUICKWATCH: quickwatch_predicate,
    BadgeCategory.MARATHON: marathon_predicate,
    BadgeCategory.STREAK: streak_predicate,
    BadgeCategory.REWATCH: rewatch_predicate,
    BadgeCategory.EXPLORER: explorer_predicate,
    BadgeCategory.COLLECTOR: collector_predicate,
    BadgeCategory.SOCIAL: social_predicate,
    BadgeCategory.COMPLETION: completion_predicate,
    BadgeCategory.DEDICATION: dedication_predicate,
}
