"""Requirement predicate tests against hand-built snapshots."""

from __future__ import annotations

import pytest

from watchbadges.gamification.predicates import (
    PREDICATES,
    binge_predicate,
    collector_predicate,
    completion_predicate,
    count_rewatches,
    dedication_predicate,
    has_valid_rating,
    is_series_complete,
    marathon_predicate,
    streak_predicate,
)
from watchbadges.gamification.schemas import (
    BadgeCategory,
    BingeRequirement,
    BingeWindow,
    CollectorRequirement,
    CompletionRequirement,
    CounterSnapshot,
    DedicationRequirement,
    MarathonRequirement,
    MovieRecord,
    SeriesRecord,
    StreakRequirement,
    UserSnapshot,
)


def _snapshot(series=(), movies=(), counters=None, friends=0) -> UserSnapshot:
    return UserSnapshot(
        user_id="u1",
        series=[SeriesRecord.model_validate(s) for s in series],
        movies=[MovieRecord.model_validate(m) for m in movies],
        activities=[],
        counters=counters or CounterSnapshot(),
        friend_count=friends,
        loaded_at=0.0,
    )


def test_every_category_has_a_predicate():
    assert set(PREDICATES) == set(BadgeCategory)


class TestRatings:
    """Test which ratings count for collector badges."""

    @pytest.mark.parametrize(
        ("rating", "expected"),
        [
            (8, True),
            (0.5, True),
            (0, False),
            (-1, False),
            (None, False),
            (True, False),
            ("9", False),
            ({"alice": 0, "bob": 7}, True),
            ({"alice": 0}, False),
            ({}, False),
        ],
    )
    def test_has_valid_rating(self, rating, expected):
        """Ratings count when positive, or any positive entry of a per-user map."""
        assert has_valid_rating(rating) is expected

    def test_collector_counts_series_and_movies(self, series_doc):
        snapshot = _snapshot(
            series=[series_doc(1, rating=7), series_doc(2, rating=0)],
            movies=[{"id": 9, "rating": {"u1": 4}}, {"id": 10}],
        )
        result = collector_predicate(CollectorRequirement(ratings=2), snapshot, 0)
        assert result.current == 2
        assert result.earned


class TestSeriesDerived:
    """Predicates computed from the series collection."""

    def test_single_unwatched_episode_blocks_completion(self, series_doc):
        """One unwatched episode out of 40 blocks completion."""
        series = SeriesRecord.model_validate(series_doc(1, seasons=[[1] * 20, [1] * 19 + [0]]))
        assert not is_series_complete(series)

    def test_completion_counts_complete_series(self, series_doc):
        """A series without episodes is not complete."""
        snapshot = _snapshot(
            series=[
                series_doc(1, seasons=[[1, 1], [2, 1]]),
                series_doc(2, seasons=[[1, 0]]),
                series_doc(3, seasons=[]),
            ]
        )
        result = completion_predicate(CompletionRequirement(series=1), snapshot, 0)
        assert result.current == 1
        assert result.details == "1 series fully watched"

    def test_rewatch_sums_extra_views(self, series_doc):
        series = [
            SeriesRecord.model_validate(series_doc(1, seasons=[[1, 3, 2]])),
            SeriesRecord.model_validate(series_doc(2, seasons=[[0, 4]])),
        ]
        # 2 + 1 from series 1, 3 from series 2
        assert count_rewatches(series) == 6

    def test_unwatched_episode_with_count_is_ignored(self):
        """Rewatches only count on watched episodes."""
        series = SeriesRecord.model_validate(
            {"id": 1, "seasons": [{"episodes": [{"watched": False, "watchCount": 5}]}]}
        )
        assert count_rewatches([series]) == 0

    def test_dedication_counts_watched_once(self, series_doc):
        snapshot = _snapshot(series=[series_doc(1, seasons=[[1, 3, 0]])])
        result = dedication_predicate(DedicationRequirement(episodes=2), snapshot, 0)
        assert result.current == 2
        assert result.earned

    def test_episodes_as_index_keyed_dict(self):
        series = SeriesRecord.model_validate(
            {"id": 1, "seasons": {"0": {"episodes": {"0": {"watched": True}, "1": {"watched": True}}}}}
        )
        assert is_series_complete(series)


class TestCounterDerived:
    """Predicates computed from counters."""

    def test_binge_uses_live_window(self):
        """A window counts up to and including windowEnd."""
        counters = CounterSnapshot(binge_windows={"1day": BingeWindow(count=16, window_start=0, window_end=1000)})
        req = BingeRequirement(episodes=15, timeframe="1day")
        assert binge_predicate(req, _snapshot(counters=counters), 1000).earned
        assert binge_predicate(req, _snapshot(counters=counters), 1001).current == 0

    def test_binge_other_timeframe_is_ignored(self):
        counters = CounterSnapshot(binge_windows={"1day": BingeWindow(count=16, window_start=0, window_end=1000)})
        req = BingeRequirement(episodes=3, timeframe="10hours")
        assert not binge_predicate(req, _snapshot(counters=counters), 0).earned

    def test_marathon_uses_best_week(self):
        counters = CounterSnapshot.from_document({"marathonWeeks": {"2024-W01": 40, "2024-W02": 3}})
        result = marathon_predicate(MarathonRequirement(episodes=40), _snapshot(counters=counters), 0)
        assert result.earned
        assert result.details == "40 episodes in one week (2024-W01)"

    def test_marathon_without_weeks(self):
        result = marathon_predicate(MarathonRequirement(episodes=15), _snapshot(), 0)
        assert result.current == 0

    def test_streak_keeps_longest(self):
        """A broken streak still holds badges up to the longest streak."""
        counters = CounterSnapshot.from_document({"currentStreak": 1, "longestStreak": 9})
        assert streak_predicate(StreakRequirement(days=7), _snapshot(counters=counters), 0).earned
