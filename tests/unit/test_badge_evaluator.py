"""Badge evaluator tests: grants, idempotence, caching, progress."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from watchbadges.exceptions import StoreUnavailableError
from watchbadges.gamification.badge_evaluator import BadgeEvaluator
from watchbadges.gamification.catalog import BadgeCatalog
from watchbadges.gamification.clock import to_ms
from watchbadges.gamification.schemas import BadgeDefinition


def _explorer_catalog(threshold: int = 25) -> BadgeCatalog:
    return BadgeCatalog(
        [
            BadgeDefinition.model_validate(
                {
                    "id": "explorer_25",
                    "category": "explorer",
                    "tier": "bronze",
                    "name": "Explorer",
                    "description": f"Start {threshold} series",
                    "requirement": {"category": "explorer", "series": threshold},
                    "rarity": "common",
                }
            )
        ]
    )


async def _add_series(store, series_doc, user_id: str, count: int, start: int = 0) -> None:
    for n in range(start, start + count):
        await store.set(f"{user_id}/serien/{n}", series_doc(1000 + n))


class TestCheckForNewBadges:
    """Test granting new badges."""

    @pytest.mark.asyncio
    async def test_idempotent(self, store, evaluator):
        """Second call with no state change grants nothing."""
        await store.set("users/u1/friends", {"a": True, "b": True, "c": True})
        first = await evaluator.check_for_new_badges("u1")
        second = await evaluator.check_for_new_badges("u1")
        assert [b.id for b in first] == ["social_bronze"]
        assert second == []

    @pytest.mark.asyncio
    async def test_grant_is_persisted_with_server_timestamp(self, store, evaluator, clock):
        await store.set("users/u1/friends", {"a": True, "b": True, "c": True})
        [badge] = await evaluator.check_for_new_badges("u1")
        doc = await store.get("badges/u1/social_bronze")
        assert doc["earnedAt"] == to_ms(clock())
        assert doc["details"] == "3 friends added"
        assert badge.earned_at == to_ms(clock())

    @pytest.mark.asyncio
    async def test_explorer_earned_at_exactly_threshold(self, store, settings, clock, series_doc, counters):
        """24 series earn nothing; the 25th earns the badge."""
        evaluator = BadgeEvaluator(store, counters=counters, catalog=_explorer_catalog(), settings=settings, clock=clock)
        await _add_series(store, series_doc, "u1", 24)
        assert await evaluator.recalculate_all_badges("u1") == []

        await _add_series(store, series_doc, "u1", 1, start=24)
        evaluator.invalidate_cache("u1")
        earned = await evaluator.check_for_new_badges("u1")
        assert [b.id for b in earned] == ["explorer_25"]
        assert earned[0].details == "25 different series"

    @pytest.mark.asyncio
    async def test_duplicate_series_ids_count_once(self, store, settings, clock, series_doc, counters):
        """The same series stored twice counts once."""
        evaluator = BadgeEvaluator(store, counters=counters, catalog=_explorer_catalog(2), settings=settings, clock=clock)
        await store.set("u1/serien/0", series_doc(7))
        await store.set("u1/serien/1", series_doc(7))
        assert await evaluator.check_for_new_badges("u1") == []

    @pytest.mark.asyncio
    async def test_completion_needs_every_episode(self, store, evaluator, series_doc):
        await store.set("u1/serien/0", series_doc(1, seasons=[[1, 1, 1], [1, 1, 0]]))
        assert await evaluator.check_for_new_badges("u1") == []

        await store.set("u1/serien/0/seasons/1/episodes/2", {"watched": True, "watchCount": 1})
        evaluator.invalidate_cache("u1")
        earned = await evaluator.check_for_new_badges("u1")
        assert "completion_bronze" in [b.id for b in earned]

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_grant_once(self, store, settings, clock, counters):
        """Five evaluators racing on one user grant the badge once."""
        await store.set("users/u1/friends", {"a": 1, "b": 1, "c": 1})
        evaluators = [
            BadgeEvaluator(store, counters=counters, settings=settings, clock=clock) for _ in range(5)
        ]
        results = await asyncio.gather(*(e.check_for_new_badges("u1") for e in evaluators))
        granted = [b.id for result in results for b in result]
        assert granted == ["social_bronze"]
        assert list((await store.get("badges/u1")).keys()) == ["social_bronze"]

    @pytest.mark.asyncio
    async def test_existing_grant_is_not_overwritten(self, store, evaluator):
        """Write-if-absent keeps the original grant."""
        await store.set("badges/u1/social_bronze", {"id": "social_bronze", "details": "old", "earnedAt": 1})
        await store.set("users/u1/friends", {"a": 1, "b": 1, "c": 1})
        assert await evaluator.check_for_new_badges("u1") == []
        assert (await store.get("badges/u1/social_bronze"))["details"] == "old"

    @pytest.mark.asyncio
    async def test_snapshot_failure_returns_empty(self, store, evaluator):
        """A failed load yields no badges instead of raising."""
        store.get = AsyncMock(side_effect=StoreUnavailableError("down"))
        assert await evaluator.check_for_new_badges("u1") == []

    @pytest.mark.asyncio
    async def test_grant_failure_is_retried_next_call(self, store, evaluator):
        """A failed grant write is not cached as earned."""
        await store.set("users/u1/friends", {"a": 1, "b": 1, "c": 1})
        real_transaction = store.transaction
        store.transaction = AsyncMock(side_effect=StoreUnavailableError("down"))
        assert await evaluator.check_for_new_badges("u1") == []

        store.transaction = real_transaction
        earned = await evaluator.check_for_new_badges("u1")
        assert [b.id for b in earned] == ["social_bronze"]

    @pytest.mark.asyncio
    async def test_counter_badges(self, store, evaluator, counters):
        for _ in range(3):
            await counters.increment_quickwatch("u1")
            await counters.record_binge_episode("u1")
        earned = {b.id for b in await evaluator.check_for_new_badges("u1")}
        assert {"quickwatch_bronze", "binge_bronze"} <= earned


class TestSnapshotCache:
    """Test the per-user snapshot TTL."""

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, store, evaluator, clock):
        first = await evaluator.load_snapshot("u1")
        await store.set("users/u1/friends", {"a": 1})
        clock.advance(seconds=299)
        assert await evaluator.load_snapshot("u1") is first

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(self, store, evaluator, clock):
        first = await evaluator.load_snapshot("u1")
        await store.set("users/u1/friends", {"a": 1})
        clock.advance(seconds=300)
        second = await evaluator.load_snapshot("u1")
        assert second is not first
        assert second.friend_count == 1

    @pytest.mark.asyncio
    async def test_invalidate(self, store, evaluator):
        first = await evaluator.load_snapshot("u1")
        evaluator.invalidate_cache("u1")
        assert await evaluator.load_snapshot("u1") is not first


class TestProgress:
    """Test progress reporting."""

    @pytest.mark.asyncio
    async def test_unknown_badge(self, evaluator):
        assert await evaluator.get_badge_progress("u1", "nope") is None

    @pytest.mark.asyncio
    async def test_explorer_progress(self, store, evaluator, series_doc):
        await _add_series(store, series_doc, "u1", 7)
        progress = await evaluator.get_badge_progress("u1", "explorer_bronze")
        assert (progress.current, progress.total) == (7, 50)

    @pytest.mark.asyncio
    async def test_binge_progress_live_session(self, evaluator, counters, clock):
        """Progress reports the seconds left in a live window."""
        await counters.record_binge_episode("u1")
        await counters.record_binge_episode("u1")
        clock.advance(hours=1)
        progress = await evaluator.get_badge_progress("u1", "binge_bronze")
        assert progress.current == 2
        assert progress.session_active is True
        assert progress.time_remaining == 9 * 3600

    @pytest.mark.asyncio
    async def test_binge_progress_expired_session(self, evaluator, counters, clock):
        """An expired window reports no progress and no time left."""
        await counters.record_binge_episode("u1")
        clock.advance(hours=11)
        progress = await evaluator.get_badge_progress("u1", "binge_bronze")
        assert progress.current == 0
        assert progress.session_active is False
        assert progress.time_remaining == 0

    @pytest.mark.asyncio
    async def test_all_and_category_progress(self, evaluator):
        everything = await evaluator.get_all_badge_progress("u1")
        assert len(everything) == 56
        streak = await evaluator.get_category_progress("u1", "streak")
        assert [p.total for p in streak] == [7, 14, 30, 60, 100]


class TestUserBadges:
    """Test reading stored grants."""

    @pytest.mark.asyncio
    async def test_sorted_by_earned_at(self, store, evaluator, clock):
        await store.set("users/u1/friends", {str(n): 1 for n in range(3)})
        await evaluator.check_for_new_badges("u1")
        clock.advance(minutes=5)
        await store.set("users/u1/friends", {str(n): 1 for n in range(8)})
        evaluator.invalidate_cache("u1")
        await evaluator.check_for_new_badges("u1")
        badges = await evaluator.get_user_badges("u1")
        assert [b.id for b in badges] == ["social_bronze", "social_silver"]

    @pytest.mark.asyncio
    async def test_no_badges(self, evaluator):
        assert await evaluator.get_user_badges("u1") == []


class TestMalformedSeriesData:
    """Holes and bad records in the tracked collections."""

    @pytest.mark.asyncio
    async def test_null_episode_is_skipped(self, store, evaluator):
        """A null hole in an episode array does not block evaluation."""
        await store.set(
            "u1/serien/0",
            {"id": 1, "seasons": [{"episodes": [None, {"watched": True, "watchCount": 1}]}]},
        )
        earned = await evaluator.check_for_new_badges("u1")
        assert "completion_bronze" in [b.id for b in earned]

    @pytest.mark.asyncio
    async def test_null_season_is_skipped(self, store, evaluator):
        """A null hole in a season array does not block evaluation."""
        await store.set(
            "u1/serien/0",
            {"id": 1, "seasons": [None, {"episodes": [{"watched": True, "watchCount": 1}]}]},
        )
        earned = await evaluator.check_for_new_badges("u1")
        assert "completion_bronze" in [b.id for b in earned]

    @pytest.mark.asyncio
    async def test_malformed_series_does_not_hide_valid_ones(self, store, evaluator, series_doc):
        """One unreadable series is skipped; the rest are still evaluated."""
        await store.set("u1/serien/0", series_doc(1))
        await store.set("u1/serien/1", {"id": 2, "seasons": [{"episodes": [{"watchCount": "many"}]}]})
        await store.set("u1/filme/0", {"id": 9, "title": ["not", "a", "title"]})
        await store.set("u1/filme/1", {"id": 10, "rating": 6})

        snapshot = await evaluator.load_snapshot("u1")
        assert [s.id for s in snapshot.series] == [1]
        assert [m.id for m in snapshot.movies] == [10]
        earned = await evaluator.check_for_new_badges("u1")
        assert "completion_bronze" in [b.id for b in earned]
