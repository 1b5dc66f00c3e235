"""Counter store tests: atomic increments, streak days, binge windows, marathon weeks."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from watchbadges.exceptions import StoreUnavailableError
from watchbadges.gamification.clock import to_ms
from watchbadges.gamification.counter_service import CounterStore
from watchbadges.gamification.schemas import BINGE_TIMEFRAMES

TEN_HOURS = BINGE_TIMEFRAMES["10hours"]


class TestIncrement:
    """Test generic counter operations."""

    @pytest.mark.asyncio
    async def test_creates_on_first_increment(self, counters):
        """An absent counter starts from 0."""
        assert await counters.read("u1", "quickwatchEpisodes") == 0
        assert await counters.increment("u1", "quickwatchEpisodes") == 1
        assert await counters.read("u1", "quickwatchEpisodes") == 1

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, counters):
        """N concurrent increments add exactly N."""
        await counters.increment("u1", "items", 5)
        await asyncio.gather(*(counters.increment("u1", "items") for _ in range(50)))
        assert await counters.read("u1", "items") == 55

    @pytest.mark.asyncio
    async def test_decrement_floors_at_zero(self, counters):
        """Decrement never goes below 0."""
        await counters.increment("u1", "items", 2)
        assert await counters.decrement("u1", "items", 5) == 0

    @pytest.mark.asyncio
    async def test_reset_and_clear(self, counters):
        """Reset zeroes one counter; clear drops the whole document."""
        await counters.increment("u1", "a", 3)
        await counters.increment("u1", "b", 4)
        await counters.reset_counter("u1", "a")
        assert await counters.read("u1", "a") == 0
        await counters.clear_all_counters("u1")
        snapshot = await counters.read_all("u1")
        assert snapshot.extra == {}

    @pytest.mark.asyncio
    async def test_read_all_collects_unknown_counters(self, counters):
        await counters.increment_quickwatch("u1")
        await counters.increment_items_added("u1", "series")
        snapshot = await counters.read_all("u1")
        assert snapshot.quickwatch_episodes == 1
        assert snapshot.extra == {"itemsAdded": 1, "seriesAdded": 1}

    @pytest.mark.asyncio
    async def test_items_added_rejects_unknown_kind(self, counters):
        """Only series and movie are counted as added items."""
        with pytest.raises(ValueError):
            await counters.increment_items_added("u1", "book")

    @pytest.mark.asyncio
    async def test_transport_failure_is_swallowed(self, store, settings, clock):
        """A failed transaction is logged and reported as a lost update."""
        store.transaction = AsyncMock(side_effect=StoreUnavailableError("down"))
        counters = CounterStore(store, settings, clock)
        assert await counters.increment("u1", "items") is None
        assert await counters.update_streak("u1") is None
        assert await counters.record_binge_episode("u1") == {}


class TestStreak:
    """Test daily streak boundaries."""

    @pytest.mark.asyncio
    async def test_first_use_starts_at_one(self, counters):
        """First activity starts the streak at 1."""
        assert await counters.update_streak("u1") == 1
        snapshot = await counters.read_all("u1")
        assert snapshot.last_activity_date == "2024-03-06"

    @pytest.mark.asyncio
    async def test_same_day_is_noop(self, counters, store, clock):
        """A second update on the same day changes nothing."""
        await counters.update_streak("u1")
        before = store.dump()
        clock.advance(hours=3)
        assert await counters.update_streak("u1") == 1
        assert store.dump() == before

    @pytest.mark.asyncio
    async def test_consecutive_days_increment(self, counters, clock):
        """Each consecutive day adds 1."""
        for expected in (1, 2, 3):
            assert await counters.update_streak("u1") == expected
            clock.advance(days=1)

    @pytest.mark.asyncio
    async def test_gap_resets_to_one(self, counters, clock):
        """A gap of two or more days resets to 1 and keeps the longest streak."""
        await counters.update_streak("u1")
        clock.advance(days=1)
        await counters.update_streak("u1")
        clock.advance(days=2)
        assert await counters.update_streak("u1") == 1
        snapshot = await counters.read_all("u1")
        assert snapshot.longest_streak == 2

    @pytest.mark.asyncio
    async def test_concurrent_same_day_updates(self, counters):
        results = await asyncio.gather(*(counters.update_streak("u1") for _ in range(10)))
        assert set(results) == {1}

    @pytest.mark.asyncio
    async def test_day_boundary_uses_timezone(self, store, settings, clock):
        """23:30 UTC is already the next day in Berlin."""
        clock.now = datetime(2024, 3, 6, 23, 30, tzinfo=timezone.utc)
        berlin = CounterStore(store, settings.model_copy(update={"streak_timezone": "Europe/Berlin"}), clock)
        await berlin.update_streak("u1")
        snapshot = await berlin.read_all("u1")
        assert snapshot.last_activity_date == "2024-03-07"


class TestBingeWindows:
    """Test the two-phase binge window update."""

    @pytest.mark.asyncio
    async def test_opens_all_timeframes(self, counters, clock):
        windows = await counters.record_binge_episode("u1")
        assert set(windows) == set(BINGE_TIMEFRAMES)
        now = to_ms(clock())
        assert windows["10hours"].count == 1
        assert windows["10hours"].window_end == now + TEN_HOURS
        assert windows["2days"].window_end == now + BINGE_TIMEFRAMES["2days"]

    @pytest.mark.asyncio
    async def test_event_before_end_extends(self, counters, clock):
        """An episode 1 ms before windowEnd extends the live window."""
        first = await counters.record_binge_episode("u1")
        end = first["10hours"].window_end
        clock.advance(milliseconds=TEN_HOURS - 1)
        windows = await counters.record_binge_episode("u1")
        assert windows["10hours"].count == 2
        assert windows["10hours"].window_end == end

    @pytest.mark.asyncio
    async def test_event_after_end_starts_new_window(self, counters, clock):
        """An episode 1 ms after windowEnd opens a new window with count 1."""
        await counters.record_binge_episode("u1")
        await counters.record_binge_episode("u1")
        clock.advance(milliseconds=TEN_HOURS + 1)
        windows = await counters.record_binge_episode("u1")
        assert windows["10hours"].count == 1
        assert windows["10hours"].window_start == to_ms(clock())
        # The longer windows are still live.
        assert windows["1day"].count == 3

    @pytest.mark.asyncio
    async def test_finalize_clears_only_expired(self, counters, clock):
        """Sweeping after 11 hours clears only the 10-hour window."""
        await counters.record_binge_episode("u1")
        clock.advance(hours=11)
        cleared = await counters.finalize_expired_sessions("u1")
        assert cleared == ["10hours"]
        remaining = await counters.get_binge_windows("u1")
        assert set(remaining) == {"1day", "2days"}

    @pytest.mark.asyncio
    async def test_finalize_without_windows(self, counters):
        assert await counters.finalize_expired_sessions("u1") == []


class TestMarathonWeeks:
    """Test ISO week counters."""

    @pytest.mark.asyncio
    async def test_records_current_iso_week(self, counters):
        """Episodes land in the current ISO week."""
        await counters.record_marathon_episode("u1")
        await counters.record_marathon_episodes("u1", 4)
        snapshot = await counters.read_all("u1")
        assert snapshot.marathon_weeks == {"2024-W10": 5}

    @pytest.mark.asyncio
    async def test_ignores_non_positive(self, counters):
        assert await counters.record_marathon_episodes("u1", 0) is None

    @pytest.mark.asyncio
    async def test_stats(self, counters, clock):
        """Best week survives into the next week."""
        await counters.record_marathon_episodes("u1", 12)
        clock.advance(days=7)
        await counters.record_marathon_episodes("u1", 3)
        stats = await counters.marathon_stats("u1")
        assert stats["current_week"] == "2024-W11"
        assert stats["current_week_episodes"] == 3
        assert stats["best_week_episodes"] == 12
        # Wednesday 20:00 -> Monday 00:00 is 4 days 4 hours.
        assert stats["time_remaining_in_week"] == (4 * 24 + 4) * 3600

    @pytest.mark.asyncio
    async def test_ensure_current_week(self, counters):
        await counters.ensure_current_marathon_week("u1")
        await counters.record_marathon_episode("u1")
        await counters.ensure_current_marathon_week("u1")
        snapshot = await counters.read_all("u1")
        assert snapshot.marathon_weeks == {"2024-W10": 1}

    @pytest.mark.asyncio
    async def test_week_follows_streak_timezone(self, store, settings, clock):
        """Sunday 23:30 UTC is already Monday of the next week in Berlin."""
        clock.now = datetime(2024, 3, 10, 23, 30, tzinfo=timezone.utc)
        berlin = CounterStore(store, settings.model_copy(update={"streak_timezone": "Europe/Berlin"}), clock)
        await berlin.update_streak("u1")
        await berlin.record_marathon_episode("u1")

        snapshot = await berlin.read_all("u1")
        assert snapshot.last_activity_date == "2024-03-11"
        assert snapshot.marathon_weeks == {"2024-W11": 1}
        stats = await berlin.marathon_stats("u1")
        # Until Monday 2024-03-18 00:00 CET, which is 23:00 UTC on the 17th.
        assert stats["time_remaining_in_week"] == int(167.5 * 3600)
