"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from watchbadges.config import Settings
from watchbadges.gamification.badge_evaluator import BadgeEvaluator
from watchbadges.gamification.batch_manager import ActivityBatchManager
from watchbadges.gamification.counter_service import CounterStore
from watchbadges.store import InMemoryDocumentStore

START = datetime(2024, 3, 6, 20, 0, tzinfo=timezone.utc)  # a Wednesday


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        batch_delay_seconds=0.2,
        snapshot_ttl_seconds=300,
        streak_timezone="UTC",
        emit_binge_activity=False,
    )


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def counters(store, settings, clock) -> CounterStore:
    return CounterStore(store, settings, clock)


@pytest.fixture
def evaluator(store, counters, settings, clock) -> BadgeEvaluator:
    return BadgeEvaluator(store, counters=counters, settings=settings, clock=clock)


@pytest_asyncio.fixture
async def manager(counters, evaluator, settings, clock):
    mgr = ActivityBatchManager(counters, evaluator, settings=settings, clock=clock)
    yield mgr
    await mgr.shutdown()


def make_series(series_id: int, seasons: list[list[int]] | None = None, rating: object = None) -> dict:
    """Series document; each season is a list of watchCount values (0 = unwatched)."""
    seasons = seasons if seasons is not None else [[1]]
    return {
        "id": series_id,
        "title": f"Show {series_id}",
        "rating": rating,
        "seasons": [
            {
                "seasonNumber": n + 1,
                "episodes": [{"watched": wc > 0, "watchCount": wc} for wc in counts],
            }
            for n, counts in enumerate(seasons)
        ],
    }


@pytest.fixture
def series_doc():
    return make_series
