"""Badge maintenance arq worker: binge session sweep and nightly validation.

Import path for arq CLI: arq watchbadges.gamification.worker.WorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from watchbadges.config import get_settings
from watchbadges.gamification.badge_evaluator import BadgeEvaluator
from watchbadges.gamification.counter_service import COUNTERS_ROOT, CounterStore
from watchbadges.gamification.validator import get_validation_stats, validate_all_users
from watchbadges.logging_config import setup_logging
from watchbadges.store import RedisDocumentStore

logger = logging.getLogger(__name__)


async def badge_worker_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the Redis client and build the engine services."""
    settings = get_settings()
    setup_logging(settings)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )
    store = RedisDocumentStore(redis_client, max_retries=settings.transaction_max_retries)
    counters = CounterStore(store, settings)
    ctx["redis"] = redis_client
    ctx["store"] = store
    ctx["counters"] = counters
    ctx["evaluator"] = BadgeEvaluator(store, counters=counters, settings=settings)
    logger.info("Badge worker started")


async def badge_worker_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Stop store listeners and close the Redis client."""
    store: RedisDocumentStore | None = ctx.get("store")
    if store is not None:
        await store.close()
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    logger.info("Badge worker shut down")


async def sweep_expired_sessions(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: clear expired binge windows for every user with counters.

    Returns the number of windows cleared.
    """
    counters: CounterStore = ctx["counters"]
    users = await counters.store.get(COUNTERS_ROOT)
    if not isinstance(users, dict):
        return 0

    cleared = 0
    for user_id in users:
        cleared += len(await counters.finalize_expired_sessions(user_id))
    logger.info("Swept binge sessions for %d users, cleared %d windows", len(users), cleared)
    return cleared


async def nightly_badge_validation(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled task: dry-run validation of every user's grants."""
    evaluator: BadgeEvaluator = ctx["evaluator"]
    results = await validate_all_users(evaluator, delete_invalid=False)
    stats = get_validation_stats(results)
    logger.info(
        "Nightly badge validation: %d users, %d badges, %d invalid",
        stats["total_users"],
        stats["total_badges"],
        stats["invalid_badges"],
    )
    return stats


class WorkerSettings:
    """arq worker settings for badge maintenance."""

    functions = [sweep_expired_sessions, nightly_badge_validation]
    cron_jobs = [
        cron(sweep_expired_sessions, minute=5),  # hourly at :05
        cron(nightly_badge_validation, hour=3, minute=30),  # 03:30 UTC
    ]
    on_startup = badge_worker_startup
    on_shutdown = badge_worker_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 2
    job_timeout = 900  # 15 minutes max per job
