"""Maintenance: recalculate badges for existing users and guard catalog revisions.

Migration never deletes existing grants; it recomputes every badge from
current data and adds whatever is missing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from watchbadges.exceptions import CatalogRevisionError, StoreError
from watchbadges.gamification.badge_evaluator import BadgeEvaluator
from watchbadges.gamification.catalog import DEFAULT_CATALOG, BadgeCatalog, requirement_digest
from watchbadges.gamification.schemas import MigrationResult
from watchbadges.gamification.validator import list_badge_users
from watchbadges.store import ABORT, DocumentStore, join_path

logger = logging.getLogger(__name__)

LEGACY_ACTIVITIES_ROOT = "badgeActivities"
CATALOG_DIGESTS_PATH = "badgeCatalog/digests"


async def migrate_badge_system_for_user(evaluator: BadgeEvaluator, user_id: str) -> MigrationResult:
    """Recalculate all badges for one user, keeping existing grants."""
    result = MigrationResult()
    try:
        existing = await evaluator.get_user_badges(user_id)
        result.migrated_badges = len(existing)
        result.new_badges = await evaluator.recalculate_all_badges(user_id)
        result.success = True
    except StoreError as exc:
        result.errors.append(str(exc))
        logger.warning("Badge migration failed for user %s: %s", user_id, exc)
    return result


async def migrate_all_users(
    evaluator: BadgeEvaluator,
    batch_size: int | None = None,
    pause_seconds: float = 1.0,
) -> dict[str, MigrationResult]:
    """Migrate every user with grants, batch_size users at a time."""
    size = batch_size or evaluator.settings.migration_batch_size
    results: dict[str, MigrationResult] = {}
    try:
        user_ids = await list_badge_users(evaluator)
    except StoreError as exc:
        logger.error("Could not list badge users: %s", exc)
        return results

    for start in range(0, len(user_ids), size):
        batch = user_ids[start : start + size]
        batch_results = await asyncio.gather(*(migrate_badge_system_for_user(evaluator, uid) for uid in batch))
        results.update(zip(batch, batch_results))
        logger.info("Migrated batch %d (%d users)", start // size + 1, len(batch))
        if pause_seconds and start + size < len(user_ids):
            await asyncio.sleep(pause_seconds)
    return results


async def cleanup_badge_activities(store: DocumentStore, user_id: str) -> int:
    """Delete the legacy per-user badge activity branch. Returns the number of entries removed."""
    path = join_path(LEGACY_ACTIVITIES_ROOT, user_id)
    try:
        raw = await store.get(path)
        if not raw:
            return 0
        count = len(raw) if isinstance(raw, (dict, list)) else 1
        await store.remove(path)
    except StoreError as exc:
        logger.warning("Could not clean badge activities for user %s: %s", user_id, exc)
        return 0
    logger.info("Removed %d legacy badge activities for user %s", count, user_id)
    return count


async def check_badge_system_status(evaluator: BadgeEvaluator, user_id: str) -> dict[str, Any]:
    """Current grants, legacy activity count and badges that would be granted now.

    Read-only: nothing is granted.
    """
    try:
        earned = await evaluator.get_user_badges(user_id)
        legacy = await evaluator.store.get(join_path(LEGACY_ACTIVITIES_ROOT, user_id))
        snapshot = await evaluator.load_snapshot(user_id)
    except (StoreError, ValidationError) as exc:
        logger.warning("Could not load badge status for user %s: %s", user_id, exc)
        return {"current_badges": 0, "badge_activities": 0, "new_badges_available": 0}

    earned_ids = {b.id for b in earned}
    available = [
        badge.id
        for badge in evaluator.catalog.list()
        if badge.id not in earned_ids and evaluator.evaluate(badge, snapshot).earned
    ]
    return {
        "current_badges": len(earned),
        "badge_activities": len(legacy) if isinstance(legacy, (dict, list)) else 0,
        "new_badges_available": len(available),
    }


async def record_catalog_revision(store: DocumentStore, catalog: BadgeCatalog | None = None) -> list[str]:
    """Record requirement digests of new badge ids.

    Raises CatalogRevisionError when a known id's requirement differs from
    the recorded digest; a changed threshold must ship under a new id.
    Returns the ids recorded by this call.
    """
    catalog = catalog or DEFAULT_CATALOG
    digests = {badge.id: requirement_digest(badge) for badge in catalog.list()}
    added: list[str] = []
    changed: list[str] = []

    def _apply(current: Any) -> Any:
        added.clear()
        changed.clear()
        known = dict(current) if isinstance(current, dict) else {}
        for badge_id, digest in digests.items():
            previous = known.get(badge_id)
            if previous is None:
                known[badge_id] = digest
                added.append(badge_id)
            elif previous != digest:
                changed.append(badge_id)
        if changed or not added:
            return ABORT
        return known

    await store.transaction(CATALOG_DIGESTS_PATH, _apply)
    if changed:
        raise CatalogRevisionError(sorted(changed))
    if added:
        logger.info("Recorded %d new badge catalog entries", len(added))
    return list(added)
