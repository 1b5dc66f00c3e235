"""Re-validate already earned badges against current data.

Source data can change after a grant (an episode gets un-marked), so a
grant's requirement may no longer hold. Invalid grants are reported and,
on request, deleted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from watchbadges.exceptions import StoreError
from watchbadges.gamification.badge_evaluator import BADGES_ROOT, BadgeEvaluator
from watchbadges.gamification.predicates import TRANSIENT_CATEGORIES
from watchbadges.gamification.schemas import BadgeCategory, EarnedBadge, UserSnapshot, ValidationResult
from watchbadges.store import join_path

logger = logging.getLogger(__name__)


def _is_valid(evaluator: BadgeEvaluator, earned: EarnedBadge, snapshot: UserSnapshot) -> bool:
    definition = evaluator.catalog.get(earned.id)
    if definition is None:
        logger.warning("Badge definition not found: %s", earned.id)
        return False
    if definition.category in TRANSIENT_CATEGORIES:
        return True
    return evaluator.evaluate(definition, snapshot).earned


async def _validate(
    evaluator: BadgeEvaluator,
    user_id: str,
    delete_invalid: bool,
    category: BadgeCategory | None = None,
) -> ValidationResult:
    result = ValidationResult()
    try:
        badges = await evaluator.get_user_badges(user_id)
        if category is not None:
            badges = [b for b in badges if b.category == category]
        evaluator.invalidate_cache(user_id)
        snapshot = await evaluator.load_snapshot(user_id)

        for earned in badges:
            if _is_valid(evaluator, earned, snapshot):
                result.valid_badges.append(earned)
                continue
            result.invalid_badges.append(earned)
            if delete_invalid:
                await evaluator.store.remove(join_path(BADGES_ROOT, user_id, earned.id))
                result.deleted_badges.append(earned.id)
                logger.info("Deleted invalid badge %s for user %s", earned.id, user_id)
    except (StoreError, ValidationError) as exc:
        result.errors.append(str(exc))
        logger.warning("Badge validation failed for user %s: %s", user_id, exc)
    finally:
        if result.deleted_badges:
            evaluator.invalidate_cache(user_id)

    return result


async def validate_user_badges(
    evaluator: BadgeEvaluator,
    user_id: str,
    delete_invalid: bool = False,
) -> ValidationResult:
    """Check every earned badge of one user."""
    result = await _validate(evaluator, user_id, delete_invalid)
    logger.info(
        "Validated badges for %s: %d valid, %d invalid, %d deleted",
        user_id,
        len(result.valid_badges),
        len(result.invalid_badges),
        len(result.deleted_badges),
    )
    return result


async def validate_badge_category(
    evaluator: BadgeEvaluator,
    user_id: str,
    category: BadgeCategory | str,
    delete_invalid: bool = False,
) -> ValidationResult:
    """Check only the user's earned badges of one category."""
    return await _validate(evaluator, user_id, delete_invalid, BadgeCategory(category))


async def dry_run_validation(evaluator: BadgeEvaluator, user_id: str) -> ValidationResult:
    return await validate_user_badges(evaluator, user_id, delete_invalid=False)


async def list_badge_users(evaluator: BadgeEvaluator) -> list[str]:
    """User ids that hold at least one grant."""
    raw = await evaluator.store.get(BADGES_ROOT)
    return sorted(raw) if isinstance(raw, dict) else []


async def validate_all_users(
    evaluator: BadgeEvaluator,
    delete_invalid: bool = False,
    concurrency: int | None = None,
) -> dict[str, ValidationResult]:
    """Validate every user with grants, a bounded number at a time."""
    batch_size = concurrency or evaluator.settings.validation_concurrency
    results: dict[str, ValidationResult] = {}
    try:
        user_ids = await list_badge_users(evaluator)
    except StoreError as exc:
        logger.error("Could not list badge users: %s", exc)
        return results

    for start in range(0, len(user_ids), batch_size):
        batch = user_ids[start : start + batch_size]
        batch_results = await asyncio.gather(
            *(validate_user_badges(evaluator, uid, delete_invalid) for uid in batch)
        )
        results.update(zip(batch, batch_results))
        logger.info("Validated batch %d (%d users)", start // batch_size + 1, len(batch))
    return results


def get_validation_stats(results: dict[str, ValidationResult] | Iterable[ValidationResult]) -> dict[str, Any]:
    """Totals over a set of per-user validation results."""
    values = list(results.values()) if isinstance(results, dict) else list(results)
    return {
        "total_users": len(values),
        "total_badges": sum(len(r.valid_badges) + len(r.invalid_badges) for r in values),
        "valid_badges": sum(len(r.valid_badges) for r in values),
        "invalid_badges": sum(len(r.invalid_badges) for r in values),
        "deleted_badges": sum(len(r.deleted_badges) for r in values),
        "error_users": sum(1 for r in values if r.errors),
    }
