"""Badge engine: catalog, counters, classifier, batch manager and evaluator."""

from watchbadges.gamification.badge_evaluator import BadgeEvaluator
from watchbadges.gamification.batch_manager import ActivityBatchManager, UserBatchSession
from watchbadges.gamification.catalog import BADGE_DEFINITIONS, DEFAULT_CATALOG, BadgeCatalog
from watchbadges.gamification.classifier import BatchOptions, classify
from watchbadges.gamification.counter_service import CounterStore

__all__ = [
    "ActivityBatchManager",
    "BADGE_DEFINITIONS",
    "BadgeCatalog",
    "BadgeEvaluator",
    "BatchOptions",
    "CounterStore",
    "DEFAULT_CATALOG",
    "UserBatchSession",
    "classify",
]
