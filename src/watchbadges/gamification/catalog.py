"""Badge catalog: every badge the engine can grant.

Badge ids are referenced by stored grants. They are never renamed, and a
shipped id's requirement is never edited in place; a new threshold ships
under a new id (see migration.record_catalog_revision).
"""

from __future__ import annotations

import hashlib
import json
from collections import Counter
from collections.abc import Iterable

from watchbadges.exceptions import CatalogError
from watchbadges.gamification.schemas import BadgeCategory, BadgeDefinition

BADGE_CATALOG_DATA: list[dict] = [
    # Binge sessions
    {
        "id": "binge_bronze",
        "category": "binge",
        "tier": "bronze",
        "name": "Snack Session",
        "description": "Watch 3 episodes back to back",
        "emoji": "\U0001f37f",
        "requirement": {"category": "binge", "episodes": 3, "timeframe": "10hours"},
        "rarity": "common",
    },
    {
        "id": "binge_bronze_plus",
        "category": "binge",
        "tier": "bronze",
        "name": "Appetizer",
        "description": "Watch 5 episodes back to back",
        "emoji": "\U0001f968",
        "requirement": {"category": "binge", "episodes": 5, "timeframe": "10hours"},
        "rarity": "common",
    },
    {
        "id": "binge_silver",
        "category": "binge",
        "tier": "silver",
        "name": "Couch Potato",
        "description": "Watch 8 episodes back to back",
        "emoji": "\U0001f6cb",
        "requirement": {"category": "binge", "episodes": 8, "timeframe": "10hours"},
        "rarity": "rare",
    },
    {
        "id": "binge_silver_plus",
        "category": "binge",
        "tier": "silver",
        "name": "Series Sprinter",
        "description": "Watch 10 episodes back to back",
        "emoji": "\U0001f4fa",
        "requirement": {"category": "binge", "episodes": 10, "timeframe": "10hours"},
        "rarity": "rare",
    },
    {
        "id": "binge_gold",
        "category": "binge",
        "tier": "gold",
        "name": "Binge Master",
        "description": "Watch 15 episodes in a single day",
        "emoji": "\U0001f3c6",
        "requirement": {"category": "binge", "episodes": 15, "timeframe": "1day"},
        "rarity": "epic",
    },
    {
        "id": "binge_gold_plus",
        "category": "binge",
        "tier": "gold",
        "name": "Binge King",
        "description": "Watch 20 episodes in a single day",
        "emoji": "\U0001f451",
        "requirement": {"category": "binge", "episodes": 20, "timeframe": "1day"},
        "rarity": "epic",
    },
    {
        "id": "binge_platinum",
        "category": "binge",
        "tier": "platinum",
        "name": "Binge Monster",
        "description": "Devour 25 episodes in a single day",
        "emoji": "\U0001f479",
        "requirement": {"category": "binge", "episodes": 25, "timeframe": "1day"},
        "rarity": "epic",
    },
    {
        "id": "binge_diamond",
        "category": "binge",
        "tier": "diamond",
        "name": "Binge God",
        "description": "Watch 35 episodes within two days",
        "emoji": "\U0001f525",
        "requirement": {"category": "binge", "episodes": 35, "timeframe": "2days"},
        "rarity": "legendary",
    },
    {
        "id": "binge_diamond_plus",
        "category": "binge",
        "tier": "diamond",
        "name": "Binge Titan",
        "description": "Watch 50 episodes within two days",
        "emoji": "⚡",
        "requirement": {"category": "binge", "episodes": 50, "timeframe": "2days"},
        "rarity": "legendary",
    },
    # Quickwatch (watched right after release)
    {
        "id": "quickwatch_bronze",
        "category": "quickwatch",
        "tier": "bronze",
        "name": "Early Bird",
        "description": "Watch 3 episodes on release day",
        "emoji": "⚡",
        "requirement": {"category": "quickwatch", "episodes": 3},
        "rarity": "common",
    },
    {
        "id": "quickwatch_silver",
        "category": "quickwatch",
        "tier": "silver",
        "name": "Day One Fan",
        "description": "Watch 8 episodes on release day",
        "emoji": "\U0001f305",
        "requirement": {"category": "quickwatch", "episodes": 8},
        "rarity": "rare",
    },
    {
        "id": "quickwatch_gold",
        "category": "quickwatch",
        "tier": "gold",
        "name": "Release Hunter",
        "description": "Watch 15 episodes on release day",
        "emoji": "\U0001f3af",
        "requirement": {"category": "quickwatch", "episodes": 15},
        "rarity": "epic",
    },
    {
        "id": "quickwatch_platinum",
        "category": "quickwatch",
        "tier": "platinum",
        "name": "Release Predator",
        "description": "Watch 25 episodes on release day",
        "emoji": "\U0001f985",
        "requirement": {"category": "quickwatch", "episodes": 25},
        "rarity": "legendary",
    },
    {
        "id": "quickwatch_diamond",
        "category": "quickwatch",
        "tier": "diamond",
        "name": "Day Zero Destroyer",
        "description": "Watch 40 episodes on release day",
        "emoji": "\U0001f480",
        "requirement": {"category": "quickwatch", "episodes": 40},
        "rarity": "legendary",
    },
    # Marathons (best calendar week)
    {
        "id": "marathon_bronze",
        "category": "marathon",
        "tier": "bronze",
        "name": "Series Fan",
        "description": "Watch 15 episodes in one week",
        "emoji": "\U0001f4fa",
        "requirement": {"category": "marathon", "episodes": 15},
        "rarity": "common",
    },
    {
        "id": "marathon_silver",
        "category": "marathon",
        "tier": "silver",
        "name": "Weekend Warrior",
        "description": "Watch 25 episodes in one week",
        "emoji": "⚔",
        "requirement": {"category": "marathon", "episodes": 25},
        "rarity": "rare",
    },
    {
        "id": "marathon_gold",
        "category": "marathon",
        "tier": "gold",
        "name": "Marathon Master",
        "description": "Watch 40 episodes in one week",
        "emoji": "\U0001f3c3",
        "requirement": {"category": "marathon", "episodes": 40},
        "rarity": "epic",
    },
    {
        "id": "marathon_platinum",
        "category": "marathon",
        "tier": "platinum",
        "name": "Weekend Titan",
        "description": "Watch 60 episodes in one week",
        "emoji": "\U0001f6e1",
        "requirement": {"category": "marathon", "episodes": 60},
        "rarity": "legendary",
    },
    {
        "id": "marathon_diamond",
        "category": "marathon",
        "tier": "diamond",
        "name": "Series Annihilator",
        "description": "Watch 80 episodes in one week",
        "emoji": "\U0001f480",
        "requirement": {"category": "marathon", "episodes": 80},
        "rarity": "legendary",
    },
    # Daily streaks
    {
        "id": "streak_bronze",
        "category": "streak",
        "tier": "bronze",
        "name": "Creature of Habit",
        "description": "Watch something 7 days in a row",
        "emoji": "\U0001f525",
        "requirement": {"category": "streak", "days": 7},
        "rarity": "common",
    },
    {
        "id": "streak_silver",
        "category": "streak",
        "tier": "silver",
        "name": "Daily Routine",
        "description": "Watch something 14 days in a row",
        "emoji": "⚡",
        "requirement": {"category": "streak", "days": 14},
        "rarity": "rare",
    },
    {
        "id": "streak_gold",
        "category": "streak",
        "tier": "gold",
        "name": "Unstoppable",
        "description": "Watch something 30 days in a row",
        "emoji": "\U0001f48e",
        "requirement": {"category": "streak", "days": 30},
        "rarity": "epic",
    },
    {
        "id": "streak_platinum",
        "category": "streak",
        "tier": "platinum",
        "name": "Hooked",
        "description": "Watch something 60 days in a row",
        "emoji": "\U0001f517",
        "requirement": {"category": "streak", "days": 60},
        "rarity": "legendary",
    },
    {
        "id": "streak_diamond",
        "category": "streak",
        "tier": "diamond",
        "name": "Eternal Flame",
        "description": "Watch something 100 days in a row",
        "emoji": "\U0001f525",
        "requirement": {"category": "streak", "days": 100},
        "rarity": "legendary",
    },
    # Rewatches
    {
        "id": "rewatch_bronze",
        "category": "rewatch",
        "tier": "bronze",
        "name": "Second Look",
        "description": "Rewatch 5 episodes",
        "emoji": "\U0001f504",
        "requirement": {"category": "rewatch", "episodes": 5},
        "rarity": "common",
    },
    {
        "id": "rewatch_silver",
        "category": "rewatch",
        "tier": "silver",
        "name": "Nostalgia Fan",
        "description": "Rewatch 15 episodes",
        "emoji": "\U0001f4ab",
        "requirement": {"category": "rewatch", "episodes": 15},
        "rarity": "rare",
    },
    {
        "id": "rewatch_gold",
        "category": "rewatch",
        "tier": "gold",
        "name": "Rewatch King",
        "description": "Rewatch 30 episodes",
        "emoji": "\U0001f451",
        "requirement": {"category": "rewatch", "episodes": 30},
        "rarity": "epic",
    },
    {
        "id": "rewatch_platinum",
        "category": "rewatch",
        "tier": "platinum",
        "name": "Nostalgia Expert",
        "description": "Rewatch 60 episodes",
        "emoji": "\U0001f3ad",
        "requirement": {"category": "rewatch", "episodes": 60},
        "rarity": "legendary",
    },
    {
        "id": "rewatch_diamond",
        "category": "rewatch",
        "tier": "diamond",
        "name": "Time Traveller",
        "description": "Rewatch 100 episodes",
        "emoji": "⏰",
        "requirement": {"category": "rewatch", "episodes": 100},
        "rarity": "legendary",
    },
    # Explorer (distinct series in the collection)
    {
        "id": "explorer_bronze",
        "category": "explorer",
        "tier": "bronze",
        "name": "Explorer",
        "description": "Start 50 different series",
        "emoji": "\U0001f5fa",
        "requirement": {"category": "explorer", "series": 50},
        "rarity": "common",
    },
    {
        "id": "explorer_silver",
        "category": "explorer",
        "tier": "silver",
        "name": "Series Scout",
        "description": "Start 100 different series",
        "emoji": "\U0001f50d",
        "requirement": {"category": "explorer", "series": 100},
        "rarity": "rare",
    },
    {
        "id": "explorer_gold",
        "category": "explorer",
        "tier": "gold",
        "name": "Genre Master",
        "description": "Start 200 different series",
        "emoji": "\U0001f30d",
        "requirement": {"category": "explorer", "series": 200},
        "rarity": "epic",
    },
    {
        "id": "explorer_platinum",
        "category": "explorer",
        "tier": "platinum",
        "name": "Globetrotter",
        "description": "Start 300 different series",
        "emoji": "✈",
        "requirement": {"category": "explorer", "series": 300},
        "rarity": "legendary",
    },
    {
        "id": "explorer_diamond",
        "category": "explorer",
        "tier": "diamond",
        "name": "Series Universe",
        "description": "Start 500 different series",
        "emoji": "\U0001f30c",
        "requirement": {"category": "explorer", "series": 500},
        "rarity": "legendary",
    },
    {
        "id": "explorer_mythic",
        "category": "explorer",
        "tier": "diamond",
        "name": "Omnipresent Explorer",
        "description": "Start 750 different series",
        "emoji": "\U0001f680",
        "requirement": {"category": "explorer", "series": 750},
        "rarity": "legendary",
    },
    # Collector (rated series and movies)
    {
        "id": "collector_bronze",
        "category": "collector",
        "tier": "bronze",
        "name": "Critic",
        "description": "Rate 50 series or movies",
        "emoji": "⭐",
        "requirement": {"category": "collector", "ratings": 50},
        "rarity": "common",
    },
    {
        "id": "collector_silver",
        "category": "collector",
        "tier": "silver",
        "name": "Rating Expert",
        "description": "Rate 150 series or movies",
        "emoji": "\U0001f31f",
        "requirement": {"category": "collector", "ratings": 150},
        "rarity": "rare",
    },
    {
        "id": "collector_gold",
        "category": "collector",
        "tier": "gold",
        "name": "Rating Master",
        "description": "Rate 300 series or movies",
        "emoji": "\U0001f3af",
        "requirement": {"category": "collector", "ratings": 300},
        "rarity": "epic",
    },
    {
        "id": "collector_platinum",
        "category": "collector",
        "tier": "platinum",
        "name": "Rating Deity",
        "description": "Rate 500 series or movies",
        "emoji": "\U0001f3c6",
        "requirement": {"category": "collector", "ratings": 500},
        "rarity": "legendary",
    },
    {
        "id": "collector_diamond",
        "category": "collector",
        "tier": "diamond",
        "name": "Critic Legend",
        "description": "Rate 750 series or movies",
        "emoji": "\U0001f4dd",
        "requirement": {"category": "collector", "ratings": 750},
        "rarity": "legendary",
    },
    {
        "id": "collector_mythic",
        "category": "collector",
        "tier": "diamond",
        "name": "Almighty Critic",
        "description": "Rate 1000 series or movies",
        "emoji": "\U0001f31f",
        "requirement": {"category": "collector", "ratings": 1000},
        "rarity": "legendary",
    },
    # Social (friends)
    {
        "id": "social_bronze",
        "category": "social",
        "tier": "bronze",
        "name": "Sociable",
        "description": "Add 3 friends",
        "emoji": "\U0001f91d",
        "requirement": {"category": "social", "friends": 3},
        "rarity": "common",
    },
    {
        "id": "social_silver",
        "category": "social",
        "tier": "silver",
        "name": "Series Buddy",
        "description": "Add 8 friends",
        "emoji": "\U0001f465",
        "requirement": {"category": "social", "friends": 8},
        "rarity": "rare",
    },
    {
        "id": "social_gold",
        "category": "social",
        "tier": "gold",
        "name": "Community Leader",
        "description": "Add 15 friends",
        "emoji": "\U0001f451",
        "requirement": {"category": "social", "friends": 15},
        "rarity": "epic",
    },
    {
        "id": "social_platinum",
        "category": "social",
        "tier": "platinum",
        "name": "Network Guru",
        "description": "Add 25 friends",
        "emoji": "\U0001f310",
        "requirement": {"category": "social", "friends": 25},
        "rarity": "legendary",
    },
    {
        "id": "social_diamond",
        "category": "social",
        "tier": "diamond",
        "name": "Series Influencer",
        "description": "Add 50 friends",
        "emoji": "\U0001f4e3",
        "requirement": {"category": "social", "friends": 50},
        "rarity": "legendary",
    },
    # Completion (every episode of every season watched)
    {
        "id": "completion_bronze",
        "category": "completion",
        "tier": "bronze",
        "name": "Finisher",
        "description": "Finish a series completely",
        "emoji": "✅",
        "requirement": {"category": "completion", "series": 1},
        "rarity": "common",
    },
    {
        "id": "completion_silver",
        "category": "completion",
        "tier": "silver",
        "name": "Closer",
        "description": "Finish 5 series completely",
        "emoji": "\U0001f3c1",
        "requirement": {"category": "completion", "series": 5},
        "rarity": "rare",
    },
    {
        "id": "completion_gold",
        "category": "completion",
        "tier": "gold",
        "name": "Completionist",
        "description": "Finish 15 series completely",
        "emoji": "\U0001f396",
        "requirement": {"category": "completion", "series": 15},
        "rarity": "epic",
    },
    {
        "id": "completion_platinum",
        "category": "completion",
        "tier": "platinum",
        "name": "Loose Ends Hunter",
        "description": "Finish 30 series completely",
        "emoji": "\U0001f9f5",
        "requirement": {"category": "completion", "series": 30},
        "rarity": "legendary",
    },
    {
        "id": "completion_diamond",
        "category": "completion",
        "tier": "diamond",
        "name": "Archivist",
        "description": "Finish 50 series completely",
        "emoji": "\U0001f4da",
        "requirement": {"category": "completion", "series": 50},
        "rarity": "legendary",
    },
    # Dedication (total watched episodes)
    {
        "id": "dedication_bronze",
        "category": "dedication",
        "tier": "bronze",
        "name": "Regular Viewer",
        "description": "Watch 100 episodes in total",
        "emoji": "\U0001f4c5",
        "requirement": {"category": "dedication", "episodes": 100},
        "rarity": "common",
    },
    {
        "id": "dedication_silver",
        "category": "dedication",
        "tier": "silver",
        "name": "Devoted Viewer",
        "description": "Watch 500 episodes in total",
        "emoji": "\U0001f4c6",
        "requirement": {"category": "dedication", "episodes": 500},
        "rarity": "rare",
    },
    {
        "id": "dedication_gold",
        "category": "dedication",
        "tier": "gold",
        "name": "Screen Veteran",
        "description": "Watch 1,000 episodes in total",
        "emoji": "\U0001f3c5",
        "requirement": {"category": "dedication", "episodes": 1000},
        "rarity": "epic",
    },
    {
        "id": "dedication_platinum",
        "category": "dedication",
        "tier": "platinum",
        "name": "Living Archive",
        "description": "Watch 2,500 episodes in total",
        "emoji": "\U0001f5c4",
        "requirement": {"category": "dedication", "episodes": 2500},
        "rarity": "legendary",
    },
    {
        "id": "dedication_diamond",
        "category": "dedication",
        "tier": "diamond",
        "name": "Lifelong Watcher",
        "description": "Watch 5,000 episodes in total",
        "emoji": "♾",
        "requirement": {"category": "dedication", "episodes": 5000},
        "rarity": "legendary",
    },
]


def validate_catalog(definitions: Iterable[BadgeDefinition]) -> list[BadgeDefinition]:
    """Check ids are unique and each requirement matches its badge category."""
    badges = list(definitions)
    duplicates = sorted(badge_id for badge_id, n in Counter(b.id for b in badges).items() if n > 1)
    if duplicates:
        msg = f"Duplicate badge ids: {', '.join(duplicates)}"
        raise CatalogError(msg)

    for badge in badges:
        if badge.requirement.category != badge.category.value:
            msg = f"Badge {badge.id} is {badge.category.value} but has a {badge.requirement.category} requirement"
            raise CatalogError(msg)
    return badges


BADGE_DEFINITIONS: list[BadgeDefinition] = validate_catalog(
    BadgeDefinition.model_validate(entry) for entry in BADGE_CATALOG_DATA
)


class BadgeCatalog:
    """Read-only view over a list of badge definitions."""

    def __init__(self, definitions: Iterable[BadgeDefinition] | None = None) -> None:
        badges = BADGE_DEFINITIONS if definitions is None else validate_catalog(definitions)
        self._badges: tuple[BadgeDefinition, ...] = tuple(badges)
        self._by_id = {b.id: b for b in self._badges}

    def __len__(self) -> int:
        return len(self._badges)

    def __contains__(self, badge_id: object) -> bool:
        return badge_id in self._by_id

    def list(self) -> list[BadgeDefinition]:
        return list(self._badges)

    def by_category(self, category: BadgeCategory | str) -> list[BadgeDefinition]:
        category = BadgeCategory(category)
        return [b for b in self._badges if b.category == category]

    def get(self, badge_id: str) -> BadgeDefinition | None:
        return self._by_id.get(badge_id)


def requirement_digest(badge: BadgeDefinition) -> str:
    """Stable hash of a badge's requirement, used to detect in-place edits."""
    payload = json.dumps(badge.requirement.model_dump(mode="json"), sort_keys=True)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


DEFAULT_CATALOG = BadgeCatalog()
