"""Pydantic models for badges, watch events and evaluation snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BadgeCategory(str, Enum):
    """All badge categories."""

    BINGE = "binge"
    QUICKWATCH = "quickwatch"
    MARATHON = "marathon"
    STREAK = "streak"
    REWATCH = "rewatch"
    EXPLORER = "explorer"
    COLLECTOR = "collector"
    SOCIAL = "social"
    COMPLETION = "completion"
    DEDICATION = "dedication"


class BadgeTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


# Binge session timeframes tracked simultaneously per user (milliseconds).
BINGE_TIMEFRAMES: dict[str, int] = {
    "10hours": 10 * 60 * 60 * 1000,
    "1day": 24 * 60 * 60 * 1000,
    "2days": 48 * 60 * 60 * 1000,
}

TIMEFRAME_LABELS: dict[str, str] = {
    "10hours": "10 hours",
    "1day": "one day",
    "2days": "two days",
    "1week": "one week",
}


# --- Requirements (one variant per category) ---


class _Requirement(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BingeRequirement(_Requirement):
    category: Literal["binge"] = "binge"
    episodes: int = Field(gt=0)
    timeframe: Literal["10hours", "1day", "2days"]


class QuickwatchRequirement(_Requirement):
    category: Literal["quickwatch"] = "quickwatch"
    episodes: int = Field(gt=0)


class MarathonRequirement(_Requirement):
    category: Literal["marathon"] = "marathon"
    episodes: int = Field(gt=0)
    timeframe: Literal["1week"] = "1week"


class StreakRequirement(_Requirement):
    category: Literal["streak"] = "streak"
    days: int = Field(gt=0)


class RewatchRequirement(_Requirement):
    category: Literal["rewatch"] = "rewatch"
    episodes: int = Field(gt=0)


class ExplorerRequirement(_Requirement):
    category: Literal["explorer"] = "explorer"
    series: int = Field(gt=0)


class CollectorRequirement(_Requirement):
    category: Literal["collector"] = "collector"
    ratings: int = Field(gt=0)


class SocialRequirement(_Requirement):
    category: Literal["social"] = "social"
    friends: int = Field(gt=0)


class CompletionRequirement(_Requirement):
    category: Literal["completion"] = "completion"
    series: int = Field(gt=0)


class DedicationRequirement(_Requirement):
    category: Literal["dedication"] = "dedication"
    episodes: int = Field(gt=0)


Requirement = Annotated[
    BingeRequirement
    | QuickwatchRequirement
    | MarathonRequirement
    | StreakRequirement
    | RewatchRequirement
    | ExplorerRequirement
    | CollectorRequirement
    | SocialRequirement
    | CompletionRequirement
    | DedicationRequirement,
    Field(discriminator="category"),
]


# --- Badges ---


class BadgeDefinition(BaseModel):
    """Immutable catalog entry. The id is referenced by every grant."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: BadgeCategory
    tier: BadgeTier
    name: str
    description: str
    emoji: str = ""
    requirement: Requirement
    rarity: Rarity

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class EarnedBadge(BadgeDefinition):
    """A grant of a badge to one user."""

    earned_at: int | None = None  # epoch ms, set by the store on write
    details: str = ""

    @classmethod
    def from_definition(cls, badge: BadgeDefinition, details: str) -> EarnedBadge:
        return cls(**badge.model_dump(), details=details)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="json", exclude={"earned_at"})
        doc["earnedAt"] = self.earned_at
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> EarnedBadge:
        data = dict(doc)
        data["earned_at"] = data.pop("earnedAt", None)
        return cls.model_validate(data)


class BadgeProgress(BaseModel):
    badge_id: str
    current: int
    total: int
    last_updated: int
    time_remaining: int | None = None  # seconds until the binge window closes
    session_active: bool = False


# --- Watch events and classification ---


class WatchEvent(BaseModel):
    """One episode mark coming from the episode-tracking layer."""

    model_config = ConfigDict(frozen=True)

    series_id: int
    season_number: int
    episode_number: int
    watched_at: datetime
    air_date: str | None = None
    is_rewatch: bool = False
    watch_count: int = 1
    series_title: str = ""
    season_episode_count: int | None = None

    @property
    def title(self) -> str:
        return self.series_title or f"Series {self.series_id}"


class PatternType(str, Enum):
    BINGE = "binge"
    QUICKWATCH = "quickwatch"
    SEASON_COMPLETE = "season_complete"


@dataclass(frozen=True)
class BatchResult:
    should_batch: bool
    pattern_type: PatternType | None
    description: str
    events: tuple[WatchEvent, ...] = ()


@dataclass(frozen=True)
class ActivityRecord:
    """Description produced for the activity feed by a flush."""

    user_id: str
    series_id: int
    description: str
    pattern_type: PatternType | None
    episode_count: int
    timestamp: int


@dataclass
class FlushResult:
    aggregates: list[ActivityRecord] = field(default_factory=list)
    individual: list[ActivityRecord] = field(default_factory=list)
    fallback: bool = False

    @property
    def event_count(self) -> int:
        return sum(a.episode_count for a in self.aggregates) + len(self.individual)


# --- Snapshot of a user's durable facts ---


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EpisodeRecord(_Record):
    watched: bool = False
    watch_count: int = Field(default=0, alias="watchCount")
    watched_at: int | None = Field(default=None, alias="watchedAt")


def _as_list(value: Any) -> list[Any]:
    # The store keeps arrays as either lists or index-keyed dicts, and either may hold null holes.
    if value is None:
        return []
    items = value.values() if isinstance(value, dict) else value
    return [item for item in items if item is not None]


class SeasonRecord(_Record):
    season_number: int | None = Field(default=None, alias="seasonNumber")
    episodes: list[EpisodeRecord] = Field(default_factory=list)

    @field_validator("episodes", mode="before")
    @classmethod
    def coerce_episodes(cls, value: Any) -> list[Any]:
        return _as_list(value)


class SeriesRecord(_Record):
    id: int | str | None = None
    title: str = ""
    rating: Any = None
    seasons: list[SeasonRecord] = Field(default_factory=list)

    @field_validator("seasons", mode="before")
    @classmethod
    def coerce_seasons(cls, value: Any) -> list[Any]:
        return _as_list(value)


class MovieRecord(_Record):
    id: int | str | None = None
    title: str = ""
    rating: Any = None


class BingeWindow(_Record):
    count: int = 0
    window_start: int = Field(default=0, alias="windowStart")
    window_end: int = Field(default=0, alias="windowEnd")

    def to_document(self) -> dict[str, int]:
        return self.model_dump(by_alias=True)


class CounterSnapshot(_Record):
    current_streak: int = Field(default=0, alias="currentStreak")
    longest_streak: int = Field(default=0, alias="longestStreak")
    last_activity_date: str | None = Field(default=None, alias="lastActivityDate")
    quickwatch_episodes: int = Field(default=0, alias="quickwatchEpisodes")
    rewatch_episodes: int = Field(default=0, alias="rewatchEpisodes")
    binge_windows: dict[str, BingeWindow] = Field(default_factory=dict, alias="bingeWindows")
    marathon_weeks: dict[str, int] = Field(default_factory=dict, alias="marathonWeeks")
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict[str, Any] | None) -> CounterSnapshot:
        doc = doc or {}
        snapshot = cls.model_validate(doc)
        known = {f.alias or name for name, f in cls.model_fields.items()}
        snapshot.extra = {k: v for k, v in doc.items() if k not in known}
        return snapshot


@dataclass
class UserSnapshot:
    """Cached aggregation of one user's durable facts used for evaluation."""

    user_id: str
    series: list[SeriesRecord]
    movies: list[MovieRecord]
    activities: list[dict[str, Any]]
    counters: CounterSnapshot
    friend_count: int
    loaded_at: float


@dataclass(frozen=True)
class PredicateResult:
    current: int
    target: int
    details: str

    @property
    def earned(self) -> bool:
        return self.current >= self.target


# --- Maintenance reports ---


@dataclass
class ValidationResult:
    valid_badges: list[EarnedBadge] = field(default_factory=list)
    invalid_badges: list[EarnedBadge] = field(default_factory=list)
    deleted_badges: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class MigrationResult:
    success: bool = False
    migrated_badges: int = 0
    new_badges: list[EarnedBadge] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cleaned_activities: int = 0
