"""Shared questlog types: enums and the inbound activity event."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Final, Optional

from pydantic import BaseModel, Field


class ActivityKind(str, Enum):
    """Discriminant of inbound activity events."""

    SIGHTING = "sighting"
    PHOTO = "photo"
    IDENTIFICATION = "identification"
    EXPLORATION = "exploration"
    COLLABORATION = "collaboration"
    DAILY_CHECK_IN = "daily_check_in"


class PointCategory(str, Enum):
    """Point ledger categories."""

    SIGHTING = "sighting"
    PHOTO = "photo"
    IDENTIFICATION = "identification"
    EXPLORATION = "exploration"
    COLLABORATION = "collaboration"
    DAILY = "daily"
    ACHIEVEMENT_BONUS = "achievement_bonus"
    LEVEL_BONUS = "level_bonus"


class Quality(str, Enum):
    """Quality tag of photos and collection entries (ascending)."""

    POOR = "poor"
    LOW = "low"
    GOOD = "good"
    HIGH = "high"
    EXCELLENT = "excellent"

    @property
    def rank(self) -> int:
        """Ordinal position, used for quality floors."""
        return _QUALITY_ORDER.index(self)

    def at_least(self, floor: "Quality") -> bool:
        return self.rank >= floor.rank


_QUALITY_ORDER: Final[tuple[Quality, ...]] = (
    Quality.POOR,
    Quality.LOW,
    Quality.GOOD,
    Quality.HIGH,
    Quality.EXCELLENT,
)


class Rarity(str, Enum):
    """Rarity of route discoveries."""

    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class CollectionType(str, Enum):
    """Collectible card families."""

    CREATURES = "creatures"
    ZONES = "zones"
    ACHIEVEMENTS = "achievements"
    SPECIALS = "specials"


# Activity kind -> ledger category it scores into.
ACTIVITY_CATEGORY: Final[dict[ActivityKind, PointCategory]] = {
    ActivityKind.SIGHTING: PointCategory.SIGHTING,
    ActivityKind.PHOTO: PointCategory.PHOTO,
    ActivityKind.IDENTIFICATION: PointCategory.IDENTIFICATION,
    ActivityKind.EXPLORATION: PointCategory.EXPLORATION,
    ActivityKind.COLLABORATION: PointCategory.COLLABORATION,
    ActivityKind.DAILY_CHECK_IN: PointCategory.DAILY,
}

SPECIAL_WEATHER: Final[frozenset[str]] = frozenset({"fog", "storm"})


class ActivityEvent(BaseModel):
    """
    Typed activity event produced by the event source.

    Only ``kind`` is required. Every other field is optional context consumed
    by the multiplier and validation logic; absent fields skip the rules that
    read them.
    """

    kind: ActivityKind
    occurred_at: Optional[datetime] = None
    subject: Optional[str] = None
    zone: Optional[str] = None
    weather: Optional[str] = None
    quality: Optional[Quality] = None
    correct: Optional[bool] = None
    distance_km: float = Field(default=0.0, ge=0)
    first_time: bool = False
    base_points: Optional[int] = Field(
        default=None, description="Override of the kind's default base points"
    )
    extra: dict[str, Any] = Field(default_factory=dict)


class PointContext(BaseModel):
    """Contextual inputs for the points multiplier."""

    occurred_at: Optional[datetime] = None
    weather: Optional[str] = None
    quality: Optional[Quality] = None
    first_time: bool = False

    @classmethod
    def from_event(cls, event: ActivityEvent) -> "PointContext":
        return cls(
            occurred_at=event.occurred_at,
            weather=event.weather,
            quality=event.quality,
            first_time=event.first_time,
        )
