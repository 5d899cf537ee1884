"""Per-user progression state models."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .catalog import ChallengeConfig, Reward
from .types import CollectionType, PointCategory, Quality, Rarity


class Profile(BaseModel):
    """Level, experience and streak of one user."""

    level: int = Field(default=1, ge=1)
    experience: int = Field(default=0, ge=0)
    total_points: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    last_activity_date: Optional[date] = None


class PointLedger(BaseModel):
    """Append-only per-category point totals."""

    sighting: int = 0
    photo: int = 0
    identification: int = 0
    exploration: int = 0
    collaboration: int = 0
    daily: int = 0
    achievement_bonus: int = 0
    level_bonus: int = 0

    def credit(self, category: PointCategory, amount: int) -> None:
        setattr(self, category.value, getattr(self, category.value) + amount)

    def get(self, category: PointCategory) -> int:
        return getattr(self, category.value)

    def total(self) -> int:
        return sum(self.get(category) for category in PointCategory)


class Statistics(BaseModel):
    """Running counters read by achievement predicates and views."""

    events: int = 0
    sightings: int = 0
    photos: int = 0
    high_quality_photos: int = 0
    identifications_correct: int = 0
    identifications_incorrect: int = 0
    explorations: int = 0
    collaborations: int = 0
    daily_check_ins: int = 0
    distance_km: float = 0.0
    subjects_seen: list[str] = Field(default_factory=list)
    zones_visited: list[str] = Field(default_factory=list)
    active_days: int = 0
    best_streak: int = 0
    lifetime_experience: int = 0
    level_ups: int = 0
    challenges_completed: int = 0
    challenges_failed: int = 0
    challenges_completed_by_category: dict[str, int] = Field(default_factory=dict)
    routes_completed: int = 0
    waypoints_completed: int = 0
    discoveries: int = 0


class Achievement(BaseModel):
    """An unlocked achievement. ``unlocked_at`` never changes once set."""

    id: str
    name: str
    description: str = ""
    category: str = "general"
    unlocked_at: Optional[datetime] = None
    reward_points: int = 0
    title: Optional[str] = None


class CollectionEntry(BaseModel):
    """Collectible card keyed by (collection_type, item_id)."""

    collection_type: CollectionType
    item_id: str
    first_obtained_at: datetime
    quantity: int = Field(default=1, ge=1)
    quality: Quality = Quality.GOOD
    rare: bool = False
    position: int = 0
    details: dict[str, Any] = Field(default_factory=dict)


class ChallengeState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    EXPIRED = "expired"
    ABANDONED = "abandoned"


class ChallengeProgressEntry(BaseModel):
    """One matched event in a challenge's history."""

    at: datetime
    kind: str
    subject: Optional[str] = None
    zone: Optional[str] = None


class ChallengeStats(BaseModel):
    """Per-instance sub-statistics."""

    subjects: list[str] = Field(default_factory=list)
    zones: list[str] = Field(default_factory=list)
    kinds: dict[str, int] = Field(default_factory=dict)
    rejected_events: int = 0


class ChallengeInstance(BaseModel):
    """Per-activation realization of a challenge template."""

    instance_id: str
    template_id: str
    name: str
    category: str
    config: ChallengeConfig
    reward: Reward
    reward_category: PointCategory
    started_at: datetime
    deadline: datetime
    progress: int = Field(default=0, ge=0)
    state: ChallengeState = ChallengeState.ACTIVE
    failure_reason: Optional[FailureReason] = None
    completed_at: Optional[datetime] = None
    history: list[ChallengeProgressEntry] = Field(default_factory=list)
    stats: ChallengeStats = Field(default_factory=ChallengeStats)

    @property
    def is_terminal(self) -> bool:
        return self.state is not ChallengeState.ACTIVE


class RouteState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class Waypoint(BaseModel):
    """Instance-owned copy of a route waypoint."""

    id: str
    name: str
    order: int
    kind: str
    activities: list[str]
    extra_difficulty: bool = False
    visited: bool = False
    completed: bool = False
    recorded: list[str] = Field(default_factory=list)
    points_earned: int = 0
    visited_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def pending(self) -> list[str]:
        return [a for a in self.activities if a not in self.recorded]


class Discovery(BaseModel):
    """Side discovery attached to a route instance."""

    id: str
    rarity: Rarity = Rarity.COMMON
    magic_value: int = Field(default=0, ge=0)
    waypoint_id: Optional[str] = None
    points: int = 0
    found_at: Optional[datetime] = None


class NarrativeEvent(BaseModel):
    """Entry in a route's narrative log."""

    kind: str
    at: datetime
    waypoint_id: Optional[str] = None
    text: str = ""
    progress: float = 0.0


class RouteStats(BaseModel):
    activities: int = 0
    points: int = 0
    discoveries: int = 0


class RouteInstance(BaseModel):
    """Per-activation realization of a route template."""

    instance_id: str
    template_id: str
    name: str
    waypoints: list[Waypoint]
    narrative: dict[str, str] = Field(default_factory=dict)
    reward: Reward = Field(default_factory=Reward)
    started_at: datetime
    deadline: Optional[datetime] = None
    current_index: int = 0
    state: RouteState = RouteState.ACTIVE
    ended_at: Optional[datetime] = None
    discoveries: list[Discovery] = Field(default_factory=list)
    narrative_log: list[NarrativeEvent] = Field(default_factory=list)
    milestones: list[int] = Field(default_factory=list)
    stats: RouteStats = Field(default_factory=RouteStats)

    @property
    def current_waypoint(self) -> Optional[Waypoint]:
        if self.state is not RouteState.ACTIVE:
            return None
        if self.current_index >= len(self.waypoints):
            return None
        return self.waypoints[self.current_index]

    @property
    def narrative_progress(self) -> float:
        """Visited waypoints over total, derived on read."""
        if not self.waypoints:
            return 0.0
        visited = sum(1 for w in self.waypoints if w.visited)
        return visited / len(self.waypoints)


class UserState(BaseModel):
    """Aggregate progression state of a single user."""

    profile: Profile = Field(default_factory=Profile)
    ledger: PointLedger = Field(default_factory=PointLedger)
    statistics: Statistics = Field(default_factory=Statistics)
    achievements: dict[str, Achievement] = Field(default_factory=dict)
    collection: dict[CollectionType, dict[str, CollectionEntry]] = Field(
        default_factory=dict
    )
    challenges: dict[str, ChallengeInstance] = Field(default_factory=dict)
    challenge_outcomes: dict[str, list[bool]] = Field(default_factory=dict)
    routes: dict[str, RouteInstance] = Field(default_factory=dict)
    completed_routes: list[str] = Field(default_factory=list)
    titles: list[str] = Field(default_factory=list)
    active_title: Optional[str] = None

    def is_unlocked(self, achievement_id: str) -> bool:
        achievement = self.achievements.get(achievement_id)
        return achievement is not None and achievement.unlocked_at is not None

    def grant_title(self, title: Optional[str]) -> None:
        if title and title not in self.titles:
            self.titles.append(title)
            self.active_title = title
