"""
Static progression catalog.

Challenge and route templates, achievement definitions, threshold tables
and scoring tables are data, not code. ``Catalog.default()`` returns the
built-in content; ``Catalog.from_yaml()`` loads a replacement (or a partial
override) from a YAML file.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .types import ActivityKind, CollectionType, PointCategory, Quality, Rarity

if TYPE_CHECKING:
    from .state import UserState

logger = logging.getLogger(__name__)


class TimeWindow(BaseModel):
    """Hour-of-day window; ``start > end`` wraps around midnight."""

    model_config = ConfigDict(extra="forbid")

    start: int = Field(ge=0, le=23)
    end: int = Field(ge=0, le=24)

    def contains(self, hour: int) -> bool:
        if self.start <= self.end:
            return self.start <= hour < self.end
        return hour >= self.start or hour < self.end


class Duration(BaseModel):
    """Template duration."""

    model_config = ConfigDict(extra="forbid")

    unit: Literal["hours", "days", "weeks"] = "days"
    value: int = Field(default=7, ge=1)

    def as_timedelta(self) -> timedelta:
        return timedelta(**{self.unit: self.value})


class Requirements(BaseModel):
    """Prerequisite profile requirements for templates."""

    model_config = ConfigDict(extra="forbid")

    level: int = Field(default=1, ge=1)
    experience: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    achievements: list[str] = Field(default_factory=list)

    def met_by(self, state: "UserState") -> bool:
        """Return True when the user satisfies every requirement.

        Minimum experience is compared against lifetime experience, since the
        profile's experience is renormalized within the current level.
        """
        if state.profile.level < self.level:
            return False
        if state.statistics.lifetime_experience < self.experience:
            return False
        if state.profile.total_points < self.points:
            return False
        return all(state.is_unlocked(a) for a in self.achievements)


class Reward(BaseModel):
    """Reward granted when a challenge or route completes."""

    model_config = ConfigDict(extra="forbid")

    points: int = Field(default=0, ge=0)
    title: Optional[str] = None
    rare_card: bool = False


class ChallengeConfig(BaseModel):
    """Resolved, validation-relevant configuration of a challenge."""

    model_config = ConfigDict(extra="forbid")

    objective: int = Field(default=1, ge=1)
    eligible_kinds: list[ActivityKind] = Field(default_factory=list)
    eligible_subjects: list[str] = Field(default_factory=list)
    eligible_zones: list[str] = Field(default_factory=list)
    eligible_weather: list[str] = Field(default_factory=list)
    time_window: Optional[TimeWindow] = None
    min_quality: Optional[Quality] = None
    distinct_subjects: bool = False
    distinct_zones: bool = False


class ChallengeTemplate(BaseModel):
    """Static, shared challenge definition."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    description: str = ""
    category: str
    difficulty: int = Field(default=1, ge=1, le=5)
    config: ChallengeConfig = Field(default_factory=ChallengeConfig)
    duration: Duration = Field(default_factory=Duration)
    reward: Reward = Field(default_factory=Reward)
    reward_category: PointCategory = PointCategory.EXPLORATION
    requirements: Requirements = Field(default_factory=Requirements)


class WaypointTemplate(BaseModel):
    """One ordered stop of a route template."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    order: int = Field(ge=0)
    kind: str = "exploration"
    activities: list[str] = Field(min_length=1)
    extra_difficulty: bool = False


class RouteTemplate(BaseModel):
    """Static, shared route definition."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    description: str = ""
    category: str = "novice"
    difficulty: int = Field(default=1, ge=1, le=5)
    waypoints: list[WaypointTemplate] = Field(min_length=1)
    narrative: dict[str, str] = Field(default_factory=dict)
    reward: Reward = Field(default_factory=Reward)
    requirements: Requirements = Field(default_factory=Requirements)
    duration: Optional[Duration] = None


class AchievementDefinition(BaseModel):
    """Display metadata of a known achievement."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    description: str = ""
    category: str = "general"
    title: Optional[str] = None


class ThresholdFamily(BaseModel):
    """Ordered table of (threshold, achievement id) pairs over one metric."""

    model_config = ConfigDict(extra="forbid")

    metric: str
    thresholds: list[tuple[int, str]]


class ChainRule(BaseModel):
    """Achievement that becomes eligible once its parent is unlocked."""

    model_config = ConfigDict(extra="forbid")

    parent: str
    child: str
    requirements: dict[str, int] = Field(default_factory=dict)


class Catalog(BaseModel):
    """All static progression content."""

    model_config = ConfigDict(extra="forbid")

    challenges: dict[str, ChallengeTemplate] = Field(default_factory=dict)
    routes: dict[str, RouteTemplate] = Field(default_factory=dict)
    achievements: dict[str, AchievementDefinition] = Field(default_factory=dict)
    threshold_families: list[ThresholdFamily] = Field(default_factory=list)
    chains: list[ChainRule] = Field(default_factory=list)
    first_challenge_categories: list[str] = Field(default_factory=list)
    collection_sizes: dict[CollectionType, int] = Field(default_factory=dict)
    event_points: dict[ActivityKind, int] = Field(default_factory=dict)
    high_quality_photo_points: int = 25
    activity_points: dict[str, int] = Field(default_factory=dict)
    default_activity_points: int = 10
    waypoint_kind_multipliers: dict[str, float] = Field(default_factory=dict)
    extra_difficulty_multiplier: float = 1.3
    rarity_points: dict[Rarity, int] = Field(default_factory=dict)
    magic_value_points: int = 10

    def achievement(self, achievement_id: str) -> AchievementDefinition:
        """Return the definition for an id, synthesizing one if unknown."""
        known = self.achievements.get(achievement_id)
        if known is not None:
            return known
        return AchievementDefinition(
            id=achievement_id, name=achievement_id.replace("_", " ").title()
        )

    def activity_base_points(self, activity: str) -> int:
        return self.activity_points.get(activity, self.default_activity_points)

    @classmethod
    def default(cls) -> "Catalog":
        """Return the built-in catalog."""
        return cls.model_validate(_DEFAULT_CATALOG)

    @classmethod
    def from_yaml(cls, file_path: str, *, merge_defaults: bool = True) -> "Catalog":
        """
        Load a catalog from a YAML file.

        Args:
            file_path: Path to YAML file
            merge_defaults: Fill sections missing from the file with the
                built-in content

        Returns:
            Catalog instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            yaml.YAMLError: If YAML is invalid
            pydantic.ValidationError: If the content doesn't match the schema
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Catalog file not found: {file_path}")

        with path.open("r") as f:
            data = yaml.safe_load(f) or {}

        if merge_defaults:
            data = {**_DEFAULT_CATALOG, **data}

        catalog = cls.model_validate(data)
        logger.info(
            "Catalog loaded",
            extra={
                "path": file_path,
                "challenges": len(catalog.challenges),
                "routes": len(catalog.routes),
            },
        )
        return catalog

    def to_yaml(self, file_path: str) -> None:
        """Export the catalog to a YAML file."""
        data = self.model_dump(mode="json", exclude_none=True)
        with Path(file_path).open("w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def _challenge(
    id: str,
    name: str,
    category: str,
    *,
    difficulty: int,
    config: dict[str, Any],
    duration: tuple[str, int],
    reward: dict[str, Any],
    reward_category: str,
    level: int = 1,
    experience: int = 0,
    description: str = "",
) -> dict[str, Any]:
    return {
        "id": id,
        "name": name,
        "description": description,
        "category": category,
        "difficulty": difficulty,
        "config": config,
        "duration": {"unit": duration[0], "value": duration[1]},
        "reward": reward,
        "reward_category": reward_category,
        "requirements": {"level": level, "experience": experience},
    }


_CHALLENGES: list[dict[str, Any]] = [
    _challenge(
        "first_encounter",
        "First Encounter",
        "sighting",
        description="Record your first sighting of a mystic creature",
        difficulty=1,
        config={
            "objective": 1,
            "eligible_kinds": ["sighting"],
            "eligible_subjects": ["ghost", "dragon", "vampire", "werewolf"],
        },
        duration=("days", 7),
        reward={"points": 100, "title": "Novice Explorer", "rare_card": True},
        reward_category="sighting",
    ),
    _challenge(
        "photo_series",
        "Photo Series",
        "photo",
        description="Take 15 high quality photos of different creatures",
        difficulty=2,
        config={
            "objective": 15,
            "eligible_kinds": ["photo"],
            "min_quality": "high",
            "distinct_subjects": True,
        },
        duration=("days", 14),
        reward={"points": 300, "title": "Mystic Photographer"},
        reward_category="photo",
        level=5,
        experience=500,
    ),
    _challenge(
        "zone_explorer",
        "Territory Explorer",
        "exploration",
        description="Visit 8 different zones",
        difficulty=2,
        config={
            "objective": 8,
            "eligible_kinds": ["exploration"],
            "distinct_zones": True,
        },
        duration=("days", 21),
        reward={"points": 500, "title": "Mystic Explorer"},
        reward_category="exploration",
        level=8,
        experience=800,
    ),
    _challenge(
        "expert_identifier",
        "Expert Identifier",
        "identification",
        description="Make 25 correct identifications",
        difficulty=3,
        config={"objective": 25, "eligible_kinds": ["identification"]},
        duration=("days", 10),
        reward={"points": 750, "title": "Expert Identifier"},
        reward_category="identification",
        level=15,
        experience=1500,
    ),
    _challenge(
        "night_hunter",
        "Night Hunter",
        "photo",
        description="Take 5 excellent photos during the night hours",
        difficulty=3,
        config={
            "objective": 5,
            "eligible_kinds": ["photo"],
            "eligible_subjects": ["ghost", "vampire", "night_witch"],
            "time_window": {"start": 20, "end": 6},
            "min_quality": "excellent",
        },
        duration=("days", 7),
        reward={"points": 600, "title": "Night Hunter", "rare_card": True},
        reward_category="photo",
        level=10,
        experience=1000,
    ),
    _challenge(
        "weather_moments",
        "Mystic Moments",
        "photo",
        description="Capture 8 photos during special weather",
        difficulty=2,
        config={
            "objective": 8,
            "eligible_kinds": ["photo"],
            "eligible_weather": ["fog", "storm", "heavy_rain"],
            "min_quality": "high",
        },
        duration=("days", 14),
        reward={"points": 400, "title": "Moment Hunter"},
        reward_category="photo",
        level=6,
        experience=600,
    ),
    _challenge(
        "exploration_sprint",
        "Exploration Sprint",
        "speed",
        description="Complete 12 activities in 24 hours",
        difficulty=3,
        config={"objective": 12},
        duration=("hours", 24),
        reward={"points": 500, "title": "Mystic Sprinter"},
        reward_category="exploration",
        level=12,
        experience=1200,
    ),
    _challenge(
        "community_hunt",
        "Community Hunt",
        "collaboration",
        description="Collaborate with other explorers 50 times",
        difficulty=2,
        config={"objective": 50, "eligible_kinds": ["collaboration"]},
        duration=("hours", 72),
        reward={"points": 800, "title": "Community Collaborator"},
        reward_category="collaboration",
        level=8,
        experience=800,
    ),
]


_ROUTES: list[dict[str, Any]] = [
    {
        "id": "mystic_initiation",
        "name": "Mystic Initiation",
        "description": "Your first adventure in the world of mystic creatures",
        "category": "novice",
        "difficulty": 1,
        "waypoints": [
            {
                "id": "entry_portal",
                "name": "Entry Portal",
                "order": 1,
                "kind": "entry",
                "activities": ["orientation", "reconnaissance"],
            },
            {
                "id": "enchanted_forest",
                "name": "Enchanted Forest",
                "order": 2,
                "kind": "exploration",
                "activities": ["sighting", "photo"],
            },
            {
                "id": "lake_of_reflections",
                "name": "Lake of Reflections",
                "order": 3,
                "kind": "observation",
                "activities": ["reflection", "vision"],
            },
            {
                "id": "whispering_caves",
                "name": "Whispering Caves",
                "order": 4,
                "kind": "discovery",
                "activities": ["deep_exploration", "decipher_messages"],
                "extra_difficulty": True,
            },
            {
                "id": "summit_temple",
                "name": "Summit Temple",
                "order": 5,
                "kind": "culmination",
                "activities": ["ceremony", "knowledge_transmission"],
            },
        ],
        "narrative": {
            "intro": "Rumours speak of a path where initiates learn the secrets of mystic creatures...",
            "development": "Each stop reveals hidden aspects of the mystic world around you...",
            "climax": "At the final temple you will understand the true purpose of your journey...",
            "conclusion": "With this wisdom you are ready to face the deepest mysteries...",
        },
        "reward": {"points": 500, "title": "Initiated Explorer", "rare_card": True},
        "duration": {"unit": "days", "value": 2},
    },
    {
        "id": "local_legends",
        "name": "Local Legends",
        "description": "Discover the most famous creatures of your region",
        "category": "regional",
        "difficulty": 2,
        "waypoints": [
            {
                "id": "historic_center",
                "name": "Historic Center",
                "order": 1,
                "kind": "history",
                "activities": ["historical_research", "local_interviews"],
            },
            {
                "id": "bridge_of_secrets",
                "name": "Bridge of Secrets",
                "order": 2,
                "kind": "mystery",
                "activities": ["night_observation", "evidence_capture"],
            },
            {
                "id": "lost_souls_cemetery",
                "name": "Cemetery of Lost Souls",
                "order": 3,
                "kind": "spiritual",
                "activities": ["pay_respects", "spirit_communication"],
            },
            {
                "id": "whisper_park",
                "name": "Whisper Park",
                "order": 4,
                "kind": "communication",
                "activities": ["meditation", "patient_waiting"],
            },
            {
                "id": "city_lookout",
                "name": "Lookout of Secrets",
                "order": 5,
                "kind": "panoramic",
                "activities": ["wide_observation", "view_recording"],
            },
        ],
        "narrative": {
            "intro": "The legends of your city whisper about creatures that guarded its streets for centuries...",
            "development": "Each place keeps secrets only a true investigator can uncover...",
            "climax": "From the lookout you will see patterns that stayed hidden...",
            "conclusion": "Your city will never be the same now that you know its true guardians...",
        },
        "reward": {
            "points": 800,
            "title": "Guardian of Local Knowledge",
            "rare_card": True,
        },
        "requirements": {
            "level": 3,
            "experience": 300,
            "achievements": ["route_mystic_initiation"],
        },
        "duration": {"unit": "days", "value": 3},
    },
]


_ACHIEVEMENTS: list[dict[str, Any]] = [
    {"id": "first_photo", "name": "First Photo", "category": "photo",
     "description": "Take your first photo"},
    {"id": "photographer_novice", "name": "Novice Photographer", "category": "photo",
     "description": "Take 5 photos"},
    {"id": "initial_collector", "name": "Initial Collector", "category": "collection",
     "description": "Collect 10 cards"},
    {"id": "novice_100", "name": "Novice", "category": "points",
     "description": "Earn 100 points"},
    {"id": "collector_500", "name": "Collector", "category": "points",
     "description": "Earn 500 points"},
    {"id": "explorer_1000", "name": "Explorer", "category": "points",
     "description": "Earn 1000 points"},
    {"id": "veteran_2500", "name": "Veteran", "category": "points",
     "description": "Earn 2500 points"},
    {"id": "master_5000", "name": "Master", "category": "points",
     "description": "Earn 5000 points"},
    {"id": "legend_10000", "name": "Legend", "category": "points",
     "description": "Earn 10000 points", "title": "Living Legend"},
    {"id": "dedicated_explorer", "name": "Dedicated Explorer", "category": "streak",
     "description": "Keep a 7 day streak after reaching 100 points"},
    {"id": "apprentice_master", "name": "Apprentice Master", "category": "level",
     "description": "Reach level 10 with 1000 experience", "title": "Apprentice Master"},
    {"id": "route_mystic_initiation", "name": "Initiated", "category": "routes",
     "description": "Complete the Mystic Initiation route"},
    {"id": "route_local_legends", "name": "Keeper of Legends", "category": "routes",
     "description": "Complete the Local Legends route"},
]


def _family(metric: str, prefix: str, thresholds: list[int]) -> dict[str, Any]:
    return {
        "metric": metric,
        "thresholds": [(value, f"{prefix}_{value}") for value in thresholds],
    }


_DEFAULT_CATALOG: dict[str, Any] = {
    "challenges": {c["id"]: c for c in _CHALLENGES},
    "routes": {r["id"]: r for r in _ROUTES},
    "achievements": {a["id"]: a for a in _ACHIEVEMENTS},
    "threshold_families": [
        {
            "metric": "points",
            "thresholds": [
                (100, "novice_100"),
                (500, "collector_500"),
                (1000, "explorer_1000"),
                (2500, "veteran_2500"),
                (5000, "master_5000"),
                (10000, "legend_10000"),
            ],
        },
        _family("level", "level", [5, 10, 20, 50, 100]),
        _family("streak", "streak", [3, 7, 14, 30]),
        _family("challenges", "challenges", [1, 5, 10, 25, 50]),
        _family("collection", "collection", [1, 5, 10, 25]),
        _family("routes", "routes", [1, 3, 5]),
    ],
    "chains": [
        {"parent": "first_photo", "child": "photographer_novice",
         "requirements": {"photos": 5}},
        {"parent": "first_photo", "child": "initial_collector",
         "requirements": {"collection": 10}},
        {"parent": "novice_100", "child": "dedicated_explorer",
         "requirements": {"streak": 7}},
        {"parent": "level_10", "child": "apprentice_master",
         "requirements": {"level": 10, "experience": 1000}},
    ],
    "first_challenge_categories": ["photo", "identification", "exploration"],
    "collection_sizes": {
        "creatures": 20,
        "zones": 15,
        "achievements": 25,
        "specials": 10,
    },
    "event_points": {
        "sighting": 25,
        "photo": 15,
        "identification": 20,
        "exploration": 30,
        "collaboration": 10,
        "daily_check_in": 5,
    },
    "high_quality_photo_points": 25,
    "activity_points": {
        "orientation": 10,
        "reconnaissance": 15,
        "sighting": 25,
        "photo": 20,
        "deep_exploration": 35,
        "decipher_messages": 30,
        "reflection": 15,
        "vision": 20,
        "meditation": 15,
        "observation": 25,
        "patient_waiting": 40,
        "spirit_communication": 30,
        "view_recording": 20,
        "ceremony": 50,
        "knowledge_transmission": 45,
    },
    "default_activity_points": 10,
    "waypoint_kind_multipliers": {"discovery": 1.5, "culmination": 2.0},
    "extra_difficulty_multiplier": 1.3,
    "rarity_points": {
        "common": 25,
        "uncommon": 50,
        "rare": 100,
        "epic": 200,
        "legendary": 500,
    },
    "magic_value_points": 10,
}
