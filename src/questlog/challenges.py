"""Challenge lifecycle manager."""

from __future__ import annotations

import logging
import math
import uuid
from collections import Counter
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .achievements import AchievementRegistry
from .catalog import (
    Catalog,
    ChallengeConfig,
    ChallengeTemplate,
    Duration,
    TimeWindow,
)
from .clock import Clock
from .collection import Collection
from .config import FeaturesSettings, RulesSettings
from .errors import InvariantGuard
from .ledger import Ledger
from .observers import ObserverRegistry
from .state import (
    ChallengeInstance,
    ChallengeProgressEntry,
    ChallengeState,
    FailureReason,
    UserState,
)
from .types import ActivityEvent, ActivityKind, CollectionType, Quality

logger = logging.getLogger(__name__)


class TimeWindowOverride(BaseModel):
    """Partial time window; missing bounds fall back to the template's."""

    model_config = ConfigDict(extra="forbid")

    start: Optional[int] = Field(default=None, ge=0, le=23)
    end: Optional[int] = Field(default=None, ge=0, le=24)


class ChallengeOverrides(BaseModel):
    """
    Caller overrides applied on activation.

    Unknown keys are rejected. List fields replace the template's list
    wholesale; the time window merges bound by bound.
    """

    model_config = ConfigDict(extra="forbid")

    objective: Optional[int] = Field(default=None, ge=1)
    eligible_kinds: Optional[list[ActivityKind]] = None
    eligible_subjects: Optional[list[str]] = None
    eligible_zones: Optional[list[str]] = None
    eligible_weather: Optional[list[str]] = None
    time_window: Optional[TimeWindowOverride] = None
    min_quality: Optional[Quality] = None
    distinct_subjects: Optional[bool] = None
    distinct_zones: Optional[bool] = None
    duration: Optional[Duration] = None


def _pick(override: Any, base: Any) -> Any:
    return base if override is None else override


def _merge_window(
    base: Optional[TimeWindow], override: Optional[TimeWindowOverride]
) -> Optional[TimeWindow]:
    if override is None:
        return base.model_copy() if base is not None else None
    return TimeWindow(
        start=_pick(override.start, base.start if base is not None else 0),
        end=_pick(override.end, base.end if base is not None else 24),
    )


def merge_config(base: ChallengeConfig, overrides: ChallengeOverrides) -> ChallengeConfig:
    """Resolve a template configuration against caller overrides."""
    return ChallengeConfig(
        objective=_pick(overrides.objective, base.objective),
        eligible_kinds=list(_pick(overrides.eligible_kinds, base.eligible_kinds)),
        eligible_subjects=list(
            _pick(overrides.eligible_subjects, base.eligible_subjects)
        ),
        eligible_zones=list(_pick(overrides.eligible_zones, base.eligible_zones)),
        eligible_weather=list(
            _pick(overrides.eligible_weather, base.eligible_weather)
        ),
        time_window=_merge_window(base.time_window, overrides.time_window),
        min_quality=_pick(overrides.min_quality, base.min_quality),
        distinct_subjects=_pick(overrides.distinct_subjects, base.distinct_subjects),
        distinct_zones=_pick(overrides.distinct_zones, base.distinct_zones),
    )


class ChallengeSummary(BaseModel):
    active: int
    completed: int
    failed: int
    success_rate: float
    favorite_category: Optional[str] = None


class ChallengeManager:
    """
    Activates challenges from templates and resolves their lifecycle.

    States move ``active -> completed`` or ``active -> failed`` (expired or
    abandoned); terminal instances never accept progress. Deadlines are
    checked lazily on every call rather than by a timer.
    """

    def __init__(
        self,
        state: UserState,
        *,
        catalog: Catalog,
        ledger: Ledger,
        achievements: AchievementRegistry,
        collection: Collection,
        features: FeaturesSettings,
        rules: RulesSettings,
        observers: ObserverRegistry,
        guard: InvariantGuard,
        clock: Clock,
    ) -> None:
        self.state = state
        self.catalog = catalog
        self.ledger = ledger
        self.achievements = achievements
        self.collection = collection
        self.features = features
        self.rules = rules
        self.observers = observers
        self.guard = guard
        self.clock = clock

    def activate(
        self,
        template_id: str,
        overrides: ChallengeOverrides | dict[str, Any] | None = None,
    ) -> Optional[ChallengeInstance]:
        """
        Create an active instance of a challenge template.

        Args:
            template_id: Catalog template id
            overrides: Optional overrides, validated before anything changes

        Returns:
            The new instance, or None if the template is unknown, its
            prerequisites are unmet or an instance is already active

        Raises:
            pydantic.ValidationError: If overrides contain unknown keys or
                invalid values
        """
        if isinstance(overrides, dict):
            overrides = ChallengeOverrides.model_validate(overrides)

        self.expire_overdue()

        template = self.catalog.challenges.get(template_id)
        if template is None:
            logger.debug("Unknown challenge template", extra={"template_id": template_id})
            return None
        if not template.requirements.met_by(self.state):
            logger.debug("Challenge prerequisites unmet", extra={"template_id": template_id})
            return None
        if self.active_for(template_id) is not None:
            logger.debug("Challenge already active", extra={"template_id": template_id})
            return None

        if overrides is not None:
            config = merge_config(template.config, overrides)
            duration = overrides.duration or template.duration
        else:
            config = template.config.model_copy(deep=True)
            duration = template.duration

        if self.features.adaptive_difficulty:
            config.objective = self.adapt_objective(template.category, config.objective)

        now = self.clock.now()
        instance = ChallengeInstance(
            instance_id=f"{template_id}-{uuid.uuid4().hex[:12]}",
            template_id=template_id,
            name=template.name,
            category=template.category,
            config=config,
            reward=template.reward.model_copy(),
            reward_category=template.reward_category,
            started_at=now,
            deadline=now + duration.as_timedelta(),
        )
        self.state.challenges[instance.instance_id] = instance
        logger.info(
            "Challenge activated",
            extra={
                "instance_id": instance.instance_id,
                "objective": config.objective,
                "deadline": instance.deadline.isoformat(),
            },
        )
        return instance

    def adapt_objective(self, category: str, objective: int) -> int:
        """Scale an objective by the trailing outcome window of a category."""
        outcomes = self.state.challenge_outcomes.get(category, [])
        window = self.rules.adaptive_window
        if len(outcomes) < window:
            return objective
        if all(outcomes[-window:]):
            return math.ceil(objective * self.rules.adaptive_scale_up)
        return max(1, math.ceil(objective * self.rules.adaptive_scale_down))

    def record_progress(self, instance_id: str, event: ActivityEvent) -> bool:
        """
        Apply a matching event to an active instance.

        Returns:
            True if progress advanced; False for unknown or terminal
            instances, expired deadlines and events failing validation
        """
        instance = self.state.challenges.get(instance_id)
        if instance is None or instance.is_terminal:
            return False

        if self.clock.now() > instance.deadline:
            self._fail(instance, FailureReason.EXPIRED)
            return False

        if not self.accepts(instance, event):
            return False

        previous = instance.progress
        instance.progress += 1
        self.guard.check(
            instance.progress == previous + 1,
            "challenge progress did not advance by one",
            instance_id=instance_id,
        )
        instance.history.append(
            ChallengeProgressEntry(
                at=event.occurred_at or self.clock.now(),
                kind=event.kind.value,
                subject=event.subject,
                zone=event.zone,
            )
        )
        stats = instance.stats
        stats.kinds[event.kind.value] = stats.kinds.get(event.kind.value, 0) + 1
        if event.subject and event.subject not in stats.subjects:
            stats.subjects.append(event.subject)
        if event.zone and event.zone not in stats.zones:
            stats.zones.append(event.zone)

        if instance.progress >= instance.config.objective:
            self._complete(instance)
        return True

    def accepts(self, instance: ChallengeInstance, event: ActivityEvent) -> bool:
        """Validation predicate of an instance's resolved configuration."""
        config = instance.config

        if config.eligible_kinds and event.kind not in config.eligible_kinds:
            return False
        if event.kind is ActivityKind.IDENTIFICATION and event.correct is False:
            return False
        if config.eligible_subjects and event.subject not in config.eligible_subjects:
            return False
        if config.eligible_zones and event.zone not in config.eligible_zones:
            return False
        if config.eligible_weather and event.weather not in config.eligible_weather:
            return False
        if config.time_window is not None:
            moment = event.occurred_at or self.clock.now()
            if not config.time_window.contains(moment.hour):
                return False
        if config.min_quality is not None:
            if event.quality is None or not event.quality.at_least(config.min_quality):
                return False
        if config.distinct_subjects:
            if event.subject is None or event.subject in instance.stats.subjects:
                return False
        if config.distinct_zones:
            if event.zone is None or event.zone in instance.stats.zones:
                return False
        return True

    def interested(self, event: ActivityEvent) -> list[ChallengeInstance]:
        """Active instances whose eligible kinds include the event's kind."""
        return [
            i
            for i in self.state.challenges.values()
            if i.state is ChallengeState.ACTIVE
            and (not i.config.eligible_kinds or event.kind in i.config.eligible_kinds)
        ]

    def expire_overdue(self) -> list[ChallengeInstance]:
        """Fail every active instance past its deadline."""
        now = self.clock.now()
        expired = [
            i
            for i in self.state.challenges.values()
            if i.state is ChallengeState.ACTIVE and now > i.deadline
        ]
        for instance in expired:
            self._fail(instance, FailureReason.EXPIRED)
        return expired

    def abandon(self, instance_id: str) -> bool:
        instance = self.state.challenges.get(instance_id)
        if instance is None or instance.is_terminal:
            return False
        self._fail(instance, FailureReason.ABANDONED)
        return True

    def active_for(self, template_id: str) -> Optional[ChallengeInstance]:
        for instance in self.state.challenges.values():
            if instance.template_id == template_id and instance.state is ChallengeState.ACTIVE:
                return instance
        return None

    def active(self) -> list[ChallengeInstance]:
        return [
            i for i in self.state.challenges.values() if i.state is ChallengeState.ACTIVE
        ]

    def available_templates(self) -> list[ChallengeTemplate]:
        """Templates the user may activate now, easiest first."""
        templates = [
            t
            for t in self.catalog.challenges.values()
            if t.requirements.met_by(self.state) and self.active_for(t.id) is None
        ]
        return sorted(templates, key=lambda t: (t.difficulty, t.requirements.level, t.id))

    def summary(self) -> ChallengeSummary:
        states = Counter(i.state for i in self.state.challenges.values())
        completed = states[ChallengeState.COMPLETED]
        failed = states[ChallengeState.FAILED]
        resolved = completed + failed
        by_category = self.state.statistics.challenges_completed_by_category
        favorite = max(by_category, key=lambda c: by_category[c]) if by_category else None
        return ChallengeSummary(
            active=states[ChallengeState.ACTIVE],
            completed=completed,
            failed=failed,
            success_rate=round(completed / resolved * 100, 2) if resolved else 0.0,
            favorite_category=favorite,
        )

    def _complete(self, instance: ChallengeInstance) -> None:
        instance.state = ChallengeState.COMPLETED
        instance.completed_at = self.clock.now()

        stats = self.state.statistics
        stats.challenges_completed += 1
        stats.challenges_completed_by_category[instance.category] = (
            stats.challenges_completed_by_category.get(instance.category, 0) + 1
        )
        self._record_outcome(instance.category, True)

        reward = instance.reward
        self.ledger.award_points(instance.reward_category, reward.points)
        self.state.grant_title(reward.title)
        if reward.rare_card:
            self.collection.add(
                CollectionType.SPECIALS,
                f"challenge_{instance.template_id}",
                quality=Quality.EXCELLENT,
                rare=True,
            )

        logger.info(
            "Challenge completed",
            extra={"instance_id": instance.instance_id, "category": instance.category},
        )
        self.observers.challenge_resolved(instance)
        self.achievements.evaluate()

    def _fail(self, instance: ChallengeInstance, reason: FailureReason) -> None:
        instance.state = ChallengeState.FAILED
        instance.failure_reason = reason
        instance.completed_at = self.clock.now()
        self.state.statistics.challenges_failed += 1
        self._record_outcome(instance.category, False)
        logger.info(
            "Challenge failed",
            extra={"instance_id": instance.instance_id, "reason": reason.value},
        )
        self.observers.challenge_resolved(instance)

    def _record_outcome(self, category: str, success: bool) -> None:
        outcomes = self.state.challenge_outcomes.setdefault(category, [])
        outcomes.append(success)
        del outcomes[: -self.rules.adaptive_history]
