"""Route/quest progression tracker."""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field

from .achievements import AchievementRegistry
from .catalog import Catalog, RouteTemplate
from .clock import Clock
from .collection import Collection
from .config import RulesSettings
from .errors import InvariantGuard
from .ledger import Ledger
from .observers import ObserverRegistry
from .state import (
    Discovery,
    NarrativeEvent,
    RouteInstance,
    RouteState,
    UserState,
    Waypoint,
)
from .types import CollectionType, PointCategory, PointContext, Quality, Rarity

logger = logging.getLogger(__name__)

NARRATIVE_MILESTONES = (25, 50, 75)
RARE_DISCOVERIES = frozenset({Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY})


class DiscoveryInput(BaseModel):
    """Side discovery reported while a route is active."""

    id: str
    rarity: Rarity = Rarity.COMMON
    magic_value: int = Field(default=0, ge=0)


class RouteTracker:
    """
    Advances a user through the ordered waypoints of route instances.

    Each instance owns a deep copy of its template's waypoints. Only the
    current waypoint accepts activities, and the pointer moves to the next
    order index once every required activity of the current one is recorded.
    """

    def __init__(
        self,
        state: UserState,
        *,
        catalog: Catalog,
        ledger: Ledger,
        achievements: AchievementRegistry,
        collection: Collection,
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
        self.rules = rules
        self.observers = observers
        self.guard = guard
        self.clock = clock

    def start(self, template_id: str) -> Optional[RouteInstance]:
        """
        Start a route from its template.

        Returns:
            The new instance, or None if the template is unknown, its
            prerequisites are unmet, or it is already active or completed
        """
        self.expire_overdue()

        template = self.catalog.routes.get(template_id)
        if template is None:
            logger.debug("Unknown route template", extra={"template_id": template_id})
            return None
        if not template.requirements.met_by(self.state):
            logger.debug("Route prerequisites unmet", extra={"template_id": template_id})
            return None
        if template_id in self.state.completed_routes:
            return None
        if self.active_for(template_id) is not None:
            return None

        now = self.clock.now()
        waypoints = [
            Waypoint.model_validate(w.model_dump())
            for w in sorted(template.waypoints, key=lambda w: w.order)
        ]
        waypoints[0].visited = True
        waypoints[0].visited_at = now

        instance = RouteInstance(
            instance_id=f"{template_id}-{uuid.uuid4().hex[:12]}",
            template_id=template_id,
            name=template.name,
            waypoints=waypoints,
            narrative=dict(template.narrative),
            reward=template.reward.model_copy(),
            started_at=now,
            deadline=now + template.duration.as_timedelta() if template.duration else None,
        )
        self.state.routes[instance.instance_id] = instance
        logger.info(
            "Route started",
            extra={"instance_id": instance.instance_id, "waypoints": len(waypoints)},
        )
        self._narrate(instance, "start", waypoints[0], template.narrative.get("intro", ""))
        return instance

    def record_waypoint_activity(
        self,
        instance_id: str,
        activity: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Record an activity at the current waypoint.

        Args:
            instance_id: Route instance id
            activity: Activity kind, must be required by the current waypoint
            payload: Optional context (weather, quality, occurred_at, ...)

        Returns:
            True if the activity was recorded

        Raises:
            ValidationError: If the payload is not a valid point context;
                the route is left unchanged
        """
        instance = self._active(instance_id)
        if instance is None:
            return False

        context = PointContext.model_validate(payload or {})
        waypoint = instance.current_waypoint
        if waypoint is None:
            return False
        if activity not in waypoint.activities or activity in waypoint.recorded:
            logger.debug(
                "Activity rejected",
                extra={"instance_id": instance_id, "waypoint_id": waypoint.id, "activity": activity},
            )
            return False

        waypoint.recorded.append(activity)
        amount = math.floor(
            self.catalog.activity_base_points(activity) * self._waypoint_multiplier(waypoint)
        )
        awarded = self.ledger.award_points(PointCategory.EXPLORATION, amount, context)
        waypoint.points_earned += awarded
        instance.stats.activities += 1
        instance.stats.points += awarded

        if not waypoint.pending:
            self._complete_waypoint(instance, waypoint)
        return True

    def record_discovery(
        self, instance_id: str, discovery: DiscoveryInput | dict[str, Any]
    ) -> Optional[Discovery]:
        """
        Attach a rarity-scored side discovery to an active route.

        Discoveries grant points and a card; they never affect waypoint
        completion. Returns None for inactive routes and repeated ids.
        """
        if isinstance(discovery, dict):
            discovery = DiscoveryInput.model_validate(discovery)

        instance = self._active(instance_id)
        if instance is None:
            return None
        if any(d.id == discovery.id for d in instance.discoveries):
            return None

        points = (
            self.catalog.rarity_points.get(discovery.rarity, 0)
            + discovery.magic_value * self.catalog.magic_value_points
        )
        awarded = self.ledger.award_points(PointCategory.EXPLORATION, points)
        rare = discovery.rarity in RARE_DISCOVERIES
        self.collection.add(
            CollectionType.SPECIALS,
            f"discovery_{discovery.id}",
            quality=Quality.EXCELLENT if rare else Quality.GOOD,
            rare=rare,
            details={"rarity": discovery.rarity.value, "route": instance.template_id},
        )

        current = instance.current_waypoint
        record = Discovery(
            id=discovery.id,
            rarity=discovery.rarity,
            magic_value=discovery.magic_value,
            waypoint_id=current.id if current is not None else None,
            points=awarded,
            found_at=self.clock.now(),
        )
        instance.discoveries.append(record)
        instance.stats.discoveries += 1
        instance.stats.points += awarded
        self.state.statistics.discoveries += 1
        logger.info(
            "Discovery recorded",
            extra={"instance_id": instance_id, "rarity": discovery.rarity.value},
        )
        return record

    def abandon(self, instance_id: str) -> bool:
        instance = self.state.routes.get(instance_id)
        if instance is None or instance.state is not RouteState.ACTIVE:
            return False
        self._end(instance, RouteState.ABANDONED)
        return True

    def expire_overdue(self) -> list[RouteInstance]:
        """End every active route past its deadline."""
        now = self.clock.now()
        expired = [
            r
            for r in self.state.routes.values()
            if r.state is RouteState.ACTIVE and r.deadline is not None and now > r.deadline
        ]
        for instance in expired:
            self._end(instance, RouteState.EXPIRED)
        return expired

    def active_for(self, template_id: str) -> Optional[RouteInstance]:
        for instance in self.state.routes.values():
            if instance.template_id == template_id and instance.state is RouteState.ACTIVE:
                return instance
        return None

    def active(self) -> list[RouteInstance]:
        return [r for r in self.state.routes.values() if r.state is RouteState.ACTIVE]

    def available_templates(self) -> list[RouteTemplate]:
        templates = [
            t
            for t in self.catalog.routes.values()
            if t.requirements.met_by(self.state)
            and t.id not in self.state.completed_routes
            and self.active_for(t.id) is None
        ]
        return sorted(templates, key=lambda t: (t.difficulty, t.id))

    def narrative_progress(self, instance_id: str) -> float:
        instance = self.state.routes.get(instance_id)
        return instance.narrative_progress if instance is not None else 0.0

    def _active(self, instance_id: str) -> Optional[RouteInstance]:
        instance = self.state.routes.get(instance_id)
        if instance is None or instance.state is not RouteState.ACTIVE:
            return None
        if instance.deadline is not None and self.clock.now() > instance.deadline:
            self._end(instance, RouteState.EXPIRED)
            return None
        return instance

    def _waypoint_multiplier(self, waypoint: Waypoint) -> float:
        value = self.catalog.waypoint_kind_multipliers.get(waypoint.kind, 1.0)
        if waypoint.extra_difficulty:
            value *= self.catalog.extra_difficulty_multiplier
        return value

    def _complete_waypoint(self, instance: RouteInstance, waypoint: Waypoint) -> None:
        index = instance.current_index
        if not self.guard.check(
            all(w.completed for w in instance.waypoints[:index]),
            "waypoint completed out of order",
            instance_id=instance.instance_id,
            waypoint_id=waypoint.id,
        ):
            return

        now = self.clock.now()
        waypoint.completed = True
        waypoint.completed_at = now
        self.state.statistics.waypoints_completed += 1
        bonus = self.ledger.award_points(
            PointCategory.EXPLORATION, self.rules.waypoint_completion_bonus
        )
        instance.stats.points += bonus
        self._narrate(instance, "waypoint_completed", waypoint)

        if index + 1 >= len(instance.waypoints):
            self._complete_route(instance)
            return

        instance.current_index = index + 1
        upcoming = instance.waypoints[instance.current_index]
        upcoming.visited = True
        upcoming.visited_at = now
        self._narrate(
            instance, "waypoint_reached", upcoming, instance.narrative.get("development", "")
        )

        progress = instance.narrative_progress * 100
        for milestone in NARRATIVE_MILESTONES:
            if progress >= milestone and milestone not in instance.milestones:
                instance.milestones.append(milestone)
                text = instance.narrative.get("climax", "") if milestone == 75 else ""
                self._narrate(instance, f"milestone_{milestone}", upcoming, text)

    def _complete_route(self, instance: RouteInstance) -> None:
        self._end(instance, RouteState.COMPLETED)
        self.state.completed_routes.append(instance.template_id)
        self.state.statistics.routes_completed += 1

        reward = instance.reward
        instance.stats.points += self.ledger.award_points(
            PointCategory.EXPLORATION, reward.points
        )
        self.state.grant_title(reward.title)
        if reward.rare_card:
            self.collection.add(
                CollectionType.SPECIALS,
                f"route_{instance.template_id}",
                quality=Quality.EXCELLENT,
                rare=True,
            )
        self._narrate(instance, "completed", None, instance.narrative.get("conclusion", ""))
        self.achievements.unlock(f"route_{instance.template_id}")
        self.achievements.evaluate()

    def _end(self, instance: RouteInstance, state: RouteState) -> None:
        instance.state = state
        instance.ended_at = self.clock.now()
        logger.info(
            "Route ended",
            extra={"instance_id": instance.instance_id, "state": state.value},
        )

    def _narrate(
        self,
        instance: RouteInstance,
        kind: str,
        waypoint: Optional[Waypoint],
        text: str = "",
    ) -> None:
        event = NarrativeEvent(
            kind=kind,
            at=self.clock.now(),
            waypoint_id=waypoint.id if waypoint is not None else None,
            text=text,
            progress=instance.narrative_progress,
        )
        instance.narrative_log.append(event)
        self.observers.route_event(instance, event)
