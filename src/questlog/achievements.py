"""Achievement registry: one-time unlocks, threshold families and chains."""

from __future__ import annotations

import logging
from typing import Optional

from .catalog import Catalog, Reward
from .clock import Clock
from .collection import Collection
from .config import RulesSettings
from .errors import InvariantGuard
from .ledger import Ledger
from .observers import ObserverRegistry
from .state import Achievement, UserState
from .types import CollectionType, PointCategory

logger = logging.getLogger(__name__)


class AchievementRegistry:
    """
    Records achievement unlocks for one user.

    Threshold tables and the chain table come from the catalog; the
    evaluator is a single routine parameterized by (metric value, table).
    Unlocking is idempotent: an id already unlocked is never touched again.
    """

    def __init__(
        self,
        state: UserState,
        *,
        catalog: Catalog,
        ledger: Ledger,
        collection: Collection,
        rules: RulesSettings,
        observers: ObserverRegistry,
        guard: InvariantGuard,
        clock: Clock,
    ) -> None:
        self.state = state
        self.catalog = catalog
        self.ledger = ledger
        self.collection = collection
        self.rules = rules
        self.observers = observers
        self.guard = guard
        self.clock = clock

    def metrics(self) -> dict[str, int]:
        """Current values of every metric that tables and chains refer to."""
        profile = self.state.profile
        stats = self.state.statistics
        return {
            "points": profile.total_points,
            "level": profile.level,
            "streak": profile.current_streak,
            "best_streak": stats.best_streak,
            "experience": stats.lifetime_experience,
            "challenges": stats.challenges_completed,
            "collection": self.collection.total_distinct(),
            "routes": stats.routes_completed,
            "photos": stats.photos,
            "sightings": stats.sightings,
            "discoveries": stats.discoveries,
        }

    def unlock(
        self,
        achievement_id: str,
        description: str = "",
        reward: Optional[Reward] = None,
    ) -> bool:
        """
        Unlock an achievement once.

        Args:
            achievement_id: Stable achievement id
            description: Optional description overriding the catalog's
            reward: Optional extra reward (bonus points and title)

        Returns:
            False if the achievement was already unlocked
        """
        if self.state.is_unlocked(achievement_id):
            return False
        if not self.guard.check(
            achievement_id not in self.state.achievements,
            "achievement record exists without unlock time",
            achievement_id=achievement_id,
        ):
            return False

        definition = self.catalog.achievement(achievement_id)
        extra_points = reward.points if reward is not None else 0
        title = (reward.title if reward is not None else None) or definition.title
        achievement = Achievement(
            id=achievement_id,
            name=definition.name,
            description=description or definition.description,
            category=definition.category,
            unlocked_at=self.clock.now(),
            reward_points=self.rules.achievement_bonus + extra_points,
            title=title,
        )
        self.state.achievements[achievement_id] = achievement

        self.ledger.grant_bonus(PointCategory.ACHIEVEMENT_BONUS, achievement.reward_points)
        self.state.grant_title(title)
        self.collection.add(CollectionType.ACHIEVEMENTS, achievement_id)
        logger.info(
            "Achievement unlocked",
            extra={"achievement_id": achievement_id, "category": achievement.category},
        )
        self.observers.achievement_unlocked(achievement)

        self._check_chains(achievement_id)
        return True

    def evaluate_threshold_families(self) -> list[str]:
        """Unlock every satisfied threshold entry; returns the new unlocks."""
        unlocked: list[str] = []
        metrics = self.metrics()
        for family in self.catalog.threshold_families:
            value = metrics.get(family.metric, 0)
            for threshold, achievement_id in family.thresholds:
                if value < threshold:
                    # Tables are ordered; nothing further can be satisfied.
                    break
                if self.unlock(achievement_id):
                    unlocked.append(achievement_id)

        completed = self.state.statistics.challenges_completed_by_category
        for category in self.catalog.first_challenge_categories:
            if completed.get(category, 0) >= 1:
                achievement_id = f"first_{category}_challenge"
                if self.unlock(achievement_id):
                    unlocked.append(achievement_id)
        return unlocked

    def evaluate(self) -> list[str]:
        """
        Re-evaluate until no new achievement unlocks.

        Each unlock grants points and a card, which can satisfy further
        thresholds, so passes repeat until a fixed point. The number of
        passes is capped by ``rules.max_evaluation_passes``.
        """
        before = set(self.state.achievements)
        for _ in range(self.rules.max_evaluation_passes):
            count = len(self.state.achievements)
            self.evaluate_threshold_families()
            for parent in list(self.state.achievements):
                self._check_chains(parent)
            if len(self.state.achievements) == count:
                break
        else:
            self.guard.check(
                False,
                "achievement evaluation did not reach a fixed point",
                passes=self.rules.max_evaluation_passes,
            )
        # Insertion order of the achievements dict is unlock order.
        return [a for a in self.state.achievements if a not in before]

    def _check_chains(self, parent_id: str) -> list[str]:
        unlocked: list[str] = []
        metrics = self.metrics()
        for rule in self.catalog.chains:
            if rule.parent != parent_id or self.state.is_unlocked(rule.child):
                continue
            if all(metrics.get(k, 0) >= v for k, v in rule.requirements.items()):
                if self.unlock(rule.child):
                    unlocked.append(rule.child)
        return unlocked
