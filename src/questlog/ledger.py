"""Points & leveling ledger."""

from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel

from .config import RulesSettings
from .errors import InvariantGuard
from .observers import ObserverRegistry
from .state import UserState
from .types import PointCategory, PointContext, Quality, SPECIAL_WEATHER

logger = logging.getLogger(__name__)

BASE_THRESHOLD = 100
THRESHOLD_GROWTH = 1.5


def xp_threshold(level: int) -> int:
    """Experience needed to leave ``level``: floor(100 * 1.5^(level-1))."""
    return math.floor(BASE_THRESHOLD * THRESHOLD_GROWTH ** (level - 1))


class ExperienceProgress(BaseModel):
    """Progress within the current level."""

    level: int
    current: int
    required: int
    percent: float


class LevelReward(BaseModel):
    """Bonus granted on reaching a level."""

    level: int
    points: int
    experience: int
    reached: bool


class Ledger:
    """
    Converts raw activity into scored points and drives leveling.

    The ledger never decreases points: non-positive base amounts are ignored.
    Every credit keeps ``profile.total_points`` equal to the sum of ledger
    categories.
    """

    def __init__(
        self,
        state: UserState,
        *,
        rules: RulesSettings,
        observers: ObserverRegistry,
        guard: InvariantGuard,
    ) -> None:
        self.state = state
        self.rules = rules
        self.observers = observers
        self.guard = guard

    def multiplier(self, context: Optional[PointContext] = None) -> float:
        """
        Compute the contextual multiplier; terms compose multiplicatively.

        Args:
            context: Optional event context; absent fields skip their term

        Returns:
            Combined multiplier (1.0 with no bonuses)
        """
        profile = self.state.profile
        value = 1.0

        if profile.current_streak > 0:
            value *= 1 + min(profile.current_streak * 0.1, self.rules.max_streak_bonus)
        if profile.level > 1:
            value *= 1 + (profile.level - 1) * 0.05

        if context is None:
            return value

        if context.occurred_at is not None:
            hour = context.occurred_at.hour
            if 6 <= hour <= 9:
                value *= 1.2
            elif 18 <= hour <= 20:
                value *= 1.3
            if context.occurred_at.weekday() >= 5:
                value *= 1.15
        if context.weather is not None and context.weather in SPECIAL_WEATHER:
            value *= 1.25
        if context.first_time:
            value *= 1.5
        if context.quality is Quality.EXCELLENT:
            value *= 1.1
        return value

    def award_points(
        self,
        category: PointCategory,
        base_amount: int,
        context: Optional[PointContext] = None,
    ) -> int:
        """
        Score ``base_amount`` and credit it to ``category``.

        Args:
            category: Ledger category to credit
            base_amount: Raw points before multipliers
            context: Optional multiplier context

        Returns:
            Final amount credited (0 when the amount was rejected)
        """
        if base_amount <= 0:
            logger.debug(
                "Rejected non-positive award",
                extra={"category": category.value, "amount": base_amount},
            )
            return 0

        # Rounding first keeps float noise (100 * 1.15 == 114.999...) out of the floor.
        final = math.floor(round(base_amount * self.multiplier(context), 6))
        if final <= 0:
            return 0

        self._credit(category, final)
        self.add_experience(final)
        return final

    def grant_bonus(self, category: PointCategory, amount: int) -> int:
        """Credit fixed bonus points; no multiplier and no experience."""
        if amount <= 0:
            return 0
        self._credit(category, amount)
        return amount

    def add_experience(self, amount: int) -> int:
        """
        Add experience and process every level transition it causes.

        Returns:
            Number of levels gained
        """
        if amount <= 0:
            return 0

        profile = self.state.profile
        profile.experience += amount
        self.state.statistics.lifetime_experience += amount

        gained = 0
        while profile.experience >= xp_threshold(profile.level):
            profile.experience -= xp_threshold(profile.level)
            previous = profile.level
            profile.level += 1
            gained += 1
            self.state.statistics.level_ups += 1
            logger.info(
                "Level up", extra={"previous_level": previous, "level": profile.level}
            )
            self.grant_bonus(
                PointCategory.LEVEL_BONUS,
                profile.level * self.rules.level_bonus_per_level,
            )
            self.observers.level_up(previous, profile.level)

        self.guard.check(
            0 <= profile.experience < xp_threshold(profile.level),
            "experience not renormalized within level",
            level=profile.level,
            experience=profile.experience,
        )
        return gained

    def update_streak(self, activity_date: date) -> int:
        """
        Record activity on ``activity_date`` and update the daily streak.

        Returns:
            Current streak after the update
        """
        profile = self.state.profile
        last = profile.last_activity_date

        if last is not None and activity_date <= last:
            # Same day, or an out-of-order event from an earlier day.
            return profile.current_streak

        if last is not None and activity_date - last == timedelta(days=1):
            profile.current_streak += 1
        else:
            profile.current_streak = 1

        profile.last_activity_date = activity_date
        stats = self.state.statistics
        stats.active_days += 1
        stats.best_streak = max(stats.best_streak, profile.current_streak)
        return profile.current_streak

    def experience_progress(self) -> ExperienceProgress:
        profile = self.state.profile
        required = xp_threshold(profile.level)
        return ExperienceProgress(
            level=profile.level,
            current=profile.experience,
            required=required,
            percent=round(profile.experience / required * 100, 2),
        )

    def upcoming_level_rewards(self, count: int = 10) -> list[LevelReward]:
        """
        Level bonuses from the current level through ``count`` levels ahead.

        ``experience`` is the threshold needed to leave that level.
        """
        current = self.state.profile.level
        return [
            LevelReward(
                level=level,
                points=level * self.rules.level_bonus_per_level,
                experience=xp_threshold(level),
                reached=level <= current,
            )
            for level in range(current, current + count + 1)
        ]

    def _credit(self, category: PointCategory, amount: int) -> None:
        self.state.ledger.credit(category, amount)
        self.state.profile.total_points += amount
        self.guard.check(
            self.state.ledger.total() == self.state.profile.total_points,
            "ledger categories do not sum to total points",
            ledger=self.state.ledger.total(),
            total=self.state.profile.total_points,
        )
        self.observers.points_awarded(category, amount)
