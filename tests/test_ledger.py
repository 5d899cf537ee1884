"""Tests for the points & leveling ledger."""

import logging
from datetime import date, datetime, timezone

import pytest

from questlog.config import RulesSettings
from questlog.errors import InvariantGuard, InvariantViolation
from questlog.ledger import Ledger, xp_threshold
from questlog.observers import ObserverRegistry
from questlog.state import UserState
from questlog.types import PointCategory, PointContext, Quality


def _at(day: int, hour: int) -> datetime:
    # January 2024: the 10th is a Wednesday, the 13th a Saturday.
    return datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc)


class TestThreshold:
    """Test the experience threshold formula."""

    @pytest.mark.parametrize(
        "level,expected",
        [(1, 100), (2, 150), (3, 225), (4, 337), (5, 506)],
    )
    def test_threshold(self, level, expected):
        """Test floor(100 * 1.5^(level-1))."""
        assert xp_threshold(level) == expected


class TestMultiplier:
    """Test contextual multiplier terms."""

    def test_no_bonuses(self, components):
        """Test a fresh profile with no context has multiplier 1.0."""
        assert components.ledger.multiplier() == 1.0
        assert components.ledger.multiplier(PointContext()) == 1.0

    def test_streak_term(self, components):
        """Test each streak day adds 10%."""
        components.state.profile.current_streak = 3
        assert components.ledger.multiplier() == pytest.approx(1.3)

    def test_streak_term_capped(self, components):
        """Test the streak term is capped at +200%."""
        components.state.profile.current_streak = 45
        assert components.ledger.multiplier() == pytest.approx(3.0)

    def test_level_term(self, components):
        """Test each level above 1 adds 5%."""
        components.state.profile.level = 3
        assert components.ledger.multiplier() == pytest.approx(1.1)

    @pytest.mark.parametrize(
        "hour,expected",
        [(5, 1.0), (6, 1.2), (9, 1.2), (10, 1.0), (18, 1.3), (20, 1.3), (21, 1.0)],
    )
    def test_golden_hours(self, components, hour, expected):
        """Test morning and evening golden hours."""
        context = PointContext(occurred_at=_at(10, hour))
        assert components.ledger.multiplier(context) == pytest.approx(expected)

    def test_weekend(self, components):
        """Test weekend bonus."""
        context = PointContext(occurred_at=_at(13, 12))
        assert components.ledger.multiplier(context) == pytest.approx(1.15)

    @pytest.mark.parametrize(
        "context,expected",
        [
            (PointContext(weather="fog"), 1.25),
            (PointContext(weather="storm"), 1.25),
            (PointContext(weather="sunny"), 1.0),
            (PointContext(first_time=True), 1.5),
            (PointContext(quality=Quality.EXCELLENT), 1.1),
            (PointContext(quality=Quality.HIGH), 1.0),
        ],
    )
    def test_flag_terms(self, components, context, expected):
        """Test weather, first-time and quality terms."""
        assert components.ledger.multiplier(context) == pytest.approx(expected)

    def test_terms_compose_multiplicatively(self, components):
        """Test every term multiplies the others."""
        components.state.profile.current_streak = 2
        context = PointContext(
            occurred_at=_at(13, 7),
            weather="fog",
            first_time=True,
            quality=Quality.EXCELLENT,
        )
        expected = 1.2 * 1.2 * 1.15 * 1.25 * 1.5 * 1.1
        assert components.ledger.multiplier(context) == pytest.approx(expected)


class TestAwardPoints:
    """Test awarding points."""

    def test_level_up_scenario(self, components, recorder):
        """Test 100 base points at level 1 yield exactly one level-up."""
        ledger = components.ledger
        profile = components.state.profile

        final = ledger.award_points(PointCategory.SIGHTING, 100)

        assert final == 100
        assert profile.level == 2
        assert profile.experience == 0
        assert components.state.ledger.level_bonus == 20
        assert components.state.ledger.sighting == 100
        assert profile.total_points == 120
        assert recorder.level_ups == [(1, 2)]

    def test_floor_of_multiplied_amount(self, components):
        """Test the final amount is floored."""
        components.state.profile.current_streak = 1
        assert components.ledger.award_points(PointCategory.PHOTO, 15) == 16

    def test_weekend_amount_is_exact(self, components):
        """Test float noise does not lose a point."""
        context = PointContext(occurred_at=_at(13, 12))
        assert components.ledger.award_points(PointCategory.PHOTO, 20, context) == 23

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_rejected(self, components, recorder, amount):
        """Test zero and negative amounts are a no-op."""
        assert components.ledger.award_points(PointCategory.SIGHTING, amount) == 0
        assert components.state.profile.total_points == 0
        assert recorder.points == []

    def test_observer_notified(self, components, recorder):
        """Test points notifications carry the category and final amount."""
        components.ledger.award_points(PointCategory.COLLABORATION, 10)
        assert recorder.points == [(PointCategory.COLLABORATION, 10)]

    def test_total_matches_ledger(self, components):
        """Test total points equal the ledger sum after every award."""
        ledger = components.ledger
        state = components.state
        awards = [
            (PointCategory.SIGHTING, 25),
            (PointCategory.PHOTO, 15),
            (PointCategory.EXPLORATION, 30),
            (PointCategory.IDENTIFICATION, 20),
            (PointCategory.DAILY, 5),
            (PointCategory.SIGHTING, 250),
        ]
        for category, amount in awards:
            ledger.award_points(category, amount)
            assert state.ledger.total() == state.profile.total_points

    def test_bonus_does_not_feed_experience(self, components):
        """Test fixed bonuses skip the multiplier and experience."""
        components.state.profile.current_streak = 5
        granted = components.ledger.grant_bonus(PointCategory.ACHIEVEMENT_BONUS, 50)

        assert granted == 50
        assert components.state.profile.experience == 0
        assert components.state.profile.total_points == 50


class TestExperience:
    """Test experience and leveling."""

    def test_multiple_levels_in_one_grant(self, components, recorder):
        """Test a large grant loops through several levels."""
        gained = components.ledger.add_experience(250)

        assert gained == 2
        assert components.state.profile.level == 3
        assert components.state.profile.experience == 0
        assert components.state.ledger.level_bonus == 20 + 30
        assert recorder.level_ups == [(1, 2), (2, 3)]

    def test_order_independent(self, settings):
        """Test one large grant equals many small grants."""
        results = []
        for chunks in ([1000], [100] * 10, [7] * 142 + [6]):
            state = UserState()
            ledger = Ledger(
                state,
                rules=settings.rules,
                observers=ObserverRegistry(),
                guard=InvariantGuard(strict=True),
            )
            for amount in chunks:
                ledger.add_experience(amount)
            results.append((state.profile.level, state.profile.experience))

        assert results[0] == results[1] == results[2]

    def test_lifetime_experience(self, components):
        """Test lifetime experience is never renormalized."""
        components.ledger.add_experience(180)
        assert components.state.statistics.lifetime_experience == 180
        assert components.state.profile.experience == 80

    def test_experience_progress(self, components):
        """Test progress within the current level."""
        components.ledger.add_experience(175)
        progress = components.ledger.experience_progress()

        assert progress.level == 2
        assert progress.current == 75
        assert progress.required == 150
        assert progress.percent == 50.0

    def test_upcoming_level_rewards(self, components):
        """Test the preview covers the current level and the next ten."""
        components.ledger.add_experience(175)
        rewards = components.ledger.upcoming_level_rewards()

        assert [r.level for r in rewards] == list(range(2, 13))
        assert rewards[0].reached is True
        assert not any(r.reached for r in rewards[1:])
        assert rewards[1].points == 30
        assert rewards[1].experience == xp_threshold(3)

    def test_upcoming_rewards_follow_rules(self, components):
        """Test the preview uses the configured level bonus."""
        components.ledger.rules = components.ledger.rules.model_copy(
            update={"level_bonus_per_level": 25}
        )
        rewards = components.ledger.upcoming_level_rewards(count=2)

        assert [(r.level, r.points) for r in rewards] == [(1, 25), (2, 50), (3, 75)]


class TestStreak:
    """Test daily streak updates."""

    def test_first_activity(self, components):
        """Test the first activity starts a streak of one."""
        assert components.ledger.update_streak(date(2024, 1, 10)) == 1
        assert components.state.profile.last_activity_date == date(2024, 1, 10)

    def test_consecutive_days(self, components):
        """Test consecutive days increment the streak."""
        ledger = components.ledger
        for day in (10, 11, 12):
            ledger.update_streak(date(2024, 1, day))

        assert components.state.profile.current_streak == 3
        assert components.state.statistics.best_streak == 3
        assert components.state.statistics.active_days == 3

    def test_same_day_is_noop(self, components):
        """Test repeated activity on the same day."""
        ledger = components.ledger
        ledger.update_streak(date(2024, 1, 10))
        ledger.update_streak(date(2024, 1, 10))

        assert components.state.profile.current_streak == 1
        assert components.state.statistics.active_days == 1

    def test_gap_resets(self, components):
        """Test a missed day resets the streak to one."""
        ledger = components.ledger
        ledger.update_streak(date(2024, 1, 10))
        ledger.update_streak(date(2024, 1, 11))
        ledger.update_streak(date(2024, 1, 14))

        assert components.state.profile.current_streak == 1
        assert components.state.statistics.best_streak == 2
        assert components.state.profile.last_activity_date == date(2024, 1, 14)

    def test_earlier_date_ignored(self, components):
        """Test an out-of-order earlier date leaves the streak alone."""
        ledger = components.ledger
        ledger.update_streak(date(2024, 1, 10))
        ledger.update_streak(date(2024, 1, 11))
        ledger.update_streak(date(2024, 1, 5))

        assert components.state.profile.current_streak == 2
        assert components.state.profile.last_activity_date == date(2024, 1, 11)


class TestInvariants:
    """Test invariant violation handling."""

    def test_strict_mode_raises(self, components):
        """Test a corrupted ledger raises in strict mode."""
        components.state.ledger.photo += 7

        with pytest.raises(InvariantViolation):
            components.ledger.award_points(PointCategory.SIGHTING, 10)

    def test_production_mode_logs(self, caplog):
        """Test a corrupted ledger is logged when not strict."""
        state = UserState()
        state.ledger.photo += 7
        ledger = Ledger(
            state,
            rules=RulesSettings(),
            observers=ObserverRegistry(),
            guard=InvariantGuard(strict=False),
        )

        with caplog.at_level(logging.ERROR, logger="questlog.errors"):
            assert ledger.award_points(PointCategory.SIGHTING, 10) == 10

        assert "Invariant violation" in caplog.text
