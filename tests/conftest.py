"""Shared pytest fixtures and configuration for all tests."""

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from questlog import ProgressionEngine
from questlog.achievements import AchievementRegistry
from questlog.catalog import Catalog
from questlog.challenges import ChallengeManager
from questlog.clock import FixedClock
from questlog.collection import Collection
from questlog.config import FeaturesSettings, QuestlogSettings
from questlog.errors import InvariantGuard
from questlog.ledger import Ledger
from questlog.observers import ObserverRegistry
from questlog.routes import RouteTracker
from questlog.state import UserState
from questlog.store import MemorySnapshotStore

# Wednesday, outside both golden-hour windows.
WEDNESDAY_NOON = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


class RecordingObserver:
    """Observer that keeps every notification it receives."""

    def __init__(self):
        self.points: list[tuple] = []
        self.unlocked: list[str] = []
        self.level_ups: list[tuple[int, int]] = []
        self.challenges: list[str] = []
        self.route_events: list[str] = []

    def on_points_awarded(self, category, amount):
        self.points.append((category, amount))

    def on_achievement_unlocked(self, achievement):
        self.unlocked.append(achievement.id)

    def on_level_up(self, previous_level, new_level):
        self.level_ups.append((previous_level, new_level))

    def on_challenge_resolved(self, instance):
        self.challenges.append(instance.state.value)

    def on_route_event(self, instance, event):
        self.route_events.append(event.kind)


@dataclass
class Components:
    """Rule components wired around one shared state."""

    state: UserState
    ledger: Ledger
    collection: Collection
    achievements: AchievementRegistry
    challenges: ChallengeManager
    routes: RouteTracker
    clock: FixedClock


@pytest.fixture
def clock():
    """Deterministic clock starting on a weekday at noon UTC."""
    return FixedClock(WEDNESDAY_NOON)


@pytest.fixture
def settings():
    """Development settings: invariant violations raise."""
    return QuestlogSettings(features=FeaturesSettings(strict_invariants=True))


@pytest.fixture
def catalog():
    return Catalog.default()


@pytest.fixture
def observers():
    return ObserverRegistry()


@pytest.fixture
def recorder(observers):
    """Recording observer subscribed to the shared registry."""
    observer = RecordingObserver()
    observers.subscribe(observer)
    return observer


@pytest.fixture
def components(settings, catalog, clock, observers):
    """
    Wire the rule components the same way the engine does.

    Tests drive the components directly, without persistence.
    """
    state = UserState()
    guard = InvariantGuard(strict=True)
    rules = settings.rules
    ledger = Ledger(state, rules=rules, observers=observers, guard=guard)
    collection = Collection(state, catalog=catalog, clock=clock)
    achievements = AchievementRegistry(
        state,
        catalog=catalog,
        ledger=ledger,
        collection=collection,
        rules=rules,
        observers=observers,
        guard=guard,
        clock=clock,
    )
    shared = dict(
        catalog=catalog,
        ledger=ledger,
        achievements=achievements,
        collection=collection,
        rules=rules,
        observers=observers,
        guard=guard,
        clock=clock,
    )
    return Components(
        state=state,
        ledger=ledger,
        collection=collection,
        achievements=achievements,
        challenges=ChallengeManager(state, features=settings.features, **shared),
        routes=RouteTracker(state, **shared),
        clock=clock,
    )


@pytest.fixture
def store():
    return MemorySnapshotStore()


@pytest.fixture
async def engine(store, settings, catalog, clock):
    """Loaded engine over an in-memory store."""
    return await ProgressionEngine.open(
        "explorer-1", store, settings=settings, catalog=catalog, clock=clock
    )
