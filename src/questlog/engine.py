"""
Progression engine.

Composition root for one user's progression: owns the ``UserState``
aggregate, routes activity events through the ledger, challenges and routes,
runs the bounded achievement evaluation and persists a snapshot after every
mutation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any, Optional

from pydantic import BaseModel, Field

from .achievements import AchievementRegistry
from .catalog import Catalog, Reward
from .challenges import ChallengeManager, ChallengeOverrides
from .clock import Clock, SystemClock
from .collection import Collection
from .config import QuestlogSettings
from .errors import InvariantGuard, SnapshotDecodeError
from .ledger import Ledger
from .observers import ObserverRegistry, TelemetryObserver
from .routes import DiscoveryInput, RouteTracker
from .snapshot import (
    SNAPSHOT_VERSION,
    ImportResult,
    decode_snapshot,
    encode_snapshot,
    read_version,
)
from .state import ChallengeInstance, Discovery, RouteInstance, UserState
from .store import SnapshotStore, create_redis_store
from .telemetry import TelemetryRuntime, TelemetrySpan, configure_telemetry
from .types import (
    ACTIVITY_CATEGORY,
    ActivityEvent,
    ActivityKind,
    CollectionType,
    PointCategory,
    PointContext,
    Quality,
)
from .views import ProgressView, build_view

logger = logging.getLogger(__name__)


class EventResult(BaseModel):
    """Outcome of processing one activity event."""

    kind: ActivityKind
    points: int = 0
    level: int = 1
    levels_gained: int = 0
    unlocked: list[str] = Field(default_factory=list)
    challenges_progressed: list[str] = Field(default_factory=list)
    routes_progressed: list[str] = Field(default_factory=list)


class RefreshResult(BaseModel):
    expired_challenges: list[str] = Field(default_factory=list)
    expired_routes: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.expired_challenges or self.expired_routes)


class ProgressionEngine:
    """
    Progression and rewards engine for a single user.

    All collaborators are injected; nothing is shared through module
    globals. Operations are processed one at a time to completion and each
    ends with a snapshot save, so the store never lags the in-memory state.

    Example:

        engine = await ProgressionEngine.open("user-1", MemorySnapshotStore())
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING))
        view = await engine.view()
    """

    def __init__(
        self,
        user_id: str,
        store: SnapshotStore,
        *,
        settings: Optional[QuestlogSettings] = None,
        catalog: Optional[Catalog] = None,
        clock: Optional[Clock] = None,
        observers: Iterable[object] = (),
        telemetry: Optional[TelemetryRuntime] = None,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.settings = settings or QuestlogSettings()
        self.catalog = catalog or Catalog.default()
        self.clock: Clock = clock or SystemClock()
        self.telemetry = telemetry or configure_telemetry(
            self.settings.telemetry.to_config()
        )
        self.guard = InvariantGuard(strict=self.settings.features.strict_invariants)

        self.observers = ObserverRegistry()
        self.observers.subscribe(TelemetryObserver(self.telemetry))
        for observer in observers:
            self.observers.subscribe(observer)

        self._loaded = False
        self._bind(UserState())

    @classmethod
    async def open(
        cls, user_id: str, store: SnapshotStore, **kwargs: Any
    ) -> "ProgressionEngine":
        """Create an engine and load the user's persisted snapshot."""
        engine = cls(user_id, store, **kwargs)
        await engine.load()
        return engine

    @classmethod
    async def from_settings(
        cls, user_id: str, settings: Optional[QuestlogSettings] = None, **kwargs: Any
    ) -> "ProgressionEngine":
        """Create a Redis-backed engine from settings and load it."""
        settings = settings or QuestlogSettings()
        store = create_redis_store(settings.redis)
        return await cls.open(user_id, store, settings=settings, **kwargs)

    @property
    def state(self) -> UserState:
        return self._state

    def subscribe(self, observer: object) -> Callable[[], None]:
        """Attach an observer; returns a callable that detaches it."""
        return self.observers.subscribe(observer)

    def unsubscribe(self, observer: object) -> bool:
        return self.observers.unsubscribe(observer)

    # Lifecycle

    async def load(self) -> bool:
        """
        Load the persisted snapshot.

        Returns:
            True if prior data was found

        Raises:
            SnapshotDecodeError: If the stored snapshot is malformed
        """
        with self._operation("load"):
            payload = await self.store.load(self.user_id)
            snapshot = decode_snapshot(payload) if payload is not None else None
            self._loaded = True
            if snapshot is None:
                self._bind(UserState())
                logger.info("Starting fresh progression", extra={"user_id": self.user_id})
                return False

            if snapshot.user_id != self.user_id:
                logger.warning(
                    "Snapshot belongs to another user",
                    extra={"user_id": self.user_id, "snapshot_user": snapshot.user_id},
                )
            self._bind(snapshot.state)
            if self.refresh_state().changed:
                await self._save()
            logger.info(
                "Progression loaded",
                extra={"user_id": self.user_id, "level": snapshot.state.profile.level},
            )
            return True

    async def reset(self) -> None:
        """Discard all progression and persist the fresh state."""
        await self._ready()
        self._bind(UserState())
        await self._save()
        logger.info("Progression reset", extra={"user_id": self.user_id})

    # Events

    async def record_event(self, event: ActivityEvent | dict[str, Any]) -> EventResult:
        """
        Process one activity event end to end.

        Ledger first, then interested challenges, then active routes whose
        current waypoint requires the event kind, then the streak and the
        bounded achievement evaluation. Ends with a snapshot save.
        """
        await self._ready()
        if isinstance(event, dict):
            event = ActivityEvent.model_validate(event)
        occurred_at = event.occurred_at or self.clock.now()
        event = event.model_copy(update={"occurred_at": occurred_at})

        with self._operation("record_event", kind=event.kind.value) as span:
            self.refresh_state()
            before = set(self._state.achievements)
            level_before = self._state.profile.level

            points = self._score(event)

            progressed = [
                instance.instance_id
                for instance in self.challenges.interested(event)
                if self.challenges.record_progress(instance.instance_id, event)
            ]

            route_updates: list[str] = []
            payload = PointContext.from_event(event).model_dump()
            for route in self.routes.active():
                waypoint = route.current_waypoint
                if waypoint is None or event.kind.value not in waypoint.pending:
                    continue
                if self.routes.record_waypoint_activity(
                    route.instance_id, event.kind.value, payload
                ):
                    route_updates.append(route.instance_id)

            self.ledger.update_streak(occurred_at.date())
            self.achievements.evaluate()

            result = EventResult(
                kind=event.kind,
                points=points,
                level=self._state.profile.level,
                levels_gained=self._state.profile.level - level_before,
                unlocked=[a for a in self._state.achievements if a not in before],
                challenges_progressed=progressed,
                routes_progressed=route_updates,
            )
            span.set_attribute("questlog.points", points)
            self.telemetry.record_event(kind=event.kind.value)
            await self._save()
            return result

    async def award_points(
        self,
        category: PointCategory,
        base_amount: int,
        context: Optional[PointContext] = None,
    ) -> int:
        """Award points directly (outside the event flow)."""
        await self._ready()
        with self._operation("award_points", category=category.value):
            amount = self.ledger.award_points(category, base_amount, context)
            self.achievements.evaluate()
            await self._save()
            return amount

    async def unlock_achievement(
        self, achievement_id: str, description: str = "", reward: Optional[Reward] = None
    ) -> bool:
        await self._ready()
        with self._operation("unlock_achievement"):
            unlocked = self.achievements.unlock(achievement_id, description, reward)
            self.achievements.evaluate()
            await self._save()
            return unlocked

    async def add_collection_entry(
        self,
        collection_type: CollectionType,
        item_id: str,
        *,
        quality: Quality = Quality.GOOD,
        rare: bool = False,
    ) -> bool:
        """Add a card; True when the entry is new."""
        await self._ready()
        with self._operation("add_collection_entry"):
            added = self.collection.add(collection_type, item_id, quality=quality, rare=rare)
            self.achievements.evaluate()
            await self._save()
            return added

    # Challenges

    async def activate_challenge(
        self,
        template_id: str,
        overrides: ChallengeOverrides | dict[str, Any] | None = None,
    ) -> Optional[ChallengeInstance]:
        await self._ready()
        with self._operation("activate_challenge", template_id=template_id):
            instance = self.challenges.activate(template_id, overrides)
            await self._save()
            return instance.model_copy(deep=True) if instance is not None else None

    async def record_challenge_progress(
        self, instance_id: str, event: ActivityEvent | dict[str, Any]
    ) -> bool:
        await self._ready()
        if isinstance(event, dict):
            event = ActivityEvent.model_validate(event)
        with self._operation("record_challenge_progress"):
            progressed = self.challenges.record_progress(instance_id, event)
            self.achievements.evaluate()
            await self._save()
            return progressed

    async def abandon_challenge(self, instance_id: str) -> bool:
        await self._ready()
        with self._operation("abandon_challenge"):
            abandoned = self.challenges.abandon(instance_id)
            await self._save()
            return abandoned

    # Routes

    async def start_route(self, template_id: str) -> Optional[RouteInstance]:
        await self._ready()
        with self._operation("start_route", template_id=template_id):
            instance = self.routes.start(template_id)
            await self._save()
            return instance.model_copy(deep=True) if instance is not None else None

    async def record_waypoint_activity(
        self,
        instance_id: str,
        activity: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        await self._ready()
        with self._operation("record_waypoint_activity", activity=activity):
            recorded = self.routes.record_waypoint_activity(instance_id, activity, payload)
            self.achievements.evaluate()
            await self._save()
            return recorded

    async def record_discovery(
        self, instance_id: str, discovery: DiscoveryInput | dict[str, Any]
    ) -> Optional[Discovery]:
        await self._ready()
        with self._operation("record_discovery"):
            record = self.routes.record_discovery(instance_id, discovery)
            self.achievements.evaluate()
            await self._save()
            return record.model_copy() if record is not None else None

    async def abandon_route(self, instance_id: str) -> bool:
        await self._ready()
        with self._operation("abandon_route"):
            abandoned = self.routes.abandon(instance_id)
            await self._save()
            return abandoned

    # Reads and maintenance

    async def refresh(self) -> RefreshResult:
        """Advisory expiry sweep; safe to skip or run redundantly."""
        await self._ready()
        with self._operation("refresh"):
            result = self.refresh_state()
            if result.changed:
                await self._save()
            return result

    def refresh_state(self) -> RefreshResult:
        return RefreshResult(
            expired_challenges=[i.instance_id for i in self.challenges.expire_overdue()],
            expired_routes=[r.instance_id for r in self.routes.expire_overdue()],
        )

    async def view(self) -> ProgressView:
        """Detached read view of the current progression."""
        await self.refresh()
        return build_view(
            self.user_id,
            ledger=self.ledger,
            collection=self.collection,
            challenges=self.challenges,
            routes=self.routes,
        )

    # Export / import

    async def export_snapshot(self) -> str:
        await self._ready()
        return encode_snapshot(self.user_id, self._state, self.clock.now())

    async def import_snapshot(self, payload: str | bytes) -> ImportResult:
        """
        Replace the current progression with an exported snapshot.

        The payload is fully validated first; on any failure the current
        state is kept untouched and the reason is reported.
        """
        await self._ready()
        with self._operation("import_snapshot") as span:
            try:
                _, version = read_version(payload)
                if version != SNAPSHOT_VERSION:
                    return ImportResult(
                        success=False,
                        reason=f"incompatible snapshot version {version}, expected {SNAPSHOT_VERSION}",
                    )
                snapshot = decode_snapshot(payload)
            except SnapshotDecodeError as e:
                span.record_exception(e)
                logger.warning(
                    "Snapshot import rejected",
                    extra={"user_id": self.user_id, "reason": e.reason},
                )
                return ImportResult(success=False, reason=e.reason)

            if snapshot is None:
                return ImportResult(success=False, reason="snapshot could not be read")
            self._bind(snapshot.state)
            self.refresh_state()
            await self._save()
            logger.info(
                "Snapshot imported",
                extra={"user_id": self.user_id, "source_user": snapshot.user_id},
            )
            return ImportResult(success=True)

    # Internals

    def _bind(self, state: UserState) -> None:
        rules = self.settings.rules
        self._state = state
        self.ledger = Ledger(
            state, rules=rules, observers=self.observers, guard=self.guard
        )
        self.collection = Collection(state, catalog=self.catalog, clock=self.clock)
        self.achievements = AchievementRegistry(
            state,
            catalog=self.catalog,
            ledger=self.ledger,
            collection=self.collection,
            rules=rules,
            observers=self.observers,
            guard=self.guard,
            clock=self.clock,
        )
        shared = dict(
            catalog=self.catalog,
            ledger=self.ledger,
            achievements=self.achievements,
            collection=self.collection,
            rules=rules,
            observers=self.observers,
            guard=self.guard,
            clock=self.clock,
        )
        self.challenges = ChallengeManager(
            state, features=self.settings.features, **shared
        )
        self.routes = RouteTracker(state, **shared)

    def _score(self, event: ActivityEvent) -> int:
        stats = self._state.statistics
        stats.events += 1
        base = event.base_points
        if base is None:
            base = self.catalog.event_points.get(event.kind, 0)
        first_time = event.first_time

        match event.kind:
            case ActivityKind.SIGHTING:
                stats.sightings += 1
                if event.subject:
                    if event.subject not in stats.subjects_seen:
                        stats.subjects_seen.append(event.subject)
                        first_time = True
                    self.collection.add(
                        CollectionType.CREATURES,
                        event.subject,
                        quality=event.quality or Quality.GOOD,
                    )
            case ActivityKind.PHOTO:
                stats.photos += 1
                if event.quality is not None and event.quality.at_least(Quality.HIGH):
                    stats.high_quality_photos += 1
                    if event.base_points is None:
                        base = self.catalog.high_quality_photo_points
            case ActivityKind.IDENTIFICATION:
                if event.correct is False:
                    stats.identifications_incorrect += 1
                    base = 0
                else:
                    stats.identifications_correct += 1
            case ActivityKind.EXPLORATION:
                stats.explorations += 1
                stats.distance_km += event.distance_km
                if event.zone:
                    if event.zone not in stats.zones_visited:
                        stats.zones_visited.append(event.zone)
                        first_time = True
                    self.collection.add(CollectionType.ZONES, event.zone)
            case ActivityKind.COLLABORATION:
                stats.collaborations += 1
            case ActivityKind.DAILY_CHECK_IN:
                stats.daily_check_ins += 1

        context = PointContext.from_event(event).model_copy(
            update={"first_time": first_time}
        )
        points = self.ledger.award_points(ACTIVITY_CATEGORY[event.kind], base, context)

        if event.kind is ActivityKind.PHOTO and stats.photos == 1:
            self.achievements.unlock("first_photo")
        return points

    async def _ready(self) -> None:
        if not self._loaded:
            await self.load()

    async def _save(self) -> None:
        payload = encode_snapshot(self.user_id, self._state, self.clock.now())
        try:
            await self.store.save(self.user_id, payload)
        except Exception:
            self.telemetry.record_store_error(operation="save")
            logger.exception("Snapshot save failed", extra={"user_id": self.user_id})
            raise

    @contextmanager
    def _operation(self, name: str, **attributes: str) -> Iterator[TelemetrySpan]:
        started = time.perf_counter()
        with self.telemetry.start_span(
            f"questlog.{name}", attributes={"user_id": self.user_id, **attributes}
        ) as span:
            try:
                yield span
            except Exception as e:
                span.record_exception(e)
                raise
            finally:
                self.telemetry.record_latency(
                    operation=name,
                    latency_ms=(time.perf_counter() - started) * 1000,
                )
