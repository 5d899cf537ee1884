"""Tests for the progression engine: event flow, persistence and import."""

import json
import logging

import pytest
from pydantic import ValidationError

from questlog import CallbackObserver, ProgressionEngine
from questlog.catalog import RouteTemplate, WaypointTemplate
from questlog.errors import SnapshotDecodeError
from questlog.snapshot import decode_snapshot
from questlog.state import ChallengeState
from questlog.store import MemorySnapshotStore
from questlog.types import ActivityEvent, ActivityKind, CollectionType, PointCategory, Quality

USER = "explorer-1"


async def _reopen(store, settings, catalog, clock, user_id=USER):
    return await ProgressionEngine.open(
        user_id, store, settings=settings, catalog=catalog, clock=clock
    )


class FailingStore(MemorySnapshotStore):
    """Store whose writes always fail."""

    async def save(self, user_id, payload):
        raise ConnectionError("store unavailable")


class TestLoad:
    """Test loading persisted progression."""

    async def test_fresh_start(self, engine, store):
        """Test a user without data starts at level 1 with nothing saved."""
        assert engine.state.profile.level == 1
        assert engine.state.profile.total_points == 0
        assert USER not in store
        assert await engine.load() is False

    async def test_reload_restores_state(self, engine, store, settings, catalog, clock):
        """Test a saved snapshot is restored by a new engine."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost"))

        restored = await _reopen(store, settings, catalog, clock)

        assert restored.state == engine.state

    async def test_malformed_snapshot_raises(self, store, settings, catalog, clock):
        """Test a corrupted stored snapshot is a decode error."""
        await store.save(USER, "{broken")

        with pytest.raises(SnapshotDecodeError):
            await _reopen(store, settings, catalog, clock)

    async def test_incompatible_version_starts_fresh(self, store, settings, catalog, clock):
        """Test a snapshot from another schema version is ignored."""
        await store.save(USER, json.dumps({"version": 99, "state": {}}))

        engine = await _reopen(store, settings, catalog, clock)

        assert engine.state.profile.total_points == 0
        assert await engine.load() is False

    async def test_load_expires_overdue(self, engine, store, settings, catalog, clock):
        """Test deadlines that passed while offline are applied on load."""
        instance = await engine.activate_challenge("first_encounter")
        clock.advance(days=8)

        restored = await _reopen(store, settings, catalog, clock)

        assert restored.state.challenges[instance.instance_id].state is ChallengeState.FAILED
        stored = decode_snapshot(await store.load(USER))
        assert stored.state.challenges[instance.instance_id].state is ChallengeState.FAILED


class TestRecordEvent:
    """Test the end-to-end event flow."""

    async def test_first_sighting(self, engine):
        """Test a new creature counts as a first-time sighting."""
        result = await engine.record_event(
            ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost")
        )

        # 25 base points with the 1.5 first-time bonus, floored.
        assert result.points == 37
        assert result.unlocked == ["collection_1"]
        assert engine.state.profile.current_streak == 1
        assert engine.state.statistics.subjects_seen == ["ghost"]
        assert engine.collection.get(CollectionType.CREATURES, "ghost") is not None

    async def test_repeat_sighting(self, engine):
        """Test a known creature gets no first-time bonus."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost"))
        result = await engine.record_event(
            ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost")
        )

        # Same-day streak of one adds 10%.
        assert result.points == 27
        assert engine.collection.get(CollectionType.CREATURES, "ghost").quantity == 2

    async def test_high_quality_photo(self, engine):
        """Test high quality photos and the first photo achievement."""
        result = await engine.record_event(
            ActivityEvent(kind=ActivityKind.PHOTO, subject="dragon", quality=Quality.HIGH)
        )

        assert result.points == 25
        assert result.unlocked[0] == "first_photo"
        assert "novice_100" in result.unlocked
        assert engine.state.statistics.high_quality_photos == 1

    async def test_incorrect_identification(self, engine):
        """Test an incorrect identification scores nothing."""
        result = await engine.record_event(
            ActivityEvent(kind=ActivityKind.IDENTIFICATION, subject="ghost", correct=False)
        )

        assert result.points == 0
        assert engine.state.statistics.identifications_incorrect == 1

    async def test_exploration_zone(self, engine):
        """Test explorations track distance and collect zones."""
        await engine.record_event(
            ActivityEvent(kind=ActivityKind.EXPLORATION, zone="old_bridge", distance_km=2.5)
        )

        assert engine.state.statistics.distance_km == 2.5
        assert engine.collection.get(CollectionType.ZONES, "old_bridge") is not None

    async def test_dict_event(self, engine):
        """Test events may be given as plain mappings."""
        result = await engine.record_event({"kind": "daily_check_in"})
        assert result.points == 5
        assert engine.state.ledger.daily == 5

    async def test_level_up_reported(self, engine):
        """Test level changes appear in the result."""
        result = await engine.record_event(
            ActivityEvent(kind=ActivityKind.SIGHTING, base_points=120)
        )
        assert result.level == 2
        assert result.levels_gained == 1

    async def test_feeds_challenges(self, engine):
        """Test matching events progress active challenges."""
        instance = await engine.activate_challenge("first_encounter")

        result = await engine.record_event(
            ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost")
        )

        assert result.challenges_progressed == [instance.instance_id]
        assert engine.state.challenges[instance.instance_id].state is ChallengeState.COMPLETED
        assert "challenges_1" in result.unlocked

    async def test_feeds_routes(self, engine, catalog):
        """Test events matching the current waypoint are forwarded."""
        catalog.routes["forest_walk"] = RouteTemplate(
            id="forest_walk",
            name="Forest Walk",
            waypoints=[
                WaypointTemplate(id="edge", name="Edge", order=1, activities=["sighting"]),
                WaypointTemplate(id="clearing", name="Clearing", order=2, activities=["photo"]),
            ],
        )
        route = await engine.start_route("forest_walk")

        result = await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING))

        assert result.routes_progressed == [route.instance_id]
        assert engine.state.routes[route.instance_id].current_index == 1

    async def test_unrelated_route_untouched(self, engine):
        """Test events not required by the current waypoint are not forwarded."""
        route = await engine.start_route("mystic_initiation")

        result = await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING))

        assert result.routes_progressed == []
        assert engine.state.routes[route.instance_id].waypoints[0].recorded == []

    async def test_saved_after_event(self, engine, store):
        """Test the store holds the state after every event."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.COLLABORATION))

        stored = decode_snapshot(await store.load(USER))
        assert stored.state == engine.state

    async def test_store_failure_propagates(self, settings, catalog, clock):
        """Test a failing store surfaces to the caller."""
        engine = await _reopen(FailingStore(), settings, catalog, clock)

        with pytest.raises(ConnectionError):
            await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING))


class TestDirectOperations:
    """Test operations outside the event flow."""

    async def test_award_points(self, engine):
        """Test direct awards run the achievement evaluation."""
        assert await engine.award_points(PointCategory.SIGHTING, 100) == 100
        assert engine.state.is_unlocked("novice_100")

    async def test_unlock_achievement(self, engine):
        """Test explicit unlocks are one-time."""
        assert await engine.unlock_achievement("moon_walker") is True
        assert await engine.unlock_achievement("moon_walker") is False

    async def test_repeated_unlock_still_saves(self, engine, store):
        """Test a rejected unlock persists like any other operation."""
        await engine.unlock_achievement("moon_walker")
        await store.delete(USER)

        assert await engine.unlock_achievement("moon_walker") is False
        assert USER in store

    async def test_add_collection_entry(self, engine):
        """Test direct card additions."""
        assert await engine.add_collection_entry(CollectionType.SPECIALS, "relic", rare=True)
        assert not await engine.add_collection_entry(CollectionType.SPECIALS, "relic")

    async def test_activation_returns_copy(self, engine):
        """Test returned instances are detached from engine state."""
        instance = await engine.activate_challenge("first_encounter")
        instance.progress = 5

        assert engine.state.challenges[instance.instance_id].progress == 0

    async def test_rejected_operation_still_saves(self, engine, store):
        """Test even a no-op operation leaves a snapshot behind."""
        assert await engine.abandon_challenge("missing") is False
        assert USER in store

    async def test_route_operations(self, engine):
        """Test discovery and abandonment through the engine."""
        route = await engine.start_route("mystic_initiation")

        record = await engine.record_discovery(route.instance_id, {"id": "feather"})
        assert record.points == 25
        assert await engine.record_waypoint_activity(route.instance_id, "orientation")
        assert await engine.abandon_route(route.instance_id) is True
        assert await engine.record_waypoint_activity(route.instance_id, "reconnaissance") is False

    async def test_invalid_waypoint_payload(self, engine, store):
        """Test a malformed payload changes neither memory nor the store."""
        route = await engine.start_route("mystic_initiation")
        saved = await store.load(USER)

        with pytest.raises(ValidationError):
            await engine.record_waypoint_activity(
                route.instance_id, "orientation", {"quality": "superb"}
            )

        assert await store.load(USER) == saved
        assert engine.state.routes[route.instance_id].waypoints[0].recorded == []
        assert await engine.record_waypoint_activity(route.instance_id, "orientation")


class TestObservers:
    """Test observer notifications through the engine."""

    async def test_level_up_callback(self, engine):
        """Test callback observers receive level-ups."""
        ups = []
        engine.subscribe(CallbackObserver(level_up=lambda old, new: ups.append((old, new))))

        await engine.award_points(PointCategory.SIGHTING, 100)

        assert ups == [(1, 2)]

    async def test_unsubscribe(self, engine):
        """Test detached observers receive nothing."""
        amounts = []
        detach = engine.subscribe(CallbackObserver(points_awarded=lambda c, a: amounts.append(a)))
        detach()

        await engine.award_points(PointCategory.SIGHTING, 10)

        assert amounts == []

    async def test_failing_observer_isolated(self, engine, caplog):
        """Test an observer exception never reaches the engine."""

        def explode(category, amount):
            raise RuntimeError("observer bug")

        engine.subscribe(CallbackObserver(points_awarded=explode))

        with caplog.at_level(logging.ERROR, logger="questlog.observers"):
            result = await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING))

        assert result.points == 25
        assert "Observer failed" in caplog.text


class TestExportImport:
    """Test snapshot export and import."""

    async def test_round_trip(self, engine, settings, catalog, clock):
        """Test an exported snapshot imports into another engine."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost"))
        await engine.activate_challenge("first_encounter")
        payload = await engine.export_snapshot()

        target_store = MemorySnapshotStore()
        target = await _reopen(target_store, settings, catalog, clock, user_id="explorer-2")
        result = await target.import_snapshot(payload)

        assert result.success is True
        assert result.reason is None
        assert target.state == engine.state
        assert "explorer-2" in target_store

    @pytest.mark.parametrize(
        "payload,reason",
        [
            ("garbage", "invalid JSON"),
            (json.dumps({"version": 99}), "incompatible snapshot version 99"),
            (json.dumps({"version": 1, "user_id": "x"}), "invalid snapshot"),
        ],
    )
    async def test_rejected_import_keeps_state(self, engine, payload, reason):
        """Test a failed import reports why and changes nothing."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost"))
        before = engine.state.model_dump()

        result = await engine.import_snapshot(payload)

        assert result.success is False
        assert reason in result.reason
        assert engine.state.model_dump() == before

    async def test_inconsistent_import_rejected(self, engine):
        """Test consistency checks apply to imports."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING))
        raw = json.loads(await engine.export_snapshot())
        raw["state"]["profile"]["total_points"] += 1

        result = await engine.import_snapshot(json.dumps(raw))

        assert result.success is False
        assert "total points" in result.reason


class TestViewAndReset:
    """Test read views and reset."""

    async def test_view(self, engine):
        """Test the view reflects the current progression."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost"))
        await engine.activate_challenge("first_encounter")

        view = await engine.view()

        assert view.user_id == USER
        assert view.level == 1
        assert view.total_points == engine.state.profile.total_points
        assert view.current_streak == 1
        assert [c.template_id for c in view.challenges] == ["first_encounter"]
        assert view.challenges[0].percent == 0.0
        assert view.upcoming_rewards[0].level == 1
        assert len(view.upcoming_rewards) == 11
        assert {p.collection_type for p in view.collections} == set(CollectionType)

    async def test_view_is_frozen(self, engine):
        """Test views cannot be used to mutate state."""
        view = await engine.view()
        with pytest.raises(ValidationError):
            view.level = 10

    async def test_reset(self, engine, store):
        """Test reset persists a fresh state."""
        await engine.record_event(ActivityEvent(kind=ActivityKind.SIGHTING, subject="ghost"))

        await engine.reset()

        assert engine.state.profile.total_points == 0
        assert engine.state.achievements == {}
        stored = decode_snapshot(await store.load(USER))
        assert stored.state.profile.total_points == 0
