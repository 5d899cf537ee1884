"""Observer subscription list for progression notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

from .telemetry import TelemetryRuntime

if TYPE_CHECKING:
    from .state import Achievement, ChallengeInstance, NarrativeEvent, RouteInstance
    from .types import PointCategory

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressionObserver(Protocol):
    """
    Receiver of best-effort progression notifications.

    Observers may implement any subset of these methods; missing ones are
    skipped. Exceptions raised by an observer are logged and never reach the
    engine.
    """

    def on_points_awarded(self, category: "PointCategory", amount: int) -> None: ...

    def on_achievement_unlocked(self, achievement: "Achievement") -> None: ...

    def on_level_up(self, previous_level: int, new_level: int) -> None: ...


class ObserverRegistry:
    """Ordered subscription list; notifications fan out to every observer."""

    def __init__(self) -> None:
        self._observers: list[object] = []

    def subscribe(self, observer: object) -> Callable[[], None]:
        """Attach an observer; returns a callable that detaches it."""
        if observer not in self._observers:
            self._observers.append(observer)
        return lambda: self.unsubscribe(observer)

    def unsubscribe(self, observer: object) -> bool:
        if observer in self._observers:
            self._observers.remove(observer)
            return True
        return False

    def __len__(self) -> int:
        return len(self._observers)

    def notify(self, hook: str, *args: Any) -> None:
        """Invoke ``hook`` on each subscribed observer that defines it."""
        for observer in list(self._observers):
            handler = getattr(observer, hook, None)
            if handler is None:
                continue
            try:
                handler(*args)
            except Exception:
                logger.exception(
                    "Observer failed",
                    extra={"hook": hook, "observer": type(observer).__name__},
                )

    def points_awarded(self, category: "PointCategory", amount: int) -> None:
        self.notify("on_points_awarded", category, amount)

    def achievement_unlocked(self, achievement: "Achievement") -> None:
        self.notify("on_achievement_unlocked", achievement)

    def level_up(self, previous_level: int, new_level: int) -> None:
        self.notify("on_level_up", previous_level, new_level)

    def challenge_resolved(self, instance: "ChallengeInstance") -> None:
        self.notify("on_challenge_resolved", instance)

    def route_event(self, instance: "RouteInstance", event: "NarrativeEvent") -> None:
        self.notify("on_route_event", instance, event)


@dataclass
class CallbackObserver:
    """Adapter turning plain callables into an observer."""

    points_awarded: Optional[Callable[["PointCategory", int], None]] = None
    achievement_unlocked: Optional[Callable[["Achievement"], None]] = None
    level_up: Optional[Callable[[int, int], None]] = None
    challenge_resolved: Optional[Callable[["ChallengeInstance"], None]] = None
    route_event: Optional[Callable[["RouteInstance", "NarrativeEvent"], None]] = None

    def on_points_awarded(self, category: "PointCategory", amount: int) -> None:
        if self.points_awarded is not None:
            self.points_awarded(category, amount)

    def on_achievement_unlocked(self, achievement: "Achievement") -> None:
        if self.achievement_unlocked is not None:
            self.achievement_unlocked(achievement)

    def on_level_up(self, previous_level: int, new_level: int) -> None:
        if self.level_up is not None:
            self.level_up(previous_level, new_level)

    def on_challenge_resolved(self, instance: "ChallengeInstance") -> None:
        if self.challenge_resolved is not None:
            self.challenge_resolved(instance)

    def on_route_event(self, instance: "RouteInstance", event: "NarrativeEvent") -> None:
        if self.route_event is not None:
            self.route_event(instance, event)


class TelemetryObserver:
    """Feeds progression notifications into telemetry counters."""

    def __init__(self, telemetry: TelemetryRuntime) -> None:
        self._telemetry = telemetry

    def on_points_awarded(self, category: "PointCategory", amount: int) -> None:
        self._telemetry.record_points(category=category.value, amount=amount)

    def on_achievement_unlocked(self, achievement: "Achievement") -> None:
        self._telemetry.record_achievement(category=achievement.category)

    def on_level_up(self, previous_level: int, new_level: int) -> None:
        self._telemetry.record_level_up(level=new_level)

    def on_challenge_resolved(self, instance: "ChallengeInstance") -> None:
        self._telemetry.record_challenge_outcome(outcome=instance.state.value)
