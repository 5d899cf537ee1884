"""Tests for the observer registry."""

import logging

from questlog.observers import CallbackObserver, ObserverRegistry, ProgressionObserver
from questlog.types import PointCategory


class PointsOnly:
    def __init__(self):
        self.amounts = []

    def on_points_awarded(self, category, amount):
        self.amounts.append(amount)


class TestObserverRegistry:
    """Test subscription and fan-out."""

    def test_fan_out_in_subscription_order(self):
        """Test every observer is notified in order."""
        registry = ObserverRegistry()
        calls = []
        registry.subscribe(CallbackObserver(points_awarded=lambda c, a: calls.append("first")))
        registry.subscribe(CallbackObserver(points_awarded=lambda c, a: calls.append("second")))

        registry.points_awarded(PointCategory.PHOTO, 15)

        assert calls == ["first", "second"]

    def test_subscribe_once(self):
        """Test subscribing the same observer twice keeps one entry."""
        registry = ObserverRegistry()
        observer = PointsOnly()
        registry.subscribe(observer)
        registry.subscribe(observer)

        registry.points_awarded(PointCategory.PHOTO, 15)

        assert len(registry) == 1
        assert observer.amounts == [15]

    def test_unsubscribe(self):
        """Test both unsubscribe paths."""
        registry = ObserverRegistry()
        observer = PointsOnly()
        detach = registry.subscribe(observer)

        assert detach() is True
        assert registry.unsubscribe(observer) is False
        registry.points_awarded(PointCategory.PHOTO, 15)
        assert observer.amounts == []

    def test_partial_observers(self):
        """Test observers implementing a subset of hooks are skipped elsewhere."""
        registry = ObserverRegistry()
        observer = PointsOnly()
        registry.subscribe(observer)

        registry.level_up(1, 2)
        registry.points_awarded(PointCategory.DAILY, 5)

        assert observer.amounts == [5]

    def test_failing_observer_logged(self, caplog):
        """Test one failing observer does not stop the others."""
        registry = ObserverRegistry()

        def explode(previous_level, new_level):
            raise RuntimeError("boom")

        levels = []
        registry.subscribe(CallbackObserver(level_up=explode))
        registry.subscribe(CallbackObserver(level_up=lambda old, new: levels.append(new)))

        with caplog.at_level(logging.ERROR, logger="questlog.observers"):
            registry.level_up(1, 2)

        assert levels == [2]
        assert "Observer failed" in caplog.text

    def test_protocol_check(self):
        """Test callback observers satisfy the observer protocol."""
        assert isinstance(CallbackObserver(), ProgressionObserver)
