"""
Unit Tests for EventBus
=======================

Test Coverage
-------------
- Priority tiers and execution order
- Wildcard subscriptions and once-only listeners
- Failure isolation and timeouts
- Subscription bookkeeping (duplicates, unsubscribe, clear)
"""

import asyncio

import pytest

from pelangi.core.event.bus import EventBus
from pelangi.core.event.types import LEVEL_CHANGED, XP_AWARDED, ListenerPriority
from pelangi.core.exceptions import EventBusError


@pytest.fixture
def bus():
    return EventBus(critical_timeout_seconds=0.5, high_timeout_seconds=0.5)


@pytest.mark.unit
@pytest.mark.asyncio
class TestPublish:
    async def test_priority_order(self, bus):
        # Arrange
        calls = []

        async def normal(payload):
            calls.append("normal")
            return "normal"

        async def critical(payload):
            calls.append("critical")
            return "critical"

        async def high(payload):
            calls.append("high")
            return "high"

        bus.subscribe(XP_AWARDED, normal)
        bus.subscribe(XP_AWARDED, critical, priority=ListenerPriority.CRITICAL)
        bus.subscribe(XP_AWARDED, high, priority=ListenerPriority.HIGH)

        # Act
        results = await bus.publish(XP_AWARDED, {"student_id": 1})

        # Assert
        assert calls == ["critical", "high", "normal"]
        assert results == ["critical", "high", "normal"]

    async def test_no_listeners(self, bus):
        assert await bus.publish(XP_AWARDED, {}) == []

    async def test_wildcard_matches_student_events(self, bus):
        seen = []

        async def audit(payload):
            seen.append(payload["student_id"])

        bus.subscribe("student.*", audit)

        await bus.publish(XP_AWARDED, {"student_id": 1})
        await bus.publish(LEVEL_CHANGED, {"student_id": 2})
        await bus.publish("class.created", {"student_id": 3})

        assert seen == [1, 2]

    async def test_once_listener_runs_once(self, bus):
        seen = []

        async def first_level_up(payload):
            seen.append(payload["new_level"])

        bus.subscribe(LEVEL_CHANGED, first_level_up, once=True)

        await bus.publish(LEVEL_CHANGED, {"new_level": 2})
        await bus.publish(LEVEL_CHANGED, {"new_level": 3})

        assert seen == [2]
        assert bus.get_listener_count(LEVEL_CHANGED) == 0

    async def test_failing_listener_is_isolated(self, bus):
        async def broken(payload):
            raise RuntimeError("notification service down")

        async def healthy(payload):
            return "ok"

        bus.subscribe(XP_AWARDED, broken, identifier="broken")
        bus.subscribe(XP_AWARDED, healthy, identifier="healthy")

        results = await bus.publish(XP_AWARDED, {})

        assert sorted(results, key=str) == [None, "ok"]

    async def test_sync_callback_runs_in_executor(self, bus):
        def to_upper(payload):
            return payload["name"].upper()

        bus.subscribe(XP_AWARDED, to_upper)

        assert await bus.publish(XP_AWARDED, {"name": "budi"}) == ["BUDI"]

    async def test_critical_listener_timeout(self):
        bus = EventBus(critical_timeout_seconds=0.01)

        async def slow(payload):
            await asyncio.sleep(1)
            return "late"

        bus.subscribe(XP_AWARDED, slow, priority=ListenerPriority.CRITICAL)

        assert await bus.publish(XP_AWARDED, {}) == [None]

    async def test_low_priority_runs_in_background(self, bus):
        seen = []

        async def analytics(payload):
            seen.append(payload["amount"])

        bus.subscribe(XP_AWARDED, analytics, priority=ListenerPriority.LOW)

        results = await bus.publish(XP_AWARDED, {"amount": 10})
        assert bus.get_background_task_count() == 1
        await bus.drain()

        assert results == []
        assert seen == [10]

    async def test_non_dict_payload_rejected(self, bus):
        with pytest.raises(EventBusError) as exc_info:
            await bus.publish(XP_AWARDED, ["not", "a", "dict"])

        assert exc_info.value.error_code == "EVENT_BUS_ERROR"


@pytest.mark.unit
class TestSubscription:
    def test_wrong_arity_rejected(self, bus):
        async def two_args(payload, extra):
            return None

        with pytest.raises(ValueError):
            bus.subscribe(XP_AWARDED, two_args)

    def test_duplicate_identifier_ignored(self, bus):
        async def listener(payload):
            return None

        bus.subscribe(XP_AWARDED, listener, identifier="feed")
        bus.subscribe(XP_AWARDED, listener, identifier="feed")

        assert bus.get_listener_count(XP_AWARDED) == 1

    def test_unsubscribe(self, bus):
        async def listener(payload):
            return None

        identifier = bus.subscribe(XP_AWARDED, listener)

        assert bus.unsubscribe(XP_AWARDED, identifier) is True
        assert bus.unsubscribe(XP_AWARDED, identifier) is False
        assert bus.get_listener_count() == 0

    def test_listener_count_includes_wildcards(self, bus):
        async def listener(payload):
            return None

        bus.subscribe(XP_AWARDED, listener)
        bus.subscribe("student.*", listener)

        assert bus.get_listener_count(XP_AWARDED) == 2
        assert bus.get_listener_count(LEVEL_CHANGED) == 1

    def test_clear(self, bus):
        async def listener(payload):
            return None

        bus.subscribe(XP_AWARDED, listener)
        bus.subscribe("student.*", listener)
        bus.clear()

        assert bus.get_listener_count() == 0

    def test_timeouts_read_from_config(self, mock_config_manager, config_values):
        config_values["core.event.listener_timeout.critical_seconds"] = 2.5
        config_values["core.event.listener_timeout.high_seconds"] = "soon"

        bus = EventBus(mock_config_manager)

        assert bus._critical_timeout == 2.5
        assert bus._high_timeout == 5.0
