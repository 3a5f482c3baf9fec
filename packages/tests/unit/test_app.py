"""Tests for hearth._app — Hub registration and async lifecycle.

Test Techniques Used:
    - Specification-based Testing: telemetry decorator validation
    - State-based Testing: running-hub accessors before, during, after run
    - Integration Testing: HubHarness runs the full lifecycle on doubles
    - Behavioural Testing: MQTT command ingress and error publication

Note: ``_run_async`` calls ``configure_logging``, which replaces the
root logger handlers (caplog included), so lifecycle tests assert on
published MQTT messages rather than log records.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager

import pytest

from hearth._app import Hub
from hearth._bus import MetricKind
from hearth._settings import ApplianceSettings, MetricsSettings
from hearth.appliance import LinkState, PowerOn, Property
from hearth.exceptions import NotConnectedError, StartupError
from hearth.testing import HubHarness

DEVICE = "5ccf7faabbcc"
STATE = f"appliance/heaterfan/{DEVICE}/state"


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


def _appliance_harness(lifespan) -> HubHarness:  # noqa: ANN001
    return HubHarness.create(lifespan=lifespan, device_id=DEVICE)


# ---------------------------------------------------------------------------
# Construction and registration
# ---------------------------------------------------------------------------


class TestConstruction:
    """Technique: Specification-based Testing — constructor checks."""

    async def test_heartbeat_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="heartbeat_interval"):
            Hub(heartbeat_interval=0)

    async def test_accessors_before_run_raise(self) -> None:
        hub = Hub()
        with pytest.raises(StartupError):
            _ = hub.bus
        with pytest.raises(StartupError):
            _ = hub.metrics
        assert hub.appliance is None

    async def test_command_without_appliance_raises(self) -> None:
        with pytest.raises(NotConnectedError):
            await Hub().command(PowerOn(value=True))


class TestTelemetryDecorator:
    """Technique: Specification-based Testing — registration rules."""

    async def test_returns_function_unchanged(self) -> None:
        hub = Hub()

        async def room() -> float:
            return 1.0

        assert hub.telemetry("room", interval=1)(room) is room

    @pytest.mark.parametrize("interval", [0, -5])
    async def test_interval_must_be_positive(self, interval: float) -> None:
        with pytest.raises(ValueError, match="interval"):
            Hub().telemetry("room", interval=interval)

    async def test_duplicate_name_rejected(self) -> None:
        hub = Hub()
        hub.telemetry("room", interval=1)(lambda: None)
        with pytest.raises(ValueError, match="already registered"):
            hub.telemetry("room", interval=1)

    async def test_label_arity_checked(self) -> None:
        with pytest.raises(ValueError, match="label values"):
            Hub().telemetry("room", interval=1, label_names=("kind",))


# ---------------------------------------------------------------------------
# Lifecycle without an appliance
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Technique: Integration Testing — harness-driven runs."""

    async def test_heartbeat_then_offline(self) -> None:
        harness = HubHarness.create()
        harness.trigger_shutdown()
        await harness.run()

        statuses = harness.statuses
        assert json.loads(statuses[0])["status"] == "online"
        assert json.loads(statuses[0])["version"] == "1.0.0"
        assert statuses[-1] == "offline"

    async def test_accessors_available_inside_lifespan(self) -> None:
        seen: dict[str, object] = {}

        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            seen["running"] = hub.bus.is_running
            seen["appliance"] = hub.appliance
            harness.trigger_shutdown()
            yield

        harness = HubHarness.create(lifespan=lifespan)
        await harness.run()

        assert seen == {"running": True, "appliance": None}
        with pytest.raises(StartupError):
            _ = harness.hub.bus

    async def test_producer_reading_reaches_metrics(self) -> None:
        samples: list[float | None] = []

        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            producer = hub.producer("hall", kind=MetricKind.GAUGE)
            producer.emit(17.5)
            registry = hub.metrics.registry
            await _wait_for(lambda: registry.get_sample_value("hall") is not None)
            samples.append(registry.get_sample_value("hall"))
            harness.trigger_shutdown()
            yield

        harness = HubHarness.create(lifespan=lifespan)
        await harness.run()

        assert samples == [17.5]

    async def test_telemetry_poller_publishes(self) -> None:
        samples: list[float | None] = []

        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            yield
            registry = hub.metrics.registry
            await _wait_for(lambda: registry.get_sample_value("roomB") is not None)
            samples.append(registry.get_sample_value("roomB"))

        harness = HubHarness.create(lifespan=lifespan)

        @harness.hub.telemetry("roomB", interval=0.01)
        async def room_b() -> float:
            harness.trigger_shutdown()
            return 23.0

        await harness.run()

        assert samples == [23.0]

    async def test_failing_poller_keeps_running(self) -> None:
        calls = 0
        harness = HubHarness.create()

        @harness.hub.telemetry("flaky", interval=0.001)
        async def flaky() -> float:
            nonlocal calls
            calls += 1
            if calls >= 3:
                harness.trigger_shutdown()
            raise OSError("sensor offline")

        await harness.run()
        assert calls >= 3

    async def test_lifespan_teardown_error_does_not_abort_shutdown(self) -> None:
        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            harness.trigger_shutdown()
            yield
            raise RuntimeError("teardown failed")

        harness = HubHarness.create(lifespan=lifespan)
        await harness.run()

        assert harness.statuses[-1] == "offline"


# ---------------------------------------------------------------------------
# Appliance wiring
# ---------------------------------------------------------------------------


class TestApplianceWiring:
    """Technique: Behavioural Testing — appliance, commands and errors."""

    async def test_subscriptions_and_availability(self) -> None:
        harness = _appliance_harness(None)
        harness.trigger_shutdown()
        await harness.run()

        subs = harness.mqtt.subscriptions
        assert f"{STATE}/power_on" in subs
        assert "hearth/heaterfan/set" in subs
        availability = harness.mqtt.get_messages_for("hearth/heaterfan/availability")
        assert [p for p, *_ in availability] == ["online", "offline"]

    async def test_heartbeat_reports_link_state(self) -> None:
        harness = _appliance_harness(None)
        harness.trigger_shutdown()
        await harness.run()

        heartbeat = json.loads(harness.statuses[0])
        assert heartbeat["devices"] == {"heaterfan": {"status": "connected"}}

    async def test_command_issues_write(self) -> None:
        writes: list = []

        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            assert hub.appliance is not None
            await harness.deliver_state("power_on", "false")
            store = hub.appliance.store
            key = hub.appliance.topics.key(Property.POWER_ON)
            for _ in range(100):
                if await store.get(key) is not None:
                    break
                await asyncio.sleep(0.001)
            writes.extend(await hub.command('{"PowerOn": true}'))
            harness.trigger_shutdown()
            yield

        harness = _appliance_harness(lifespan)
        await harness.run()

        assert [(w.topic, w.payload) for w in writes] == [
            (f"{STATE}/power_on/set", "true"),
        ]
        assert (f"{STATE}/power_on/set", "true", False, 1) in harness.mqtt.published

    async def test_appliance_reading_reaches_metrics(self) -> None:
        samples: list[float | None] = []

        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            await harness.deliver_state("power_on", "true")
            registry = hub.metrics.registry
            labels = {"kind": "power_on", "unit": "onoff"}
            await _wait_for(
                lambda: registry.get_sample_value("kitchen", labels) is not None,
            )
            samples.append(registry.get_sample_value("kitchen", labels))
            harness.trigger_shutdown()
            yield

        harness = HubHarness.create(
            lifespan=lifespan,
            appliance=ApplianceSettings(device_id=DEVICE),
            metrics=MetricsSettings(name="kitchen"),
        )
        await harness.run()

        assert samples == [1.0]

    async def test_mqtt_command_error_published(self) -> None:
        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            await harness.mqtt.deliver("hearth/heaterfan/set", '{"FanSpeed": 3}')
            await harness.mqtt.deliver("hearth/heaterfan/set", "garbage")
            harness.trigger_shutdown()
            yield

        harness = _appliance_harness(lifespan)
        await harness.run()

        errors = [
            json.loads(p)
            for p, *_ in harness.mqtt.get_messages_for("hearth/heaterfan/error")
        ]
        assert [e["error_type"] for e in errors] == [
            "property_not_found",
            "invalid_command",
        ]
        assert all(e["device"] == "heaterfan" for e in errors)
        assert len(harness.mqtt.get_messages_for("hearth/error")) == 2

    async def test_appliance_stopped_after_run(self) -> None:
        captured = {}

        @asynccontextmanager
        async def lifespan(hub: Hub) -> AsyncIterator[None]:
            captured["appliance"] = hub.appliance
            harness.trigger_shutdown()
            yield

        harness = _appliance_harness(lifespan)
        await harness.run()

        assert captured["appliance"].link_state is LinkState.DISCONNECTED
        assert harness.hub.appliance is None
