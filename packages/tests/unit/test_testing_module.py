"""Tests for hearth.testing — public test-support utilities.

Test Techniques Used:
    - Specification-based Testing: ``__all__`` and factory defaults
    - State-based Testing: HubHarness wiring and shutdown trigger
    - Fixture Testing: pytest plugin fixtures are fresh per test
"""

from __future__ import annotations

import pytest

import hearth.testing
from hearth._app import Hub
from hearth._bus import EventBus
from hearth._clock import ClockPort
from hearth._mqtt import MockMqttClient as CoreMockMqttClient
from hearth._settings import ApplianceSettings, Settings
from hearth.testing import FakeClock, HubHarness, MockMqttClient, make_settings


class TestPublicAPI:
    """Technique: Specification-based Testing — module surface."""

    def test_all_contains_expected_symbols(self) -> None:
        assert set(hearth.testing.__all__) == {
            "FakeClock",
            "HubHarness",
            "MockMqttClient",
            "make_settings",
        }

    def test_mock_mqtt_client_is_reexported(self) -> None:
        assert MockMqttClient is CoreMockMqttClient


class TestFakeClock:
    """Technique: Specification-based Testing."""

    def test_default_time_is_zero(self) -> None:
        assert FakeClock().now() == 0.0

    def test_satisfies_clock_port(self) -> None:
        assert isinstance(FakeClock(), ClockPort)


class TestMakeSettings:
    """Technique: Specification-based Testing — isolated defaults."""

    def test_returns_settings_instance(self) -> None:
        assert isinstance(make_settings(), Settings)

    def test_appliance_disabled_by_default(self) -> None:
        assert make_settings().appliance.device_id is None

    def test_accepts_overrides(self) -> None:
        settings = make_settings(appliance=ApplianceSettings(device_id="abc"))
        assert settings.appliance.device_id == "abc"

    def test_environment_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEARTH_MQTT__HOST", "broker.local")
        assert make_settings().mqtt.host == "localhost"

    def test_custom_settings_class(self, monkeypatch: pytest.MonkeyPatch) -> None:
        class KitchenSettings(Settings):
            oven_id: str = "oven-1"

        monkeypatch.setenv("HEARTH_OVEN_ID", "oven-9")
        settings = make_settings(KitchenSettings)

        assert isinstance(settings, KitchenSettings)
        assert settings.oven_id == "oven-1"
        assert make_settings(KitchenSettings, oven_id="oven-2").oven_id == "oven-2"


class TestHubHarness:
    """Technique: State-based Testing — harness wiring."""

    def test_create_wires_doubles(self) -> None:
        harness = HubHarness.create()
        assert isinstance(harness.hub, Hub)
        assert isinstance(harness.mqtt, MockMqttClient)
        assert isinstance(harness.clock, FakeClock)
        assert harness.hub._name == "testhub"
        assert harness.hub._version == "1.0.0"

    def test_settings_overrides_forwarded(self) -> None:
        harness = HubHarness.create(appliance=ApplianceSettings(device_id="abc"))
        assert harness.settings.appliance.device_id == "abc"

    def test_trigger_shutdown_sets_event(self) -> None:
        harness = HubHarness.create()
        assert not harness.shutdown_event.is_set()
        harness.trigger_shutdown()
        assert harness.shutdown_event.is_set()

    async def test_run_completes_after_shutdown(self) -> None:
        harness = HubHarness.create()
        harness.trigger_shutdown()
        await harness.run()
        assert harness.mqtt.publish_count > 0

    def test_device_id_shorthand(self) -> None:
        harness = HubHarness.create(device_id="abc")
        assert harness.settings.appliance.device_id == "abc"
        assert harness.settings.appliance.namespace == "appliance/heaterfan"

    async def test_statuses_start_online_end_offline(self) -> None:
        harness = HubHarness.create()
        harness.trigger_shutdown()
        await harness.run()
        assert harness.statuses[0].startswith("{")
        assert harness.statuses[-1] == "offline"

    async def test_deliver_state_targets_appliance_topic(self) -> None:
        harness = HubHarness.create(device_id="abc")
        received: list[tuple[str, bytes]] = []

        async def record(topic: str, payload: bytes) -> None:
            received.append((topic, payload))

        harness.mqtt.on_message(record)
        await harness.deliver_state("power_on", "true")

        assert received == [("appliance/heaterfan/abc/state/power_on", b"true")]


class TestPytestPlugin:
    """Technique: Fixture Testing — plugin fixtures."""

    def test_mock_mqtt_fixture(self, mock_mqtt: MockMqttClient) -> None:
        assert isinstance(mock_mqtt, MockMqttClient)
        assert mock_mqtt.published == []

    def test_fake_clock_fixture(self, fake_clock: FakeClock) -> None:
        assert fake_clock.now() == 0.0

    def test_event_bus_fixture_is_running(self, event_bus: EventBus) -> None:
        assert event_bus.is_running

    def test_settings_fixture(self, settings: Settings) -> None:
        assert settings.mqtt.host == "localhost"
