"""Tests for hearth._producer — registration-then-readings contract.

Test Techniques Used:
    - Behavioural Testing: events published on the bus
    - State-based Testing: registered flag and stable identity
"""

from __future__ import annotations

import pytest

from hearth._bus import (
    EventBus,
    MetricKind,
    ReadingEvent,
    RegistrationEvent,
    Step,
    Subscription,
)
from hearth._producer import Producer


@pytest.fixture
def inbox(event_bus: EventBus) -> Subscription:
    """Subscription receiving both event types in publish order."""
    return event_bus.subscribe(RegistrationEvent, ReadingEvent)


async def _take(sub: Subscription, count: int) -> list:
    events = []
    async for event in sub:
        events.append(event)
        if len(events) == count:
            break
    return events


class TestRegister:
    """Technique: Behavioural Testing — registration event shape."""

    async def test_register_publishes_definition(
        self,
        event_bus: EventBus,
        inbox: Subscription,
    ) -> None:
        producer = Producer(
            event_bus,
            name="temp",
            kind=MetricKind.COUNTER,
            label_names=["room"],
        )
        producer.register()

        [event] = await _take(inbox, 1)
        assert event == RegistrationEvent(
            identity=producer.identity,
            kind=MetricKind.COUNTER,
            name="temp",
            label_names=("room",),
        )
        assert producer.registered is True

    async def test_distinct_producers_have_distinct_identities(
        self,
        event_bus: EventBus,
    ) -> None:
        a = Producer(event_bus, name="temp")
        b = Producer(event_bus, name="temp")
        assert a.identity != b.identity


class TestEmit:
    """Technique: Behavioural Testing — readings follow registration."""

    async def test_emit_registers_first(
        self,
        event_bus: EventBus,
        inbox: Subscription,
    ) -> None:
        producer = Producer(event_bus, name="temp")
        producer.emit(21)

        registration, reading = await _take(inbox, 2)
        assert isinstance(registration, RegistrationEvent)
        assert reading == ReadingEvent(identity=producer.identity, value=21.0)
        assert isinstance(reading.value, float)

    async def test_register_happens_once(
        self,
        event_bus: EventBus,
        inbox: Subscription,
    ) -> None:
        producer = Producer(event_bus, name="temp")
        producer.emit(1)
        producer.emit(2)
        events = await _take(inbox, 3)
        assert [type(e) for e in events] == [
            RegistrationEvent,
            ReadingEvent,
            ReadingEvent,
        ]

    async def test_category_default_and_override(
        self,
        event_bus: EventBus,
        inbox: Subscription,
    ) -> None:
        producer = Producer(event_bus, name="lamp", category="switch")
        producer.emit(1)
        producer.emit(20.0, category="temperature")
        _, first, second = await _take(inbox, 3)
        assert first.category == "switch"
        assert second.category == "temperature"

    async def test_increment_and_decrement(
        self,
        event_bus: EventBus,
        inbox: Subscription,
    ) -> None:
        producer = Producer(event_bus, name="visitors", label_names=("door",))
        producer.increment(["front"])
        producer.decrement(["front"])
        _, up, down = await _take(inbox, 3)
        assert up.value is Step.INCREMENT
        assert down.value is Step.DECREMENT
        assert up.labels == ("front",)
