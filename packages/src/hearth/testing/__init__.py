"""Public test-support utilities for hearth.

Re-exports test doubles and factories so that test suites can import
everything from a single ``hearth.testing`` namespace:

- :class:`HubHarness` — a :class:`~hearth.Hub` wired to test doubles.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`FakeClock` — deterministic clock for timing tests.
- :func:`make_settings` — ``Settings`` without ``.env`` files or env vars.
"""

from hearth._mqtt import MockMqttClient
from hearth.testing._clock import FakeClock
from hearth.testing._harness import HubHarness
from hearth.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "HubHarness",
    "MockMqttClient",
    "make_settings",
]
