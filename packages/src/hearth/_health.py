"""Hub liveness on MQTT.

::

    {prefix}/status                  retained heartbeat JSON, or "offline"
    {prefix}/{device}/availability   retained "online" / "offline"

A heartbeat looks like::

    {"status": "online", "uptime_s": 3600.0, "version": "0.3.0",
     "devices": {"heaterfan": {"status": "synchronized"}}}

where each device status is the appliance link state.  The broker
writes ``"offline"`` to the status topic through the last will if the
hub drops off; a clean shutdown writes it explicitly.  Health writes
never raise: a failed write is logged and skipped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field

from hearth._clock import ClockPort
from hearth._mqtt import MqttPort, WillConfig

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


def status_topic(prefix: str) -> str:
    return f"{prefix}/status"


def availability_topic(prefix: str, device: str) -> str:
    return f"{prefix}/{device}/availability"


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    status: str = "ok"

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status}


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    status: str
    uptime_s: float
    version: str
    devices: dict[str, DeviceStatus] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self))


def build_will_config(topic_prefix: str) -> WillConfig:
    """Last will marking the hub offline on ``{topic_prefix}/status``."""
    return WillConfig(topic=status_topic(topic_prefix), payload=OFFLINE)


@dataclass
class HealthReporter:
    """Heartbeats plus availability of the devices the hub fronts.

    Uptime is measured on *clock* from construction.
    """

    mqtt: MqttPort
    topic_prefix: str
    version: str
    clock: ClockPort
    _started_at: float = field(init=False, repr=False)
    _devices: dict[str, DeviceStatus] = field(
        init=False,
        default_factory=dict,
        repr=False,
    )

    def __post_init__(self) -> None:
        self._started_at = self.clock.now()

    @property
    def uptime(self) -> float:
        return self.clock.now() - self._started_at

    def heartbeat(self) -> HeartbeatPayload:
        """Current heartbeat, as :meth:`publish_heartbeat` would send it."""
        return HeartbeatPayload(
            status=ONLINE,
            uptime_s=self.uptime,
            version=self.version,
            devices=dict(self._devices),
        )

    def set_device_status(self, device: str, status: str = "ok") -> None:
        self._devices[device] = DeviceStatus(status)

    def remove_device(self, device: str) -> None:
        self._devices.pop(device, None)

    async def publish_device_available(self, device: str, status: str = "ok") -> None:
        """Mark *device* online and report *status* in later heartbeats."""
        self.set_device_status(device, status)
        await self._retain(availability_topic(self.topic_prefix, device), ONLINE)

    async def publish_device_unavailable(self, device: str) -> None:
        """Mark *device* offline and drop it from later heartbeats."""
        self.remove_device(device)
        await self._retain(availability_topic(self.topic_prefix, device), OFFLINE)

    async def publish_heartbeat(self) -> None:
        await self._retain(status_topic(self.topic_prefix), self.heartbeat().to_json())

    async def shutdown(self) -> None:
        """Take every device offline, then the hub itself."""
        for device in list(self._devices):
            await self.publish_device_unavailable(device)
        await self._retain(status_topic(self.topic_prefix), OFFLINE)
        logger.info("Published offline status under %s", self.topic_prefix)

    async def _retain(self, topic: str, payload: str) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Could not publish health update to %s", topic)
