"""hearth.

A home telemetry and control hub: an in-process event bus feeding a
Prometheus metric registry and webhook notifications, plus MQTT state
synchronisation and control of a heater/fan appliance.
"""

from importlib.metadata import PackageNotFoundError, version

from hearth._app import Hub, LifespanFunc
from hearth._bus import (
    Event,
    EventBus,
    MetricKind,
    ReadingEvent,
    RegistrationEvent,
    Step,
    Subscription,
)
from hearth._clock import ClockPort, SystemClock
from hearth._errors import ErrorPayload, ErrorPublisher, build_error_payload
from hearth._health import (
    DeviceStatus,
    HealthReporter,
    HeartbeatPayload,
    build_will_config,
)
from hearth._logging import JsonFormatter, configure_logging
from hearth._metrics import MetricRegistry
from hearth._mqtt import (
    ConnectionCallback,
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttConnectionAware,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    WillConfig,
)
from hearth._producer import Producer
from hearth._settings import (
    ApplianceSettings,
    BusSettings,
    LoggingSettings,
    MetricsSettings,
    MqttSettings,
    Settings,
    WebhookSettings,
)
from hearth._webhook import WebhookForwarder
from hearth.exceptions import (
    HearthError,
    NotConnectedError,
    ParseError,
    PropertyNotFoundError,
    StartupError,
    TransportError,
    UnknownIdentityError,
)

try:
    __version__ = version("hearth")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Hub
    "Hub",
    "LifespanFunc",
    # Bus
    "Event",
    "EventBus",
    "MetricKind",
    "Producer",
    "ReadingEvent",
    "RegistrationEvent",
    "Step",
    "Subscription",
    # Consumers
    "MetricRegistry",
    "WebhookForwarder",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "ConnectionCallback",
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttConnectionAware",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "WillConfig",
    # Errors
    "ErrorPayload",
    "ErrorPublisher",
    "HearthError",
    "NotConnectedError",
    "ParseError",
    "PropertyNotFoundError",
    "StartupError",
    "TransportError",
    "UnknownIdentityError",
    "build_error_payload",
    # Health
    "DeviceStatus",
    "HealthReporter",
    "HeartbeatPayload",
    "build_will_config",
    # Settings
    "ApplianceSettings",
    "BusSettings",
    "LoggingSettings",
    "MetricsSettings",
    "MqttSettings",
    "Settings",
    "WebhookSettings",
]
