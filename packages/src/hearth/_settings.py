"""Hub configuration via pydantic-settings.

Configuration is loaded from ``HEARTH_``-prefixed environment variables
and/or a ``.env`` file.  Nested models use ``__`` as the delimiter,
e.g. ``HEARTH_MQTT__HOST=broker.local`` or
``HEARTH_APPLIANCE__DEVICE_ID=5c:cf:7f:aa:bb:cc``.

Durations are seconds throughout.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from hearth._webhook import check_url_template

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings; nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """Where the broker is and which topic tree the hub owns.

    Set from the environment as ``HEARTH_MQTT__<FIELD>``::

        HEARTH_MQTT__HOST=broker.local
        HEARTH_MQTT__PORT=1883
        HEARTH_MQTT__USERNAME=user
        HEARTH_MQTT__PASSWORD=secret
        HEARTH_MQTT__TOPIC_PREFIX=hearth
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the hub generates "
            "'hearth-{hex8}' at startup."
        ),
    )
    keepalive: Annotated[int, Field(ge=1)] = Field(
        default=5,
        description=(
            "Keep-alive interval in seconds.  Only used to detect a dead "
            "connection; it does not bound command latency."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    topic_prefix: str = Field(
        default="hearth",
        description="Root prefix for the hub's own topics (status, errors, commands).",
    )


class LoggingSettings(BaseModel):
    """Log level, line format and the optional rotating log file.

    ``format`` selects JSON lines (default, for log aggregators) or
    human-readable text.  When ``file`` is set, logs are also written to
    a size-rotated file.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format: 'json' or 'text'.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


class BusSettings(BaseModel):
    """In-process event bus configuration."""

    inbox_size: Annotated[int, Field(ge=1)] = Field(
        default=1000,
        description=(
            "Capacity of each subscriber's inbox.  Events arriving at a "
            "full inbox are dropped for that subscriber."
        ),
    )


class MetricsSettings(BaseModel):
    """Metric registry configuration."""

    name: str = Field(
        default="roomA",
        description="Metric name registered by built-in producers (the appliance).",
    )
    port: Annotated[int, Field(ge=1, le=65535)] | None = Field(
        default=None,
        description=(
            "When set, serve the Prometheus text snapshot over HTTP on this port."
        ),
    )


class WebhookSettings(BaseModel):
    """Outbound webhook (notification forwarder) configuration.

    ``url`` is a template with one positional ``{}`` slot that receives
    the composed query string, e.g. ``http://bridge:51828/?{}``.
    """

    url: str | None = Field(
        default=None,
        description="Reading webhook URL template. ``None`` disables forwarding.",
    )
    state_url: str | None = Field(
        default=None,
        description=(
            "Base URL for appliance full-state pushes. ``None`` disables them."
        ),
    )
    timeout: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description="Total timeout of a single webhook call.",
    )
    max_in_flight: Annotated[int, Field(ge=1)] | None = Field(
        default=None,
        description=(
            "Upper bound on concurrent webhook calls.  ``None`` leaves "
            "them unbounded."
        ),
    )

    @field_validator("url")
    @classmethod
    def check_url(cls, url: str | None) -> str | None:
        return check_url_template(url) if url is not None else None


class ApplianceSettings(BaseModel):
    """Heater/fan appliance synchronisation settings."""

    device_id: str | None = Field(
        default=None,
        description="Appliance id in its MQTT namespace. ``None`` disables the appliance.",
    )
    name: str = Field(
        default="heaterfan",
        description="Device name used for the command topic ``{prefix}/{name}/set``.",
    )
    namespace: str = Field(
        default="appliance/heaterfan",
        description="Protocol namespace the appliance publishes under.",
    )
    history_size: Annotated[int, Field(ge=1)] = Field(
        default=1000,
        description="Number of raw inbound messages kept in history.",
    )
    refresh_debounce: Annotated[float, Field(ge=0)] = Field(
        default=0.0,
        description=(
            "Seconds to coalesce state updates before refreshing. "
            "0 refreshes on every update."
        ),
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root hub settings.

    Example ``.env``::

        HEARTH_MQTT__HOST=broker.local
        HEARTH_LOGGING__LEVEL=DEBUG
        HEARTH_LOGGING__FORMAT=text
        HEARTH_WEBHOOK__URL=http://bridge:51828/?{}
        HEARTH_APPLIANCE__DEVICE_ID=5ccf7faabbcc
    """

    model_config = SettingsConfigDict(
        env_prefix="HEARTH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(default_factory=MqttSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    bus: BusSettings = Field(default_factory=BusSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    appliance: ApplianceSettings = Field(default_factory=ApplianceSettings)
