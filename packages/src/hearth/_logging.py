"""Log output for the hub.

Two line formats are supported: ``json`` (one object per line, the
default, for journald/Loki style collectors) and ``text`` for a
terminal.  Both go to stderr; ``LoggingSettings.file`` adds a size
rotated copy.

Call sites pass correlation data through ``extra=``.  The JSON format
keeps three such keys: ``device`` (appliance name), ``topic`` (MQTT
topic) and ``identity`` (producer UUID).
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from hearth._settings import LoggingSettings

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

CORRELATION_KEYS = ("device", "topic", "identity")

_NOISY_LOGGERS = ("aiohttp.access",)


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``,
    ``message``, ``service``, ``version`` (only when non-empty), the
    correlation keys a record carries, plus ``exception`` and
    ``stack_info`` when present.  Non-JSON values go through ``str``.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self.service = service
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
        }
        if self.version:
            line["version"] = self.version
        line.update(
            (key, getattr(record, key))
            for key in CORRELATION_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            line["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            line["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(line, default=str)


def build_formatter(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> logging.Formatter:
    """Formatter for ``settings.format``."""
    if settings.format == "text":
        return logging.Formatter(TEXT_FORMAT)
    return JsonFormatter(service=service, version=version)


def _handlers(settings: LoggingSettings) -> Iterator[logging.Handler]:
    yield logging.StreamHandler(sys.stderr)
    if settings.file is not None:
        yield RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
        )


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Point the root logger at stderr (and the optional file) only.

    Handlers already installed on the root logger are removed.
    """
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    formatter = build_formatter(settings, service=service, version=version)
    for handler in _handlers(settings):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(settings.level)
    floor = max(logging.WARNING, root.level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)
