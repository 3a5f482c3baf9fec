"""Inbound command topics.

Each device the hub fronts accepts JSON commands on one topic::

    {prefix}/{device}/set

Everything else the hub subscribes to (appliance state, error echoes)
is not a command and passes through :meth:`TopicRouter.route` untouched.
"""

from __future__ import annotations

import logging

from hearth._mqtt import MessageCallback

logger = logging.getLogger(__name__)

COMMAND_LEVEL = "set"
_RESERVED = frozenset({"", "+", "#"})


class TopicRouter:
    """Hands ``{prefix}/{device}/set`` messages to the device's handler."""

    def __init__(self, *, topic_prefix: str) -> None:
        self._topic_prefix = topic_prefix
        self._handlers: dict[str, MessageCallback] = {}

    def command_topic(self, device_name: str) -> str:
        return f"{self._topic_prefix}/{device_name}/{COMMAND_LEVEL}"

    @property
    def subscriptions(self) -> list[str]:
        return [self.command_topic(device) for device in self._handlers]

    def register(self, device_name: str, handler: MessageCallback) -> None:
        """Claim the command topic of *device_name* for *handler*.

        Raises:
            ValueError: On a second handler for the same device, or a
                name that is not exactly one topic level.
        """
        if device_name in _RESERVED or "/" in device_name:
            msg = f"Invalid device name {device_name!r}"
            raise ValueError(msg)
        if device_name in self._handlers:
            msg = f"Device {device_name!r} already registered"
            raise ValueError(msg)
        self._handlers[device_name] = handler

    async def route(self, topic: str, payload: bytes) -> None:
        device = self._extract_device(topic)
        if device is None:
            return
        handler = self._handlers.get(device)
        if handler is None:
            logger.warning(
                "No handler registered for %s; dropping command",
                topic,
                extra={"device": device, "topic": topic},
            )
            return
        await handler(topic, payload)

    def _extract_device(self, topic: str) -> str | None:
        root = self._topic_prefix + "/"
        if not topic.startswith(root):
            return None
        levels = topic[len(root) :].split("/")
        if len(levels) != 2 or levels[1] != COMMAND_LEVEL or not levels[0]:
            return None
        return levels[0]
