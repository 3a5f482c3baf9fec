"""Exception hierarchy for hearth.

Telemetry-path errors (:class:`UnknownIdentityError`, :class:`ParseError`)
are contained by the component that hits them.  Command-path errors
(:class:`PropertyNotFoundError`, :class:`NotConnectedError`,
:class:`TransportError`) propagate to the command's caller.
"""

from __future__ import annotations


class HearthError(Exception):
    """Base exception for all hub errors."""


class StartupError(HearthError):
    """A component was used before its infrastructure was running.

    Only raised by setup-ordering bugs (e.g. publishing on a bus that was
    never started), never in steady state.
    """


class UnknownIdentityError(HearthError, LookupError):
    """A reading referenced an identity with no prior registration."""


class PropertyNotFoundError(HearthError, LookupError):
    """A command targets a property the device has not reported yet."""

    def __init__(self, message: str, *, property_name: str = "") -> None:
        self.property_name = property_name
        super().__init__(message)


class ParseError(HearthError, ValueError):
    """An inbound protocol message or command payload could not be decoded."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class NotConnectedError(HearthError, ConnectionError):
    """A command was issued while the appliance link is down."""


class TransportError(HearthError):
    """An outbound protocol write failed."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)
