"""Notification forwarder: bus readings to outbound webhook GETs.

Each scalar reading becomes one HTTP GET against a URL template with a
single positional ``{}`` slot, e.g. ``http://bridge:51828/?{}``, filled
with a Homebridge-style query string::

    accessoryId={name}&value={value}     ← measurements, unknown category
    accessoryId={name}&state={true|false} ← switches

Calls are fire-and-forget: event processing never waits on them, their
outcome is only logged, and nothing is retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import string
import uuid
from collections.abc import Iterable, Mapping

import aiohttp

from hearth._bus import (
    Event,
    EventBus,
    ReadingEvent,
    RegistrationEvent,
    Step,
    Subscription,
)
from hearth.exceptions import StartupError, UnknownIdentityError

logger = logging.getLogger(__name__)

MEASUREMENT_CATEGORIES = frozenset(
    {"temperature", "pressure", "humidity", "gas_resistance"},
)
SWITCH_CATEGORY = "switch"

QueryParams = Mapping[str, str | int | float]


def format_value(value: float) -> str:
    """Render *value* without a trailing ``.0`` for integral numbers."""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def check_url_template(url: str) -> str:
    """Return *url* if it has exactly one positional ``{}`` slot.

    Raises:
        ValueError: When the template does not parse or its slots are
            anything but a single ``{}`` (or ``{0}``).
    """
    try:
        parsed = list(string.Formatter().parse(url))
    except ValueError as exc:
        msg = f"Invalid webhook URL template {url!r}: {exc}"
        raise ValueError(msg) from exc
    slots = [field for _, field, _, _ in parsed if field is not None]
    if slots not in ([""], ["0"]):
        msg = f"Webhook URL template {url!r} needs exactly one '{{}}' slot"
        raise ValueError(msg)
    return url


def build_reading_query(name: str, value: float, category: str | None) -> str:
    """Compose the query string announcing *value* for accessory *name*."""
    if category == SWITCH_CATEGORY:
        # Any non-zero reading is "on".
        state = "true" if value != 0 else "false"
        return f"accessoryId={name}&state={state}"
    return f"accessoryId={name}&value={format_value(value)}"


class WebhookForwarder:
    """Bus consumer turning scalar readings into webhook calls.

    Args:
        bus: Event bus to consume registrations and readings from.
        url: Reading URL template with one ``{}`` slot, checked by
            :func:`check_url_template`.  ``None`` disables reading
            notifications.
        state_url: Base URL for :meth:`push_state`.  ``None`` disables
            state pushes.
        timeout: Total timeout of one call, in seconds.
        max_in_flight: Upper bound on concurrent calls; ``None`` leaves
            them unbounded.
        session: HTTP session to use.  When omitted, one is created on
            :meth:`start` and closed on :meth:`stop`.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        url: str | None,
        state_url: str | None = None,
        timeout: float = 10.0,
        max_in_flight: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._bus = bus
        self._url = check_url_template(url) if url is not None else None
        self._state_url = state_url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._semaphore = (
            asyncio.Semaphore(max_in_flight) if max_in_flight is not None else None
        )
        self._session = session
        self._owns_session = session is None
        self._names: dict[uuid.UUID, str] = {}
        self._categories: dict[uuid.UUID, str] = {}
        self._calls: set[asyncio.Task[None]] = set()
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> int:
        """Number of webhook calls not yet finished."""
        return len(self._calls)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Open the HTTP session, subscribe and start the consumer task."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        self._subscription = self._bus.subscribe(
            RegistrationEvent,
            ReadingEvent,
            name="webhook",
        )
        self._task = asyncio.create_task(self._consume(), name="hearth-webhook")

    async def stop(self) -> None:
        """Stop consuming, cancel in-flight calls, close an owned session."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for call in list(self._calls):
            call.cancel()
        if self._calls:
            await asyncio.gather(*self._calls, return_exceptions=True)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def drain(self) -> None:
        """Wait until every in-flight call has finished."""
        while self._calls:
            await asyncio.gather(*list(self._calls), return_exceptions=True)

    # -- Event handling -----------------------------------------------------

    async def _consume(self) -> None:
        assert self._subscription is not None
        async for event in self._subscription:
            try:
                self.handle(event)
            except Exception:
                logger.exception("Webhook forwarding failed for %r", event)

    def handle(self, event: Event) -> None:
        """Apply one bus event; failures are logged, never raised."""
        if isinstance(event, RegistrationEvent):
            self._names[event.identity] = event.name
            return
        try:
            self._forward(event)
        except UnknownIdentityError:
            logger.error(
                "No webhook accessory for identity %s",
                event.identity,
                extra={"identity": str(event.identity)},
            )

    def _forward(self, event: ReadingEvent) -> None:
        name = self._names.get(event.identity)
        if name is None:
            msg = f"No registration for identity {event.identity}"
            raise UnknownIdentityError(msg)

        if event.category is not None:
            self._categories[event.identity] = event.category

        if isinstance(event.value, Step):
            logger.debug("Skipping %s step for %s", event.value.value, name)
            return
        if self._url is None:
            return

        query = build_reading_query(
            name,
            event.value,
            self._categories.get(event.identity),
        )
        self._dispatch(self._url.format(query))

    def push_state(self, queries: Iterable[QueryParams]) -> None:
        """Fire one GET of the state URL per query mapping."""
        if self._state_url is None:
            return
        for params in queries:
            self._dispatch(
                self._state_url,
                {key: str(value) for key, value in params.items()},
            )

    # -- HTTP ---------------------------------------------------------------

    def _dispatch(self, url: str, params: Mapping[str, str] | None = None) -> None:
        if self._session is None:
            msg = "Webhook forwarder is not started"
            raise StartupError(msg)
        call = asyncio.create_task(self._get(url, params))
        self._calls.add(call)
        call.add_done_callback(self._calls.discard)

    async def _get(self, url: str, params: Mapping[str, str] | None) -> None:
        if self._semaphore is None:
            await self._call(url, params)
            return
        async with self._semaphore:
            await self._call(url, params)

    async def _call(self, url: str, params: Mapping[str, str] | None) -> None:
        assert self._session is not None
        try:
            async with self._session.get(
                url,
                params=params,
                timeout=self._timeout,
            ) as resp:
                if resp.status >= 400:
                    logger.warning("Webhook %s returned HTTP %d", url, resp.status)
                else:
                    logger.debug("Webhook %s returned HTTP %d", url, resp.status)
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error("Webhook call to %s failed: %s", url, exc)
        except Exception:
            logger.exception("Webhook call to %s failed", url)
