"""
Host container seam and event channel.

A CIF-style host exposes callback registration (``addHandler``). The widget
turns that into per-event subscription streams so the bridge consumes plain
async iterators and tests can publish synthetic events without a host.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from utils.ml_logging import get_logger

from .models import HostEventEnvelope, HostEventName

logger = get_logger("calling.host")

_CLOSED = object()


@runtime_checkable
class HostContainer(Protocol):
    """Capabilities consumed from the host; ``set_click_to_act`` is optional."""

    async def get_environment(self) -> dict[str, Any]: ...

    def add_handler(self, event_name: str, handler: Callable[[str], Any]) -> None: ...


class HostEventSubscription:
    """Async iterator over the payload strings of one host event."""

    def __init__(self, event_name: str) -> None:
        self.event_name = event_name
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def put(self, payload: str) -> None:
        if self.closed:
            logger.debug("Dropping %s event on a closed subscription", self.event_name)
            return
        self._queue.put_nowait(payload)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> HostEventSubscription:
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class HostEventChannel:
    """Fan-out from event names to their subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[HostEventSubscription]] = {}

    def register(self, event_name: str) -> HostEventSubscription:
        subscription = HostEventSubscription(event_name)
        self._subscriptions.setdefault(event_name, []).append(subscription)
        return subscription

    def publish(self, event_name: str, payload: Any) -> int:
        """Deliver ``payload`` to every open subscription; returns how many received it."""
        subscribers = [s for s in self._subscriptions.get(event_name, []) if not s.closed]
        if not subscribers:
            logger.debug("No subscribers for host event %s", event_name)
        for subscription in subscribers:
            subscription.put(payload)
        return len(subscribers)

    def publish_envelope(self, envelope: HostEventEnvelope) -> int:
        return self.publish(envelope.event_name, envelope.payload)

    def attach_host(self, host: Any, names: list[HostEventName]) -> None:
        """Register one ``add_handler`` callback per event, each publishing into this channel."""
        for name in names:
            host.add_handler(name.host_name, self._make_handler(name.value))

    def _make_handler(self, event_name: str) -> Callable[[str], None]:
        def _handler(param: str = "") -> None:
            self.publish(event_name, param)

        return _handler

    def close(self) -> None:
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.close()
        self._subscriptions.clear()
