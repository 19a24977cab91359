"""
Host Event Bridge
=================

Translates host-originated events into controller operations.

- ``click-to-act``: the operator clicked a phone number or contact in the host;
  the payload's ``value`` becomes the target address and a call is placed.
- ``mode-changed`` / ``page-navigate``: wired but without default behaviour;
  listeners added through ``add_listener`` react to them.

A bad payload is reported and dropped; the subscription keeps running for the
next event.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Callable
from typing import Any

from utils.ml_logging import get_logger

from .errors import MalformedHostEvent
from .host import HostEventChannel, HostEventSubscription
from .models import EnvironmentParameters, HostEventName, OperationResult

logger = get_logger("calling.bridge")

EventListener = Callable[[str], Any]


def parse_click_to_act(payload: Any) -> str:
    """
    Extract the target address from a click-to-act payload.

    Raises:
        MalformedHostEvent: non-JSON payload, non-object JSON, or a missing,
            blank or non-string ``value``.
    """
    if not isinstance(payload, (str, bytes, bytearray)):
        raise MalformedHostEvent(f"Expected a JSON string, got {type(payload).__name__}")
    try:
        params = json.loads(payload)
    except ValueError as exc:
        raise MalformedHostEvent(f"click-to-act payload is not JSON: {exc}", cause=exc) from exc
    if not isinstance(params, dict):
        raise MalformedHostEvent("click-to-act payload is not a JSON object")
    value = params.get("value")
    if not isinstance(value, str) or not value.strip():
        raise MalformedHostEvent("click-to-act payload has no usable 'value'")
    return value.strip()


class EventBridge:
    """Subscribes to host events and feeds click-to-act into the controller."""

    EVENTS = [HostEventName.CLICK_TO_ACT, HostEventName.MODE_CHANGED, HostEventName.PAGE_NAVIGATE]

    def __init__(self, controller, channel: HostEventChannel | None = None) -> None:
        self._controller = controller
        self.channel = channel or HostEventChannel()
        self.environment = EnvironmentParameters()
        self.registered = False
        self._attached_host: Any = None
        self._tasks: list[asyncio.Task] = []
        self._listeners: dict[str, list[EventListener]] = {}
        self._handlers: dict[str, Callable[[str], Any]] = {
            HostEventName.CLICK_TO_ACT.value: self.handle_click_to_act,
            HostEventName.MODE_CHANGED.value: self._handle_passive_event,
            HostEventName.PAGE_NAVIGATE.value: self._handle_passive_event,
        }

    def add_listener(self, event_name: str | HostEventName, listener: EventListener) -> None:
        """Extension point for UI reactions; listeners get the raw payload string."""
        key = getattr(event_name, "value", event_name)
        self._listeners.setdefault(key, []).append(listener)

    # ------------------------------------------------------------------ #
    # Host wiring
    # ------------------------------------------------------------------ #
    async def register(self, host: Any = None) -> bool:
        """
        Subscribe to the host's events.

        A missing host, or one without ``add_handler``, is an expected
        standalone mode: it is logged and False is returned.
        """
        if self.registered:
            return True
        if host is None or not callable(getattr(host, "add_handler", None)):
            logger.warning("Host event APIs not available; running without click-to-act")
            return False

        if host is not self._attached_host:
            # Hosts offer no handler removal; attach once per host
            self.channel.attach_host(host, self.EVENTS)
            self._attached_host = host
        self.start()
        await self._announce_click_to_act(host)
        logger.info("Host event handlers registered")
        return True

    def start(self) -> None:
        """Start one consumer per event; used directly when events come only from the channel."""
        if self.registered:
            return
        loop = asyncio.get_running_loop()
        for name in self.EVENTS:
            subscription = self.channel.register(name.value)
            self._tasks.append(
                loop.create_task(self._consume(subscription), name=f"bridge-{name.value}")
            )
        self.registered = True

    async def _announce_click_to_act(self, host: Any) -> None:
        set_click_to_act = getattr(host, "set_click_to_act", None)
        if not callable(set_click_to_act):
            return
        try:
            result = set_click_to_act(True)
            if inspect.isawaitable(result):
                await result
            logger.info("Click-to-act enabled")
        except Exception as exc:
            logger.error("Error enabling click-to-act: %s", exc)

    async def fetch_environment_parameters(self, host: Any = None) -> EnvironmentParameters:
        """
        Ask the host for its initial parameter bundle.

        Never blocks widget start: a missing capability, a failing host or
        malformed ``customParams`` all yield an empty bundle.
        """
        get_environment = getattr(host, "get_environment", None)
        if not callable(get_environment):
            logger.warning("Host environment API not available; using default parameters")
            self.environment = EnvironmentParameters()
            return self.environment

        try:
            environment = get_environment()
            if inspect.isawaitable(environment):
                environment = await environment
        except Exception as exc:
            logger.error("Error fetching host environment: %s", exc)
            self.environment = EnvironmentParameters()
            return self.environment

        try:
            self.environment = EnvironmentParameters.from_environment(environment)
        except (TypeError, ValueError) as exc:
            logger.error("Error parsing host customParams: %s", exc)
            self.environment = EnvironmentParameters(
                raw=environment if isinstance(environment, dict) else {}
            )
        logger.info(
            "Host environment received (subject: %s)", self.environment.subject_id or "-"
        )
        return self.environment

    # ------------------------------------------------------------------ #
    # Event handling
    # ------------------------------------------------------------------ #
    async def _consume(self, subscription: HostEventSubscription) -> None:
        handler = self._handlers[subscription.event_name]
        async for payload in subscription:
            try:
                await handler(payload, subscription.event_name)
            except MalformedHostEvent as exc:
                logger.error("Dropping %s event: %s", subscription.event_name, exc.message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in %s handler", subscription.event_name)

    async def handle_click_to_act(
        self, payload: Any, event_name: str = HostEventName.CLICK_TO_ACT.value
    ) -> OperationResult:
        """Place a call to the address carried by a click-to-act payload."""
        address = parse_click_to_act(payload)
        logger.info("click-to-act requested a call to %s", address)
        self._controller.set_target_address(address)
        result = await self._controller.place_call(address)
        await self._dispatch_listeners(event_name, payload)
        return result

    async def _handle_passive_event(self, payload: Any, event_name: str) -> None:
        logger.info("%s event received: %s", event_name, payload)
        await self._dispatch_listeners(event_name, payload)

    async def _dispatch_listeners(self, event_name: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event_name, [])):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s listener failed", event_name)

    async def close(self) -> None:
        self.channel.close()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.registered = False
