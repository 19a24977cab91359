"""
Call Session Controller
=======================

The state machine owning at most one outbound call.

State transitions:

    Idle --place_call--> Dialing --Connected--> Ongoing --Disconnected--> CallSummary
                            \\-------------Disconnected---------------/        |
    Idle <----------------------------- reset() -------------------------------/

Ongoing and CallSummary are entered only on the backend's own notifications.
``hang_up()`` asks the backend to terminate and then waits for its
Disconnected notification like any other ending.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from azure.communication.identity import PhoneNumberIdentifier
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from utils.ml_logging import get_logger
from utils.session_context import call_context, inject_call_attributes

from .backend import INCOMING_CALL, STATE_CHANGED, AgentHandle, CallHandle
from .errors import (
    BackendUnavailable,
    CallAlreadyActive,
    CallingError,
    InvalidAddress,
    NoActiveCall,
    NotReady,
)
from .models import BackendCallState, CallSession, CallState, OperationResult, TargetAddress

logger = get_logger("calling.controller")
tracer = trace.get_tracer(__name__)

StateListener = Callable[[CallState, CallState, CallSession], Any]


class CallSessionController:
    """
    Owns the single ``CallSession`` and every transition applied to it.

    The session object is created with the controller and handed by reference
    to the duration timer and the event bridge; nothing else mutates it.
    """

    def __init__(self, *, alternate_caller_id: str | None = None) -> None:
        self.session = CallSession()
        self.alternate_caller_id = alternate_caller_id or None
        self.subject_id: str | None = None
        self.last_error: CallingError | None = None
        self._agent: AgentHandle | None = None
        self._listeners: list[StateListener] = []
        self._place_lock = asyncio.Lock()
        self._listener_tasks: set[asyncio.Future] = set()

    # ------------------------------------------------------------------ #
    # Wiring
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def is_ready(self) -> bool:
        return self._agent is not None

    def attach_agent(self, agent: AgentHandle, subject_id: str | None = None) -> None:
        """Bind the backend agent that ``place_call`` will use."""
        self._agent = agent
        self.subject_id = subject_id
        agent.on(INCOMING_CALL, self._on_incoming_call)
        logger.info("Call agent attached for subject %s", subject_id or "-")

    def detach_agent(self) -> AgentHandle | None:
        agent, self._agent = self._agent, None
        return agent

    def add_state_listener(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_target_address(self, address: str | None) -> None:
        """Record the address typed in the UI or pushed by the host."""
        if self.session.state is not CallState.IDLE:
            logger.warning(
                "Ignoring target address update while %s", self.session.state.value
            )
            return
        self.session.target_address = (address or "").strip()

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #
    async def place_call(self, address: str | None = None) -> OperationResult:
        """
        Start an outbound call to ``address`` (or the last target address).

        Returns as soon as the backend accepted the request; connection
        progress arrives through the call handle's state notifications.
        Failures are logged and returned, never raised.
        """
        async with self._place_lock:
            try:
                return await self._place_call(address)
            except CallingError as exc:
                return self._report(exc)

    async def _place_call(self, address: str | None) -> OperationResult:
        if self._agent is None:
            raise NotReady("Call agent is not initialized yet")
        if self.session.state is not CallState.IDLE:
            raise CallAlreadyActive(
                f"A call is already {self.session.state.value}; dropping request"
            )

        target = TargetAddress.parse((address or "").strip() or self.session.target_address)
        call_id = uuid.uuid4().hex

        with call_context(
            call_id=call_id, subject_id=self.subject_id, address_kind=target.kind.value
        ), tracer.start_as_current_span("calling.place_call", kind=SpanKind.CLIENT) as span:
            inject_call_attributes(span)
            alternate = (
                PhoneNumberIdentifier(self.alternate_caller_id)
                if target.is_pstn and self.alternate_caller_id
                else None
            )
            logger.info("Placing %s call to %s", target.kind.value, target.value)
            try:
                handle = await self._agent.start_call(
                    target.to_identifier(), alternate_caller_id=alternate
                )
            except Exception as exc:
                raise BackendUnavailable(f"start_call failed: {exc}", cause=exc) from exc

            self.session.target_address = target.value
            self.session.call_id = call_id
            self.session.backend_handle = handle
            handle.on(STATE_CHANGED, self._make_state_handler(handle, call_id))
            self._transition(CallState.DIALING)

        self.last_error = None
        return OperationResult(accepted=True, state=self.session.state)

    async def hang_up(self) -> OperationResult:
        """Ask the backend to end the active call; CallSummary follows its Disconnected."""
        handle = self.session.backend_handle
        if handle is None:
            return self._report(NoActiveCall("No active call to hang up"))

        with call_context(call_id=self.session.call_id, subject_id=self.subject_id):
            logger.info("Requesting hang-up")
            try:
                await handle.hang_up()
            except Exception as exc:
                return self._report(BackendUnavailable(f"hang_up failed: {exc}", cause=exc))
        return OperationResult(accepted=True, state=self.session.state)

    def reset(self) -> OperationResult:
        """Dismiss the call summary. A no-op in any state but CallSummary."""
        if self.session.state is not CallState.CALL_SUMMARY:
            logger.debug("reset() ignored in %s", self.session.state.value)
            return OperationResult(accepted=False, state=self.session.state)

        previous = self.session.state
        # Cleared in place: timer and bridge hold this same object
        fresh = CallSession()
        for name in self.session.__dataclass_fields__:
            setattr(self.session, name, getattr(fresh, name))
        self._notify(previous, self.session.state)
        return OperationResult(accepted=True, state=self.session.state)

    # ------------------------------------------------------------------ #
    # Backend notifications
    # ------------------------------------------------------------------ #
    def _make_state_handler(self, handle: CallHandle, call_id: str) -> Callable[..., None]:
        def _on_state_changed(state: Any = None, *args: Any) -> None:
            if state is None:
                state = getattr(handle, "state", None)
            with call_context(call_id=call_id, subject_id=self.subject_id):
                self.handle_backend_state(handle, state)

        return _on_state_changed

    def handle_backend_state(self, handle: CallHandle, state: Any) -> None:
        """Map a backend call state onto the session, if ``handle`` is the current call."""
        if handle is not self.session.backend_handle:
            logger.debug("Ignoring %s from a stale call handle", state)
            return

        backend_state = BackendCallState.parse(state)
        current = self.session.state

        if backend_state is BackendCallState.CONNECTED and current is CallState.DIALING:
            self.session.started_at = datetime.now(timezone.utc)
            logger.keyinfo("Call connected")
            self._transition(CallState.ONGOING)
        elif backend_state is BackendCallState.DISCONNECTED:
            self.session.backend_handle = None
            self.session.ended_at = datetime.now(timezone.utc)
            logger.keyinfo("Call disconnected after %ss", self.session.duration_seconds or 0)
            self._transition(CallState.CALL_SUMMARY)
        else:
            logger.info("Backend call state %s while %s", state, current.value)

    def _on_incoming_call(self, args: Any = None) -> None:
        # Inbound calls are observed only; no transition reaches Incoming/CallAccepted
        logger.info("Incoming call event received and ignored: %s", args)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _transition(self, new_state: CallState) -> None:
        previous = self.session.state
        if previous is new_state:
            return
        self.session.state = new_state
        logger.info("Call state %s -> %s", previous.value, new_state.value)
        self._notify(previous, new_state)

    def _notify(self, previous: CallState, current: CallState) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(previous, current, self.session)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception:
                logger.exception("State listener %r failed", listener)

    def _on_listener_done(self, task: asyncio.Future) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async state listener failed", exc_info=exc)

    def _report(self, error: CallingError) -> OperationResult:
        self.last_error = error
        if error.benign:
            logger.warning("%s: %s", error.kind, error.message)
        else:
            logger.error("%s: %s", error.kind, error.message)
        return OperationResult(accepted=False, state=self.session.state, error=error)
