"""
Call Correlation Context.

Propagates call correlation attributes (call_id, subject_id, target kind) to
every log record and span emitted while a call is being handled, without
passing them through function arguments.

Usage:
    with call_context(call_id="c-1f3a", subject_id="8:acs:..."):
        logger.info("Dialing")  # record carries call_id / subject_id

    with tracer.start_as_current_span("place_call"):
        pass  # span gets the same attributes via inject_call_attributes()
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace


@dataclass
class CallCorrelation:
    """
    Correlation data for one widget call.

    Attributes:
        call_id: Local identifier of the call session
        subject_id: ACS subject placing the call
        address_kind: "pstn" or "subject"
        extra: Additional custom attributes
    """

    call_id: str | None = None
    subject_id: str | None = None
    address_kind: str | None = None
    extra: dict = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        """Short identifier for logging prefixes."""
        if self.call_id:
            return self.call_id[-8:]
        if self.subject_id:
            return self.subject_id[-8:]
        return "unknown"

    def to_span_attributes(self) -> dict[str, Any]:
        attrs = {}
        if self.call_id:
            attrs["call.id"] = self.call_id
        if self.subject_id:
            attrs["call.subject.id"] = self.subject_id
        if self.address_kind:
            attrs["call.address.kind"] = self.address_kind
        for key, value in self.extra.items():
            if isinstance(value, (str, int, float, bool)):
                attrs[key] = value
        return attrs

    def to_log_record(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id or "-",
            "subject_id": self.subject_id or "-",
            "address_kind": self.address_kind or "-",
            **{k: v for k, v in self.extra.items() if isinstance(v, (str, int, float, bool))},
        }


_call_context: contextvars.ContextVar[CallCorrelation | None] = contextvars.ContextVar(
    "call_correlation", default=None
)


@contextmanager
def call_context(
    call_id: str | None = None,
    subject_id: str | None = None,
    address_kind: str | None = None,
    **extra: Any,
):
    """
    Establish call correlation for all nested operations.

    Backend notifications arrive on callbacks outside the placing coroutine,
    so the controller re-enters this context for each notification it handles.
    """
    correlation = CallCorrelation(
        call_id=call_id,
        subject_id=subject_id,
        address_kind=address_kind,
        extra=extra,
    )
    token = _call_context.set(correlation)
    try:
        yield correlation
    finally:
        _call_context.reset(token)


def get_call_correlation() -> CallCorrelation | None:
    """Return the current correlation, or None outside a call_context."""
    return _call_context.get()


def get_short_id() -> str:
    ctx = _call_context.get()
    return ctx.short_id if ctx else "unknown"


def get_log_extras() -> dict[str, Any]:
    """
    Get log record extras from the current call context.

        logger.info("Message", extra=get_log_extras())
    """
    ctx = _call_context.get()
    return ctx.to_log_record() if ctx else {"call_id": "-", "subject_id": "-", "address_kind": "-"}


def inject_call_attributes(span: trace.Span | None = None) -> None:
    """Copy the current correlation onto the given (or current) span."""
    target_span = span or trace.get_current_span()
    if not target_span or not target_span.is_recording():
        return

    ctx = _call_context.get()
    if not ctx:
        return

    for key, value in ctx.to_span_attributes().items():
        target_span.set_attribute(key, value)
