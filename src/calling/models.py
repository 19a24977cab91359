"""
Calling Data Model
==================

State and value types shared by the controller, the event bridge, the
duration timer and the widget session context.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from azure.communication.identity import CommunicationUserIdentifier, PhoneNumberIdentifier

from .errors import CallingError, InvalidAddress


class CallState(str, Enum):
    """Widget-side call states."""

    IDLE = "Idle"
    DIALING = "Dialing"
    ONGOING = "Ongoing"
    CALL_SUMMARY = "CallSummary"
    # Declared for the host UI; no transition produces them (inbound calls are not handled)
    INCOMING = "Incoming"
    CALL_ACCEPTED = "CallAccepted"


ACTIVE_STATES = frozenset({CallState.DIALING, CallState.ONGOING})


class BackendCallState(str, Enum):
    """States reported by a backend call handle's ``stateChanged`` notification."""

    NONE = "None"
    CONNECTING = "Connecting"
    RINGING = "Ringing"
    EARLY_MEDIA = "EarlyMedia"
    CONNECTED = "Connected"
    LOCAL_HOLD = "LocalHold"
    REMOTE_HOLD = "RemoteHold"
    DISCONNECTING = "Disconnecting"
    DISCONNECTED = "Disconnected"

    @classmethod
    def parse(cls, value: Any) -> BackendCallState | None:
        raw = getattr(value, "value", value)
        try:
            return cls(str(raw))
        except ValueError:
            return None


class AddressKind(str, Enum):
    PSTN = "pstn"
    SUBJECT = "subject"


@dataclass(frozen=True)
class TargetAddress:
    """A call target classified at placement time."""

    value: str
    kind: AddressKind

    @classmethod
    def parse(cls, raw: str | None) -> TargetAddress:
        """Classify ``raw``: a leading ``+`` is a PSTN number, anything else an ACS subject.

        Raises:
            InvalidAddress: when the address is missing or blank.
        """
        value = (raw or "").strip()
        if not value:
            raise InvalidAddress("No target address provided")
        kind = AddressKind.PSTN if value.startswith("+") else AddressKind.SUBJECT
        return cls(value=value, kind=kind)

    @property
    def is_pstn(self) -> bool:
        return self.kind is AddressKind.PSTN

    def to_identifier(self) -> PhoneNumberIdentifier | CommunicationUserIdentifier:
        """Identifier shape handed to the backend's ``start_call``."""
        if self.is_pstn:
            return PhoneNumberIdentifier(self.value)
        return CommunicationUserIdentifier(self.value)


@dataclass
class Identity:
    """ACS subject and the user token currently authenticating it."""

    raw_token: str
    subject_id: str
    acquired_at: datetime
    proactive_refresh: bool = True
    expires_on: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"Identity(subject_id={self.subject_id!r}, acquired_at={self.acquired_at.isoformat()}, "
            f"proactive_refresh={self.proactive_refresh})"
        )


@dataclass
class CallSession:
    """
    The single call owned by the controller.

    ``backend_handle`` is set if and only if ``state`` is Dialing or Ongoing.
    A reset session compares equal to ``CallSession()``.
    """

    state: CallState = CallState.IDLE
    target_address: str = ""
    backend_handle: Any = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    call_id: str | None = field(default=None, compare=False)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def duration_seconds(self) -> int | None:
        """Connected time for the call summary; None if the call never connected."""
        if self.started_at is None:
            return None
        end = self.ended_at or datetime.now(self.started_at.tzinfo)
        return max(0, int((end - self.started_at).total_seconds()))


class HostEventName(str, Enum):
    """Host events the bridge subscribes to."""

    CLICK_TO_ACT = "click-to-act"
    MODE_CHANGED = "mode-changed"
    PAGE_NAVIGATE = "page-navigate"

    @property
    def host_name(self) -> str:
        """Name registered with a CIF-style host's ``addHandler``."""
        return "on" + self.value.replace("-", "")


@dataclass(frozen=True)
class HostEventEnvelope:
    event_name: str
    payload: str


@dataclass
class EnvironmentParameters:
    """Initial parameter bundle supplied by the host container."""

    custom_params: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def subject_id(self) -> str | None:
        value = self.custom_params.get("acsUser")
        return value.strip() or None if isinstance(value, str) else None

    @property
    def token(self) -> str | None:
        value = self.custom_params.get("acsToken")
        return value.strip() or None if isinstance(value, str) else None

    @classmethod
    def from_environment(cls, environment: Any) -> EnvironmentParameters:
        """
        Parse a host ``getEnvironment()`` result.

        ``customParams`` arrives as a JSON string; anything unparseable
        yields empty custom parameters.

        Raises:
            ValueError: if ``customParams`` is present but is not a JSON object
                or a string holding one.
        """
        if not isinstance(environment, dict):
            return cls()
        raw_params = environment.get("customParams")
        if raw_params in (None, ""):
            return cls(raw=environment)
        if isinstance(raw_params, dict):
            return cls(custom_params=raw_params, raw=environment)
        if not isinstance(raw_params, (str, bytes, bytearray)):
            raise ValueError(f"customParams must be a JSON string, got {type(raw_params).__name__}")
        parsed = json.loads(raw_params)
        if not isinstance(parsed, dict):
            raise ValueError("customParams is not a JSON object")
        return cls(custom_params=parsed, raw=environment)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a controller operation, reported instead of raised."""

    accepted: bool
    state: CallState
    error: CallingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None or self.error.benign
