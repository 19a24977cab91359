"""
Calling backend seam.

The widget does not own the calling SDK (connection setup, media, devices);
it talks to it through these protocols. ``BackendCredential`` is what the
widget hands over when it opens a session: the current token plus the
zero-argument refresher the backend may call whenever it decides the token
needs renewing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from azure.communication.identity import CommunicationUserIdentifier, PhoneNumberIdentifier

CallIdentifier = PhoneNumberIdentifier | CommunicationUserIdentifier
TokenRefresher = Callable[[], Awaitable[str]]

STATE_CHANGED = "stateChanged"
INCOMING_CALL = "incomingCall"


@dataclass
class BackendCredential:
    token: str
    token_refresher: TokenRefresher
    refresh_proactively: bool = True

    def __repr__(self) -> str:
        return f"BackendCredential(token=***, refresh_proactively={self.refresh_proactively})"


@runtime_checkable
class CallHandle(Protocol):
    """One outbound call inside the backend."""

    def on(self, event: str, callback: Callable[[str], Any]) -> None: ...

    async def hang_up(self) -> None: ...


@runtime_checkable
class AgentHandle(Protocol):
    """Authenticated backend session capable of starting calls."""

    async def request_device_permission(self, *, audio: bool, video: bool) -> bool: ...

    async def start_call(
        self,
        identifier: CallIdentifier,
        *,
        alternate_caller_id: PhoneNumberIdentifier | None = None,
    ) -> CallHandle: ...

    def on(self, event: str, callback: Callable[[Any], Any]) -> None: ...


@runtime_checkable
class CallingBackend(Protocol):
    async def create_session(
        self, credential: BackendCredential, display_name: str
    ) -> AgentHandle: ...
