"""
Click-to-Call Calling Package
============================

Places and tracks a single outbound Azure Communication Services call from
inside a host application (a CRM container such as Dynamics 365 CIF), turning
the host's click-to-act events into calls.

This package includes:
- CallSessionController: the one-call state machine
- IdentityTokenProvider: ACS subject/token acquisition and refresh
- EventBridge: host events to call placement
- DurationTimer: elapsed seconds while a call is connected
- CallWidget: mount/unmount session context wiring all of the above

Example usage:

    from src.calling import CallWidget, WidgetSettings

    settings = WidgetSettings.from_env()
    async with CallWidget(settings, backend, host=host) as widget:
        result = await widget.controller.place_call("+14155550123")
        if not result.ok:
            print(result.error)
"""

from .backend import BackendCredential, CallingBackend
from .bridge import EventBridge, parse_click_to_act
from .controller import CallSessionController
from .errors import (
    BackendUnavailable,
    CallAlreadyActive,
    CallingError,
    ConfigurationError,
    CredentialAcquisitionError,
    InvalidAddress,
    MalformedHostEvent,
    NoActiveCall,
    NotReady,
)
from .host import HostContainer, HostEventChannel
from .identity import IdentityTokenProvider
from .models import (
    AddressKind,
    CallSession,
    CallState,
    EnvironmentParameters,
    HostEventName,
    Identity,
    OperationResult,
    TargetAddress,
)
from .settings import (
    ConnectionString,
    EntraId,
    HostSuppliedToken,
    WidgetSettings,
    resolve_authentication_mode,
)
from .timer import DurationTimer, format_duration
from .widget import CallWidget

__all__ = [
    "AddressKind",
    "BackendCredential",
    "BackendUnavailable",
    "CallAlreadyActive",
    "CallSession",
    "CallSessionController",
    "CallState",
    "CallWidget",
    "CallingBackend",
    "CallingError",
    "ConfigurationError",
    "ConnectionString",
    "CredentialAcquisitionError",
    "DurationTimer",
    "EntraId",
    "EnvironmentParameters",
    "EventBridge",
    "HostContainer",
    "HostEventChannel",
    "HostEventName",
    "HostSuppliedToken",
    "Identity",
    "IdentityTokenProvider",
    "InvalidAddress",
    "MalformedHostEvent",
    "NoActiveCall",
    "NotReady",
    "OperationResult",
    "TargetAddress",
    "WidgetSettings",
    "format_duration",
    "parse_click_to_act",
    "resolve_authentication_mode",
]
