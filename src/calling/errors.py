"""Error taxonomy for the click-to-call widget.

Every error is raised inside a component, caught at the public operation that
owns it, logged, and handed back to the caller as data. None of them is fatal.
"""

from __future__ import annotations


class CallingError(Exception):
    """Base class for reported widget conditions."""

    kind = "calling_error"
    benign = False

    def __init__(self, message: str = "", *, cause: BaseException | None = None) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.cause = cause

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class CredentialAcquisitionError(CallingError):
    """Identity service unreachable, or its access key is missing/invalid."""

    kind = "credential_acquisition_error"


class ConfigurationError(CredentialAcquisitionError):
    """No authentication mode can be resolved from settings and host parameters."""

    kind = "configuration_error"


class NotReady(CallingError):
    """A call was requested before the backend agent exists."""

    kind = "not_ready"


class InvalidAddress(CallingError):
    """The resolved target address is empty or unusable."""

    kind = "invalid_address"


class BackendUnavailable(CallingError):
    """Session, device permission or call setup failed in the calling backend."""

    kind = "backend_unavailable"


class MalformedHostEvent(CallingError):
    """A host event payload could not be parsed into a target address."""

    kind = "malformed_host_event"


class NoActiveCall(CallingError):
    """hang_up() with nothing to hang up."""

    kind = "no_active_call"
    benign = True


class CallAlreadyActive(CallingError):
    """place_call() while another session is Dialing, Ongoing or awaiting reset."""

    kind = "call_already_active"
