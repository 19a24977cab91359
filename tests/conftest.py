import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Disable telemetry for tests
os.environ["DISABLE_CLOUD_TELEMETRY"] = "true"

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from azure.communication.identity import CommunicationUserIdentifier  # noqa: E402
from azure.core.credentials import AccessToken  # noqa: E402
from src.calling.controller import CallSessionController  # noqa: E402


class FakeCallHandle:
    """Backend call handle whose state changes are driven by the test."""

    def __init__(self, identifier, alternate_caller_id=None):
        self.identifier = identifier
        self.alternate_caller_id = alternate_caller_id
        self.state = "Connecting"
        self.callbacks: dict[str, list] = {}
        self.hang_up_calls = 0
        self.fail_hang_up = False

    def on(self, event, callback):
        self.callbacks.setdefault(event, []).append(callback)

    def emit_state(self, state: str) -> None:
        self.state = state
        for callback in list(self.callbacks.get("stateChanged", [])):
            callback(state)

    async def hang_up(self):
        self.hang_up_calls += 1
        if self.fail_hang_up:
            raise RuntimeError("network down")


class FakeAgent:
    def __init__(self, permission: bool = True):
        self.permission = permission
        self.permission_requests: list[dict] = []
        self.calls: list[FakeCallHandle] = []
        self.callbacks: dict[str, list] = {}
        self.fail_start_call = False
        self.disposed = False

    async def request_device_permission(self, *, audio, video):
        self.permission_requests.append({"audio": audio, "video": video})
        return self.permission

    async def start_call(self, identifier, *, alternate_caller_id=None):
        if self.fail_start_call:
            raise RuntimeError("service unavailable")
        handle = FakeCallHandle(identifier, alternate_caller_id)
        self.calls.append(handle)
        return handle

    def on(self, event, callback):
        self.callbacks.setdefault(event, []).append(callback)

    def dispose(self):
        self.disposed = True


class FakeBackend:
    def __init__(self, agent: FakeAgent | None = None):
        self.agent = agent or FakeAgent()
        self.sessions: list[tuple] = []
        self.fail_create = False

    async def create_session(self, credential, display_name):
        if self.fail_create:
            raise RuntimeError("backend offline")
        self.sessions.append((credential, display_name))
        return self.agent


class FakeHost:
    """CIF-style host: callback registration plus an environment bundle."""

    def __init__(self, custom_params: str | None = "{}"):
        self.custom_params = custom_params
        self.handlers: dict[str, list] = {}
        self.click_to_act: bool | None = None

    async def get_environment(self):
        return {"customParams": self.custom_params}

    def add_handler(self, event_name, handler):
        self.handlers.setdefault(event_name, []).append(handler)

    async def set_click_to_act(self, value):
        self.click_to_act = value

    def fire(self, host_event_name: str, payload: str) -> None:
        for handler in self.handlers.get(host_event_name, []):
            handler(payload)


def _make_identity_client(subject_id: str = "8:acs:new-subject"):
    """MagicMock standing in for the sync CommunicationIdentityClient."""
    counter = {"value": 0}

    def _token():
        counter["value"] += 1
        expires = datetime.now(timezone.utc) + timedelta(hours=24)
        return AccessToken(f"token-{counter['value']}", expires)

    client = MagicMock()
    client.create_user_and_token.side_effect = lambda scopes: (
        CommunicationUserIdentifier(subject_id),
        _token(),
    )
    client.get_token.side_effect = lambda user, scopes: _token()
    client.counter = counter
    return client


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
def fake_backend(fake_agent):
    return FakeBackend(fake_agent)


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def controller():
    return CallSessionController(alternate_caller_id="+18005550100")


@pytest.fixture
def ready_controller(controller, fake_agent):
    controller.attach_agent(fake_agent, "8:acs:operator")
    return controller


@pytest.fixture
def make_identity_client():
    return _make_identity_client
