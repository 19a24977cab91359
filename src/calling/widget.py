"""
Call Widget Session Context
===========================

Explicit owner of everything one mounted widget needs: settings, the identity
provider, the backend agent, the call controller, the duration timer and the
host event bridge. Created on mount, torn down on unmount.

Usage:
    async with CallWidget(settings, backend, host=host) as widget:
        await widget.controller.place_call("+14155550123")
"""

from __future__ import annotations

import inspect
from typing import Any

from utils.ml_logging import get_logger

from .backend import BackendCredential, CallingBackend
from .bridge import EventBridge
from .controller import CallSessionController
from .errors import BackendUnavailable, CallingError
from .identity import IdentityTokenProvider
from .models import EnvironmentParameters, Identity
from .settings import HostSuppliedToken, WidgetSettings, resolve_authentication_mode
from .timer import DurationTimer

logger = get_logger("calling.widget")


class CallWidget:
    """Mount/unmount boundary around one controller and its collaborators."""

    def __init__(
        self,
        settings: WidgetSettings,
        backend: CallingBackend,
        *,
        host: Any = None,
        identity_client_factory=None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.host = host
        self.controller = CallSessionController(alternate_caller_id=settings.alternate_caller_id)
        self.timer = DurationTimer(self.controller, tick_seconds=settings.duration_tick_seconds)
        self.bridge = EventBridge(self.controller)
        self.provider: IdentityTokenProvider | None = None
        self.agent: Any = None
        self.last_error: CallingError | None = None
        self._identity_client_factory = identity_client_factory

    @property
    def ready(self) -> bool:
        return self.controller.is_ready

    @property
    def identity(self) -> Identity | None:
        return self.provider.identity if self.provider else None

    @property
    def environment(self) -> EnvironmentParameters:
        return self.bridge.environment

    async def mount(self) -> bool:
        """
        Bring the widget to a state where calls can be placed.

        Returns False (with ``last_error`` set) when credentials or the backend
        are unavailable; the controller then reports NotReady and ``mount``
        may be called again.
        """
        if self.ready:
            return True
        try:
            await self._mount()
        except CallingError as exc:
            self.last_error = exc
            logger.error("Widget initialization failed (%s): %s", exc.kind, exc.message)
            return False

        self.last_error = None
        await self.bridge.register(self.host)
        logger.keyinfo("Widget ready for subject %s", self.provider.subject_id)
        return True

    async def _mount(self) -> None:
        self.timer.open()
        environment = await self.bridge.fetch_environment_parameters(self.host)
        mode = resolve_authentication_mode(self.settings, environment)
        logger.info("Authenticating with %s mode", mode.name)

        if self.provider is None or self.provider.mode != mode:
            self.provider = IdentityTokenProvider(
                mode,
                scopes=self.settings.token_scopes,
                proactive_refresh=self.settings.proactive_refresh,
                host_token_source=self._host_token if isinstance(mode, HostSuppliedToken) else None,
                client_factory=self._identity_client_factory,
            )
        identity = await self.provider.acquire(environment.subject_id or self.settings.user_id)

        credential = BackendCredential(
            token=identity.raw_token,
            token_refresher=self.provider.refresh,
            refresh_proactively=identity.proactive_refresh,
        )
        try:
            agent = await self.backend.create_session(credential, self.settings.display_name)
        except Exception as exc:
            raise BackendUnavailable(f"Could not create call agent: {exc}", cause=exc) from exc

        try:
            granted = await agent.request_device_permission(audio=True, video=False)
        except Exception as exc:
            await self._dispose(agent)
            raise BackendUnavailable(f"Device permission request failed: {exc}", cause=exc) from exc
        if not granted:
            await self._dispose(agent)
            raise BackendUnavailable("Audio device permission was denied")

        self.agent = agent
        self.controller.attach_agent(agent, identity.subject_id)

    async def _host_token(self) -> str | None:
        environment = await self.bridge.fetch_environment_parameters(self.host)
        return environment.token

    async def unmount(self) -> None:
        """Tear down: stop the bridge and timer, end any active call, release the agent."""
        await self.bridge.close()
        if self.controller.session.backend_handle is not None:
            await self.controller.hang_up()
        self.timer.close()
        agent = self.controller.detach_agent()
        self.agent = None
        if agent is not None:
            await self._dispose(agent)
        if self.provider is not None:
            self.provider.close()
        logger.info("Widget unmounted")

    async def _dispose(self, agent: Any) -> None:
        dispose = getattr(agent, "dispose", None)
        if not callable(dispose):
            return
        try:
            result = dispose()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("Error disposing call agent: %s", exc)

    async def __aenter__(self) -> CallWidget:
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()
