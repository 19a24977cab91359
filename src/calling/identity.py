"""
ACS identity and token lifecycle.

``IdentityTokenProvider`` acquires the (subject id, user token) pair the
calling backend authenticates with, and exposes ``refresh`` as the
zero-argument coroutine handed to the backend credential. The backend decides
when to call it; concurrent calls share one request to the identity service.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from azure.communication.identity import (
    CommunicationIdentityClient,
    CommunicationTokenScope,
    CommunicationUserIdentifier,
)
from azure.core.exceptions import AzureError
from utils.ml_logging import get_logger

from .errors import ConfigurationError, CredentialAcquisitionError
from .models import Identity
from .settings import AuthenticationMode, ConnectionString, EntraId, HostSuppliedToken

logger = get_logger("calling.identity")

ClientFactory = Callable[[AuthenticationMode], Any]
HostTokenSource = Callable[[], Awaitable[str | None]]


def _default_client_factory(mode: AuthenticationMode) -> CommunicationIdentityClient:
    if isinstance(mode, ConnectionString):
        return CommunicationIdentityClient.from_connection_string(mode.connection_string)
    if isinstance(mode, EntraId):
        from utils.azure_auth import get_credential

        return CommunicationIdentityClient(mode.endpoint, get_credential())
    raise ConfigurationError(f"{mode.name} mode does not use the identity service")


def _to_datetime(expires_on: Any) -> datetime | None:
    if isinstance(expires_on, datetime):
        return expires_on
    if isinstance(expires_on, (int, float)):
        return datetime.fromtimestamp(expires_on, tz=timezone.utc)
    return None


class IdentityTokenProvider:
    """Acquires and refreshes ACS user tokens for one subject."""

    def __init__(
        self,
        mode: AuthenticationMode,
        *,
        scopes: Sequence[str] = ("voip",),
        proactive_refresh: bool = True,
        host_token_source: HostTokenSource | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.mode = mode
        self.proactive_refresh = proactive_refresh
        try:
            self._scopes = [CommunicationTokenScope(scope) for scope in scopes]
        except ValueError as exc:
            raise ConfigurationError(f"Unsupported token scope in {list(scopes)}") from exc
        self._host_token_source = host_token_source
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._identity: Identity | None = None
        self._refresh_task: asyncio.Future[str] | None = None

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def subject_id(self) -> str | None:
        return self._identity.subject_id if self._identity else None

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = self._client_factory(self.mode)
            except (ValueError, AzureError) as exc:
                raise CredentialAcquisitionError(
                    f"Invalid identity service configuration: {exc}", cause=exc
                ) from exc
        return self._client

    async def acquire(self, existing_subject_id: str | None = None) -> Identity:
        """
        Obtain a token for ``existing_subject_id``, or provision a new subject.

        Args:
            existing_subject_id: ACS subject to scope the token to; blank or
                None provisions a new subject.

        Returns:
            The new ``Identity``; it also supersedes ``self.identity``.

        Raises:
            CredentialAcquisitionError: identity service unreachable, rejected
                the request, or the access key is absent/invalid.
        """
        subject_id = (existing_subject_id or "").strip()

        if isinstance(self.mode, HostSuppliedToken):
            if subject_id and subject_id != self.mode.subject_id:
                logger.warning(
                    "Ignoring subject %s: host-supplied token is scoped to %s",
                    subject_id,
                    self.mode.subject_id,
                )
            identity = Identity(
                raw_token=self.mode.token,
                subject_id=self.mode.subject_id,
                acquired_at=datetime.now(timezone.utc),
                proactive_refresh=self.proactive_refresh,
            )
            self._identity = identity
            return identity

        client = self._get_client()
        loop = asyncio.get_running_loop()
        try:
            if subject_id:
                access_token = await loop.run_in_executor(
                    None,
                    functools.partial(
                        client.get_token, CommunicationUserIdentifier(subject_id), self._scopes
                    ),
                )
                logger.info("Refreshed token for subject %s", subject_id)
            else:
                user, access_token = await loop.run_in_executor(
                    None, functools.partial(client.create_user_and_token, self._scopes)
                )
                subject_id = user.properties["id"]
                logger.info("Provisioned new ACS subject %s", subject_id)
        except (AzureError, ValueError) as exc:
            logger.error("Token acquisition failed for %s: %s", subject_id or "<new subject>", exc)
            raise CredentialAcquisitionError(f"Identity service request failed: {exc}", cause=exc) from exc

        identity = Identity(
            raw_token=access_token.token,
            subject_id=subject_id,
            acquired_at=datetime.now(timezone.utc),
            proactive_refresh=self.proactive_refresh,
            expires_on=_to_datetime(getattr(access_token, "expires_on", None)),
        )
        self._identity = identity
        return identity

    async def refresh(self) -> str:
        """
        Re-acquire a token for the current subject and return only the token.

        Safe to call concurrently and repeatedly; overlapping callers await the
        same request.

        Raises:
            CredentialAcquisitionError: nothing acquired yet, or the request failed.
        """
        if self._identity is None:
            raise CredentialAcquisitionError("Cannot refresh before a subject has been acquired")

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh_once(self._identity.subject_id))
        return await asyncio.shield(self._refresh_task)

    async def _refresh_once(self, subject_id: str) -> str:
        if not isinstance(self.mode, HostSuppliedToken):
            identity = await self.acquire(subject_id)
            return identity.raw_token

        if self._host_token_source is None:
            logger.warning("No host token source; reusing the host-supplied token for %s", subject_id)
            return self._identity.raw_token

        try:
            token = await self._host_token_source()
        except Exception as exc:
            raise CredentialAcquisitionError(f"Host token source failed: {exc}", cause=exc) from exc
        if not token:
            logger.warning("Host returned no token; reusing the current one for %s", subject_id)
            return self._identity.raw_token

        self._identity = Identity(
            raw_token=token,
            subject_id=subject_id,
            acquired_at=datetime.now(timezone.utc),
            proactive_refresh=self.proactive_refresh,
        )
        return token

    def close(self) -> None:
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            client.close()
