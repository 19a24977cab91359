"""
Widget Settings
===============

All environment-loaded configuration in one place.

Loading Order:
    1. .env.local / .env (if present) - local development values
    2. Environment variables - always win over .env files

Usage:
    from src.calling.settings import WidgetSettings, resolve_authentication_mode

    settings = WidgetSettings.from_env()
    mode = resolve_authentication_mode(settings, environment_parameters)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .models import EnvironmentParameters


def _load_dotenv_local() -> None:
    """
    Load the first of .env.local / .env found in the working directory or the
    project root. Variables already set in the environment are NOT overridden.
    """
    try:
        from dotenv import load_dotenv
    except ImportError:
        return

    project_root = Path(__file__).resolve().parent.parent.parent
    env_files = [
        Path.cwd() / ".env.local",
        project_root / ".env.local",
        Path.cwd() / ".env",
        project_root / ".env",
    ]
    for env_file in env_files:
        if env_file.exists():
            load_dotenv(env_file, override=False)
            break


def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes", "on")


def _env_float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _env_list(key: str, default: str = "", sep: str = ",") -> list[str]:
    raw = os.getenv(key, default)
    return [item.strip() for item in raw.split(sep) if item.strip()]


# ==============================================================================
# AUTHENTICATION MODES
# ==============================================================================


@dataclass(frozen=True)
class ConnectionString:
    """Identity service reached with an ACS connection string (endpoint + access key)."""

    connection_string: str

    name = "connection_string"

    def __repr__(self) -> str:
        return "ConnectionString(connection_string=***)"


@dataclass(frozen=True)
class EntraId:
    """Identity service reached with the ACS endpoint and an Azure AD credential."""

    endpoint: str

    name = "entra_id"


@dataclass(frozen=True)
class HostSuppliedToken:
    """User token and subject id issued elsewhere and handed to the widget."""

    token: str
    subject_id: str

    name = "host_token"

    def __repr__(self) -> str:
        return f"HostSuppliedToken(token=***, subject_id={self.subject_id!r})"


AuthenticationMode = ConnectionString | EntraId | HostSuppliedToken

AUTH_MODE_NAMES = (ConnectionString.name, EntraId.name, HostSuppliedToken.name)


# ==============================================================================
# SETTINGS
# ==============================================================================


@dataclass
class WidgetSettings:
    """Runtime configuration for one widget instance."""

    connection_string: str = ""
    endpoint: str = ""
    user_id: str = ""
    user_token: str = ""
    auth_mode: str = ""
    display_name: str = "Click-to-Call"
    alternate_caller_id: str = ""
    proactive_refresh: bool = True
    token_scopes: list[str] = field(default_factory=lambda: ["voip"])
    duration_tick_seconds: float = 1.0

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> WidgetSettings:
        if load_dotenv:
            _load_dotenv_local()

        auth_mode = os.getenv("ACS_AUTH_MODE", "").strip().lower()
        if auth_mode and auth_mode not in AUTH_MODE_NAMES:
            raise ConfigurationError(
                f"ACS_AUTH_MODE must be one of {', '.join(AUTH_MODE_NAMES)}, got {auth_mode!r}"
            )

        return cls(
            connection_string=os.getenv("ACS_CONNECTION_STRING", "").strip(),
            endpoint=os.getenv("ACS_ENDPOINT", "").strip(),
            user_id=os.getenv("ACS_USER_ID", "").strip(),
            user_token=os.getenv("ACS_USER_TOKEN", "").strip(),
            auth_mode=auth_mode,
            display_name=os.getenv("ACS_DISPLAY_NAME", "Click-to-Call"),
            alternate_caller_id=os.getenv("ACS_ALTERNATE_CALLER_ID", "").strip(),
            proactive_refresh=_env_bool("ACS_TOKEN_PROACTIVE_REFRESH", True),
            token_scopes=_env_list("ACS_TOKEN_SCOPES", "voip") or ["voip"],
            duration_tick_seconds=_env_float("CALL_DURATION_TICK_SECONDS", 1.0),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {k: getattr(self, k) for k in self.__dataclass_fields__}
        data["connection_string"] = "***" if self.connection_string else ""
        data["user_token"] = "***" if self.user_token else ""
        return data


def resolve_authentication_mode(
    settings: WidgetSettings,
    environment: EnvironmentParameters | None = None,
) -> AuthenticationMode:
    """
    Select the authentication mode once, at widget start.

    An explicit ``ACS_AUTH_MODE`` wins. Otherwise the first available of:
    connection string, endpoint, host-supplied token (from the host's
    environment parameters), configured user token.

    Raises:
        ConfigurationError: when the selected or inferred mode lacks its inputs.
    """
    environment = environment or EnvironmentParameters()
    host_token = environment.token or settings.user_token
    host_subject = environment.subject_id or settings.user_id

    def _host_token_mode() -> HostSuppliedToken:
        if not host_token or not host_subject:
            raise ConfigurationError("Host token mode requires both a user token and a subject id")
        return HostSuppliedToken(token=host_token, subject_id=host_subject)

    if settings.auth_mode == ConnectionString.name:
        if not settings.connection_string:
            raise ConfigurationError("ACS_CONNECTION_STRING is not set")
        return ConnectionString(settings.connection_string)
    if settings.auth_mode == EntraId.name:
        if not settings.endpoint:
            raise ConfigurationError("ACS_ENDPOINT is not set")
        return EntraId(settings.endpoint)
    if settings.auth_mode == HostSuppliedToken.name:
        return _host_token_mode()

    if settings.connection_string:
        return ConnectionString(settings.connection_string)
    if settings.endpoint:
        return EntraId(settings.endpoint)
    if host_token:
        return _host_token_mode()

    raise ConfigurationError(
        "No ACS credentials configured: set ACS_CONNECTION_STRING, ACS_ENDPOINT or ACS_USER_TOKEN"
    )
