# utils/azure_auth.py
import logging
import os
from functools import lru_cache

from azure.identity import DefaultAzureCredential, ManagedIdentityCredential

logging.getLogger("azure.identity").setLevel(logging.WARNING)


def _using_managed_identity() -> bool:
    """Check if a managed identity is available to the process."""
    return bool(
        os.getenv("AZURE_CLIENT_ID") or os.getenv("MSI_ENDPOINT") or os.getenv("IDENTITY_ENDPOINT")
    )


def _is_local_dev() -> bool:
    """Anything other than an explicit prod/staging ENVIRONMENT counts as local."""
    return os.getenv("ENVIRONMENT", "").lower() not in ("prod", "production", "staging")


@lru_cache(maxsize=1)
def get_credential():
    """
    Credential used by the identity client when the widget authenticates
    against an ACS endpoint instead of a connection string.

    - Managed Identity: when AZURE_CLIENT_ID/MSI_ENDPOINT/IDENTITY_ENDPOINT is set
    - Local Dev: environment + Azure CLI (`az login`)
    - Production: environment only
    """
    if _using_managed_identity():
        return ManagedIdentityCredential(client_id=os.getenv("AZURE_CLIENT_ID"))

    return DefaultAzureCredential(
        exclude_environment_credential=False,
        exclude_managed_identity_credential=True,
        exclude_workload_identity_credential=True,
        exclude_shared_token_cache_credential=True,
        exclude_visual_studio_code_credential=True,
        exclude_cli_credential=not _is_local_dev(),
        exclude_powershell_credential=True,
        exclude_interactive_browser_credential=True,
    )
