"""Adapter lookup by provider tag."""

import httpx

from scribe_crm.core.config import Settings
from scribe_crm.integrations.credential_manager import CredentialLifecycleManager
from scribe_crm.integrations.crm.base import CRMAdapter
from scribe_crm.integrations.crm.hubspot import HubSpotAdapter
from scribe_crm.integrations.crm.salesforce import SalesforceAdapter
from scribe_crm.integrations.domain import CRMProvider

_ADAPTERS: dict[CRMProvider, type[CRMAdapter]] = {
    CRMProvider.HUBSPOT: HubSpotAdapter,
    CRMProvider.SALESFORCE: SalesforceAdapter,
}


def get_crm_adapter(
    provider: CRMProvider | str,
    credentials: CredentialLifecycleManager,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> CRMAdapter:
    """Build the adapter for ``provider``.

    Raises:
        ValueError: If the provider is not supported.
    """
    adapter_cls = _ADAPTERS[CRMProvider(provider)]
    return adapter_cls(credentials, settings=settings, http_client=http_client)


def build_adapters(
    credentials: CredentialLifecycleManager,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict[CRMProvider, CRMAdapter]:
    """One adapter per supported provider sharing a credential manager."""
    return {
        provider: get_crm_adapter(provider, credentials, settings, http_client)
        for provider in _ADAPTERS
    }
