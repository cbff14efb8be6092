"""Integrations with external services.

This package contains the CRM gateways, the credential lifecycle manager and
the generative text client.
"""

from scribe_crm.integrations.domain import (
    PROVIDER_CONFIGS,
    CRMProvider,
    Credential,
    ProviderConfig,
    get_provider_config,
)

__all__ = [
    "PROVIDER_CONFIGS",
    "CRMProvider",
    "Credential",
    "ProviderConfig",
    "get_provider_config",
]
