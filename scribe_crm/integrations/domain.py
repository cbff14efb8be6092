"""Domain models for CRM OAuth credentials and provider configuration."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum


class CRMProvider(str, Enum):
    """Supported CRM providers."""

    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"


@dataclass
class Credential:
    """A user's OAuth token set for one CRM.

    ``external_account_reference`` is provider specific: HubSpot stores the
    portal/user id, Salesforce stores ``"<instance_url>|<user_id>"``.
    """

    id: str
    user_id: str
    provider: CRMProvider
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    external_account_reference: str | None = None
    email: str | None = None

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        """Whether the token expires within ``seconds`` (or already has).

        A credential without ``expires_at`` never expires.
        """
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return self.expires_at <= now + timedelta(seconds=seconds)


@dataclass(frozen=True)
class ProviderConfig:
    """Per-provider display settings for contact workflows and chat."""

    provider: CRMProvider
    display_name: str
    modal_id_prefix: str
    avatar_color: str


PROVIDER_CONFIGS: dict[CRMProvider, ProviderConfig] = {
    CRMProvider.HUBSPOT: ProviderConfig(
        provider=CRMProvider.HUBSPOT,
        display_name="HubSpot",
        modal_id_prefix="hubspot",
        avatar_color="#ff7a59",
    ),
    CRMProvider.SALESFORCE: ProviderConfig(
        provider=CRMProvider.SALESFORCE,
        display_name="Salesforce",
        modal_id_prefix="salesforce",
        avatar_color="#00a1e0",
    ),
}


def get_provider_config(provider: CRMProvider | str) -> ProviderConfig:
    """Return the configuration for a provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    return PROVIDER_CONFIGS[CRMProvider(provider)]
