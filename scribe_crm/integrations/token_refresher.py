"""Provider token endpoints for refreshing CRM access tokens.

Each refresher exchanges a refresh token for a new access token and computes
the credential attributes to persist. Rotation of the refresh token is
provider dependent: HubSpot issues a new one on every refresh, Salesforce
keeps the original unless refresh token rotation is enabled on the org.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.core.exceptions import (
    ConfigurationError,
    MissingRefreshToken,
    TokenRefreshError,
    TransportError,
)
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.integrations.http import decode_body, open_client, truncate_body

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by a provider token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    instance_url: str | None = None


class TokenRefresher(ABC):
    """Base class for provider token refreshers."""

    provider: CRMProvider

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http_client = http_client

    @property
    @abstractmethod
    def token_url(self) -> str:
        """Absolute URL of the provider's OAuth token endpoint."""

    @abstractmethod
    def client_credentials(self) -> tuple[str, str]:
        """Return ``(client_id, client_secret)``.

        Raises:
            ConfigurationError: If the OAuth client is not configured.
        """

    @abstractmethod
    def parse_token_response(self, body: dict[str, Any]) -> TokenSet:
        """Extract a TokenSet from a successful token response."""

    def default_lifetime_seconds(self) -> int:
        """Lifetime to assume when the endpoint omits ``expires_in``."""
        return 3600

    async def request_token(self, credential: Credential) -> TokenSet:
        """Exchange the credential's refresh token for a new token set.

        Raises:
            MissingRefreshToken: If the credential has no refresh token.
            TokenRefreshError: If the endpoint rejects the request.
            TransportError: If the endpoint cannot be reached.
        """
        if not credential.refresh_token:
            raise MissingRefreshToken(self.provider.value, credential.id)

        client_id, client_secret = self.client_credentials()
        form = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": credential.refresh_token,
        }

        try:
            async with open_client(
                self._http_client, self._settings.HTTP_TIMEOUT_SECONDS
            ) as client:
                response = await client.post(
                    self.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.error(
                "Token refresh transport failure for %s credential %s: %s",
                self.provider.value,
                credential.id,
                exc,
            )
            raise TransportError(self.provider.value, f"Token endpoint unreachable: {exc}") from exc

        body = decode_body(response)
        if response.status_code != 200 or not isinstance(body, dict):
            logger.error(
                "Token refresh failed for %s credential %s: %s - %s",
                self.provider.value,
                credential.id,
                response.status_code,
                truncate_body(body),
            )
            raise TokenRefreshError(
                self.provider.value,
                f"Failed to refresh {self.provider.value} token",
                status=response.status_code,
                body=body,
            )

        try:
            return self.parse_token_response(body)
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenRefreshError(
                self.provider.value,
                "Token response missing access_token",
                status=response.status_code,
                body=body,
            ) from exc

    def attributes_for(
        self,
        credential: Credential,
        tokens: TokenSet,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Credential attributes to persist after a refresh.

        ``expires_at`` never moves backwards.
        """
        now = now or datetime.now(UTC)
        lifetime = tokens.expires_in or self.default_lifetime_seconds()
        expires_at = now + timedelta(seconds=lifetime)
        if credential.expires_at is not None and credential.expires_at > expires_at:
            expires_at = credential.expires_at

        attrs: dict[str, Any] = {
            "access_token": tokens.access_token,
            "expires_at": expires_at,
        }
        if tokens.refresh_token:
            attrs["refresh_token"] = tokens.refresh_token
        return attrs


class HubSpotTokenRefresher(TokenRefresher):
    """HubSpot OAuth v1 token endpoint."""

    provider = CRMProvider.HUBSPOT

    @property
    def token_url(self) -> str:
        return f"{self._settings.HUBSPOT_API_BASE_URL}/oauth/v1/token"

    def client_credentials(self) -> tuple[str, str]:
        if not self._settings.hubspot_configured:
            raise ConfigurationError("HubSpot OAuth client is not configured")
        return (
            self._settings.HUBSPOT_CLIENT_ID,
            self._settings.HUBSPOT_CLIENT_SECRET.get_secret_value(),
        )

    def parse_token_response(self, body: dict[str, Any]) -> TokenSet:
        expires_in = body.get("expires_in")
        return TokenSet(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
        )


class SalesforceTokenRefresher(TokenRefresher):
    """Salesforce OAuth 2.0 token endpoint."""

    provider = CRMProvider.SALESFORCE

    @property
    def token_url(self) -> str:
        return f"{self._settings.SALESFORCE_LOGIN_URL}/services/oauth2/token"

    def client_credentials(self) -> tuple[str, str]:
        if not self._settings.salesforce_configured:
            raise ConfigurationError("Salesforce OAuth client is not configured")
        return (
            self._settings.SALESFORCE_CLIENT_ID,
            self._settings.SALESFORCE_CLIENT_SECRET.get_secret_value(),
        )

    def default_lifetime_seconds(self) -> int:
        return self._settings.SALESFORCE_SESSION_LIFETIME_SECONDS

    def parse_token_response(self, body: dict[str, Any]) -> TokenSet:
        # Salesforce does not return expires_in; session lifetime is an org setting
        return TokenSet(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            instance_url=body.get("instance_url"),
        )

    def attributes_for(
        self,
        credential: Credential,
        tokens: TokenSet,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        attrs = super().attributes_for(credential, tokens, now)
        if tokens.instance_url:
            _, _, sf_user_id = (credential.external_account_reference or "").partition("|")
            attrs["external_account_reference"] = f"{tokens.instance_url.rstrip('/')}|{sf_user_id}"
        return attrs


_REFRESHERS: dict[CRMProvider, type[TokenRefresher]] = {
    CRMProvider.HUBSPOT: HubSpotTokenRefresher,
    CRMProvider.SALESFORCE: SalesforceTokenRefresher,
}


def get_token_refresher(
    provider: CRMProvider,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> TokenRefresher:
    """Build the token refresher for a provider."""
    return _REFRESHERS[provider](settings=settings, http_client=http_client)
