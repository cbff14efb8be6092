"""Shared fixtures for scribe_crm tests."""

import dataclasses
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from scribe_crm.core.config import Settings
from scribe_crm.integrations.credential_manager import CredentialLifecycleManager
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.integrations.token_refresher import get_token_refresher

Handler = Callable[[httpx.Request], httpx.Response]


class InMemoryCredentialStore:
    """CredentialStore keeping credentials in a dict and recording updates."""

    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self.credentials: dict[str, Credential] = {c.id: c for c in credentials or []}
        self.updates: list[tuple[str, dict[str, Any]]] = []

    async def get(self, user_id: str, provider: CRMProvider) -> Credential | None:
        for credential in self.credentials.values():
            if credential.user_id == user_id and credential.provider == provider:
                return credential
        return None

    async def update(self, credential: Credential, **attrs: Any) -> Credential:
        updated = dataclasses.replace(credential, **attrs)
        self.credentials[credential.id] = updated
        self.updates.append((credential.id, attrs))
        return updated

    async def list_expiring(self, provider: CRMProvider, before: datetime) -> list[Credential]:
        return [
            c
            for c in self.credentials.values()
            if c.provider == provider
            and c.refresh_token
            and c.expires_at is not None
            and c.expires_at <= before
        ]


@pytest.fixture
def settings() -> Settings:
    """Settings with every external service configured."""
    return Settings(
        _env_file=None,
        GEMINI_API_KEY="test-gemini-key",
        HUBSPOT_CLIENT_ID="hs-client-id",
        HUBSPOT_CLIENT_SECRET="hs-client-secret",
        SALESFORCE_CLIENT_ID="sf-client-id",
        SALESFORCE_CLIENT_SECRET="sf-client-secret",
        ENABLE_SCHEDULER=False,
    )


@pytest.fixture
def hubspot_credential() -> Credential:
    """HubSpot credential valid for another hour."""
    return Credential(
        id="cred-hs-1",
        user_id="user-1",
        provider=CRMProvider.HUBSPOT,
        access_token="hs-access",
        refresh_token="hs-refresh",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        external_account_reference="hub-123",
        email="owner@example.com",
    )


@pytest.fixture
def salesforce_credential() -> Credential:
    """Salesforce credential valid for another hour."""
    return Credential(
        id="cred-sf-1",
        user_id="user-1",
        provider=CRMProvider.SALESFORCE,
        access_token="sf-access",
        refresh_token="sf-refresh",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        external_account_reference="https://acme.my.salesforce.com|005000000000001",
    )


@pytest.fixture
def store(
    hubspot_credential: Credential, salesforce_credential: Credential
) -> InMemoryCredentialStore:
    return InMemoryCredentialStore([hubspot_credential, salesforce_credential])


@pytest.fixture
def make_client() -> Callable[[Handler], tuple[httpx.AsyncClient, list[httpx.Request]]]:
    """Build an AsyncClient over a MockTransport that records every request."""

    def _make(handler: Handler) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_record)), requests

    return _make


@pytest.fixture
def make_manager(
    settings: Settings, store: InMemoryCredentialStore
) -> Callable[[httpx.AsyncClient], CredentialLifecycleManager]:
    """Credential manager whose token refreshers share the given client."""

    def _make(client: httpx.AsyncClient) -> CredentialLifecycleManager:
        refreshers = {p: get_token_refresher(p, settings, client) for p in CRMProvider}
        return CredentialLifecycleManager(store, refreshers=refreshers, settings=settings)

    return _make
