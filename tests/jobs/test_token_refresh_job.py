"""Tests for the proactive token refresh sweep."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import InMemoryCredentialStore
from scribe_crm.core.config import Settings
from scribe_crm.core.exceptions import TokenRefreshError
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.jobs.token_refresh_job import run_token_refresh_job

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def credential(credential_id: str, provider: CRMProvider, expires_in: timedelta, refresh: bool = True) -> Credential:
    return Credential(
        id=credential_id,
        user_id=f"user-{credential_id}",
        provider=provider,
        access_token="access",
        refresh_token="refresh" if refresh else None,
        expires_at=NOW + expires_in,
    )


@pytest.fixture
def sweep_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"TOKEN_SWEEP_TASK_TIMEOUT_SECONDS": 0.05})


@pytest.fixture
def manager() -> MagicMock:
    store = InMemoryCredentialStore(
        [
            credential("ok", CRMProvider.HUBSPOT, timedelta(minutes=4)),
            credential("hang", CRMProvider.HUBSPOT, timedelta(minutes=9)),
            credential("fail", CRMProvider.SALESFORCE, timedelta(minutes=-5)),
            credential("later", CRMProvider.SALESFORCE, timedelta(hours=2)),
            credential("no-refresh", CRMProvider.HUBSPOT, timedelta(minutes=1), refresh=False),
        ]
    )

    async def _refresh(credential: Credential) -> Credential:
        if credential.id == "hang":
            await asyncio.sleep(10)
        if credential.id == "fail":
            raise TokenRefreshError("salesforce", status=400, body={"error": "invalid_grant"})
        return credential

    manager = MagicMock()
    manager.store = store
    manager.refresh_credential = AsyncMock(side_effect=_refresh)
    return manager


class TestRunTokenRefreshJob:
    """Tests for run_token_refresh_job."""

    @pytest.mark.asyncio
    async def test_failures_and_timeouts_do_not_stop_sweep(self, manager, sweep_settings) -> None:
        stats = await run_token_refresh_job(manager, sweep_settings, now=NOW)

        assert stats == {"credentials_found": 3, "refreshed": 1, "failed": 1, "timed_out": 1}
        refreshed_ids = {call.args[0].id for call in manager.refresh_credential.await_args_list}
        assert refreshed_ids == {"ok", "hang", "fail"}

    @pytest.mark.asyncio
    async def test_nothing_expiring(self, manager, sweep_settings) -> None:
        stats = await run_token_refresh_job(manager, sweep_settings, now=NOW - timedelta(hours=1))

        assert stats == {"credentials_found": 0, "refreshed": 0, "failed": 0, "timed_out": 0}
        manager.refresh_credential.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_listing_failure_skips_provider(self, manager, sweep_settings) -> None:
        store = manager.store
        real_list = store.list_expiring

        async def _list(provider: CRMProvider, before: datetime) -> list[Credential]:
            if provider == CRMProvider.HUBSPOT:
                raise RuntimeError("database unavailable")
            return await real_list(provider, before)

        store.list_expiring = _list

        stats = await run_token_refresh_job(manager, sweep_settings, now=NOW)

        assert stats["credentials_found"] == 1
        assert stats["failed"] == 1

    @pytest.mark.asyncio
    async def test_refreshes_through_token_endpoints(
        self, make_client, make_manager, store, settings, hubspot_credential
    ) -> None:
        """Test a real manager persists HubSpot tokens while a Salesforce refusal is counted."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v1/token":
                return httpx.Response(200, json={"access_token": "hs-new", "expires_in": 1800})
            return httpx.Response(400, json={"error": "invalid_grant"})

        client, requests = make_client(handler)
        now = hubspot_credential.expires_at - timedelta(minutes=5)

        stats = await run_token_refresh_job(make_manager(client), settings, now=now)

        assert stats == {"credentials_found": 2, "refreshed": 1, "failed": 1, "timed_out": 0}
        assert sorted(r.url.path for r in requests) == ["/oauth/v1/token", "/services/oauth2/token"]
        persisted = store.credentials["cred-hs-1"]
        assert persisted.access_token == "hs-new"
        assert persisted.refresh_token == "hs-refresh"
        assert store.credentials["cred-sf-1"].access_token == "sf-access"
