"""Credential lifecycle: validate-or-refresh before use, refresh-and-retry on auth failure."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.core.exceptions import CRMAuthError, MissingRefreshToken
from scribe_crm.integrations.credential_store import CredentialStore
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.integrations.token_refresher import TokenRefresher, get_token_refresher

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CredentialLifecycleManager:
    """Keeps CRM credentials usable across API calls.

    Every refresh is persisted through the credential store before the new
    token is used, so a crash mid-operation never loses a rotated refresh
    token.
    """

    def __init__(
        self,
        store: CredentialStore,
        refreshers: dict[CRMProvider, TokenRefresher] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._refreshers = refreshers or {
            provider: get_token_refresher(provider, self._settings) for provider in CRMProvider
        }

    @property
    def store(self) -> CredentialStore:
        return self._store

    async def ensure_valid(
        self,
        credential: Credential,
        now: datetime | None = None,
    ) -> Credential:
        """Return a credential that is safe to use right now.

        Refreshes when the token expires within the refresh window.

        Raises:
            MissingRefreshToken: If the token is expiring and cannot be refreshed.
            TokenRefreshError: If the provider refuses the refresh.
        """
        window = self._settings.TOKEN_REFRESH_WINDOW_SECONDS
        if not credential.expires_within(window, now):
            return credential

        if not credential.refresh_token:
            logger.warning(
                "Credential expiring without refresh token",
                extra={"credential_id": credential.id, "provider": credential.provider.value},
            )
            raise MissingRefreshToken(credential.provider.value, credential.id)

        return await self.refresh_credential(credential, now=now)

    async def refresh_credential(
        self,
        credential: Credential,
        now: datetime | None = None,
    ) -> Credential:
        """Refresh the access token and persist the new token set.

        Args:
            credential: The credential to refresh.
            now: Clock override for expiry calculation.

        Returns:
            The persisted credential.

        Raises:
            MissingRefreshToken: If the credential has no refresh token.
            TokenRefreshError: If the provider refuses the refresh.
            TransportError: If the token endpoint cannot be reached.
        """
        refresher = self._refreshers[credential.provider]
        tokens = await refresher.request_token(credential)
        attrs = refresher.attributes_for(credential, tokens, now or datetime.now(UTC))
        updated = await self._store.update(credential, **attrs)

        logger.info(
            "Refreshed %s token",
            credential.provider.value,
            extra={
                "credential_id": credential.id,
                "user_id": credential.user_id,
                "expires_at": updated.expires_at.isoformat() if updated.expires_at else None,
            },
        )
        return updated

    async def with_retry(
        self,
        credential: Credential,
        operation: Callable[[Credential], Awaitable[T]],
    ) -> T:
        """Run ``operation`` with a valid credential, refreshing once on auth failure.

        The operation receives the credential to use. If it raises
        ``CRMAuthError`` the credential is refreshed, persisted, and the
        operation is retried exactly once; a second failure propagates.
        """
        credential = await self.ensure_valid(credential)
        try:
            return await operation(credential)
        except CRMAuthError as e:
            logger.info(
                "Auth failure from %s, refreshing and retrying once",
                credential.provider.value,
                extra={"credential_id": credential.id, "status": e.status},
            )

        refreshed = await self.refresh_credential(credential)
        return await operation(refreshed)
