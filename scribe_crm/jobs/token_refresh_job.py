"""Proactive CRM token refresh sweep.

Runs every few minutes. Finds credentials expiring within the sweep window
that can be refreshed and refreshes them concurrently, so interactive
requests rarely pay for a refresh. One credential failing or hanging never
stops the others.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.integrations.credential_manager import CredentialLifecycleManager
from scribe_crm.integrations.credential_store import CredentialStore, SupabaseCredentialStore
from scribe_crm.integrations.domain import CRMProvider, Credential

logger = logging.getLogger(__name__)


async def _refresh_one(
    manager: CredentialLifecycleManager,
    credential: Credential,
    timeout: float,
) -> Credential:
    return await asyncio.wait_for(manager.refresh_credential(credential), timeout=timeout)


async def run_token_refresh_job(
    manager: CredentialLifecycleManager | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Refresh every credential expiring within the sweep window.

    Args:
        manager: Credential manager; defaults to one over the Supabase store.
        settings: Settings override.
        now: Clock override.

    Returns:
        Summary dict with sweep statistics.
    """
    settings = settings or get_settings()
    if manager is None:
        store: CredentialStore = SupabaseCredentialStore()
        manager = CredentialLifecycleManager(store, settings=settings)

    stats: dict[str, Any] = {
        "credentials_found": 0,
        "refreshed": 0,
        "failed": 0,
        "timed_out": 0,
    }

    now = now or datetime.now(UTC)
    cutoff = now + timedelta(seconds=settings.TOKEN_SWEEP_WINDOW_SECONDS)

    credentials: list[Credential] = []
    for provider in CRMProvider:
        try:
            expiring = await manager.store.list_expiring(provider, cutoff)
        except Exception:
            logger.exception("Failed to list expiring %s credentials", provider.value)
            continue
        credentials.extend(c for c in expiring if c.refresh_token)

    stats["credentials_found"] = len(credentials)
    if not credentials:
        return stats

    logger.info("Token refresh sweep: refreshing %d credentials", len(credentials))

    timeout = settings.TOKEN_SWEEP_TASK_TIMEOUT_SECONDS
    results = await asyncio.gather(
        *(_refresh_one(manager, c, timeout) for c in credentials),
        return_exceptions=True,
    )

    for credential, result in zip(credentials, results, strict=True):
        if isinstance(result, TimeoutError):
            stats["timed_out"] += 1
            logger.warning(
                "Token refresh timed out",
                extra={"credential_id": credential.id, "provider": credential.provider.value},
            )
        elif isinstance(result, BaseException):
            stats["failed"] += 1
            logger.warning(
                "Token refresh failed: %s",
                result,
                extra={
                    "credential_id": credential.id,
                    "user_id": credential.user_id,
                    "provider": credential.provider.value,
                },
            )
        else:
            stats["refreshed"] += 1

    logger.info("Token refresh sweep complete", extra=stats)
    return stats
