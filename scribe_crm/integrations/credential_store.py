"""Durable storage for CRM OAuth credentials."""

import dataclasses
import logging
from datetime import datetime
from typing import Any, Protocol

from scribe_crm.core.config import get_settings
from scribe_crm.db.supabase import SupabaseClient
from scribe_crm.integrations.domain import CRMProvider, Credential

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Credential persistence keyed by (user, provider)."""

    async def get(self, user_id: str, provider: CRMProvider) -> Credential | None: ...

    async def update(self, credential: Credential, **attrs: Any) -> Credential: ...

    async def list_expiring(self, provider: CRMProvider, before: datetime) -> list[Credential]: ...


def credential_from_row(row: dict[str, Any]) -> Credential:
    """Build a Credential from a ``user_credentials`` row."""
    expires_at = row.get("expires_at")
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    return Credential(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        provider=CRMProvider(row["provider"]),
        access_token=row["token"],
        refresh_token=row.get("refresh_token"),
        expires_at=expires_at,
        external_account_reference=row.get("uid"),
        email=row.get("email"),
    )


# Credential attribute → column name
_COLUMNS: dict[str, str] = {
    "access_token": "token",
    "refresh_token": "refresh_token",
    "expires_at": "expires_at",
    "external_account_reference": "uid",
    "email": "email",
}


class SupabaseCredentialStore:
    """CredentialStore backed by the ``user_credentials`` table.

    Queries go through ``SupabaseClient.run`` and execute off the event loop.
    """

    def __init__(self, table: str | None = None) -> None:
        self._table = table or get_settings().CREDENTIALS_TABLE

    async def get(self, user_id: str, provider: CRMProvider) -> Credential | None:
        """Fetch a user's credential for a provider, or None if not connected."""
        response = await SupabaseClient.run(
            lambda db: db.table(self._table)
            .select("*")
            .eq("user_id", user_id)
            .eq("provider", provider.value)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return credential_from_row(rows[0]) if rows else None

    async def update(self, credential: Credential, **attrs: Any) -> Credential:
        """Persist changed attributes and return the updated credential.

        Raises:
            ValueError: If an attribute is not a persisted credential field.
        """
        unknown = set(attrs) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown credential attributes: {', '.join(sorted(unknown))}")

        data: dict[str, Any] = {}
        for attr, value in attrs.items():
            data[_COLUMNS[attr]] = value.isoformat() if isinstance(value, datetime) else value

        response = await SupabaseClient.run(
            lambda db: db.table(self._table).update(data).eq("id", credential.id).execute()
        )
        if response.data:
            return credential_from_row(response.data[0])

        logger.warning(
            "Credential update returned no rows",
            extra={"credential_id": credential.id, "provider": credential.provider.value},
        )
        return dataclasses.replace(credential, **attrs)

    async def list_expiring(self, provider: CRMProvider, before: datetime) -> list[Credential]:
        """Credentials for ``provider`` expiring at or before ``before`` that can be refreshed."""
        response = await SupabaseClient.run(
            lambda db: db.table(self._table)
            .select("*")
            .eq("provider", provider.value)
            .lte("expires_at", before.isoformat())
            .not_.is_("refresh_token", "null")
            .execute()
        )
        return [credential_from_row(row) for row in response.data or []]
