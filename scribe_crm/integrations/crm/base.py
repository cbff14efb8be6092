"""Base class for CRM contact adapters.

Adapters own everything provider specific: endpoint layout, query
sanitization, canonical-to-wire field translation and auth-error detection.
Callers only ever see canonical ``Contact`` objects and the exception
hierarchy in ``scribe_crm.core.exceptions``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import httpx

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.core.exceptions import (
    CRMAuthError,
    FieldValidationError,
    RateLimitedError,
    TransportError,
    error_for_status,
)
from scribe_crm.integrations.credential_manager import CredentialLifecycleManager
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.integrations.http import decode_body, open_client, truncate_body
from scribe_crm.models.crm import PROVIDER_FIELDS, CanonicalField, Contact, Suggestion

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10


class CRMAdapter(ABC):
    """Uniform contact operations over one CRM's REST API.

    Every public operation runs through the credential lifecycle manager,
    so tokens are refreshed before use and once more on an auth failure.
    """

    provider: CRMProvider
    # Canonical field -> provider wire name
    field_map: dict[CanonicalField, str]

    def __init__(
        self,
        credentials: CredentialLifecycleManager,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self._settings = settings or get_settings()
        self._http_client = http_client

    @property
    def service_name(self) -> str:
        return self.provider.value

    @property
    def supported_fields(self) -> tuple[CanonicalField, ...]:
        return PROVIDER_FIELDS[self.provider]

    # -- public operations -------------------------------------------------

    async def search(self, credential: Credential, query: str) -> list[Contact]:
        """Search contacts, returning at most ``SEARCH_LIMIT`` ranked results.

        A query that sanitizes to nothing returns ``[]`` without a request.
        """
        sanitized = self.sanitize_query(query)
        if not sanitized:
            return []

        async def _op(cred: Credential) -> list[Contact]:
            return await self._search(cred, sanitized)

        contacts = await self._credentials.with_retry(credential, _op)
        return contacts[:SEARCH_LIMIT]

    async def get(self, credential: Credential, contact_id: str) -> Contact:
        """Fetch one contact.

        Raises:
            CRMNotFoundError: If the contact does not exist.
        """

        async def _op(cred: Credential) -> Contact:
            return await self._get(cred, contact_id)

        return await self._credentials.with_retry(credential, _op)

    async def update(
        self,
        credential: Credential,
        contact_id: str,
        field_diff: dict[CanonicalField, str],
    ) -> Contact:
        """Write a canonical field diff and return the refreshed contact.

        Fields that fail translation are dropped. When nothing survives the
        PATCH is skipped and the current contact is returned.
        """
        wire_diff = self.translate_diff(field_diff)
        if not wire_diff:
            logger.info(
                "No %s fields left to update after translation",
                self.service_name,
                extra={"contact_id": contact_id, "requested": [f.value for f in field_diff]},
            )
            return await self.get(credential, contact_id)

        async def _op(cred: Credential) -> Contact:
            return await self._update(cred, contact_id, wire_diff)

        return await self._credentials.with_retry(credential, _op)

    async def apply_updates(
        self,
        credential: Credential,
        contact_id: str,
        suggestions: Iterable[Suggestion],
    ) -> Contact | None:
        """Apply the suggestions marked ``apply``.

        Returns:
            The refreshed contact, or None when nothing was selected.
        """
        diff = {s.field: s.proposed_value for s in suggestions if s.apply}
        if not diff:
            return None
        return await self.update(credential, contact_id, diff)

    # -- translation -------------------------------------------------------

    def translate_diff(self, field_diff: dict[CanonicalField, str]) -> dict[str, Any]:
        """Translate a canonical diff to wire names, dropping invalid fields."""
        wire: dict[str, Any] = {}
        for canonical, value in field_diff.items():
            try:
                name, wire_value = self.translate_field(canonical, value)
            except FieldValidationError as e:
                logger.warning(
                    "Dropping %s field from update: %s",
                    self.service_name,
                    e.reason,
                    extra={"field": canonical.value},
                )
                continue
            wire[name] = wire_value
        return wire

    def translate_field(self, canonical: CanonicalField, value: str) -> tuple[str, Any]:
        """Map one canonical field/value to its wire name/value.

        Raises:
            FieldValidationError: If the provider cannot accept the field or value.
        """
        name = self.field_map.get(canonical)
        if name is None or canonical not in self.supported_fields:
            raise FieldValidationError(
                canonical.value, value, f"not supported by {self.service_name}"
            )
        return name, value

    def contact_from_properties(self, external_id: str, properties: dict[str, Any]) -> Contact:
        """Build a canonical contact from a wire property map."""
        fields: dict[CanonicalField, str | None] = {}
        for canonical in self.supported_fields:
            wire_name = self.field_map.get(canonical)
            if wire_name is not None:
                fields[canonical] = properties.get(wire_name)
        return Contact(external_id=str(external_id), provider=self.provider, fields=fields)

    # -- transport ---------------------------------------------------------

    def is_auth_error(self, status: int, body: Any) -> bool:
        """Whether a failed response means the access token was rejected."""
        return status == 401

    async def _request(
        self,
        credential: Credential,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Any:
        """Send an authenticated request and return the decoded body.

        Raises:
            TransportError: If no response was received.
            CRMAuthError: If the provider rejected the token.
            ExternalServiceError: For any other non-2xx response.
        """
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            async with open_client(
                self._http_client, self._settings.HTTP_TIMEOUT_SECONDS
            ) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(
                "%s request failed: %s",
                self.service_name,
                exc,
                extra={"credential_id": credential.id, "method": method},
            )
            raise TransportError(self.service_name, f"{self.service_name} unreachable: {exc}") from exc

        body = decode_body(response)
        if response.is_success:
            return body

        status = response.status_code
        logger.error(
            "%s API error: %s - %s",
            self.service_name,
            status,
            truncate_body(body),
            extra={"credential_id": credential.id, "method": method, "status": status},
        )
        if self.is_auth_error(status, body):
            raise CRMAuthError(self.service_name, status=status, body=body)
        if status == 429:
            raise RateLimitedError(
                self.service_name,
                retry_after=_retry_after_header(response),
                status=status,
                body=body,
            )
        raise error_for_status(self.service_name, status, body)

    # -- provider hooks ----------------------------------------------------

    @abstractmethod
    def sanitize_query(self, query: str) -> str:
        """Strip characters significant to the provider's search syntax."""

    @abstractmethod
    async def _search(self, credential: Credential, query: str) -> list[Contact]: ...

    @abstractmethod
    async def _get(self, credential: Credential, contact_id: str) -> Contact: ...

    @abstractmethod
    async def _update(
        self, credential: Credential, contact_id: str, wire_diff: dict[str, Any]
    ) -> Contact: ...


def _retry_after_header(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None
