"""HubSpot CRM v3 contacts adapter."""

import logging
import re
from typing import Any

from scribe_crm.integrations.crm.base import SEARCH_LIMIT, CRMAdapter
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.models.crm import PROVIDER_FIELDS, CanonicalField, Contact

logger = logging.getLogger(__name__)

# HubSpot error categories that mean the token is no longer usable
_AUTH_CATEGORIES = frozenset({"EXPIRED_AUTHENTICATION", "INVALID_AUTHENTICATION"})

_WHITESPACE = re.compile(r"\s+")


class HubSpotAdapter(CRMAdapter):
    """Contacts over ``/crm/v3/objects/contacts``."""

    provider = CRMProvider.HUBSPOT
    field_map = {field: field.value for field in PROVIDER_FIELDS[CRMProvider.HUBSPOT]} | {
        CanonicalField.TWITTER_HANDLE: "twitterhandle",
    }

    @property
    def _contacts_url(self) -> str:
        return f"{self._settings.HUBSPOT_API_BASE_URL}/crm/v3/objects/contacts"

    @property
    def _properties(self) -> list[str]:
        return list(self.field_map.values())

    def sanitize_query(self, query: str) -> str:
        # Search endpoint takes free text; only control characters and runs of whitespace matter
        cleaned = "".join(ch for ch in query if ch.isprintable())
        return _WHITESPACE.sub(" ", cleaned).strip()

    def is_auth_error(self, status: int, body: Any) -> bool:
        if status == 401:
            return True
        return isinstance(body, dict) and body.get("category") in _AUTH_CATEGORIES

    def _to_contact(self, record: dict[str, Any]) -> Contact:
        return self.contact_from_properties(record["id"], record.get("properties") or {})

    async def _search(self, credential: Credential, query: str) -> list[Contact]:
        body = await self._request(
            credential,
            "POST",
            f"{self._contacts_url}/search",
            json={"query": query, "limit": SEARCH_LIMIT, "properties": self._properties},
        )
        results = body.get("results", []) if isinstance(body, dict) else []
        return [self._to_contact(r) for r in results if isinstance(r, dict) and "id" in r]

    async def _get(self, credential: Credential, contact_id: str) -> Contact:
        body = await self._request(
            credential,
            "GET",
            f"{self._contacts_url}/{contact_id}",
            params={"properties": ",".join(self._properties)},
        )
        return self._to_contact(body)

    async def _update(
        self, credential: Credential, contact_id: str, wire_diff: dict[str, Any]
    ) -> Contact:
        body = await self._request(
            credential,
            "PATCH",
            f"{self._contacts_url}/{contact_id}",
            json={"properties": wire_diff},
        )
        logger.info(
            "Updated HubSpot contact",
            extra={"contact_id": contact_id, "fields": sorted(wire_diff)},
        )
        return self._to_contact(body)
