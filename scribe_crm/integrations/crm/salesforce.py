"""Salesforce REST contacts adapter."""

import logging
import re
from typing import Any

from scribe_crm.core.exceptions import FieldValidationError
from scribe_crm.integrations.crm.base import SEARCH_LIMIT, CRMAdapter
from scribe_crm.integrations.domain import CRMProvider, Credential
from scribe_crm.models.crm import CanonicalField, Contact

logger = logging.getLogger(__name__)

# SOSL reserved characters
_SOSL_SPECIAL = re.compile(r"[{}\[\]()~!^&|:\\'\"/]")
_SALESFORCE_ID = re.compile(r"^[A-Za-z0-9]{15}([A-Za-z0-9]{3})?$")

_AUTH_ERROR_CODES = frozenset({"INVALID_SESSION_ID", "INVALID_AUTH_HEADER"})
_AUTH_OAUTH_ERRORS = frozenset({"invalid_grant", "invalid_token", "expired_token"})

# Relationship fields (Account.Name) are rejected by the sobject endpoint in some editions
_CONTACT_FIELDS = (
    "Id",
    "FirstName",
    "LastName",
    "Email",
    "Phone",
    "MobilePhone",
    "Title",
    "Department",
    "MailingStreet",
    "MailingCity",
    "MailingState",
    "MailingPostalCode",
    "MailingCountry",
)


def is_salesforce_id(value: Any) -> bool:
    """Whether ``value`` looks like a 15 or 18 character record id."""
    return isinstance(value, str) and bool(_SALESFORCE_ID.match(value))


def parse_instance_url(reference: str | None, default: str) -> str:
    """Extract the instance URL from an ``"<instance_url>|<user_id>"`` reference."""
    if reference:
        parts = reference.split("|")
        if len(parts) == 2 and parts[0]:
            return parts[0].rstrip("/")
    return default


class SalesforceAdapter(CRMAdapter):
    """Contacts over ``/services/data/<version>/sobjects/Contact`` and SOSL search."""

    provider = CRMProvider.SALESFORCE
    field_map = {
        CanonicalField.FIRSTNAME: "FirstName",
        CanonicalField.LASTNAME: "LastName",
        CanonicalField.EMAIL: "Email",
        CanonicalField.PHONE: "Phone",
        CanonicalField.MOBILEPHONE: "MobilePhone",
        CanonicalField.COMPANY: "AccountId",
        CanonicalField.JOBTITLE: "Title",
        CanonicalField.ADDRESS: "MailingStreet",
        CanonicalField.CITY: "MailingCity",
        CanonicalField.STATE: "MailingState",
        CanonicalField.ZIP: "MailingPostalCode",
        CanonicalField.COUNTRY: "MailingCountry",
    }

    def _data_url(self, credential: Credential) -> str:
        instance_url = parse_instance_url(
            credential.external_account_reference, self._settings.SALESFORCE_LOGIN_URL
        )
        return f"{instance_url}/services/data/{self._settings.SALESFORCE_API_VERSION}"

    def sanitize_query(self, query: str) -> str:
        return _SOSL_SPECIAL.sub("", query).strip()

    def is_auth_error(self, status: int, body: Any) -> bool:
        if status == 401:
            return True
        if isinstance(body, list):
            return any(
                isinstance(item, dict) and item.get("errorCode") in _AUTH_ERROR_CODES
                for item in body
            )
        if isinstance(body, dict):
            return body.get("error") in _AUTH_OAUTH_ERRORS
        return False

    def translate_field(self, canonical: CanonicalField, value: str) -> tuple[str, Any]:
        name, wire_value = super().translate_field(canonical, value)
        if name == "AccountId" and not is_salesforce_id(wire_value):
            raise FieldValidationError(
                canonical.value, value, "AccountId requires a 15 or 18 character record id"
            )
        return name, wire_value

    def _to_contact(self, record: dict[str, Any]) -> Contact:
        contact = self.contact_from_properties(record["Id"], record)
        account = record.get("Account")
        if isinstance(account, dict) and account.get("Name"):
            contact.fields[CanonicalField.COMPANY] = account["Name"]
        else:
            contact.fields[CanonicalField.COMPANY] = record.get("AccountName") or record.get(
                "Company__c"
            )
        return contact

    async def _search(self, credential: Credential, query: str) -> list[Contact]:
        sosl = (
            f"FIND {{{query}}} IN ALL FIELDS "
            f"RETURNING Contact({', '.join(_CONTACT_FIELDS)} LIMIT {SEARCH_LIMIT})"
        )
        body = await self._request(
            credential,
            "GET",
            f"{self._data_url(credential)}/search/",
            params={"q": sosl},
        )
        if isinstance(body, dict):
            records = body.get("searchRecords", [])
        elif isinstance(body, list):
            records = body
        else:
            records = []
        return [self._to_contact(r) for r in records if isinstance(r, dict) and "Id" in r]

    async def _get(self, credential: Credential, contact_id: str) -> Contact:
        body = await self._request(
            credential,
            "GET",
            f"{self._data_url(credential)}/sobjects/Contact/{contact_id}",
            params={"fields": ",".join(_CONTACT_FIELDS)},
        )
        return self._to_contact(body)

    async def _update(
        self, credential: Credential, contact_id: str, wire_diff: dict[str, Any]
    ) -> Contact:
        # PATCH answers 204 No Content; re-read to return the stored record
        await self._request(
            credential,
            "PATCH",
            f"{self._data_url(credential)}/sobjects/Contact/{contact_id}",
            json=wire_diff,
        )
        logger.info(
            "Updated Salesforce contact",
            extra={"contact_id": contact_id, "fields": sorted(wire_diff)},
        )
        return await self._get(credential, contact_id)
