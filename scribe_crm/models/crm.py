"""Domain models for CRM contacts, suggestions and contact answers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from scribe_crm.integrations.domain import CRMProvider


class CanonicalField(str, Enum):
    """Provider-agnostic contact attribute names.

    Adapters translate these to wire names at the integration boundary.
    """

    FIRSTNAME = "firstname"
    LASTNAME = "lastname"
    EMAIL = "email"
    PHONE = "phone"
    MOBILEPHONE = "mobilephone"
    COMPANY = "company"
    JOBTITLE = "jobtitle"
    ADDRESS = "address"
    CITY = "city"
    STATE = "state"
    ZIP = "zip"
    COUNTRY = "country"
    WEBSITE = "website"
    LINKEDIN_URL = "linkedin_url"
    TWITTER_HANDLE = "twitter_handle"

    @classmethod
    def parse(cls, value: Any) -> "CanonicalField | None":
        """Normalize a loosely-typed field name, or None if it is not canonical."""
        if isinstance(value, CanonicalField):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


CORE_FIELDS: tuple[CanonicalField, ...] = (
    CanonicalField.FIRSTNAME,
    CanonicalField.LASTNAME,
    CanonicalField.EMAIL,
    CanonicalField.PHONE,
    CanonicalField.MOBILEPHONE,
    CanonicalField.COMPANY,
    CanonicalField.JOBTITLE,
    CanonicalField.ADDRESS,
    CanonicalField.CITY,
    CanonicalField.STATE,
    CanonicalField.ZIP,
    CanonicalField.COUNTRY,
)

# Vocabulary each provider accepts in suggestions and updates
PROVIDER_FIELDS: dict[CRMProvider, tuple[CanonicalField, ...]] = {
    CRMProvider.HUBSPOT: CORE_FIELDS
    + (
        CanonicalField.WEBSITE,
        CanonicalField.LINKEDIN_URL,
        CanonicalField.TWITTER_HANDLE,
    ),
    CRMProvider.SALESFORCE: CORE_FIELDS,
}

FIELD_LABELS: dict[CanonicalField, str] = {
    CanonicalField.FIRSTNAME: "First Name",
    CanonicalField.LASTNAME: "Last Name",
    CanonicalField.EMAIL: "Email",
    CanonicalField.PHONE: "Phone",
    CanonicalField.MOBILEPHONE: "Mobile Phone",
    CanonicalField.COMPANY: "Company",
    CanonicalField.JOBTITLE: "Job Title",
    CanonicalField.ADDRESS: "Address",
    CanonicalField.CITY: "City",
    CanonicalField.STATE: "State",
    CanonicalField.ZIP: "ZIP Code",
    CanonicalField.COUNTRY: "Country",
    CanonicalField.WEBSITE: "Website",
    CanonicalField.LINKEDIN_URL: "LinkedIn",
    CanonicalField.TWITTER_HANDLE: "Twitter",
}


@dataclass
class Contact:
    """A CRM contact in canonical form."""

    external_id: str
    provider: CRMProvider
    fields: dict[CanonicalField, str | None] = field(default_factory=dict)

    def get(self, name: CanonicalField) -> str | None:
        return self.fields.get(name)

    @property
    def display_name(self) -> str:
        """``"first last"``, falling back to email, then empty."""
        first = self.fields.get(CanonicalField.FIRSTNAME) or ""
        last = self.fields.get(CanonicalField.LASTNAME) or ""
        name = f"{first} {last}".strip()
        if name:
            return name
        return self.fields.get(CanonicalField.EMAIL) or ""

    def to_dict(self) -> dict[str, Any]:
        """Serialise to JSON-friendly dict."""
        data: dict[str, Any] = {
            "id": self.external_id,
            "provider": self.provider.value,
            "display_name": self.display_name,
        }
        for name, value in self.fields.items():
            data[name.value] = value
        return data


@dataclass
class Suggestion:
    """A proposed single-field contact update extracted from a transcript."""

    field: CanonicalField
    proposed_value: str
    source_quote: str | None = None
    source_timestamp: str | None = None
    current_value: str | None = None
    apply: bool = False

    @property
    def label(self) -> str:
        return FIELD_LABELS[self.field]

    @property
    def changes_value(self) -> bool:
        return (self.current_value or "") != self.proposed_value

    def to_dict(self) -> dict[str, Any]:
        """Serialise to JSON-friendly dict."""
        return {
            "field": self.field.value,
            "label": self.label,
            "proposed_value": self.proposed_value,
            "current_value": self.current_value,
            "source_quote": self.source_quote,
            "source_timestamp": self.source_timestamp,
            "apply": self.apply,
        }


class AnswerSource(str, Enum):
    """Where an assistant answer came from."""

    MEETING = "meeting"
    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"

    @classmethod
    def parse(cls, value: Any) -> "AnswerSource | None":
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class ContactAnswer:
    """Answer to a free-text question about a meeting and its contacts."""

    answer: str
    sources: list[AnswerSource] = field(default_factory=lambda: [AnswerSource.MEETING])
