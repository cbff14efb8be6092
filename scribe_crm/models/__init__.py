"""Domain models shared across integrations and services."""

from scribe_crm.models.crm import (
    FIELD_LABELS,
    PROVIDER_FIELDS,
    AnswerSource,
    CanonicalField,
    Contact,
    ContactAnswer,
    Suggestion,
)

__all__ = [
    "FIELD_LABELS",
    "PROVIDER_FIELDS",
    "AnswerSource",
    "CanonicalField",
    "Contact",
    "ContactAnswer",
    "Suggestion",
]
