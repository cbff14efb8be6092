"""Tests for prompt builders."""

from scribe_crm.integrations.domain import CRMProvider
from scribe_crm.services.prompts import (
    build_question_prompt,
    build_suggestion_prompt,
    crm_source_names,
    format_contact_snapshot,
)


def test_suggestion_prompt_lists_provider_fields() -> None:
    prompt = build_suggestion_prompt("[00:01] Jane: hi", CRMProvider.HUBSPOT)

    assert "use exactly: firstname, lastname, email, phone" in prompt
    assert prompt.rstrip().endswith("Meeting transcript:\n[00:01] Jane: hi")
    assert '{"field": "phone", "value": "555-123-4567"' in prompt


def test_salesforce_prompt_mentions_name_corrections() -> None:
    prompt = build_suggestion_prompt("", CRMProvider.SALESFORCE)

    assert "First name or last name corrections" in prompt
    assert "website" not in prompt


def test_format_contact_snapshot() -> None:
    snapshot = format_contact_snapshot("Salesforce - Ana Silva", {"email": "ana@globex.com", "phone": None})

    assert snapshot == "Source: Salesforce - Ana Silva\n  - email: ana@globex.com\n  - phone: N/A"


def test_crm_source_names() -> None:
    labels = ["HubSpot - Jane Doe", "Salesforce - Ana Silva", "HubSpot - John Doe"]
    assert crm_source_names(labels) == ["HubSpot", "Salesforce"]


def test_question_prompt_without_contacts() -> None:
    prompt = build_question_prompt("Who joined?", "[00:01] Jane: hi", {})

    assert "Use ONLY the meeting transcript" in prompt
    assert "Question: Who joined?" in prompt


def test_question_prompt_with_contacts() -> None:
    prompt = build_question_prompt(
        "Where does Ana work?",
        "[00:01] Ana: hi",
        {"Salesforce - Ana Silva": {"company": "Globex"}},
    )

    assert "CRM data (Meeting, Salesforce)" in prompt
    assert "Source: Salesforce - Ana Silva\n  - company: Globex" in prompt
    assert '"sources": ["Meeting"] or ["Salesforce"]' in prompt
