"""Prompt templates for contact-update extraction and contact questions."""

from scribe_crm.integrations.domain import CRMProvider, get_provider_config
from scribe_crm.models.crm import PROVIDER_FIELDS

# Bullet list of what to look for, per provider
_LOOK_FOR: dict[CRMProvider, str] = {
    CRMProvider.HUBSPOT: """\
- Phone numbers (phone, mobilephone)
- Email addresses (email)
- Company name (company)
- Job title/role (jobtitle)
- Physical address details (address, city, state, zip, country)
- Website URLs (website)
- LinkedIn profile (linkedin_url)
- Twitter handle (twitter_handle)""",
    CRMProvider.SALESFORCE: """\
- Phone numbers (phone, mobilephone)
- Email addresses (email)
- Company name (company)
- Job title/role (jobtitle)
- Physical address details (address, city, state, zip, country)
- First name or last name corrections (firstname, lastname)""",
}

_CRM_TARGET: dict[CRMProvider, str] = {
    CRMProvider.HUBSPOT: "a CRM contact record",
    CRMProvider.SALESFORCE: "a Salesforce CRM contact record",
}

SUGGESTION_PROMPT = """\
You are an AI assistant that extracts contact information updates from meeting transcripts.

Analyze the following meeting transcript and extract any information that could be used to update {target}.

Look for mentions of:
{look_for}

IMPORTANT: Only extract information that is EXPLICITLY mentioned in the transcript. Do not infer or guess.

The transcript includes timestamps in [MM:SS] format at the start of each line.

Return your response as a JSON array of objects. Each object should have:
- "field": the CRM field name (use exactly: {field_names})
- "value": the extracted value
- "context": a brief quote of where this was mentioned
- "timestamp": the timestamp in MM:SS format where this was mentioned

If no contact information updates are found, return an empty array: []

Example response format:
[
  {{"field": "phone", "value": "555-123-4567", "context": "John mentioned 'you can reach me at 555-123-4567'", "timestamp": "01:23"}},
  {{"field": "company", "value": "Acme Corp", "context": "Sarah said she just joined Acme Corp", "timestamp": "05:47"}}
]

ONLY return valid JSON, no other text.

Meeting transcript:
{transcript}
"""

QUESTION_WITH_CRM_PROMPT = """\
You are an AI assistant helping a financial advisor with meeting and CRM contact information.

The advisor is asking a question. You have access to both the meeting transcript AND CRM contact data.
Use the appropriate data source(s) to provide a helpful, concise answer.

IMPORTANT INSTRUCTIONS FOR SOURCES:
- If the answer comes ONLY from the Meeting transcript, set sources to ["Meeting"]
- If the answer comes ONLY from CRM data ({crm_sources}), set sources to the specific CRM source(s) used
- If the answer combines information from both the meeting AND CRM data, include all relevant sources
- Be accurate about which sources you actually used to form your answer
- Do NOT include a source if you didn't use information from it

CRM Contact Information:
{contact_info}

Meeting Transcript:
{transcript}

Question: {question}

Respond in the following JSON format ONLY (no additional text):
{{
  "answer": "Your clear, concise answer here. If referencing specific parts of the transcript, mention the approximate timestamp.",
  "sources": ["Meeting"] or ["Salesforce"] or ["HubSpot"] or ["Meeting", "Salesforce"] etc.
}}
"""

QUESTION_MEETING_ONLY_PROMPT = """\
You are an AI assistant helping a financial advisor with meeting information.

The advisor is asking a question about a meeting. Use ONLY the meeting transcript to answer.
No CRM or external contact data is available for this question.

IMPORTANT: Since only the meeting transcript is available, your answer must come from the meeting only.

Meeting Transcript:
{transcript}

Question: {question}

Respond in the following JSON format ONLY (no additional text):
{{
  "answer": "Your clear, concise answer here. If referencing specific parts of the transcript, mention the approximate timestamp. If you don't have enough information to answer, say so clearly.",
  "sources": ["Meeting"]
}}
"""


def build_suggestion_prompt(transcript: str, provider: CRMProvider) -> str:
    """Extraction prompt restricted to the provider's field vocabulary."""
    return SUGGESTION_PROMPT.format(
        target=_CRM_TARGET[provider],
        look_for=_LOOK_FOR[provider],
        field_names=", ".join(f.value for f in PROVIDER_FIELDS[provider]),
        transcript=transcript,
    )


def format_contact_snapshot(label: str, fields: dict[str, str | None]) -> str:
    """``Source: <label>`` followed by one ``- field: value`` line per field."""
    details = "\n".join(f"  - {name}: {value or 'N/A'}" for name, value in fields.items())
    return f"Source: {label}\n{details}"


def crm_source_names(labels: list[str]) -> list[str]:
    """Provider display names referenced by snapshot labels, in first-seen order."""
    names: list[str] = []
    for label in labels:
        name = label
        for provider in CRMProvider:
            display = get_provider_config(provider).display_name
            if display in label:
                name = display
                break
        if name not in names:
            names.append(name)
    return names


def build_question_prompt(
    question: str,
    transcript: str,
    contacts: dict[str, dict[str, str | None]],
) -> str:
    """Question prompt; includes CRM snapshots when any are given.

    Args:
        question: The user's question.
        transcript: Rendered meeting transcript.
        contacts: Snapshot label (e.g. ``"HubSpot - Jane Doe"``) to field map.
    """
    if not contacts:
        return QUESTION_MEETING_ONLY_PROMPT.format(transcript=transcript, question=question)

    contact_info = "\n\n".join(
        format_contact_snapshot(label, fields) for label, fields in contacts.items()
    )
    return QUESTION_WITH_CRM_PROMPT.format(
        crm_sources=", ".join(["Meeting", *crm_source_names(list(contacts))]),
        contact_info=contact_info,
        transcript=transcript,
        question=question,
    )
