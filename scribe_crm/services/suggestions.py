"""Contact-update suggestions and contact questions backed by Gemini.

Model output is treated as untrusted: anything that fails to parse
degrades to "no suggestions" (or a raw-text answer) rather than an error.
Rate limits get one automatic, delay-respecting retry.
"""

import asyncio
import dataclasses
import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.core.exceptions import RateLimitedError
from scribe_crm.integrations.domain import CRMProvider
from scribe_crm.integrations.gemini import GeminiClient, get_gemini_client
from scribe_crm.models.crm import (
    PROVIDER_FIELDS,
    AnswerSource,
    CanonicalField,
    Contact,
    ContactAnswer,
    Suggestion,
)
from scribe_crm.services.prompts import build_question_prompt, build_suggestion_prompt
from scribe_crm.services.transcript import Meeting, render_meeting_prompt

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_suggestions(text: str, provider: CRMProvider) -> list[Suggestion]:
    """Parse a JSON array of ``{field, value, context, timestamp}`` objects.

    Entries whose field is outside the provider's vocabulary, or whose value
    is missing, are dropped. Unparseable or non-array output yields ``[]``.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        logger.warning("Suggestion response is not valid JSON", extra={"provider": provider.value})
        return []
    if not isinstance(data, list):
        return []

    allowed = PROVIDER_FIELDS[provider]
    suggestions: list[Suggestion] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        field = CanonicalField.parse(item.get("field"))
        value = _optional_str(item.get("value"))
        if field is None or value is None or field not in allowed:
            continue
        suggestions.append(
            Suggestion(
                field=field,
                proposed_value=value,
                source_quote=_optional_str(item.get("context")),
                source_timestamp=_optional_str(item.get("timestamp")),
            )
        )
    return suggestions


def parse_contact_answer(text: str) -> ContactAnswer:
    """Parse ``{"answer": ..., "sources": [...]}``.

    Sources are restricted to meeting/hubspot/salesforce and default to
    meeting. If the text is not a JSON object with an answer, the raw text
    becomes the answer.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        return ContactAnswer(answer=text)

    if not isinstance(data, dict) or not isinstance(data.get("answer"), str):
        return ContactAnswer(answer=text)

    sources: list[AnswerSource] = []
    raw_sources = data.get("sources")
    if isinstance(raw_sources, list):
        for raw in raw_sources:
            source = AnswerSource.parse(raw)
            if source is not None and source not in sources:
                sources.append(source)

    return ContactAnswer(answer=data["answer"], sources=sources or [AnswerSource.MEETING])


class SuggestionGenerator:
    """Turns transcripts into field suggestions and answers contact questions."""

    def __init__(
        self,
        client: GeminiClient | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        if client is None:
            client = GeminiClient(settings) if settings is not None else get_gemini_client()
        self._client = client
        self._sleep = sleep

    async def _generate_text(self, prompt: str) -> str:
        """Call Gemini, retrying exactly once after a rate limit.

        Raises:
            RateLimitedError: If the retry is rate limited too; ``retry_after``
                is always set.
        """
        default_delay = self._settings.AI_RATE_LIMIT_DEFAULT_DELAY_SECONDS
        try:
            return await self._client.generate_text(prompt)
        except RateLimitedError as e:
            wait = default_delay if e.retry_after is None else e.retry_after
            delay = min(wait, self._settings.AI_RATE_LIMIT_MAX_DELAY_SECONDS)
            logger.warning(
                "Gemini rate limited, retrying in %ss",
                delay,
                extra={"retry_after": e.retry_after},
            )
            await self._sleep(delay)

        try:
            return await self._client.generate_text(prompt)
        except RateLimitedError as e:
            if e.retry_after is None:
                e.retry_after = default_delay
                e.details["retry_after"] = default_delay
            raise

    async def generate(self, transcript: str, provider: CRMProvider) -> list[Suggestion]:
        """Extract contact-field suggestions from a rendered transcript.

        Args:
            transcript: ``[MM:SS] Speaker: words`` transcript text.
            provider: CRM whose field vocabulary constrains the output.

        Returns:
            Suggestions with ``apply=False``; possibly empty.
        """
        prompt = build_suggestion_prompt(transcript, provider)
        response = await self._generate_text(prompt)
        suggestions = parse_suggestions(response, provider)
        logger.info(
            "Generated %d %s suggestions",
            len(suggestions),
            provider.value,
        )
        return suggestions

    async def generate_for_meeting(self, meeting: Meeting, provider: CRMProvider) -> list[Suggestion]:
        """Render ``meeting`` and extract suggestions from it.

        Raises:
            TranscriptUnavailableError: If the meeting has no transcript.
        """
        return await self.generate(render_meeting_prompt(meeting), provider)

    @staticmethod
    def merge_with_contact(suggestions: list[Suggestion], contact: Contact) -> list[Suggestion]:
        """Attach current values and default every suggestion to applied.

        Suggestions equal to the current value are kept.
        """
        return [
            dataclasses.replace(s, current_value=contact.get(s.field), apply=True)
            for s in suggestions
        ]

    async def answer_contact_question(
        self,
        question: str,
        transcript: str,
        contacts: dict[str, Contact] | None = None,
    ) -> ContactAnswer:
        """Answer a question from the transcript and optional CRM snapshots.

        Args:
            question: Free-text question.
            transcript: Rendered meeting transcript.
            contacts: Snapshot label (e.g. ``"HubSpot - Jane Doe"``) to contact.
        """
        snapshots = {
            label: {name.value: value for name, value in contact.fields.items()}
            for label, contact in (contacts or {}).items()
        }
        prompt = build_question_prompt(question, transcript, snapshots)
        response = await self._generate_text(prompt)
        return parse_contact_answer(response)
