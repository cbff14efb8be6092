"""Meeting Q&A with @-mentioned CRM contacts.

Looks up mention candidates across every connected CRM and answers
free-text questions using the meeting transcript plus snapshots of the
contacts the user tagged.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from scribe_crm.core.exceptions import ScribeException, TranscriptUnavailableError
from scribe_crm.integrations.credential_store import CredentialStore
from scribe_crm.integrations.crm.base import CRMAdapter
from scribe_crm.integrations.domain import CRMProvider, get_provider_config
from scribe_crm.models.crm import AnswerSource, Contact
from scribe_crm.services.mentions import MentionCandidate
from scribe_crm.services.suggestions import SuggestionGenerator
from scribe_crm.services.transcript import Meeting, render_meeting_prompt

logger = logging.getLogger(__name__)

MAX_MENTION_RESULTS = 8


@dataclass
class ChatReply:
    """One reply in the chat panel."""

    role: str  # "assistant" or "error"
    content: str
    sources: list[AnswerSource] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "sources": [s.value for s in self.sources],
        }


def contact_label(provider: CRMProvider, name: str) -> str:
    """Snapshot label shown to the model, e.g. ``"HubSpot - Jane Doe"``."""
    return f"{get_provider_config(provider).display_name} - {name}"


class ContactQuestionService:
    """Answers questions about a meeting, optionally grounded in CRM contacts."""

    def __init__(
        self,
        store: CredentialStore,
        adapters: dict[CRMProvider, CRMAdapter],
        generator: SuggestionGenerator,
    ) -> None:
        self._store = store
        self._adapters = adapters
        self._generator = generator

    async def _search_provider(
        self, user_id: str, provider: CRMProvider, query: str
    ) -> list[Contact]:
        try:
            credential = await self._store.get(user_id, provider)
            if credential is None:
                return []
            return await self._adapters[provider].search(credential, query)
        except ScribeException as e:
            logger.warning(
                "Contact search failed for %s: %s",
                provider.value,
                e.message,
                extra={"user_id": user_id, "provider": provider.value, "code": e.code},
            )
        except Exception:
            logger.exception(
                "Contact search failed for %s",
                provider.value,
                extra={"user_id": user_id, "provider": provider.value},
            )
        return []

    async def search_contacts(self, user_id: str, query: str) -> list[MentionCandidate]:
        """Search every connected CRM for mention candidates.

        A failing provider contributes no results.

        Returns:
            At most ``MAX_MENTION_RESULTS`` candidates, HubSpot first.
        """
        providers = [p for p in CRMProvider if p in self._adapters]
        results = await asyncio.gather(
            *(self._search_provider(user_id, p, query) for p in providers)
        )

        candidates: list[MentionCandidate] = []
        for provider, contacts in zip(providers, results, strict=True):
            for contact in contacts:
                candidates.append(
                    MentionCandidate(
                        name=contact.display_name,
                        provider=provider,
                        external_id=contact.external_id,
                    )
                )
        return candidates[:MAX_MENTION_RESULTS]

    async def _snapshots(
        self, user_id: str, tagged: list[MentionCandidate]
    ) -> dict[str, Contact]:
        snapshots: dict[str, Contact] = {}
        for candidate in tagged:
            if candidate.provider is None or candidate.external_id is None:
                continue
            adapter = self._adapters.get(candidate.provider)
            if adapter is None:
                continue
            log_extra = {"provider": candidate.provider.value, "contact_id": candidate.external_id}
            try:
                credential = await self._store.get(user_id, candidate.provider)
                if credential is None:
                    continue
                contact = await adapter.get(credential, candidate.external_id)
            except ScribeException as e:
                logger.warning("Skipping tagged contact: %s", e.message, extra=log_extra)
                continue
            except Exception:
                logger.exception("Skipping tagged contact", extra=log_extra)
                continue
            snapshots[contact_label(candidate.provider, candidate.name)] = contact
        return snapshots

    async def ask(
        self,
        user_id: str,
        question: str,
        meeting: Meeting,
        tagged: list[MentionCandidate] | None = None,
    ) -> ChatReply:
        """Answer ``question`` about ``meeting``.

        Args:
            user_id: Asking user; selects the CRM credentials.
            question: Free-text question.
            meeting: Meeting the question is about.
            tagged: Contacts the user @-mentioned.

        Returns:
            An assistant reply, or an error reply if answering failed.
        """
        try:
            transcript = render_meeting_prompt(meeting)
            contacts = await self._snapshots(user_id, tagged or [])
            answer = await self._generator.answer_contact_question(question, transcript, contacts)
        except TranscriptUnavailableError as e:
            return ChatReply(role="error", content=f"Sorry, I couldn't process your question: {e.message}")
        except ScribeException as e:
            logger.error(
                "Contact question failed: %s",
                e.message,
                extra={"user_id": user_id, "code": e.code},
            )
            return ChatReply(
                role="error",
                content="Sorry, I couldn't process your question. Please try again.",
            )

        return ChatReply(role="assistant", content=answer.answer, sources=answer.sources)
