"""Per-session contact update workflow.

A session walks a user from contact search, through AI suggestion review,
to applying the approved fields in one CRM. Each session is a sequential
actor: commands and worker results are processed one at a time from a
session-owned queue, so state is never mutated concurrently.

Long-running calls (search, generate, apply) run as worker tasks that post
tagged results back to the queue. A result whose tag no longer matches the
session (because the user cleared, re-selected or closed) is discarded.
"""

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from scribe_crm.core.exceptions import (
    NotConnectedError,
    TranscriptUnavailableError,
    user_message_for,
)
from scribe_crm.integrations.credential_store import CredentialStore
from scribe_crm.integrations.crm.base import CRMAdapter
from scribe_crm.integrations.domain import Credential, ProviderConfig, get_provider_config
from scribe_crm.models.crm import CanonicalField, Contact, Suggestion
from scribe_crm.services.suggestions import SuggestionGenerator
from scribe_crm.services.transcript import Meeting, render_meeting_prompt

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
CONTACT_NOT_FOUND = "Contact not found"
NOTHING_SELECTED = "Please select at least one field to update"


class WorkflowStep(str, Enum):
    """Where a session is in the search → review → apply flow."""

    SEARCH = "search"
    SEARCHING = "searching"
    SELECTED = "selected"
    GENERATING = "generating"
    SUGGESTIONS_READY = "suggestions_ready"
    ERROR = "error"
    APPLYING = "applying"
    CLOSED = "closed"


@dataclass
class WorkflowState:
    """The session's view; owned and mutated only by the session actor."""

    step: WorkflowStep = WorkflowStep.SEARCH
    query: str = ""
    results: list[Contact] = field(default_factory=list)
    contact: Contact | None = None
    suggestions: list[Suggestion] = field(default_factory=list)
    error: str | None = None
    retry_after: int | None = None


# -- events ------------------------------------------------------------------


@dataclass(frozen=True)
class ResultsReady:
    contacts: list[Contact]


@dataclass(frozen=True)
class SuggestionsReady:
    contact: Contact
    suggestions: list[Suggestion]


@dataclass(frozen=True)
class WorkflowError:
    message: str
    retry_after: int | None = None


@dataclass(frozen=True)
class Applied:
    count: int
    message: str


@dataclass(frozen=True)
class Closed:
    pass


WorkflowEvent = ResultsReady | SuggestionsReady | WorkflowError | Applied | Closed


# -- inbox messages ----------------------------------------------------------


@dataclass(frozen=True)
class _Search:
    query: str


@dataclass(frozen=True)
class _Select:
    contact_id: str


@dataclass(frozen=True)
class _Generate:
    retry: bool = False


@dataclass(frozen=True)
class _Toggle:
    field: CanonicalField
    checked: bool
    edited_value: str | None = None


@dataclass(frozen=True)
class _Submit:
    selected: dict[CanonicalField, str] | None


@dataclass(frozen=True)
class _Clear:
    pass


@dataclass(frozen=True)
class _Close:
    pass


@dataclass(frozen=True)
class _Done:
    """A worker's outcome, tagged with the request it answers."""

    kind: str
    tag: int
    value: Any = None
    error: Exception | None = None


class ContactWorkflowSession:
    """One user's contact-update workflow against one CRM.

    Usage::

        async with ContactWorkflowSession(...) as session:
            session.search("jane")
            event = await session.events.get()
    """

    def __init__(
        self,
        user_id: str,
        adapter: CRMAdapter,
        store: CredentialStore,
        generator: SuggestionGenerator,
        meeting: Meeting | None = None,
        transcript: str | None = None,
    ) -> None:
        """Initialize a session.

        Args:
            user_id: Owner of the CRM credential.
            adapter: Adapter for the session's CRM.
            store: Credential store; the credential is re-read for every call.
            generator: Suggestion generator.
            meeting: Meeting to generate suggestions from.
            transcript: Pre-rendered transcript; used instead of ``meeting`` when given.
        """
        self.user_id = user_id
        self.adapter = adapter
        self.provider = adapter.provider
        self.state = WorkflowState()
        self.events: asyncio.Queue[WorkflowEvent] = asyncio.Queue()

        self._store = store
        self._generator = generator
        self._meeting = meeting
        self._transcript = transcript

        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._tags = itertools.count(1)
        self._search_tag: int | None = None
        self._work_tag: int | None = None
        self._search_task: asyncio.Task[None] | None = None
        self._work_task: asyncio.Task[None] | None = None
        self._workers: set[asyncio.Task[None]] = set()
        self._runner: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def config(self) -> ProviderConfig:
        return get_provider_config(self.provider)

    @property
    def closed(self) -> bool:
        return self._closed

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the session actor on the running loop."""
        if self._runner is None:
            self._runner = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Close the session, cancelling outstanding work."""
        if self._runner is None:
            self._closed = True
            return
        if not self._closed:
            self._inbox.put_nowait(_Close())
        await self._runner

    async def __aenter__(self) -> "ContactWorkflowSession":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def settle(self) -> None:
        """Wait until every queued command and running worker has been processed."""
        while not self._closed:
            await self._inbox.join()
            pending = [t for t in self._workers if not t.done()]
            if pending:
                await asyncio.wait(pending)
            elif self._inbox.empty():
                return

    # -- commands ----------------------------------------------------------

    def _post(self, message: Any) -> None:
        if self._closed:
            logger.debug("Ignoring command on closed session", extra={"command": type(message).__name__})
            return
        self._inbox.put_nowait(message)

    def search(self, query: str) -> None:
        self._post(_Search(query))

    def select(self, contact_id: str) -> None:
        self._post(_Select(str(contact_id)))

    def generate(self) -> None:
        self._post(_Generate())

    def retry(self) -> None:
        self._post(_Generate(retry=True))

    def toggle(
        self,
        field_name: CanonicalField | str,
        checked: bool,
        edited_value: str | None = None,
    ) -> None:
        canonical = CanonicalField.parse(field_name)
        if canonical is None:
            logger.warning("Ignoring toggle for unknown field", extra={"field": field_name})
            return
        self._post(_Toggle(canonical, checked, edited_value))

    def submit(self, selected: dict[CanonicalField | str, str] | None = None) -> None:
        """Apply fields; ``selected`` maps field to value, defaulting to checked suggestions."""
        parsed: dict[CanonicalField, str] | None = None
        if selected is not None:
            parsed = {}
            for name, value in selected.items():
                canonical = CanonicalField.parse(name)
                if canonical is not None:
                    parsed[canonical] = value
        self._post(_Submit(parsed))

    def clear(self) -> None:
        self._post(_Clear())

    # -- actor -------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                if isinstance(message, _Close):
                    self._shutdown()
                    return
                if self._handle(message):
                    return
            except Exception as e:
                logger.exception(
                    "Workflow session failed handling %s",
                    type(message).__name__,
                    extra={"user_id": self.user_id, "provider": self.provider.value},
                )
                self._fail(e, "processing your request")
            finally:
                self._inbox.task_done()

    def _handle(self, message: Any) -> bool:
        """Process one message. Returns True when the session closed."""
        if isinstance(message, _Search):
            self._on_search(message)
        elif isinstance(message, _Select):
            self._on_select(message)
        elif isinstance(message, _Generate):
            self._on_generate(message)
        elif isinstance(message, _Toggle):
            self._on_toggle(message)
        elif isinstance(message, _Submit):
            self._on_submit(message)
        elif isinstance(message, _Clear):
            self._reset()
        elif isinstance(message, _Done):
            return self._on_done(message)
        return False

    def _emit(self, event: WorkflowEvent) -> None:
        self.events.put_nowait(event)

    def _fail(self, error: Exception, action: str) -> None:
        message, retry_after = user_message_for(error, action)
        self._set_error(message, retry_after)

    def _set_error(self, message: str, retry_after: int | None = None) -> None:
        self.state.step = WorkflowStep.ERROR
        self.state.error = message
        self.state.retry_after = retry_after
        self._emit(WorkflowError(message, retry_after))

    @property
    def _busy(self) -> bool:
        return self._work_tag is not None

    def _spawn(self, kind: str, operation: Callable[[], Awaitable[Any]]) -> tuple[int, asyncio.Task[None]]:
        tag = next(self._tags)

        async def _worker() -> None:
            try:
                value = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Workflow %s failed: %s",
                    kind,
                    e,
                    extra={"user_id": self.user_id, "provider": self.provider.value},
                )
                self._inbox.put_nowait(_Done(kind, tag, error=e))
            else:
                self._inbox.put_nowait(_Done(kind, tag, value=value))

        task = asyncio.create_task(_worker())
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)
        return tag, task

    def _cancel_search(self) -> None:
        self._search_tag = None
        if self._search_task is not None:
            self._search_task.cancel()
            self._search_task = None

    def _cancel_work(self) -> None:
        self._work_tag = None
        if self._work_task is not None:
            self._work_task.cancel()
            self._work_task = None

    def _reset(self) -> None:
        self._cancel_search()
        self._cancel_work()
        self.state = WorkflowState()

    def _shutdown(self) -> None:
        self._cancel_search()
        self._cancel_work()
        for task in list(self._workers):
            task.cancel()
        self._closed = True
        self.state.step = WorkflowStep.CLOSED
        # Drop anything queued behind the close
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()
        self._emit(Closed())

    async def _credential(self) -> Credential:
        credential = await self._store.get(self.user_id, self.provider)
        if credential is None:
            raise NotConnectedError(self.config.display_name)
        return credential

    def _transcript_text(self) -> str:
        if self._transcript is not None:
            return self._transcript
        if self._meeting is None:
            raise TranscriptUnavailableError()
        return render_meeting_prompt(self._meeting)

    # -- handlers ----------------------------------------------------------

    def _on_search(self, message: _Search) -> None:
        if self.state.contact is not None or self.state.step not in (
            WorkflowStep.SEARCH,
            WorkflowStep.SEARCHING,
            WorkflowStep.ERROR,
        ):
            logger.debug("Ignoring search while a contact is selected")
            return

        self.state.query = message.query
        self.state.error = None
        self.state.retry_after = None
        self._cancel_search()

        query = message.query.strip()
        if len(query) < MIN_QUERY_LENGTH:
            self.state.results = []
            self.state.step = WorkflowStep.SEARCH
            self._emit(ResultsReady([]))
            return

        async def _op() -> list[Contact]:
            return await self.adapter.search(await self._credential(), query)

        self.state.step = WorkflowStep.SEARCHING
        self._search_tag, self._search_task = self._spawn("search", _op)

    def _on_select(self, message: _Select) -> None:
        if self.state.step == WorkflowStep.APPLYING:
            logger.debug("Ignoring select while applying")
            return

        match = next(
            (c for c in self.state.results if c.external_id == message.contact_id),
            None,
        )
        if match is None:
            self._set_error(CONTACT_NOT_FOUND)
            return

        self._cancel_search()
        self._cancel_work()
        self.state.contact = match
        self.state.suggestions = []
        self.state.error = None
        self.state.retry_after = None
        self.state.step = WorkflowStep.SELECTED
        self._start_generation()

    def _on_generate(self, message: _Generate) -> None:
        if self.state.contact is None or self._busy:
            logger.debug("Ignoring generate: no contact selected or request outstanding")
            return
        if message.retry and self.state.step != WorkflowStep.ERROR:
            return
        self._start_generation()

    def _start_generation(self) -> None:
        contact_id = self.state.contact.external_id if self.state.contact else ""

        async def _op() -> tuple[Contact, list[Suggestion]]:
            credential = await self._credential()
            # Always re-read the contact; never trust the search snapshot
            contact = await self.adapter.get(credential, contact_id)
            suggestions = await self._generator.generate(self._transcript_text(), self.provider)
            return contact, SuggestionGenerator.merge_with_contact(suggestions, contact)

        self.state.error = None
        self.state.retry_after = None
        self.state.step = WorkflowStep.GENERATING
        self._work_tag, self._work_task = self._spawn("generate", _op)

    def _on_toggle(self, message: _Toggle) -> None:
        if self._busy or not self.state.suggestions:
            return
        self.state.suggestions = [
            replace(
                s,
                apply=message.checked,
                proposed_value=(
                    message.edited_value if message.edited_value is not None else s.proposed_value
                ),
            )
            if s.field == message.field
            else s
            for s in self.state.suggestions
        ]

    def _on_submit(self, message: _Submit) -> None:
        contact = self.state.contact
        if contact is None or self._busy:
            logger.debug("Ignoring submit: no contact selected or request outstanding")
            return

        if not self.state.suggestions:
            diff = {}
        elif message.selected is not None:
            diff = dict(message.selected)
        else:
            diff = {s.field: s.proposed_value for s in self.state.suggestions if s.apply}
        if not diff:
            self.state.error = NOTHING_SELECTED
            self._emit(WorkflowError(NOTHING_SELECTED))
            return

        async def _op() -> tuple[Contact, int]:
            updated = await self.adapter.update(await self._credential(), contact.external_id, diff)
            return updated, len(diff)

        self.state.error = None
        self.state.retry_after = None
        self.state.step = WorkflowStep.APPLYING
        self._work_tag, self._work_task = self._spawn("apply", _op)

    def _on_done(self, message: _Done) -> bool:
        expected = self._search_tag if message.kind == "search" else self._work_tag
        if message.tag != expected:
            logger.debug("Discarding stale %s result", message.kind, extra={"tag": message.tag})
            return False

        if message.kind == "search":
            self._search_tag = None
            self._search_task = None
            if message.error is not None:
                self._fail(message.error, "searching contacts")
                return False
            self.state.results = message.value
            self.state.step = WorkflowStep.SEARCH
            self._emit(ResultsReady(message.value))
            return False

        self._work_tag = None
        self._work_task = None

        if message.kind == "generate":
            if message.error is not None:
                self._fail(message.error, "generating suggestions")
                return False
            contact, suggestions = message.value
            self.state.contact = contact
            self.state.suggestions = suggestions
            self.state.step = WorkflowStep.SUGGESTIONS_READY
            self._emit(SuggestionsReady(contact, suggestions))
            return False

        # apply
        if message.error is not None:
            self._fail(message.error, "updating the contact")
            return False
        updated, count = message.value
        self.state.contact = updated
        text = f"Successfully updated {count} field(s) in {self.config.display_name}"
        logger.info(
            text,
            extra={
                "user_id": self.user_id,
                "provider": self.provider.value,
                "contact_id": updated.external_id,
            },
        )
        self._emit(Applied(count, text))
        self._shutdown()
        return True
