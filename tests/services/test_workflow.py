"""Tests for the contact update workflow session."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from scribe_crm.core.exceptions import AIServiceError, RateLimitedError
from scribe_crm.integrations.domain import CRMProvider
from scribe_crm.models.crm import CanonicalField, Contact, Suggestion
from scribe_crm.services.workflow import (
    CONTACT_NOT_FOUND,
    NOTHING_SELECTED,
    Applied,
    Closed,
    ContactWorkflowSession,
    ResultsReady,
    SuggestionsReady,
    WorkflowError,
    WorkflowStep,
)

TRANSCRIPT = "[00:05] Jane Doe: My new cell is 555-0199 and I moved to Austin."

JANE = Contact(
    external_id="101",
    provider=CRMProvider.HUBSPOT,
    fields={
        CanonicalField.FIRSTNAME: "Jane",
        CanonicalField.LASTNAME: "Doe",
        CanonicalField.PHONE: "555-0100",
    },
)
JOHN = Contact(
    external_id="102",
    provider=CRMProvider.HUBSPOT,
    fields={CanonicalField.FIRSTNAME: "John", CanonicalField.LASTNAME: "Doe"},
)


def drain(session: ContactWorkflowSession) -> list:
    events = []
    while not session.events.empty():
        events.append(session.events.get_nowait())
    return events


@pytest.fixture
def adapter() -> MagicMock:
    adapter = MagicMock()
    adapter.provider = CRMProvider.HUBSPOT
    adapter.search = AsyncMock(return_value=[JANE, JOHN])
    adapter.get = AsyncMock(side_effect=lambda credential, contact_id: {"101": JANE, "102": JOHN}[contact_id])
    adapter.update = AsyncMock(return_value=JANE)
    return adapter


@pytest.fixture
def generator() -> MagicMock:
    generator = MagicMock()
    generator.generate = AsyncMock(
        return_value=[
            Suggestion(field=CanonicalField.PHONE, proposed_value="555-0199", source_timestamp="00:05"),
            Suggestion(field=CanonicalField.CITY, proposed_value="Austin"),
        ]
    )
    return generator


@pytest.fixture
def session(adapter, store, generator) -> ContactWorkflowSession:
    return ContactWorkflowSession("user-1", adapter, store, generator, transcript=TRANSCRIPT)


async def reach_suggestions(session: ContactWorkflowSession) -> None:
    """Search, select Jane and wait for suggestions."""
    session.search("jane")
    await session.settle()
    session.select("101")
    await session.settle()
    drain(session)


class TestSearch:
    """Tests for contact search."""

    @pytest.mark.asyncio
    async def test_short_query_makes_no_request(self, session, adapter) -> None:
        async with session:
            session.search("  j ")
            await session.settle()

            assert drain(session) == [ResultsReady([])]
            assert session.state.step == WorkflowStep.SEARCH
        adapter.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_results_ready(self, session, adapter, hubspot_credential) -> None:
        async with session:
            session.search(" jane ")
            await session.settle()

            assert drain(session) == [ResultsReady([JANE, JOHN])]
            assert session.state.results == [JANE, JOHN]
            assert session.state.query == " jane "

        credential, query = adapter.search.await_args.args
        assert credential.id == hubspot_credential.id
        assert query == "jane"

    @pytest.mark.asyncio
    async def test_cleared_search_is_discarded(self, session, adapter) -> None:
        gate = asyncio.Event()

        async def _slow_search(credential, query):
            await gate.wait()
            return [JANE]

        adapter.search.side_effect = _slow_search

        async with session:
            session.search("jane")
            session.clear()
            await session.settle()
            gate.set()

            assert drain(session) == []
            assert session.state.results == []
            assert session.state.step == WorkflowStep.SEARCH

    @pytest.mark.asyncio
    async def test_not_connected(self, session, store) -> None:
        del store.credentials["cred-hs-1"]

        async with session:
            session.search("jane")
            await session.settle()

            assert drain(session) == [WorkflowError("Connect your CRM account in Settings first.")]
            assert session.state.step == WorkflowStep.ERROR

    @pytest.mark.asyncio
    async def test_search_ignored_once_contact_selected(self, session, adapter) -> None:
        async with session:
            await reach_suggestions(session)
            session.search("john")
            await session.settle()

            assert drain(session) == []
            assert session.state.contact == JANE
        assert adapter.search.await_count == 1


class TestSelect:
    """Tests for contact selection and suggestion generation."""

    @pytest.mark.asyncio
    async def test_select_generates_merged_suggestions(self, session, adapter, generator) -> None:
        async with session:
            session.search("jane")
            await session.settle()
            drain(session)

            session.select("101")
            await session.settle()

            [event] = drain(session)
            assert isinstance(event, SuggestionsReady)
            assert event.contact == JANE
            assert [(s.field, s.current_value, s.apply) for s in event.suggestions] == [
                (CanonicalField.PHONE, "555-0100", True),
                (CanonicalField.CITY, None, True),
            ]
            assert session.state.step == WorkflowStep.SUGGESTIONS_READY

        adapter.get.assert_awaited_once()
        assert adapter.get.await_args.args[1] == "101"
        generator.generate.assert_awaited_once_with(TRANSCRIPT, CRMProvider.HUBSPOT)

    @pytest.mark.asyncio
    async def test_unknown_contact(self, session, generator) -> None:
        async with session:
            session.search("jane")
            await session.settle()
            drain(session)

            session.select("999")
            await session.settle()

            assert drain(session) == [WorkflowError(CONTACT_NOT_FOUND)]
            assert session.state.step == WorkflowStep.ERROR
            assert session.state.contact is None
        generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reselect_discards_earlier_generation(self, session, adapter) -> None:
        gate = asyncio.Event()

        async def _get(credential, contact_id):
            if contact_id == "101":
                await gate.wait()
                return JANE
            return JOHN

        adapter.get.side_effect = _get

        async with session:
            session.search("doe")
            await session.settle()
            drain(session)

            session.select("101")
            session.select("102")
            await session.settle()
            gate.set()
            await session.settle()

            events = drain(session)
            assert [type(e) for e in events] == [SuggestionsReady]
            assert events[0].contact == JOHN
            assert session.state.contact == JOHN

    @pytest.mark.asyncio
    async def test_generation_rate_limit_then_retry(self, session, generator) -> None:
        suggestion = Suggestion(field=CanonicalField.CITY, proposed_value="Austin")
        generator.generate.side_effect = [RateLimitedError("gemini", retry_after=35), [suggestion]]

        async with session:
            await reach_suggestions(session)
            assert session.state.step == WorkflowStep.ERROR
            assert session.state.retry_after == 35
            assert session.state.error == (
                "Gemini API quota/rate limit exceeded while generating suggestions. "
                "Please wait ~35s and try again."
            )

            session.retry()
            await session.settle()

            [event] = drain(session)
            assert isinstance(event, SuggestionsReady)
            assert [s.field for s in event.suggestions] == [CanonicalField.CITY]
            assert session.state.step == WorkflowStep.SUGGESTIONS_READY
            assert session.state.error is None
            assert session.state.retry_after is None

    @pytest.mark.asyncio
    async def test_generation_error_message(self, session, generator) -> None:
        generator.generate.side_effect = AIServiceError("gemini", status=503)

        async with session:
            session.search("jane")
            await session.settle()
            session.select("101")
            await session.settle()

            assert drain(session)[-1] == WorkflowError(
                "Gemini API error (HTTP 503) while generating suggestions. Please try again."
            )
            assert session.state.contact == JANE

    @pytest.mark.asyncio
    async def test_retry_only_from_error(self, session, generator) -> None:
        async with session:
            await reach_suggestions(session)
            session.retry()
            await session.settle()

            assert drain(session) == []
        generator.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_transcript(self, adapter, store, generator) -> None:
        session = ContactWorkflowSession("user-1", adapter, store, generator)

        async with session:
            await reach_suggestions(session)

            assert session.state.error == "This meeting has no transcript to analyze yet."
        generator.generate.assert_not_awaited()


class TestApply:
    """Tests for toggling and applying suggestions."""

    @pytest.mark.asyncio
    async def test_nothing_selected_makes_no_request(self, session, adapter) -> None:
        async with session:
            await reach_suggestions(session)
            session.toggle(CanonicalField.PHONE, False)
            session.toggle("city", False)
            session.submit()
            await session.settle()

            assert drain(session) == [WorkflowError(NOTHING_SELECTED)]
            assert session.state.step == WorkflowStep.SUGGESTIONS_READY
            assert not session.closed
        adapter.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_submit_without_suggestions_is_rejected(
        self, session, adapter, generator
    ) -> None:
        generator.generate.return_value = []
        async with session:
            await reach_suggestions(session)
            session.submit()
            await session.settle()

            assert drain(session) == [WorkflowError(NOTHING_SELECTED)]
            assert session.state.error == NOTHING_SELECTED
            assert not session.closed
        adapter.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_apply_success_closes_session(self, session, adapter) -> None:
        async with session:
            await reach_suggestions(session)
            session.toggle("city", False)
            session.toggle(CanonicalField.PHONE, True, "555-0000")
            session.submit()
            await session.settle()

            assert drain(session) == [
                Applied(1, "Successfully updated 1 field(s) in HubSpot"),
                Closed(),
            ]
            assert session.closed
            assert session.state.step == WorkflowStep.CLOSED

        credential, contact_id, diff = adapter.update.await_args.args
        assert credential.id == "cred-hs-1"
        assert contact_id == "101"
        assert diff == {CanonicalField.PHONE: "555-0000"}

    @pytest.mark.asyncio
    async def test_explicit_selection(self, session, adapter) -> None:
        async with session:
            await reach_suggestions(session)
            session.submit({"city": "Austin", "email": "jane@acme.com", "bogus": "x"})
            await session.settle()

            assert drain(session)[0] == Applied(2, "Successfully updated 2 field(s) in HubSpot")

        assert adapter.update.await_args.args[2] == {
            CanonicalField.CITY: "Austin",
            CanonicalField.EMAIL: "jane@acme.com",
        }

    @pytest.mark.asyncio
    async def test_apply_failure_keeps_state(self, session, adapter) -> None:
        adapter.update.side_effect = RateLimitedError("hubspot", retry_after=7)

        async with session:
            await reach_suggestions(session)
            suggestions = list(session.state.suggestions)
            session.submit()
            await session.settle()

            assert drain(session) == [
                WorkflowError(
                    "HubSpot rate limit exceeded while updating the contact. "
                    "Please wait ~7s and try again.",
                    7,
                )
            ]
            assert session.state.step == WorkflowStep.ERROR
            assert session.state.contact == JANE
            assert session.state.suggestions == suggestions
            assert not session.closed

    @pytest.mark.asyncio
    async def test_clear_resets(self, session) -> None:
        async with session:
            await reach_suggestions(session)
            session.clear()
            await session.settle()

            assert session.state.contact is None
            assert session.state.suggestions == []
            assert session.state.step == WorkflowStep.SEARCH


class TestLifecycle:
    """Tests for closing sessions."""

    @pytest.mark.asyncio
    async def test_close_emits_closed_and_ignores_commands(self, session, adapter) -> None:
        async with session:
            pass

        assert drain(session) == [Closed()]
        assert session.closed

        session.search("jane")
        adapter.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_without_start(self, session) -> None:
        await session.close()
        assert session.closed
