"""
Integration tests for the full routing ladder.

Drives multi-turn conversations through a ChatSession with mocked
arbitration clients and downstream routers.
"""

from unittest.mock import AsyncMock

import pytest

from chat_routing.clarification_state import build_clarification
from chat_routing.dispatcher import dispatch_routing
from chat_routing.feature_gates import FeatureGates
from chat_routing.session import ChatSession
from chat_routing.types import ArbitrationResponse, Option, VisibleWidget


def _seed(session, options, message_id=None):
    """Show an option set as the pending clarification."""
    session.set_pending_options(options)
    session.set_last_clarification(
        build_clarification(options, "option_selection", message_id=message_id)
    )


def _last_message(session):
    return session.assistant_messages[-1].content


LLM_ON = FeatureGates.fixed(llm_fallback=True)


class TestPanelCommands:
    """Panel commands against the visible dashboard."""

    @pytest.mark.asyncio
    async def test_single_panel_opens(self):
        """"open links panel" with one links panel opens it."""
        known_noun = AsyncMock(return_value={"handled": True})
        session = ChatSession(
            visible_widgets=[VisibleWidget("links-panel-d", "Links Panel D")],
            known_noun_router=known_noun,
        )
        result = await session.handle("open links panel")

        assert result.handled is True
        assert result.handled_by_tier == 2
        assert result.tier_label == "panel_disambiguation"
        assert session.opened_panels == [("links-panel-d", "Links Panel D")]
        assert _last_message(session) == "Opening Links Panel D."
        known_noun.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_three_panels_disambiguate(self, links_panels):
        """Three matching panels produce a clarifier and open nothing."""
        known_noun = AsyncMock(return_value={"handled": True})
        session = ChatSession(visible_widgets=links_panels, known_noun_router=known_noun)
        result = await session.handle("open links panel")

        assert result.handled_by_tier == 2
        assert "Multiple" in _last_message(session)
        assert session.opened_panels == []
        assert [o.id for o in session.state.pending_options] == [
            "links-panels",
            "links-panel-d",
            "links-panel-e",
        ]
        known_noun.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ordinal_after_disambiguation(self, links_panels):
        """"the second one" selects the second panel without opening a drawer."""
        session = ChatSession(visible_widgets=links_panels)
        await session.handle("open links panel")
        result = await session.handle("the second one")

        assert result.handled_by_tier == 0
        assert [o.id for o in session.selections] == ["links-panel-d"]
        assert session.opened_panels == []
        assert session.state.pending_options == []


class TestPendingSelections:
    """Selections against a pending option set."""

    @pytest.mark.asyncio
    async def test_second_one_with_mock_actions(self, make_context, summary_options, actions):
        """The dispatcher selects ordinal two and never opens a drawer."""
        result = await dispatch_routing(make_context("the second one", pending=summary_options))
        assert result.handled is True
        assert result.handled_by_tier == 0
        actions.handle_select_option.assert_called_once_with(summary_options[1])
        actions.open_panel_drawer.assert_not_called()

    @pytest.mark.asyncio
    async def test_exact_match_never_calls_llm(self, make_client, summary_options):
        """A deterministic match short-circuits arbitration."""
        client = make_client()
        session = ChatSession(gates=LLM_ON, arbitration_client=client)
        _seed(session, summary_options)

        result = await session.handle("summary 144")

        assert result.handled_by_tier == 0
        assert session.selections == [summary_options[0]]
        assert client.arbitrate.await_count == 0

    @pytest.mark.asyncio
    async def test_stale_options_do_not_leak(self, links_panels, summary_options):
        """An unrelated command reaches known-noun routing without re-showing old options."""
        known_noun = AsyncMock(return_value={"handled": True, "action": "open_recent"})
        cross_corpus = AsyncMock(return_value={"handled": True})
        session = ChatSession(
            visible_widgets=links_panels,
            known_noun_router=known_noun,
            cross_corpus_router=cross_corpus,
        )
        _seed(session, summary_options)

        result = await session.handle("open recent")

        assert result.handled_by_tier == 4
        known_noun.assert_awaited_once()
        cross_corpus.assert_not_awaited()
        assert session.assistant_messages == []
        assert session.selections == []


class TestArbitrationLadder:
    """LLM arbitration across turns."""

    @pytest.mark.asyncio
    async def test_one_call_per_message_id(self, make_client, respond, summary_options):
        """The same option set is arbitrated once; a new set allows one more call."""
        client = make_client(
            respond("select", "opt-155", 0.7),
            respond("select", "opt-155", 0.7),
        )
        session = ChatSession(gates=LLM_ON, arbitration_client=client)
        _seed(session, summary_options, message_id="m-1")

        first = await session.handle("the summary one")
        second = await session.handle("the summary one")

        assert client.arbitrate.await_count == 1
        assert first.tier_label == "llm_suggested_clarifier"
        assert second.tier_label == "clarification_reshow"
        assert session.state.last_clarification.message_id == "m-1"

        _seed(session, summary_options, message_id="m-2")
        await session.handle("the summary one")
        assert client.arbitrate.await_count == 2

    @pytest.mark.asyncio
    async def test_mid_confidence_reshows(self, make_client, respond, summary_options):
        """A 0.70 pick is suggested, never selected."""
        client = make_client(respond("select", "opt-155", 0.70))
        session = ChatSession(
            gates=FeatureGates.fixed(llm_fallback=True, auto_execute=True),
            arbitration_client=client,
        )
        _seed(session, summary_options)

        result = await session.handle("that one")

        assert result.action == "show_clarifier"
        assert session.selections == []
        assert _last_message(session).startswith("Did you mean Summary 155?")
        assert session.state.pending_options[0].id == "opt-155"

    @pytest.mark.asyncio
    async def test_auto_execute(self, make_client, respond, summary_options):
        """A confident pick on an unmatched input executes when allowed."""
        client = make_client(respond("select", "opt-notes", 0.92))
        session = ChatSession(
            gates=FeatureGates.fixed(llm_fallback=True, auto_execute=True),
            arbitration_client=client,
        )
        _seed(session, summary_options)

        result = await session.handle("that one")

        assert result.tier_label == "llm_auto_execute"
        assert session.selections == [summary_options[2]]
        assert session.assistant_messages == []

    @pytest.mark.asyncio
    async def test_failure_reshows(self, make_client, summary_options):
        """A timed-out call re-shows the clarifier."""
        client = make_client(ArbitrationResponse.failed("Timeout"))
        session = ChatSession(gates=LLM_ON, arbitration_client=client)
        _seed(session, summary_options)

        result = await session.handle("the summary one")

        assert result.action == "show_clarifier"
        assert session.selections == []
        assert _last_message(session) == "Please choose one of the options:"

    @pytest.mark.asyncio
    async def test_scope_cue_single_call(self, make_client, respond, summary_options):
        """A scope cue with pending options triggers at most one call."""
        client = make_client(respond("select", "opt-155", 0.7), respond("select", "opt-155", 0.7))
        session = ChatSession(gates=LLM_ON, arbitration_client=client)
        _seed(session, summary_options)

        await session.handle("the summary one from chat")
        await session.handle("the summary one from chat")

        assert client.arbitrate.await_count == 1


class TestStopAndReturn:
    """Stopping a list and coming back to it."""

    @pytest.mark.asyncio
    async def test_stop_block_restore_select(self, summary_options):
        """A stopped list ignores ordinals until it is explicitly restored."""
        session = ChatSession()
        _seed(session, summary_options)

        stop = await session.handle("never mind")
        assert stop.tier_label == "stop"
        assert session.state.pending_options == []
        assert session.state.clarification_snapshot.paused is True

        blocked = await session.handle("second")
        assert blocked.tier_label == "paused_list"
        assert session.selections == []

        restored = await session.handle("back to the options")
        assert restored.action == "show_clarifier"
        assert session.state.pending_options == summary_options

        picked = await session.handle("the second one")
        assert picked.handled_by_tier == 0
        assert session.selections == [summary_options[1]]

    @pytest.mark.asyncio
    async def test_repair_flow(self, summary_options):
        """"not that one" re-offers the other options."""
        session = ChatSession()
        _seed(session, summary_options)

        await session.handle("summary 144")
        repair = await session.handle("not that one")
        assert repair.tier_label == "repair"
        assert [o.id for o in session.state.pending_options] == ["opt-155", "opt-notes"]

        await session.handle("the first one")
        assert session.selections[-1].id == "opt-155"


class TestSemanticLane:
    """The semantic answer lane gate."""

    @pytest.mark.asyncio
    async def test_meta_question_deferred(self):
        """Meta-questions are deferred before the downstream routers."""
        known_noun = AsyncMock(return_value={"handled": True})
        doc_router = AsyncMock(return_value={"handled": True})
        session = ChatSession(
            gates=FeatureGates.fixed(semantic_lane=True),
            known_noun_router=known_noun,
            doc_router=doc_router,
        )
        result = await session.handle("explain what just happened")

        assert result.handled is False
        assert result.semantic_lane_pending is True
        known_noun.assert_not_awaited()
        doc_router.assert_not_awaited()


class TestEscapesFromPendingOptions:
    """Inputs that look related to pending options but are not selections."""

    @pytest.mark.asyncio
    async def test_label_with_ordinal_word(self):
        """"first draft" picks the First Draft option, not the first option."""
        drafts = [Option("s", "Second Draft"), Option("f", "First Draft")]
        session = ChatSession()
        _seed(session, drafts)

        result = await session.handle("first draft")

        assert result.handled_by_tier == 0
        assert [o.id for o in session.selections] == ["f"]

    @pytest.mark.asyncio
    async def test_question_reaches_doc_router_with_gates_off(self, summary_options):
        """A question sharing words with a label is answered downstream."""
        doc_router = AsyncMock(return_value={"handled": True})
        session = ChatSession(doc_router=doc_router)
        _seed(session, summary_options)

        result = await session.handle("what is summary 144?")

        assert result.handled_by_tier == 5
        doc_router.assert_awaited_once()
        assert session.selections == []
        assert session.assistant_messages == []

    @pytest.mark.asyncio
    async def test_question_reaches_doc_router_after_arbitration(self, make_client, summary_options):
        """An armed loop guard does not trap a later question."""
        client = make_client(ArbitrationResponse.failed("Timeout"))
        doc_router = AsyncMock(return_value={"handled": True})
        session = ChatSession(gates=LLM_ON, arbitration_client=client, doc_router=doc_router)
        _seed(session, summary_options, message_id="m-1")

        first = await session.handle("the summary one")
        assert first.action == "show_clarifier"
        doc_router.assert_not_awaited()

        result = await session.handle("what is summary 144?")

        assert result.handled_by_tier == 5
        doc_router.assert_awaited_once()
        assert client.arbitrate.await_count == 1

    @pytest.mark.asyncio
    async def test_chat_cue_command_opens_panel(self):
        """A command with a chat cue and no earlier options still opens the panel."""
        session = ChatSession(visible_widgets=[VisibleWidget("links-panel-d", "Links Panel D")])

        result = await session.handle("open links panel in chat")

        assert result.handled_by_tier == 2
        assert session.opened_panels == [("links-panel-d", "Links Panel D")]
        assert _last_message(session) == "Opening Links Panel D."
