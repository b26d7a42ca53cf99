"""
Unit tests for LLM arbitration.

Tests failure classification, confidence buckets, the bounded
retry loop and the unresolved hook's gating and outcomes.
"""

import pytest

from chat_routing.arbitration import (
    AmbiguityReason,
    ConfidenceBucket,
    Enrichment,
    FailureKind,
    classify_arbitration_confidence,
    classify_failure,
    resolve_unresolved,
    run_bounded_arbitration,
)
from chat_routing.clarification_state import OptionUniverse, UniverseSource
from chat_routing.feature_gates import FeatureGates
from chat_routing.loop_guard import LoopGuard
from chat_routing.types import ArbitrationRequest, ArbitrationResponse, OptionRef


class TestClassifyFailure:
    """Tests for classify_failure."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            ("Timeout", FailureKind.TIMEOUT),
            ("request timed out", FailureKind.TIMEOUT),
            ("API error: 429", FailureKind.RATE_LIMITED),
            ("Rate limit exceeded", FailureKind.RATE_LIMITED),
            ("Connection error", FailureKind.TRANSPORT_ERROR),
            (None, FailureKind.TRANSPORT_ERROR),
        ],
    )
    def test_classification(self, error, kind):
        """Errors are classified case-insensitively by substring."""
        assert classify_failure(error) is kind


class TestClassifyConfidence:
    """Tests for classify_arbitration_confidence."""

    def test_no_options(self):
        """No active options is clarifier-only."""
        result = classify_arbitration_confidence(0, 0, "x", False)
        assert result.bucket is ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY
        assert result.ambiguity_reason is AmbiguityReason.NO_CANDIDATES

    def test_unique_exact(self):
        """A unique exact match executes."""
        result = classify_arbitration_confidence(1, 1, "summary 144", True)
        assert result.bucket is ConfidenceBucket.HIGH_CONFIDENCE_EXECUTE

    def test_no_matches(self):
        """Nothing matched is the allow-listed ambiguity."""
        result = classify_arbitration_confidence(0, 0, "that one", True)
        assert result.ambiguity_reason is AmbiguityReason.NO_DETERMINISTIC_MATCH

    def test_command_collision(self):
        """Explicit commands that overlap labels collide."""
        result = classify_arbitration_confidence(2, 0, "open summary", True)
        assert result.ambiguity_reason is AmbiguityReason.COMMAND_SELECTION_COLLISION

    def test_multi_match(self):
        """Several partial matches without a winner."""
        result = classify_arbitration_confidence(2, 0, "the summary one", True)
        assert result.ambiguity_reason is AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER


@pytest.fixture
def request_():
    return ArbitrationRequest(
        input="the summary one",
        options=[OptionRef("opt-144", "Summary 144"), OptionRef("opt-155", "Summary 155")],
        context=["scope: chat"],
    )


def _enrich_with(*evidence, reason=None):
    return lambda needed: Enrichment(evidence=list(evidence), unavailable_reason=reason)


class TestRunBoundedArbitration:
    """Tests for the bounded arbitration loop."""

    @pytest.mark.asyncio
    async def test_single_call_select(self, make_client, respond, request_):
        """A direct selection needs one call."""
        client = make_client(respond("select", "opt-155", 0.9))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=True, enrich=_enrich_with("x")
        )
        assert outcome.selected_id == "opt-155"
        assert outcome.attempts == 1
        assert client.arbitrate.await_count == 1

    @pytest.mark.asyncio
    async def test_failure(self, make_client, request_):
        """A failed call is classified."""
        client = make_client(ArbitrationResponse.failed("Timeout"))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=True, enrich=_enrich_with("x")
        )
        assert outcome.failure is FailureKind.TIMEOUT
        assert outcome.selected_id is None

    @pytest.mark.asyncio
    async def test_client_exception_is_failure(self, make_client, request_):
        """A client that raises is treated as a transport failure."""
        client = make_client(RuntimeError("socket closed"))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=False, enrich=_enrich_with()
        )
        assert outcome.failure is FailureKind.TRANSPORT_ERROR
        assert outcome.error == "socket closed"

    @pytest.mark.asyncio
    async def test_retry_disabled(self, make_client, respond, request_, events):
        """request_context without the retry gate falls back."""
        client = make_client(respond("request_context", confidence=0.3))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=False, enrich=_enrich_with("x"), log=events.append
        )
        assert outcome.fallback_reason == "retry_feature_disabled"
        assert client.arbitrate.await_count == 1
        assert [e.action for e in events] == [
            "arbitration_loop_started",
            "arbitration_request_context",
            "arbitration_retry_fallback",
        ]

    @pytest.mark.asyncio
    async def test_retry_resolves(self, make_client, respond, request_, events):
        """A retry with new evidence can resolve the selection."""
        client = make_client(
            respond("request_context", needed_context=["recent panels"]),
            respond("select", "opt-144", 0.9),
        )
        outcome = await run_bounded_arbitration(
            client,
            request_,
            retry_enabled=True,
            enrich=_enrich_with("recent_options: Summary 144"),
            log=events.append,
        )
        assert outcome.selected_id == "opt-144"
        assert outcome.attempts == 2
        retry_request = client.arbitrate.await_args_list[1].args[0]
        assert retry_request.options == request_.options
        assert retry_request.context[-1] == "enriched_evidence: recent_options: Summary 144"
        assert "arbitration_retry_resolved" in [e.action for e in events]

    @pytest.mark.asyncio
    async def test_at_most_two_calls(self, make_client, respond, request_):
        """A second request_context is final."""
        client = make_client(respond("request_context"), respond("request_context"))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=True, enrich=_enrich_with("new evidence")
        )
        assert client.arbitrate.await_count == 2
        assert outcome.fallback_reason == "retry_request_context"
        assert outcome.selected_id is None

    @pytest.mark.asyncio
    async def test_scope_not_available(self, make_client, respond, request_):
        """Unavailable enrichment skips the retry."""
        client = make_client(respond("request_context"))
        outcome = await run_bounded_arbitration(
            client,
            request_,
            retry_enabled=True,
            enrich=_enrich_with(reason="scope_not_available"),
        )
        assert outcome.fallback_reason == "scope_not_available"
        assert client.arbitrate.await_count == 1

    @pytest.mark.asyncio
    async def test_no_new_evidence(self, make_client, respond, request_):
        """Evidence already in the request does not justify a retry."""
        client = make_client(respond("request_context"))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=True, enrich=_enrich_with("Scope: Chat ")
        )
        assert outcome.fallback_reason == "no_new_evidence"
        assert client.arbitrate.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_failure(self, make_client, respond, request_):
        """A failed retry is classified like a first-call failure."""
        client = make_client(respond("request_context"), ArbitrationResponse.failed("API error: 429"))
        outcome = await run_bounded_arbitration(
            client, request_, retry_enabled=True, enrich=_enrich_with("new evidence")
        )
        assert outcome.failure is FailureKind.RATE_LIMITED
        assert outcome.attempts == 2


@pytest.fixture
def universe(summary_options):
    return OptionUniverse(
        source=UniverseSource.PENDING, options=summary_options, message_id="m-1"
    )


LLM_ON = FeatureGates.fixed(llm_fallback=True)
LLM_AUTO = FeatureGates.fixed(llm_fallback=True, auto_execute=True)


class TestResolveUnresolved:
    """Tests for the unresolved hook."""

    @pytest.mark.asyncio
    async def test_llm_disabled(self, make_context, make_client, universe, actions, event_actions):
        """With the gate off the clarifier is re-shown and no call is made."""
        client = make_client()
        ctx = make_context("the summary one", client=client)
        result = await resolve_unresolved(ctx, universe, "the summary one")
        assert result.action == "show_clarifier"
        assert client.arbitrate.await_count == 0
        assert "clarification_unresolved_hook_llm_disabled" in event_actions()

    @pytest.mark.asyncio
    async def test_loop_guard_suppresses(self, make_context, make_client, universe, event_actions):
        """An already-arbitrated message id is not sent again."""
        client = make_client()
        guard = LoopGuard()
        guard.record("m-1")
        ctx = make_context("the summary one", gates=LLM_ON, client=client, loop_guard=guard)
        result = await resolve_unresolved(ctx, universe, "the summary one")
        assert result.handled is True
        assert client.arbitrate.await_count == 0
        assert "arbitration_loop_guard_suppressed" in event_actions()

    @pytest.mark.asyncio
    async def test_question_escape(self, make_context, make_client, universe):
        """Questions escape to the downstream tiers."""
        client = make_client()
        ctx = make_context("what is a summary?", gates=LLM_ON, client=client)
        assert await resolve_unresolved(ctx, universe, "what is a summary?") is None
        assert client.arbitrate.await_count == 0

    @pytest.mark.asyncio
    async def test_question_escape_with_gate_off(self, make_context, universe, event_actions):
        """Questions escape even when LLM fallback is disabled."""
        ctx = make_context("what is summary 144?")
        assert await resolve_unresolved(ctx, universe, "what is summary 144?") is None
        assert event_actions() == ["clarification_unresolved_hook_question_escape"]

    @pytest.mark.asyncio
    async def test_question_escape_with_guard_armed(self, make_context, make_client, universe):
        """Questions escape even after the option set was arbitrated."""
        client = make_client()
        guard = LoopGuard()
        guard.record("m-1")
        ctx = make_context("what is summary 144?", gates=LLM_ON, client=client, loop_guard=guard)
        assert await resolve_unresolved(ctx, universe, "what is summary 144?") is None
        assert client.arbitrate.await_count == 0

    @pytest.mark.asyncio
    async def test_mid_confidence_never_selects(
        self, make_context, make_client, respond, universe, actions, event_actions
    ):
        """A 0.70 pick re-shows the clarifier with the pick first."""
        client = make_client(respond("select", "opt-155", 0.70))
        ctx = make_context("that one", gates=LLM_AUTO, client=client)
        result = await resolve_unresolved(ctx, universe, "that one")

        assert result.tier_label == "llm_suggested_clarifier"
        actions.handle_select_option.assert_not_called()
        shown = actions.set_pending_options.call_args.args[0]
        assert [o.id for o in shown] == ["opt-155", "opt-144", "opt-notes"]
        assert "Summary 155" in actions.add_message.call_args.args[0].content
        assert "llm_arbitration_suggested" in event_actions()

    @pytest.mark.asyncio
    async def test_auto_execute(self, make_context, make_client, respond, universe, actions):
        """A confident pick on an unmatched input is executed when allowed."""
        client = make_client(respond("select", "opt-155", 0.9))
        ctx = make_context("that one", gates=LLM_AUTO, client=client)
        result = await resolve_unresolved(ctx, universe, "that one")

        assert result.tier_label == "llm_auto_execute"
        assert result.handled_by_tier == 0
        actions.handle_select_option.assert_called_once()
        assert actions.handle_select_option.call_args.args[0].id == "opt-155"
        actions.add_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_auto_execute_gate_off(self, make_context, make_client, respond, universe, actions):
        """Without the auto-execute gate a confident pick is only suggested."""
        client = make_client(respond("select", "opt-155", 0.95))
        ctx = make_context("that one", gates=LLM_ON, client=client)
        result = await resolve_unresolved(ctx, universe, "that one")
        assert result.tier_label == "llm_suggested_clarifier"
        actions.handle_select_option.assert_not_called()

    @pytest.mark.asyncio
    async def test_ambiguity_not_allow_listed(
        self, make_context, make_client, respond, universe, actions
    ):
        """Partial label overlap is not eligible for auto-execution."""
        client = make_client(respond("select", "opt-155", 0.95))
        ctx = make_context("the summary one", gates=LLM_AUTO, client=client)
        result = await resolve_unresolved(ctx, universe, "the summary one")
        assert result.tier_label == "llm_suggested_clarifier"
        actions.handle_select_option.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_confidence(self, make_context, make_client, respond, universe, actions, event_actions):
        """Low confidence re-shows the clarifier unchanged."""
        client = make_client(respond("select", "opt-155", 0.4))
        ctx = make_context("that one", gates=LLM_AUTO, client=client)
        result = await resolve_unresolved(ctx, universe, "that one")
        assert result.tier_label == "clarification_reshow"
        shown = actions.set_pending_options.call_args.args[0]
        assert [o.id for o in shown] == ["opt-144", "opt-155", "opt-notes"]
        assert "llm_arbitration_low_confidence" in event_actions()

    @pytest.mark.asyncio
    async def test_failure_falls_back(self, make_context, make_client, universe, event_actions):
        """A failed call re-shows the clarifier and arms the guard."""
        client = make_client(ArbitrationResponse.failed("Timeout"))
        guard = LoopGuard()
        ctx = make_context("that one", gates=LLM_ON, client=client, loop_guard=guard)
        result = await resolve_unresolved(ctx, universe, "that one")
        assert result.action == "show_clarifier"
        assert "llm_arbitration_failed_fallback_clarifier" in event_actions()
        assert guard.should_suppress("m-1") is True

    @pytest.mark.asyncio
    async def test_no_selection(self, make_context, make_client, respond, universe, event_actions):
        """A "none" decision re-shows the clarifier."""
        client = make_client(respond("none", confidence=0.8))
        ctx = make_context("that one", gates=LLM_ON, client=client)
        result = await resolve_unresolved(ctx, universe, "that one")
        assert result.action == "show_clarifier"
        assert "llm_arbitration_no_selection" in event_actions()

    @pytest.mark.asyncio
    async def test_reshow_keeps_message_id(self, make_context, make_client, respond, universe, actions):
        """A re-shown set keeps its message id."""
        client = make_client(respond("select", "opt-155", 0.7))
        ctx = make_context("that one", gates=LLM_ON, client=client)
        await resolve_unresolved(ctx, universe, "that one")
        assert actions.set_last_clarification.call_args.args[0].message_id == "m-1"
