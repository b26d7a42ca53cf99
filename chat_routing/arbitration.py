"""
LLM arbitration for unresolved selections.

Entered only when the input is aimed at an option set but no badge,
ordinal or exact label picks an option. The unresolved hook runs, in
order: the question escape, the loop guard, the LLM-fallback gate, and
then at most two client calls (one initial call plus one context
enrichment retry).

Outcomes:
- failure (timeout, rate limit, transport) -> clarifier re-shown unchanged
- select >= auto-execute threshold, gate on, allow-listed ambiguity
  -> option selected without a message
- select >= minimum confidence -> clarifier re-shown with the pick first
- anything else -> clarifier re-shown unchanged
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .clarification_state import OptionUniverse, UniverseSource, reorder_with_pick_first
from .context import TurnContext
from .option_matcher import (
    find_matching_options,
    has_question_intent,
    is_command_like,
    is_explicit_command,
    strip_verbs_and_politeness,
)
from .prompts import CLARIFIER_RESHOW, CLARIFIER_SUGGESTED
from .resolution import select_option, show_clarifier
from .scope_cue import Scope
from .telemetry import LogSink, emit
from .types import (
    ArbitrationDecision,
    ArbitrationRequest,
    ArbitrationResponse,
    DecisionKind,
    OptionRef,
    RoutingResult,
)

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    """Classified arbitration transport failures."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"


def classify_failure(error: str | None) -> FailureKind:
    """Classify a client error string by inspection."""
    text = (error or "").lower()
    if "timeout" in text or "timed out" in text:
        return FailureKind.TIMEOUT
    if "429" in text or "rate" in text:
        return FailureKind.RATE_LIMITED
    return FailureKind.TRANSPORT_ERROR


class ConfidenceBucket(str, Enum):
    HIGH_CONFIDENCE_EXECUTE = "high_confidence_execute"
    LOW_CONFIDENCE_LLM_ELIGIBLE = "low_confidence_llm_eligible"
    LOW_CONFIDENCE_CLARIFIER_ONLY = "low_confidence_clarifier_only"


class AmbiguityReason(str, Enum):
    NO_DETERMINISTIC_MATCH = "no_deterministic_match"
    SINGLE_PARTIAL_MATCH = "single_partial_match"
    MULTI_MATCH_NO_EXACT_WINNER = "multi_match_no_exact_winner"
    COMMAND_SELECTION_COLLISION = "command_selection_collision"
    NO_CANDIDATES = "no_candidates"


@dataclass
class ConfidenceAssessment:
    bucket: ConfidenceBucket
    ambiguity_reason: AmbiguityReason | None = None


def classify_arbitration_confidence(
    match_count: int,
    exact_match_count: int,
    text: str,
    has_active_options: bool,
) -> ConfidenceAssessment:
    """
    Bucket a selection attempt by how much the deterministic matcher found.

    The ambiguity reason is what the auto-execute allow-list is checked
    against: only inputs that matched nothing at all are eligible by
    default.
    """
    if not has_active_options:
        return ConfidenceAssessment(
            ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY, AmbiguityReason.NO_CANDIDATES
        )
    if exact_match_count == 1:
        return ConfidenceAssessment(ConfidenceBucket.HIGH_CONFIDENCE_EXECUTE)
    if match_count == 0:
        return ConfidenceAssessment(
            ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE, AmbiguityReason.NO_DETERMINISTIC_MATCH
        )
    if is_explicit_command(text):
        return ConfidenceAssessment(
            ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
            AmbiguityReason.COMMAND_SELECTION_COLLISION,
        )
    if match_count == 1:
        return ConfidenceAssessment(
            ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE, AmbiguityReason.SINGLE_PARTIAL_MATCH
        )
    return ConfidenceAssessment(
        ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE, AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER
    )


@dataclass
class Enrichment:
    """Evidence gathered for a context retry, or why there is none."""

    evidence: list[str] = field(default_factory=list)
    unavailable_reason: str | None = None


EnrichFn = Callable[[list[str]], Enrichment]


@dataclass
class ArbitrationOutcome:
    """Result of the bounded arbitration loop."""

    decision: ArbitrationDecision | None = None
    failure: FailureKind | None = None
    error: str | None = None
    fallback_reason: str | None = None
    attempts: int = 0
    latency_ms: float = 0.0

    @property
    def selected_id(self) -> str | None:
        if self.failure or self.fallback_reason or self.decision is None:
            return None
        if self.decision.decision is DecisionKind.SELECT:
            return self.decision.choice_id
        return None


def evidence_fingerprint(items: list[str]) -> frozenset[str]:
    return frozenset(item.strip().lower() for item in items if item.strip())


async def call_client(client, request: ArbitrationRequest) -> ArbitrationResponse:
    """Call the client; anything it raises becomes a failed response."""
    start = time.monotonic()
    try:
        response = await client.arbitrate(request)
    except Exception as e:
        logger.warning(f"Arbitration client raised: {e}")
        return ArbitrationResponse.failed(str(e) or type(e).__name__, (time.monotonic() - start) * 1000)
    if not isinstance(response, ArbitrationResponse):
        return ArbitrationResponse.failed(f"Malformed client response: {response!r}")
    if response.success and response.decision is None:
        return ArbitrationResponse.failed("Malformed client response: missing decision", response.latency_ms)
    return response


async def run_bounded_arbitration(
    client,
    request: ArbitrationRequest,
    *,
    retry_enabled: bool,
    enrich: EnrichFn,
    log: LogSink | None = None,
    max_retries: int = 1,
) -> ArbitrationOutcome:
    """
    Call the client, retrying once with enriched context on ``request_context``.

    The retry reuses the same frozen option list; the second decision is
    final whatever it is.
    """
    started = time.monotonic()
    emit(log, "arbitration_loop_started", input=request.input, option_count=len(request.options))

    def finish(**kwargs) -> ArbitrationOutcome:
        return ArbitrationOutcome(latency_ms=(time.monotonic() - started) * 1000, **kwargs)

    response = await call_client(client, request)
    if not response.success:
        return finish(failure=classify_failure(response.error), error=response.error, attempts=1)

    decision = response.decision
    if decision.decision is not DecisionKind.REQUEST_CONTEXT:
        return finish(decision=decision, attempts=1)

    emit(log, "arbitration_request_context", input=request.input, needed_context=decision.needed_context)

    if not retry_enabled or max_retries < 1:
        return _fallback(log, request, decision, "retry_feature_disabled", finish, attempts=1)

    enrichment = enrich(decision.needed_context)
    if enrichment.unavailable_reason or not enrichment.evidence:
        reason = enrichment.unavailable_reason or "enrichment_unavailable"
        return _fallback(log, request, decision, reason, finish, attempts=1)

    if evidence_fingerprint(enrichment.evidence) <= evidence_fingerprint(request.context):
        return _fallback(log, request, decision, "no_new_evidence", finish, attempts=1)

    retry_request = ArbitrationRequest(
        input=request.input,
        options=request.options,
        context=[*request.context, "enriched_evidence: " + "; ".join(enrichment.evidence)],
    )
    emit(log, "arbitration_retry_called", input=request.input, evidence_count=len(enrichment.evidence))

    retry = await call_client(client, retry_request)
    if not retry.success:
        failure = classify_failure(retry.error)
        emit(
            log,
            "arbitration_retry_fallback",
            input=request.input,
            fallback_reason=failure.value,
        )
        return finish(failure=failure, error=retry.error, attempts=2)

    if retry.decision.decision is DecisionKind.SELECT:
        emit(
            log,
            "arbitration_retry_resolved",
            input=request.input,
            choice_id=retry.decision.choice_id,
            confidence=retry.decision.confidence,
        )
        return finish(decision=retry.decision, attempts=2)

    return _fallback(
        log, request, retry.decision, f"retry_{retry.decision.decision.value}", finish, attempts=2
    )


def _fallback(log, request, decision, reason, finish, attempts) -> ArbitrationOutcome:
    emit(log, "arbitration_retry_fallback", input=request.input, fallback_reason=reason)
    return finish(decision=decision, fallback_reason=reason, attempts=attempts)


def initial_context(ctx: TurnContext, universe: OptionUniverse, scope: Scope | None) -> list[str]:
    context = [
        f"scope: {scope.value if scope else 'chat'}",
        f"original_intent: {universe.original_intent}",
    ]
    latch = ctx.state.focus_latch
    if latch is not None:
        context.append(f"focused_widget: {latch.widget_label}")
    return context


def build_enricher(ctx: TurnContext, universe: OptionUniverse, scope: Scope | None) -> EnrichFn:
    """
    Evidence source for a context retry, chosen by scope.

    Chat scope draws on what chat offered before plus the focused widget
    and visible panels; widget scope on the widget's own items; dashboard
    and workspace scopes have nothing to offer.
    """

    def enrich(needed_context: list[str]) -> Enrichment:
        if scope in (Scope.DASHBOARD, Scope.WORKSPACE):
            return Enrichment(unavailable_reason="scope_not_available")

        state = ctx.state
        evidence: list[str] = []

        if scope is Scope.WIDGET or universe.source is UniverseSource.WIDGET:
            snapshot = ctx.widget_snapshot(universe.widget_id)
            if snapshot is None:
                return Enrichment(unavailable_reason="enrichment_unavailable")
            evidence.append(f"widget_context: {snapshot.title}")
            evidence.append("widget_items: " + " | ".join(item.label for item in snapshot.items))
            return Enrichment(evidence=evidence)

        labels: list[str] = []
        sources = [
            state.clarification_snapshot.options if state.clarification_snapshot else [],
            state.scope_cue_recovery_memory.options if state.scope_cue_recovery_memory else [],
            state.last_clarification.options if state.last_clarification else [],
        ]
        current = {o.id for o in universe.options}
        for options in sources:
            for option in options:
                if option.id not in current and option.label not in labels:
                    labels.append(option.label)
        if labels:
            evidence.append("recent_options: " + " | ".join(labels))
        if state.focus_latch is not None:
            evidence.append(f"focused_widget: {state.focus_latch.widget_label}")
        if state.visible_widgets:
            evidence.append("visible_panels: " + " | ".join(w.title for w in state.visible_widgets))

        if not evidence:
            return Enrichment(unavailable_reason="enrichment_unavailable")
        return Enrichment(evidence=evidence)

    return enrich


async def resolve_unresolved(
    ctx: TurnContext,
    universe: OptionUniverse,
    text: str,
    scope: Scope | None = None,
) -> RoutingResult | None:
    """
    Run the unresolved hook for a selection-like input with no deterministic match.

    Returns ``None`` when the input escapes to the downstream tiers.
    """
    config = ctx.config.arbitration
    options = universe.options
    message_id = universe.message_id

    if has_question_intent(text) and not is_command_like(text, ctx.config.matcher):
        ctx.emit("clarification_unresolved_hook_question_escape", message_id=message_id)
        return None

    if ctx.loop_guard.should_suppress(message_id):
        ctx.emit("arbitration_loop_guard_suppressed", message_id=message_id)
        return show_clarifier(ctx, universe, CLARIFIER_RESHOW)

    if not ctx.gates.llm_fallback() or ctx.arbitration_client is None:
        ctx.emit("clarification_unresolved_hook_llm_disabled", message_id=message_id)
        return show_clarifier(ctx, universe, CLARIFIER_RESHOW)

    match = find_matching_options(strip_verbs_and_politeness(text, ctx.config.matcher), options)
    assessment = classify_arbitration_confidence(
        len(match.ranked), len(match.exact), text, bool(options)
    )

    ctx.loop_guard.record(message_id)
    ctx.emit(
        "llm_arbitration_called",
        message_id=message_id,
        option_count=len(options),
        ambiguity_reason=assessment.ambiguity_reason.value if assessment.ambiguity_reason else None,
    )

    request = ArbitrationRequest(
        input=text,
        options=[OptionRef.from_option(o) for o in options],
        context=initial_context(ctx, universe, scope),
    )
    outcome = await run_bounded_arbitration(
        ctx.arbitration_client,
        request,
        retry_enabled=ctx.gates.context_retry(),
        enrich=build_enricher(ctx, universe, scope),
        log=ctx.log,
        max_retries=config.max_context_retries,
    )

    if outcome.failure is not None:
        ctx.emit(
            "llm_arbitration_failed_fallback_clarifier",
            message_id=message_id,
            failure=outcome.failure.value,
            error=outcome.error,
            latency_ms=outcome.latency_ms,
        )
        return show_clarifier(ctx, universe, CLARIFIER_RESHOW)

    if outcome.fallback_reason is not None:
        # Already reported by the retry loop
        return show_clarifier(ctx, universe, CLARIFIER_RESHOW)

    decision = outcome.decision
    picked = next((o for o in options if o.id == outcome.selected_id), None)
    if picked is None:
        ctx.emit(
            "llm_arbitration_no_selection",
            message_id=message_id,
            decision=decision.decision.value if decision else None,
        )
        return show_clarifier(ctx, universe, CLARIFIER_RESHOW)

    ctx.loop_guard.record(message_id, suggested_id=picked.id)
    reason = assessment.ambiguity_reason.value if assessment.ambiguity_reason else None
    auto_eligible = (
        decision.confidence >= config.auto_execute_confidence
        and ctx.gates.auto_execute()
        and reason in config.auto_execute_allowed_reasons
        and not is_explicit_command(text, ctx.config.matcher)
    )

    if auto_eligible:
        ctx.emit(
            "llm_arbitration_auto_execute",
            message_id=message_id,
            choice_id=picked.id,
            confidence=decision.confidence,
            ambiguity_reason=reason,
        )
        return select_option(ctx, universe, picked, tier_label="llm_auto_execute")

    if decision.confidence >= config.min_confidence_select:
        ctx.emit(
            "llm_arbitration_suggested",
            message_id=message_id,
            choice_id=picked.id,
            confidence=decision.confidence,
        )
        return show_clarifier(
            ctx,
            universe,
            CLARIFIER_SUGGESTED.format(label=picked.label),
            options=reorder_with_pick_first(options, picked.id),
            tier_label="llm_suggested_clarifier",
        )

    ctx.emit(
        "llm_arbitration_low_confidence",
        message_id=message_id,
        choice_id=picked.id,
        confidence=decision.confidence,
    )
    return show_clarifier(ctx, universe, CLARIFIER_RESHOW)
