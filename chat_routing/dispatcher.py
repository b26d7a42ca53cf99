"""
Routing dispatcher.

Runs the routing ladder for one chat turn: the turn's short-lived
memories are aged first, then each tier is tried in order and the first
one that returns a result claims the turn. Tiers run strictly one after
another; nothing after the claiming tier executes.

Default ladder:
    0   clarification intercept (selections, scope cues, exits, arbitration)
    2   panel disambiguation
    -   semantic answer lane gate
    3   cross-corpus retrieval
    4   known-noun routing
    5   doc retrieval
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from .clarification_state import aged
from .context import TurnContext
from .tiers import (
    ClarificationInterceptTier,
    PanelDisambiguationTier,
    RoutingTier,
    SemanticLaneTier,
    cross_corpus_tier,
    doc_retrieval_tier,
    known_noun_tier,
)
from .types import RoutingResult

logger = logging.getLogger(__name__)


def default_tiers() -> list[RoutingTier]:
    """The standard ladder, in resolution order."""
    return [
        ClarificationInterceptTier(),
        PanelDisambiguationTier(),
        SemanticLaneTier(),
        cross_corpus_tier(),
        known_noun_tier(),
        doc_retrieval_tier(),
    ]


# (state field, turn limit attribute, increment action, clear action)
_AGING_RULES = [
    (
        "clarification_snapshot",
        "snapshot_turn_limit",
        "increment_snapshot_turn",
        "clear_clarification_snapshot",
    ),
    (
        "focus_latch",
        "focus_latch_turn_limit",
        "increment_focus_latch_turn",
        "clear_focus_latch",
    ),
    (
        "repair_memory",
        "repair_memory_turn_limit",
        "increment_repair_memory_turn",
        "clear_repair_memory",
    ),
    (
        "widget_selection_context",
        "widget_selection_turn_limit",
        "increment_widget_selection_turn",
        "clear_widget_selection_context",
    ),
    (
        "scope_cue_recovery_memory",
        "scope_cue_recovery_turn_limit",
        "increment_scope_cue_recovery_turn",
        "clear_scope_cue_recovery_memory",
    ),
]


def advance_turn_state(ctx: TurnContext) -> TurnContext:
    """
    Age every short-lived memory by one turn.

    Each memory is either incremented or, past its limit, cleared, through
    the matching mutator. Returns a context whose state reflects the aged
    values so the tiers see this turn's view.
    """
    limits = ctx.config.memory
    changes: dict[str, Any] = {}

    for field_name, limit_attr, increment, clear in _AGING_RULES:
        memory = getattr(ctx.state, field_name)
        if memory is None:
            continue
        older = aged(memory, getattr(limits, limit_attr))
        if older is None:
            logger.debug(f"Expired {field_name}")
            getattr(ctx.actions, clear)()
        else:
            getattr(ctx.actions, increment)()
        changes[field_name] = older

    if not changes:
        return ctx
    return replace(ctx, state=replace(ctx.state, **changes))


class RoutingDispatcher:
    """
    Folds a turn over an ordered list of tiers.

    Tier order is data: pass a custom list to reorder, drop or stub tiers.
    """

    def __init__(self, tiers: list[RoutingTier] | None = None):
        self.tiers = tiers if tiers is not None else default_tiers()
        self._stats = {
            "turns": 0,
            "handled": 0,
            "unhandled": 0,
            "semantic_lane": 0,
            "by_tier": {},
        }

    async def dispatch(self, ctx: TurnContext) -> RoutingResult:
        """Route one turn and return the claiming tier's result."""
        self._stats["turns"] += 1
        ctx = advance_turn_state(ctx)

        for tier in self.tiers:
            result = await tier.try_resolve(ctx)
            if result is None:
                continue

            if result.semantic_lane_pending:
                self._stats["semantic_lane"] += 1
            elif result.handled:
                self._stats["handled"] += 1
                label = result.tier_label or tier.label
                self._stats["by_tier"][label] = self._stats["by_tier"].get(label, 0) + 1

            ctx.emit(
                "routing_tier_claimed",
                tier=result.handled_by_tier,
                tier_label=result.tier_label or tier.label,
                handled=result.handled,
            )
            return result

        self._stats["unhandled"] += 1
        ctx.emit("routing_unhandled")
        return RoutingResult(handled=False)

    def get_statistics(self) -> dict[str, Any]:
        """Get dispatch statistics."""
        return {**self._stats, "by_tier": dict(self._stats["by_tier"])}


async def dispatch_routing(
    ctx: TurnContext,
    tiers: list[RoutingTier] | None = None,
) -> RoutingResult:
    """Route one chat turn through the ladder."""
    return await RoutingDispatcher(tiers).dispatch(ctx)


__all__ = [
    "RoutingDispatcher",
    "advance_turn_state",
    "default_tiers",
    "dispatch_routing",
]
