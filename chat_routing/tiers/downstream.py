"""
Downstream tiers.

The semantic answer lane gate and the external routers (cross-corpus
retrieval, known-noun routing, doc retrieval). External routers are
opaque ``(context) -> {handled, ...}`` callables; a router that raises or
returns anything else is treated as not having handled the turn.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any

from ..context import TurnContext
from ..option_matcher import is_command_like, is_semantic_question
from ..types import MalformedRouterResultError, RoutingResult
from .base import RoutingTier

logger = logging.getLogger(__name__)


def coerce_router_result(raw: Any, router: str, tier: int) -> RoutingResult | None:
    """
    Normalize a router's return value.

    Accepts a ``RoutingResult`` or a mapping with a boolean ``handled``
    (camelCase keys from JS-style routers are accepted too). Returns
    ``None`` when the router did not handle the turn.

    Raises:
        MalformedRouterResultError: If the value has no boolean ``handled``.
    """
    if isinstance(raw, RoutingResult):
        return raw if raw.handled else None

    if not isinstance(raw, Mapping) or not isinstance(raw.get("handled"), bool):
        raise MalformedRouterResultError(router, raw)

    if not raw["handled"]:
        return None

    handled_by_tier = raw.get("handled_by_tier", raw.get("handledByTier", tier))
    tier_label = raw.get("tier_label", raw.get("tierLabel", router))
    known = {"handled", "handled_by_tier", "handledByTier", "tier_label", "tierLabel", "action"}
    return RoutingResult(
        handled=True,
        handled_by_tier=handled_by_tier if isinstance(handled_by_tier, int) else tier,
        tier_label=tier_label if isinstance(tier_label, str) else router,
        action=raw.get("action"),
        details={k: v for k, v in raw.items() if k not in known},
    )


class SemanticLaneTier(RoutingTier):
    """Defers self-referential meta-questions to the semantic answer lane."""

    label = "semantic_lane"

    async def try_resolve(self, ctx: TurnContext) -> RoutingResult | None:
        if not ctx.gates.semantic_lane():
            return None
        if not is_semantic_question(ctx.trimmed_input, ctx.config.matcher):
            return None
        ctx.emit("semantic_lane_bypass")
        return RoutingResult(handled=False, tier_label=self.label, semantic_lane_pending=True)


class ExternalRouterTier(RoutingTier):
    """
    Wraps one external router.

    Retrieval-style routers set ``skip_command_like`` so imperative input
    ("open that summary144 now?") is never treated as a question for them.
    """

    def __init__(self, tier: int, label: str, handler_attr: str, skip_command_like: bool = False):
        self.tier = tier
        self.label = label
        self.handler_attr = handler_attr
        self.skip_command_like = skip_command_like

    async def try_resolve(self, ctx: TurnContext) -> RoutingResult | None:
        handler = getattr(ctx, self.handler_attr, None)
        if handler is None:
            return None

        if self.skip_command_like and is_command_like(ctx.trimmed_input, ctx.config.matcher):
            ctx.emit("retrieval_skipped_command_like", router=self.label)
            return None

        try:
            raw = handler(ctx)
            if inspect.isawaitable(raw):
                raw = await raw
        except Exception as e:
            logger.warning(f"Router {self.label} failed: {e}")
            ctx.emit("downstream_router_failed", router=self.label, error=str(e))
            return None

        try:
            return coerce_router_result(raw, self.label, self.tier)
        except MalformedRouterResultError as e:
            logger.warning(str(e))
            ctx.emit("downstream_malformed_result", router=self.label, result_type=type(raw).__name__)
            return None


def cross_corpus_tier() -> ExternalRouterTier:
    return ExternalRouterTier(3, "cross_corpus", "cross_corpus_router", skip_command_like=True)


def known_noun_tier() -> ExternalRouterTier:
    return ExternalRouterTier(4, "known_noun", "known_noun_router")


def doc_retrieval_tier() -> ExternalRouterTier:
    return ExternalRouterTier(5, "doc_retrieval", "doc_router", skip_command_like=True)
