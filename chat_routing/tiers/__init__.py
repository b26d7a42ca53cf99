"""
Routing ladder tiers.
"""

from .base import RoutingTier
from .clarification import ClarificationInterceptTier
from .downstream import (
    ExternalRouterTier,
    SemanticLaneTier,
    coerce_router_result,
    cross_corpus_tier,
    doc_retrieval_tier,
    known_noun_tier,
)
from .panel import PanelDisambiguationTier

__all__ = [
    "ClarificationInterceptTier",
    "ExternalRouterTier",
    "PanelDisambiguationTier",
    "RoutingTier",
    "SemanticLaneTier",
    "coerce_router_result",
    "cross_corpus_tier",
    "doc_retrieval_tier",
    "known_noun_tier",
]
