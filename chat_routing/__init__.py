"""
Chat command routing.

Resolves free-text chat commands into a single UI action through an
ordered ladder of tiers: clarification intercept, panel disambiguation,
the semantic answer lane gate, and the external retrieval routers.
"""

from .config import RoutingConfig, default_config
from .context import TurnActions, TurnContext, TurnState
from .dispatcher import RoutingDispatcher, dispatch_routing
from .feature_gates import FeatureGates
from .loop_guard import LoopGuard
from .session import ChatSession
from .types import (
    ArbitrationDecision,
    ArbitrationRequest,
    ArbitrationResponse,
    ChatMessage,
    Option,
    RoutingEvent,
    RoutingResult,
    VisibleWidget,
    WidgetSnapshot,
)

__version__ = "0.1.0"

__all__ = [
    "ArbitrationDecision",
    "ArbitrationRequest",
    "ArbitrationResponse",
    "ChatMessage",
    "ChatSession",
    "FeatureGates",
    "LoopGuard",
    "Option",
    "RoutingConfig",
    "RoutingDispatcher",
    "RoutingEvent",
    "RoutingResult",
    "TurnActions",
    "TurnContext",
    "TurnState",
    "VisibleWidget",
    "WidgetSnapshot",
    "default_config",
    "dispatch_routing",
]
