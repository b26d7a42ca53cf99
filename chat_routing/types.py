"""
Core types for chat command routing.

Option sets, clarification records, short-lived turn memories, the
dispatcher result contract, the arbitration request/response contract,
and the error hierarchy.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    """Chat message roles."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Option:
    """A single selectable entry in an option set."""

    id: str
    label: str
    type: str = "option"
    sublabel: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class OptionRef:
    """Minimal option view sent to the arbitration client."""

    id: str
    label: str
    sublabel: str | None = None

    @classmethod
    def from_option(cls, option: Option) -> OptionRef:
        return cls(id=option.id, label=option.label, sublabel=option.sublabel)


@dataclass
class VisibleWidget:
    """A panel or widget currently visible on the dashboard."""

    id: str
    title: str
    type: str = "panel"


@dataclass
class WidgetSnapshot:
    """Selectable items a visible widget currently exposes."""

    widget_id: str
    title: str
    items: list[Option] = field(default_factory=list)


@dataclass
class ChatMessage:
    """Message handed to the session through ``add_message``."""

    content: str
    role: MessageRole = MessageRole.ASSISTANT
    options: list[Option] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_message_id("assistant"))
    timestamp: float = field(default_factory=time.time)


@dataclass
class RoutingEvent:
    """A single telemetry event emitted by the routing engine."""

    action: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RoutingResult:
    """
    Outcome of one dispatched turn.

    ``handled`` is the only required field. ``semantic_lane_pending`` is
    set instead of ``handled`` when the turn is deferred to the semantic
    answer lane.
    """

    handled: bool
    handled_by_tier: int | None = None
    tier_label: str | None = None
    semantic_lane_pending: bool = False
    action: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class DecisionKind(str, Enum):
    """Decisions an arbitration client can return."""

    SELECT = "select"
    REQUEST_CONTEXT = "request_context"
    CLARIFY = "clarify"
    NONE = "none"
    REROUTE = "reroute"


class ArbitrationDecision(BaseModel):
    """Decision returned by the arbitration LLM."""

    decision: DecisionKind
    choice_id: str | None = None
    choice_index: int | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str = ""
    needed_context: list[str] = Field(default_factory=list)


@dataclass
class ArbitrationRequest:
    """Request sent to the arbitration client."""

    input: str
    options: list[OptionRef]
    context: list[str] = field(default_factory=list)


@dataclass
class ArbitrationResponse:
    """
    Response from the arbitration client.

    Exactly one of ``decision`` (on success) or ``error`` (on failure) is set.
    Errors are plain strings; callers classify them by inspection.
    """

    success: bool
    decision: ArbitrationDecision | None = None
    error: str | None = None
    latency_ms: float = 0.0

    @classmethod
    def ok(cls, decision: ArbitrationDecision, latency_ms: float = 0.0) -> ArbitrationResponse:
        return cls(success=True, decision=decision, latency_ms=latency_ms)

    @classmethod
    def failed(cls, error: str, latency_ms: float = 0.0) -> ArbitrationResponse:
        return cls(success=False, error=error, latency_ms=latency_ms)


def new_message_id(prefix: str = "clarification") -> str:
    """Create a session-unique message id."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# Errors


class RoutingError(Exception):
    """Base error for the routing engine."""

    pass


class ArbitrationClientError(RoutingError):
    """Arbitration client could not be constructed."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} arbitration client: {message}")


class ConfigurationError(RoutingError):
    """Invalid routing configuration."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Invalid config value for '{key}': {message}")


class MalformedRouterResultError(RoutingError):
    """A downstream router returned something other than a ``{handled}`` result."""

    def __init__(self, router: str, value: Any):
        self.router = router
        self.value = value
        super().__init__(f"Router '{router}' returned malformed result: {value!r}")
