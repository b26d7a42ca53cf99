"""
Per-turn routing context.

A ``TurnContext`` bundles the input, a read-only snapshot of the session's
routing state, the closed set of mutator callbacks the dispatcher may
invoke, read-only accessors, feature gates, configuration, telemetry and
the external collaborators. It is built once per turn by the session
layer; the dispatcher keeps nothing between turns.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .arbitration_client import BaseArbitrationClient
from .clarification_state import (
    ClarificationSnapshot,
    FocusLatch,
    LastClarification,
    RepairMemory,
    ScopeCueRecoveryMemory,
    WidgetSelectionContext,
)
from .config import RoutingConfig, default_config
from .feature_gates import FeatureGates
from .loop_guard import LoopGuard
from .telemetry import LogSink, emit
from .types import ChatMessage, Option, RoutingEvent, VisibleWidget, WidgetSnapshot

RouterHandler = Callable[["TurnContext"], Awaitable[Any]]


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


@dataclass(frozen=True)
class TurnState:
    """Snapshot of the session's routing state at the start of a turn."""

    pending_options: list[Option] = field(default_factory=list)
    last_clarification: LastClarification | None = None
    clarification_snapshot: ClarificationSnapshot | None = None
    focus_latch: FocusLatch | None = None
    scope_cue_recovery_memory: ScopeCueRecoveryMemory | None = None
    widget_selection_context: WidgetSelectionContext | None = None
    repair_memory: RepairMemory | None = None
    visible_widgets: list[VisibleWidget] = field(default_factory=list)

    @property
    def has_active_clarification(self) -> bool:
        return bool(self.pending_options) or self.last_clarification is not None


@dataclass
class TurnActions:
    """Mutator callbacks. Every state change the dispatcher makes goes through one of these."""

    add_message: Callable[[ChatMessage], None] = _noop
    open_panel_drawer: Callable[[str, str], None] = _noop
    handle_select_option: Callable[[Option], None] = _noop
    set_pending_options: Callable[[list[Option]], None] = _noop
    set_last_clarification: Callable[[LastClarification | None], None] = _noop
    save_clarification_snapshot: Callable[[ClarificationSnapshot], None] = _noop
    clear_clarification_snapshot: Callable[[], None] = _noop
    increment_snapshot_turn: Callable[[], None] = _noop
    set_focus_latch: Callable[[FocusLatch], None] = _noop
    clear_focus_latch: Callable[[], None] = _noop
    increment_focus_latch_turn: Callable[[], None] = _noop
    set_repair_memory: Callable[[RepairMemory], None] = _noop
    clear_repair_memory: Callable[[], None] = _noop
    increment_repair_memory_turn: Callable[[], None] = _noop
    set_widget_selection_context: Callable[[WidgetSelectionContext], None] = _noop
    clear_widget_selection_context: Callable[[], None] = _noop
    increment_widget_selection_turn: Callable[[], None] = _noop
    set_scope_cue_recovery_memory: Callable[[ScopeCueRecoveryMemory], None] = _noop
    clear_scope_cue_recovery_memory: Callable[[], None] = _noop
    increment_scope_cue_recovery_turn: Callable[[], None] = _noop

    def clear_clarification(self) -> None:
        """Drop the pending option set and its clarification record."""
        self.set_pending_options([])
        self.set_last_clarification(None)


@dataclass
class TurnContext:
    """Everything one dispatched turn may read or call."""

    input: str
    state: TurnState = field(default_factory=TurnState)
    actions: TurnActions = field(default_factory=TurnActions)
    loop_guard: LoopGuard = field(default_factory=LoopGuard)
    gates: FeatureGates = field(default_factory=FeatureGates)
    config: RoutingConfig = field(default_factory=lambda: default_config)
    log: LogSink | None = None

    # Read-only accessors
    get_visible_snapshots: Callable[[], list[WidgetSnapshot]] = list
    get_active_widget_id: Callable[[], str | None] = _noop

    # External collaborators
    arbitration_client: BaseArbitrationClient | None = None
    known_noun_router: RouterHandler | None = None
    cross_corpus_router: RouterHandler | None = None
    doc_router: RouterHandler | None = None

    @property
    def trimmed_input(self) -> str:
        return self.input.strip()

    def emit(self, action: str, **metadata: Any) -> RoutingEvent:
        """Emit a telemetry event tagged with the current input."""
        metadata.setdefault("input", self.trimmed_input)
        return emit(self.log, action, **metadata)

    def widget_snapshot(self, widget_id: str | None) -> WidgetSnapshot | None:
        if widget_id is None:
            return None
        for snapshot in self.get_visible_snapshots() or []:
            if snapshot.widget_id == widget_id:
                return snapshot
        return None
