"""
Session layer for chat routing.

``ChatSession`` owns the mutable routing state of one chat (pending
options, clarification records, latches, turn memories, the loop guard
and the transcript) and builds a fresh ``TurnContext`` for every turn,
binding the context's mutators to its own state.

Example:
    session = ChatSession(visible_widgets=[VisibleWidget("links-panel-d", "Links Panel D")])
    result = await session.handle("open links panel")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
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
from .context import RouterHandler, TurnActions, TurnContext, TurnState
from .dispatcher import RoutingDispatcher
from .feature_gates import FeatureGates
from .loop_guard import LoopGuard
from .telemetry import LogSink
from .types import ChatMessage, MessageRole, Option, RoutingResult, VisibleWidget, WidgetSnapshot

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Routing state owned by one chat session."""

    pending_options: list[Option] = field(default_factory=list)
    last_clarification: LastClarification | None = None
    clarification_snapshot: ClarificationSnapshot | None = None
    focus_latch: FocusLatch | None = None
    scope_cue_recovery_memory: ScopeCueRecoveryMemory | None = None
    widget_selection_context: WidgetSelectionContext | None = None
    repair_memory: RepairMemory | None = None
    loop_guard: LoopGuard = field(default_factory=LoopGuard)

    def to_turn_state(self, visible_widgets: list[VisibleWidget]) -> TurnState:
        return TurnState(
            pending_options=list(self.pending_options),
            last_clarification=self.last_clarification,
            clarification_snapshot=self.clarification_snapshot,
            focus_latch=self.focus_latch,
            scope_cue_recovery_memory=self.scope_cue_recovery_memory,
            widget_selection_context=self.widget_selection_context,
            repair_memory=self.repair_memory,
            visible_widgets=list(visible_widgets),
        )


class ChatSession:
    """
    One chat's routing session.

    Collaborators (arbitration client, external routers, widget accessors)
    are injected; the session records what the dispatcher asked it to do
    in ``messages``, ``selections`` and ``opened_panels``.
    """

    def __init__(
        self,
        visible_widgets: list[VisibleWidget] | None = None,
        widget_snapshots: list[WidgetSnapshot] | None = None,
        active_widget_id: str | None = None,
        gates: FeatureGates | None = None,
        config: RoutingConfig | None = None,
        log: LogSink | None = None,
        arbitration_client: BaseArbitrationClient | None = None,
        known_noun_router: RouterHandler | None = None,
        cross_corpus_router: RouterHandler | None = None,
        doc_router: RouterHandler | None = None,
        on_select: Callable[[Option], None] | None = None,
        dispatcher: RoutingDispatcher | None = None,
    ):
        self.state = SessionState()
        self.visible_widgets = list(visible_widgets or [])
        self.widget_snapshots = list(widget_snapshots or [])
        self.active_widget_id = active_widget_id
        self.gates = gates or FeatureGates()
        self.config = config or default_config
        self.log = log
        self.arbitration_client = arbitration_client
        self.known_noun_router = known_noun_router
        self.cross_corpus_router = cross_corpus_router
        self.doc_router = doc_router
        self.on_select = on_select
        self.dispatcher = dispatcher or RoutingDispatcher()

        self.messages: list[ChatMessage] = []
        self.selections: list[Option] = []
        self.opened_panels: list[tuple[str, str]] = []

    # Mutators bound into each turn context

    def add_message(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def open_panel_drawer(self, panel_id: str, title: str) -> None:
        self.opened_panels.append((panel_id, title))

    def handle_select_option(self, option: Option) -> None:
        self.selections.append(option)
        if self.on_select is not None:
            self.on_select(option)

    def set_pending_options(self, options: list[Option]) -> None:
        self.state.pending_options = list(options)

    def set_last_clarification(self, clarification: LastClarification | None) -> None:
        self.state.last_clarification = clarification

    def _set(self, name: str, value: Any) -> None:
        setattr(self.state, name, value)

    def _increment(self, name: str, counter: str = "turns_since_set") -> None:
        memory = getattr(self.state, name)
        if memory is not None:
            setattr(self.state, name, replace(memory, **{counter: getattr(memory, counter) + 1}))

    def build_actions(self) -> TurnActions:
        return TurnActions(
            add_message=self.add_message,
            open_panel_drawer=self.open_panel_drawer,
            handle_select_option=self.handle_select_option,
            set_pending_options=self.set_pending_options,
            set_last_clarification=self.set_last_clarification,
            save_clarification_snapshot=lambda s: self._set("clarification_snapshot", s),
            clear_clarification_snapshot=lambda: self._set("clarification_snapshot", None),
            increment_snapshot_turn=lambda: self._increment("clarification_snapshot"),
            set_focus_latch=lambda latch: self._set("focus_latch", latch),
            clear_focus_latch=lambda: self._set("focus_latch", None),
            increment_focus_latch_turn=lambda: self._increment("focus_latch", "turns_since_latched"),
            set_repair_memory=lambda m: self._set("repair_memory", m),
            clear_repair_memory=lambda: self._set("repair_memory", None),
            increment_repair_memory_turn=lambda: self._increment("repair_memory"),
            set_widget_selection_context=lambda c: self._set("widget_selection_context", c),
            clear_widget_selection_context=lambda: self._set("widget_selection_context", None),
            increment_widget_selection_turn=lambda: self._increment("widget_selection_context"),
            set_scope_cue_recovery_memory=lambda m: self._set("scope_cue_recovery_memory", m),
            clear_scope_cue_recovery_memory=lambda: self._set("scope_cue_recovery_memory", None),
            increment_scope_cue_recovery_turn=lambda: self._increment("scope_cue_recovery_memory"),
        )

    def build_context(self, text: str) -> TurnContext:
        """Snapshot the session into a context for one turn."""
        return TurnContext(
            input=text,
            state=self.state.to_turn_state(self.visible_widgets),
            actions=self.build_actions(),
            loop_guard=self.state.loop_guard,
            gates=self.gates,
            config=self.config,
            log=self.log,
            get_visible_snapshots=lambda: list(self.widget_snapshots),
            get_active_widget_id=lambda: self.active_widget_id,
            arbitration_client=self.arbitration_client,
            known_noun_router=self.known_noun_router,
            cross_corpus_router=self.cross_corpus_router,
            doc_router=self.doc_router,
        )

    async def handle(self, text: str) -> RoutingResult:
        """Record the user's message and route it."""
        self.messages.append(ChatMessage(content=text, role=MessageRole.USER))
        result = await self.dispatcher.dispatch(self.build_context(text))
        logger.debug(f"Routed {text!r}: {result}")
        return result

    def reset_loop_guard(self) -> None:
        self.state.loop_guard.reset()

    @property
    def assistant_messages(self) -> list[ChatMessage]:
        return [m for m in self.messages if m.role is MessageRole.ASSISTANT]
