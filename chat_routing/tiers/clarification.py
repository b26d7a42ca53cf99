"""
Clarification intercept (Tier 0).

Decides, before any other tier, whether the input is aimed at an option
set the user has seen. In order:

1. Exit phrases ("cancel", "never mind") close the active set.
2. A scope cue ("... from chat", "... from links panel d") pins the
   option universe and takes over the turn. A command or question with a
   chat cue and no earlier options passes on to the rest of the ladder.
3. A repair phrase ("not that one") corrects the previous pick.
4. Otherwise the active universe (focus-latched widget, pending
   clarification, or aging snapshot) is matched deterministically, then
   handed to the unresolved hook. Inputs that are not aimed at the set
   at all escape to the rest of the ladder untouched.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from ..arbitration import resolve_unresolved
from ..clarification_state import (
    ClarificationSnapshot,
    OptionUniverse,
    ScopeCueRecoveryMemory,
    UniverseSource,
    chat_universe,
    default_universe,
)
from ..context import TurnContext
from ..option_matcher import (
    has_question_intent,
    is_command_like,
    is_exit_phrase,
    is_explicit_command,
    is_repair_phrase,
    parse_ordinal,
    strip_verbs_and_politeness,
)
from ..panel_matcher import find_widget_by_name
from ..prompts import (
    CLARIFIER_RESTORED,
    NO_EARLIER_OPTIONS,
    PAUSED_LIST_ORDINAL,
    REPAIR_RESHOW,
    SCOPE_NOT_AVAILABLE,
    STOP_NO_SCOPE,
    STOP_WITH_OPTIONS,
    WIDGET_CLARIFIER,
    WIDGET_NO_ITEMS,
)
from ..resolution import (
    deterministic_match,
    is_selection_like,
    select_option,
    show_clarifier,
    tell,
)
from ..scope_cue import Scope, ScopeCue, resolve_scope_cue, strip_scope_cue
from ..types import RoutingResult
from .base import RoutingTier

logger = logging.getLogger(__name__)

WIDGET_SELECTION_INTENT = "widget_selection"


class ClarificationInterceptTier(RoutingTier):
    """Tier 0: selections, scope cues, exits and repairs against shown options."""

    tier = 0
    label = "clarification_intercept"

    async def try_resolve(self, ctx: TurnContext) -> RoutingResult | None:
        text = ctx.trimmed_input
        if not text:
            return None

        if is_exit_phrase(text):
            return self._handle_exit(ctx)

        cue = resolve_scope_cue(text)
        if cue.present:
            return await self._handle_scope_cue(ctx, cue)

        if ctx.state.repair_memory is not None and is_repair_phrase(text):
            return self._handle_repair(ctx)

        latched = self._latched_universe(ctx)
        if latched is not None:
            option = deterministic_match(text, latched.options, ctx.config.matcher)
            if option is not None:
                ctx.emit("focus_latch_binding", widget_id=latched.widget_id, option_id=option.id)
                return select_option(ctx, latched, option, tier_label="focus_latch_selection")

        universe = self._default_universe(ctx)
        if universe is None:
            return self._handle_no_universe(ctx, text)

        return await self._resolve_against(ctx, universe, text)

    # Universes

    def _latched_universe(self, ctx: TurnContext) -> OptionUniverse | None:
        """The focus-latched widget's items, when the latch is newer than the chat set."""
        state = ctx.state
        latch = state.focus_latch
        if latch is None or not ctx.gates.selection_intent_arbitration():
            return None
        clarification = state.last_clarification
        if clarification is not None and clarification.timestamp > latch.latched_at:
            return None
        snapshot = ctx.widget_snapshot(latch.widget_id)
        if snapshot is None or not snapshot.items:
            return None
        return self._widget_universe(snapshot.widget_id, snapshot.title, snapshot.items)

    def _default_universe(self, ctx: TurnContext) -> OptionUniverse | None:
        state = ctx.state
        universe = default_universe(
            state.pending_options, state.last_clarification, state.clarification_snapshot
        )
        widget_context = state.widget_selection_context
        if (
            universe is not None
            and universe.source is UniverseSource.PENDING
            and widget_context is not None
            and universe.original_intent == WIDGET_SELECTION_INTENT
        ):
            universe = replace(
                universe,
                widget_id=widget_context.widget_id,
                widget_label=widget_context.widget_label,
            )
        return universe

    @staticmethod
    def _widget_universe(widget_id: str, title: str, items) -> OptionUniverse:
        return OptionUniverse(
            source=UniverseSource.WIDGET,
            options=list(items),
            message_id=f"widget:{widget_id}:" + "|".join(item.id for item in items),
            original_intent=WIDGET_SELECTION_INTENT,
            widget_id=widget_id,
            widget_label=title,
        )

    # Paths

    async def _resolve_against(
        self,
        ctx: TurnContext,
        universe: OptionUniverse,
        text: str,
        scope: Scope | None = None,
    ) -> RoutingResult | None:
        matcher = ctx.config.matcher
        option = deterministic_match(text, universe.options, matcher)
        if option is not None:
            ctx.emit(
                "clarification_selection_resolved",
                option_id=option.id,
                source=universe.source.value,
            )
            return select_option(ctx, universe, option)

        if not universe.llm_eligible:
            return None

        if not is_selection_like(text, universe.options, matcher):
            ctx.emit("clarification_command_escape", message_id=universe.message_id)
            return None

        return await resolve_unresolved(ctx, universe, text, scope)

    def _handle_no_universe(self, ctx: TurnContext, text: str) -> RoutingResult | None:
        snapshot = ctx.state.clarification_snapshot
        if (
            snapshot is not None
            and snapshot.paused
            and parse_ordinal(text, len(snapshot.options), ctx.config.matcher) is not None
        ):
            ctx.emit("paused_list_ordinal_blocked", paused_reason=snapshot.paused_reason)
            return tell(ctx, PAUSED_LIST_ORDINAL, tier_label="paused_list")
        return None

    def _handle_exit(self, ctx: TurnContext) -> RoutingResult:
        state = ctx.state
        actions = ctx.actions

        if state.has_active_clarification:
            clarification = state.last_clarification
            options = state.pending_options or (clarification.options if clarification else [])
            actions.save_clarification_snapshot(
                ClarificationSnapshot(
                    options=list(options),
                    original_intent=clarification.original_intent if clarification else "option_selection",
                    message_id=clarification.message_id if clarification else None,
                    paused=True,
                    paused_reason="stop",
                )
            )
            actions.clear_clarification()
            actions.clear_focus_latch()
            actions.clear_widget_selection_context()
            actions.clear_repair_memory()
            ctx.loop_guard.reset()
            ctx.emit("stop_scope_active_clarification", option_count=len(options))
            return tell(ctx, STOP_WITH_OPTIONS, tier_label="stop", action="stop")

        snapshot = state.clarification_snapshot
        if snapshot is not None and not snapshot.paused:
            actions.save_clarification_snapshot(replace(snapshot, paused=True, paused_reason="stop"))
        actions.clear_focus_latch()
        actions.clear_widget_selection_context()
        actions.clear_scope_cue_recovery_memory()
        ctx.emit("stop_scope_no_active_scope", had_snapshot=snapshot is not None)
        return tell(ctx, STOP_NO_SCOPE, tier_label="stop", action="stop")

    def _handle_repair(self, ctx: TurnContext) -> RoutingResult | None:
        memory = ctx.state.repair_memory
        others = [o for o in memory.options if o.id != memory.selected_id]
        ctx.actions.clear_repair_memory()
        if not others:
            return None

        universe = OptionUniverse(
            source=UniverseSource.PENDING,
            options=list(memory.options),
            message_id=memory.message_id,
        )
        ctx.emit("repair_memory_applied", selected_id=memory.selected_id, remaining=len(others))
        if len(others) == 1:
            return select_option(ctx, universe, others[0], tier_label="repair")
        return show_clarifier(
            ctx, universe, REPAIR_RESHOW, options=others, tier_label="repair", new_message_id=True
        )

    async def _handle_scope_cue(self, ctx: TurnContext, cue: ScopeCue) -> RoutingResult | None:
        remainder = strip_scope_cue(ctx.trimmed_input, cue)

        if cue.scope in (Scope.DASHBOARD, Scope.WORKSPACE):
            ctx.emit(f"scope_cue_{cue.scope.value}_not_available", cue_text=cue.cue_text)
            return tell(
                ctx,
                SCOPE_NOT_AVAILABLE.format(scope=cue.scope.value.capitalize()),
                tier_label="scope_cue",
            )

        if cue.scope is Scope.WIDGET:
            return await self._handle_widget_cue(ctx, cue, remainder)

        return await self._handle_chat_cue(ctx, cue, remainder)

    async def _handle_chat_cue(
        self, ctx: TurnContext, cue: ScopeCue, remainder: str
    ) -> RoutingResult | None:
        state = ctx.state
        universe = chat_universe(
            state.clarification_snapshot,
            state.last_clarification,
            state.scope_cue_recovery_memory,
        )
        if universe is None:
            matcher = ctx.config.matcher
            if is_explicit_command(remainder, matcher) or (
                has_question_intent(remainder) and not is_command_like(remainder, matcher)
            ):
                ctx.emit("scope_cue_chat_command_fallthrough", cue_text=cue.cue_text)
                return None
            ctx.emit("scope_cue_chat_no_options", cue_text=cue.cue_text)
            return tell(ctx, NO_EARLIER_OPTIONS, tier_label="scope_cue")

        ctx.actions.set_scope_cue_recovery_memory(
            ScopeCueRecoveryMemory(options=list(universe.options), message_id=universe.message_id)
        )

        if not strip_verbs_and_politeness(remainder, ctx.config.matcher):
            ctx.emit("scope_cue_restored_chat", message_id=universe.message_id)
            return show_clarifier(ctx, universe, CLARIFIER_RESTORED, tier_label="scope_cue")

        option = deterministic_match(remainder, universe.options, ctx.config.matcher)
        if option is not None:
            ctx.emit("scope_cue_applied_chat", option_id=option.id, source=universe.source.value)
            return select_option(ctx, universe, option, tier_label="scope_cue")

        if is_explicit_command(remainder, ctx.config.matcher) and not is_selection_like(
            remainder, universe.options, ctx.config.matcher
        ):
            ctx.emit("scope_cue_chat_command_fallthrough", cue_text=cue.cue_text)
            return None

        return await resolve_unresolved(ctx, universe, remainder, Scope.CHAT)

    async def _handle_widget_cue(
        self, ctx: TurnContext, cue: ScopeCue, remainder: str
    ) -> RoutingResult | None:
        widget_id = None
        if cue.target:
            named = find_widget_by_name(cue.target, ctx.state.visible_widgets)
            widget_id = named.id if named else None
        if widget_id is None and ctx.state.focus_latch is not None:
            widget_id = ctx.state.focus_latch.widget_id
        if widget_id is None:
            widget_id = ctx.get_active_widget_id()

        snapshot = ctx.widget_snapshot(widget_id)
        if snapshot is None or not snapshot.items:
            ctx.emit("scope_cue_widget_no_items", cue_text=cue.cue_text, widget_id=widget_id)
            return tell(ctx, WIDGET_NO_ITEMS, tier_label="scope_cue")

        universe = self._widget_universe(snapshot.widget_id, snapshot.title, snapshot.items)

        if not strip_verbs_and_politeness(remainder, ctx.config.matcher):
            ctx.emit("scope_cue_widget_listed", widget_id=snapshot.widget_id)
            return show_clarifier(
                ctx, universe, WIDGET_CLARIFIER.format(widget=snapshot.title), tier_label="scope_cue"
            )

        option = deterministic_match(remainder, universe.options, ctx.config.matcher)
        if option is not None:
            ctx.emit("scope_cue_applied_widget", option_id=option.id, widget_id=snapshot.widget_id)
            return select_option(ctx, universe, option, tier_label="scope_cue")

        return await resolve_unresolved(ctx, universe, remainder, Scope.WIDGET)
