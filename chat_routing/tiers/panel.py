"""
Panel disambiguation (Tier 2c).

Matches a verb-stripped command against the live set of visible panels.
One match opens the panel; several matches become a new clarification;
no match passes the turn on.
"""

from __future__ import annotations

from ..clarification_state import build_clarification
from ..context import TurnContext
from ..option_matcher import has_question_intent, is_command_like
from ..panel_matcher import PanelMatch, match_visible_panels
from ..prompts import PANEL_MULTIPLE, PANEL_OPENING
from ..resolution import present_options
from ..scope_cue import Scope, resolve_scope_cue, strip_scope_cue
from ..types import ChatMessage, Option, RoutingResult
from .base import RoutingTier

PANEL_DISAMBIGUATION_INTENT = "panel_disambiguation"
_GENERIC_PANEL_WORDS = {"panel", "widget"}


def friendly_panel_name(match: PanelMatch) -> str:
    """Shared name of the matched panels ("links panel" -> "Links")."""
    words = [t for t in match.canonical.split() if t not in _GENERIC_PANEL_WORDS and t != "panels"]
    return " ".join(word.capitalize() for word in words)


class PanelDisambiguationTier(RoutingTier):
    """Tier 2c: open or disambiguate visible panels."""

    tier = 2
    label = "panel_disambiguation"

    async def try_resolve(self, ctx: TurnContext) -> RoutingResult | None:
        text = ctx.trimmed_input
        widgets = ctx.state.visible_widgets
        if not text or not widgets:
            return None
        if has_question_intent(text) and not is_command_like(text, ctx.config.matcher):
            return None

        cue = resolve_scope_cue(text)
        if cue.scope is Scope.CHAT:
            text = strip_scope_cue(text, cue)

        match = match_visible_panels(text, widgets, ctx.config.matcher)
        if not match.matches:
            return None

        if len(match.matches) == 1:
            return self._open(ctx, match)
        return self._disambiguate(ctx, match)

    def _open(self, ctx: TurnContext, match: PanelMatch) -> RoutingResult:
        panel = match.matches[0]
        ctx.emit(
            "panel_disambiguation_single_match_open",
            panel_id=panel.id,
            panel_title=panel.title,
            match_type=match.type.value,
        )

        actions = ctx.actions
        actions.open_panel_drawer(panel.id, panel.title)
        actions.add_message(ChatMessage(content=PANEL_OPENING.format(title=panel.title)))
        # Explicit navigation retires every pending selection flow
        actions.clear_clarification()
        actions.clear_widget_selection_context()
        actions.clear_focus_latch()

        return RoutingResult(
            handled=True,
            handled_by_tier=self.tier,
            tier_label=self.label,
            action="open_panel",
            details={"panel_id": panel.id, "panel_title": panel.title},
        )

    def _disambiguate(self, ctx: TurnContext, match: PanelMatch) -> RoutingResult:
        options = [
            Option(
                id=panel.id,
                label=panel.title,
                type="panel_drawer",
                data={"panel_id": panel.id, "panel_title": panel.title, "panel_type": panel.type},
            )
            for panel in match.matches
        ]
        ctx.emit(
            "panel_disambiguation_pre_llm",
            match_count=len(options),
            panel_titles=[o.label for o in options],
        )

        name = friendly_panel_name(match)
        message = PANEL_MULTIPLE.format(name=f"{name} " if name else "")
        present_options(ctx, build_clarification(options, PANEL_DISAMBIGUATION_INTENT), message)

        return RoutingResult(
            handled=True,
            handled_by_tier=self.tier,
            tier_label=self.label,
            action="show_clarifier",
            details={"option_ids": [o.id for o in options]},
        )
