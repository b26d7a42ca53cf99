"""
Turn outcomes shared by the clarification tiers.

Selecting an option and (re-)showing a clarifier are the two ways a
clarification turn ends; both are expressed purely as mutator calls on
the turn context.
"""

from __future__ import annotations

from .clarification_state import (
    ClarificationSnapshot,
    FocusLatch,
    LastClarification,
    OptionUniverse,
    RepairMemory,
    UniverseSource,
    WidgetSelectionContext,
    build_clarification,
    snapshot_from,
)
from .config import MatcherConfig
from .context import TurnContext
from .option_matcher import (
    extract_badge,
    find_matching_options,
    is_selection_shaped,
    match_badge,
    parse_ordinal,
    strip_verbs_and_politeness,
)
from .types import ChatMessage, Option, RoutingResult

CLARIFICATION_TIER = 0


def deterministic_match(
    text: str,
    options: list[Option],
    config: MatcherConfig | None = None,
) -> Option | None:
    """
    Unique exact label match, then badge, then ordinal.

    A label that contains an ordinal word ("First Draft") wins over the
    ordinal reading of the same input.
    """
    if not options:
        return None

    canonical = strip_verbs_and_politeness(text, config)
    exact = find_matching_options(canonical, options).unique_exact
    if exact is not None:
        return exact

    badged = match_badge(extract_badge(text), options)
    if len(badged) == 1:
        return badged[0]

    index = parse_ordinal(text, len(options), config, labels=[o.label for o in options])
    if index is not None:
        return options[index]
    return None


def is_selection_like(text: str, options: list[Option], config: MatcherConfig | None = None) -> bool:
    """
    Whether the input is aimed at the option set at all.

    Deterministic matches are checked separately; this covers the
    structural cases that may go to arbitration: selection-shaped phrases
    ("the summary one") and any label overlap.
    """
    if deterministic_match(text, options, config) is not None:
        return True
    if is_selection_shaped(text):
        return True
    canonical = strip_verbs_and_politeness(text, config)
    return bool(find_matching_options(canonical, options).ranked)


def select_option(
    ctx: TurnContext,
    universe: OptionUniverse,
    option: Option,
    tier_label: str = "clarification_selection",
) -> RoutingResult:
    """Perform a selection and retire the option set it came from."""
    actions = ctx.actions
    actions.handle_select_option(option)

    if universe.source in (UniverseSource.PENDING, UniverseSource.SNAPSHOT, UniverseSource.RECOVERY):
        last = ctx.state.last_clarification
        if universe.source is UniverseSource.PENDING or (
            last is not None and last.message_id == universe.message_id
        ):
            actions.clear_clarification()
        actions.save_clarification_snapshot(
            ClarificationSnapshot(
                options=list(universe.options),
                original_intent=universe.original_intent,
                message_id=universe.message_id,
            )
        )
        actions.set_repair_memory(
            RepairMemory(
                selected_id=option.id,
                options=list(universe.options),
                message_id=universe.message_id,
            )
        )

    if universe.widget_id is not None:
        actions.set_focus_latch(
            FocusLatch(widget_id=universe.widget_id, widget_label=universe.widget_label or "")
        )
        actions.clear_widget_selection_context()

    return RoutingResult(
        handled=True,
        handled_by_tier=CLARIFICATION_TIER,
        tier_label=tier_label,
        action="select_option",
        details={"option_id": option.id, "option_label": option.label},
    )


def present_options(
    ctx: TurnContext,
    clarification: LastClarification,
    message: str,
) -> None:
    """Show an option set and make it the pending clarification."""
    ctx.actions.add_message(ChatMessage(content=message, options=list(clarification.options)))
    ctx.actions.set_pending_options(list(clarification.options))
    ctx.actions.set_last_clarification(clarification)
    ctx.actions.save_clarification_snapshot(snapshot_from(clarification))


def show_clarifier(
    ctx: TurnContext,
    universe: OptionUniverse,
    message: str,
    options: list[Option] | None = None,
    tier_label: str = "clarification_reshow",
    new_message_id: bool = False,
) -> RoutingResult:
    """
    Re-show a universe as the pending clarifier.

    The message id is kept for the same option set (reordering included)
    so the loop guard still recognizes it; a changed set gets a new id.
    """
    options = list(options if options is not None else universe.options)
    clarification = build_clarification(
        options,
        universe.original_intent,
        message_id=None if new_message_id else universe.message_id,
    )
    present_options(ctx, clarification, message)

    if universe.widget_id is not None:
        ctx.actions.set_widget_selection_context(
            WidgetSelectionContext(
                widget_id=universe.widget_id,
                widget_label=universe.widget_label or "",
                options=options,
            )
        )

    return RoutingResult(
        handled=True,
        handled_by_tier=CLARIFICATION_TIER,
        tier_label=tier_label,
        action="show_clarifier",
        details={"option_ids": [o.id for o in options]},
    )


def tell(ctx: TurnContext, message: str, tier_label: str, action: str = "message") -> RoutingResult:
    """End the turn with a plain assistant message."""
    ctx.actions.add_message(ChatMessage(content=message))
    return RoutingResult(
        handled=True,
        handled_by_tier=CLARIFICATION_TIER,
        tier_label=tier_label,
        action=action,
    )
