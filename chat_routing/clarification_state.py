"""
Clarification state.

Records of what chat last offered the user and the short-lived memories
that carry a disambiguation sub-flow across turns. All records are owned
by the session layer; the dispatcher only reads them from the turn
context and changes them through mutator callbacks.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum

from .types import Option, new_message_id


@dataclass
class LastClarification:
    """The option set most recently shown as a clarifier."""

    type: str
    original_intent: str
    message_id: str
    options: list[Option] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)
    meta_count: int = 0


@dataclass
class ClarificationSnapshot:
    """
    What chat most recently offered, tracked independently of the pending set.

    A snapshot paused with reason ``"stop"`` never resolves bare ordinals;
    only an explicit return cue brings it back.
    """

    options: list[Option]
    original_intent: str
    type: str = "option_selection"
    message_id: str | None = None
    turns_since_set: int = 0
    timestamp: float = field(default_factory=time.time)
    paused: bool = False
    paused_reason: str | None = None


@dataclass
class FocusLatch:
    """The widget the user is implicitly working inside."""

    widget_id: str
    widget_label: str
    latched_at: float = field(default_factory=time.time)
    turns_since_latched: int = 0
    kind: str = "resolved"


@dataclass
class ScopeCueRecoveryMemory:
    """Chat options kept for a later "from chat" cue after the snapshot expires."""

    options: list[Option]
    message_id: str
    turns_since_set: int = 0


@dataclass
class WidgetSelectionContext:
    """A widget-scoped clarification awaiting the user's pick."""

    widget_id: str
    widget_label: str
    options: list[Option] = field(default_factory=list)
    turns_since_set: int = 0


@dataclass
class RepairMemory:
    """The last deterministic pick, so "not that one" can correct it."""

    selected_id: str
    options: list[Option]
    message_id: str
    turns_since_set: int = 0


def build_clarification(
    options: list[Option],
    original_intent: str,
    message_id: str | None = None,
    type: str = "option_selection",
) -> LastClarification:
    """Create a clarification record, minting a message id unless one is reused."""
    return LastClarification(
        type=type,
        original_intent=original_intent,
        message_id=message_id or new_message_id(),
        options=list(options),
    )


def snapshot_from(clarification: LastClarification) -> ClarificationSnapshot:
    return ClarificationSnapshot(
        options=list(clarification.options),
        original_intent=clarification.original_intent,
        type=clarification.type,
        message_id=clarification.message_id,
    )


def reorder_with_pick_first(options: list[Option], pick_id: str | None) -> list[Option]:
    """Move the picked option to the front, keeping the others in their original order."""
    if pick_id is None:
        return list(options)
    picked = [o for o in options if o.id == pick_id]
    if not picked:
        return list(options)
    return picked + [o for o in options if o.id != pick_id]


def aged(memory, limit: int):
    """
    The memory one turn older, or ``None`` once it exceeds ``limit`` turns.

    Works for every record carrying ``turns_since_set`` or
    ``turns_since_latched``.
    """
    attr = "turns_since_latched" if isinstance(memory, FocusLatch) else "turns_since_set"
    turns = getattr(memory, attr) + 1
    if turns > limit:
        return None
    return replace(memory, **{attr: turns})


class UniverseSource(Enum):
    """Where the active option set for a turn came from."""

    PENDING = "pending"
    SNAPSHOT = "snapshot"
    RECOVERY = "recovery"
    WIDGET = "widget"


@dataclass
class OptionUniverse:
    """
    The single option set active for matching this turn.

    ``llm_eligible`` is false for universes that only allow deterministic
    matches (an aging post-action snapshot).
    """

    source: UniverseSource
    options: list[Option]
    message_id: str
    original_intent: str = "option_selection"
    widget_id: str | None = None
    widget_label: str | None = None
    llm_eligible: bool = True


def chat_universe(
    snapshot: ClarificationSnapshot | None,
    clarification: LastClarification | None,
    recovery: ScopeCueRecoveryMemory | None,
) -> OptionUniverse | None:
    """
    Universe for an explicit chat cue.

    What chat most recently offered wins: the snapshot (paused or not),
    then the pending clarification, then recovery memory.
    """
    if snapshot and snapshot.options:
        return OptionUniverse(
            source=UniverseSource.SNAPSHOT,
            options=list(snapshot.options),
            message_id=snapshot.message_id or new_message_id(),
            original_intent=snapshot.original_intent,
        )
    if clarification and clarification.options:
        return OptionUniverse(
            source=UniverseSource.PENDING,
            options=list(clarification.options),
            message_id=clarification.message_id,
            original_intent=clarification.original_intent,
        )
    if recovery and recovery.options:
        return OptionUniverse(
            source=UniverseSource.RECOVERY,
            options=list(recovery.options),
            message_id=recovery.message_id,
        )
    return None


def default_universe(
    pending: list[Option],
    clarification: LastClarification | None,
    snapshot: ClarificationSnapshot | None,
) -> OptionUniverse | None:
    """
    Universe when the input carries no scope cue.

    The pending clarification wins; an unpaused snapshot only serves
    deterministic matches.
    """
    if clarification and (clarification.options or pending):
        return OptionUniverse(
            source=UniverseSource.PENDING,
            options=list(pending or clarification.options),
            message_id=clarification.message_id,
            original_intent=clarification.original_intent,
        )
    if pending:
        # No clarification record; key the guard on the option ids
        return OptionUniverse(
            source=UniverseSource.PENDING,
            options=list(pending),
            message_id="pending:" + "|".join(o.id for o in pending),
        )
    if snapshot and snapshot.options and not snapshot.paused:
        return OptionUniverse(
            source=UniverseSource.SNAPSHOT,
            options=list(snapshot.options),
            message_id=snapshot.message_id or new_message_id(),
            original_intent=snapshot.original_intent,
            llm_eligible=False,
        )
    return None
