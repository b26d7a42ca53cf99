"""
Scope cue resolution.

Detects explicit cues that pin which option universe a selection should
be resolved against ("the second one from chat", "from links panel d").
When several cues appear, precedence is chat, then widget, then
dashboard, then workspace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .option_matcher import normalize_input


class Scope(str, Enum):
    """Option universes a cue can name."""

    CHAT = "chat"
    WIDGET = "widget"
    DASHBOARD = "dashboard"
    WORKSPACE = "workspace"


SCOPE_PATTERNS: list[tuple[Scope, re.Pattern[str]]] = [
    (
        Scope.CHAT,
        re.compile(
            r"\b(back to (?:the )?options|from earlier options|from (?:the )?chat options?|"
            r"from the chat|from chat|in chat)\b"
        ),
    ),
    (
        Scope.WIDGET,
        re.compile(
            r"\bfrom (?:the )?(?:active widget|widget|recent|"
            r"(?P<name>[a-z0-9]+(?: [a-z0-9]+)?) (?:panel|widget)(?: (?P<badge>[a-z])\b)?)\b"
        ),
    ),
    (
        Scope.DASHBOARD,
        re.compile(r"\b(from dashboard|in dashboard|from active dashboard|from the dashboard)\b"),
    ),
    (
        Scope.WORKSPACE,
        re.compile(r"\b(from workspace|in workspace|from active workspace|from the workspace)\b"),
    ),
]


@dataclass
class ScopeCue:
    """
    A detected scope cue.

    ``target`` is the widget name for widget cues that name one
    ("links panel d", "recent"), else ``None``.
    """

    scope: Scope | None = None
    cue_text: str = ""
    confidence: str = "none"
    target: str | None = None

    @property
    def present(self) -> bool:
        return self.scope is not None


def resolve_scope_cue(text: str) -> ScopeCue:
    """Find the highest-precedence scope cue in the input."""
    normalized = normalize_input(text)
    if not normalized:
        return ScopeCue()

    for scope, pattern in SCOPE_PATTERNS:
        match = pattern.search(normalized)
        if not match:
            continue
        target = None
        if scope is Scope.WIDGET:
            target = _widget_target(match)
        return ScopeCue(scope=scope, cue_text=match.group(0), confidence="high", target=target)

    return ScopeCue()


def _widget_target(match: re.Match[str]) -> str | None:
    cue = match.group(0)
    if match.group("name"):
        noun = "widget" if " widget" in cue else "panel"
        target = f"{match.group('name')} {noun}"
        if match.group("badge"):
            target += f" {match.group('badge')}"
        return target
    if cue.endswith("recent"):
        return "recent"
    return None


def strip_scope_cue(text: str, cue: ScopeCue) -> str:
    """Input with the cue removed ("the second one from chat" -> "the second one")."""
    normalized = normalize_input(text)
    if not cue.present:
        return normalized
    remainder = normalized.replace(cue.cue_text, " ", 1)
    return re.sub(r"\s+", " ", remainder).strip()
