"""
Visible panel matching.

Matches a verb-stripped command against the live set of visible panels,
tolerating repeated letters ("linkk"), one-letter typos ("limk"),
plurals ("panels") and allow-listed verb typos ("opwn").
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .config import MatcherConfig
from .option_matcher import _covers, label_tokens, strip_verbs_and_politeness, token_sets_equal
from .types import VisibleWidget


class PanelMatchType(Enum):
    """How a command matched the visible panels."""

    EXACT = "exact"
    PARTIAL = "partial"
    NONE = "none"


@dataclass
class PanelMatch:
    """Panels matched by a command, in dashboard order."""

    type: PanelMatchType = PanelMatchType.NONE
    matches: list[VisibleWidget] = field(default_factory=list)
    canonical: str = ""

    @property
    def single(self) -> VisibleWidget | None:
        return self.matches[0] if len(self.matches) == 1 else None


def match_visible_panels(
    text: str,
    widgets: list[VisibleWidget],
    config: MatcherConfig | None = None,
) -> PanelMatch:
    """
    Match a command against visible panel titles.

    A title whose token set equals the input's is an exact hit; a title
    containing every input token is a partial hit. The result is EXACT only
    when there is one exact hit and no partial ones, so "links panel" never
    silently picks "Links Panels" over "Links Panel D".

    Examples:
        "open links panel d" vs [Links Panel D, Links Panel E] -> EXACT [D]
        "open links panel" vs [Links Panels, Links Panel D, Links Panel E]
            -> PARTIAL [all three]
    """
    canonical = strip_verbs_and_politeness(text, config)
    tokens = label_tokens(canonical)
    if not tokens or not widgets:
        return PanelMatch(canonical=canonical)

    exact: list[VisibleWidget] = []
    matched: list[VisibleWidget] = []
    for widget in widgets:
        title = label_tokens(widget.title)
        if token_sets_equal(tokens, title):
            exact.append(widget)
            matched.append(widget)
        elif _covers(tokens, title):
            matched.append(widget)

    if len(exact) == 1 and len(matched) == 1:
        return PanelMatch(PanelMatchType.EXACT, exact, canonical)
    if matched:
        return PanelMatch(PanelMatchType.PARTIAL, matched, canonical)
    return PanelMatch(canonical=canonical)


def find_widget_by_name(name: str, widgets: list[VisibleWidget]) -> VisibleWidget | None:
    """Resolve a widget named in a scope cue ("from links panel d")."""
    result = match_visible_panels(name, widgets)
    if result.type is PanelMatchType.EXACT:
        return result.matches[0]
    return result.single
