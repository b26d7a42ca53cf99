"""
User-facing texts and the arbitration prompt.
"""

from __future__ import annotations

import json

from .types import ArbitrationRequest

# Panel disambiguation
PANEL_OPENING = "Opening {title}."
PANEL_MULTIPLE = "Multiple {name}panels found. Which one would you like to open?"

# Clarifier re-show
CLARIFIER_RESHOW = "Please choose one of the options:"
CLARIFIER_SUGGESTED = "Did you mean {label}? Please choose one of the options:"
CLARIFIER_RESTORED = "Here are the earlier options:"
REPAIR_RESHOW = "Sorry about that. Which one did you mean?"

# Scope cues
SCOPE_NOT_AVAILABLE = (
    "{scope}-scoped selection is not yet available. "
    "Please select from the active options shown above."
)
NO_EARLIER_OPTIONS = "No earlier options available."
WIDGET_NO_ITEMS = "That panel has no selectable items right now."
WIDGET_CLARIFIER = "Which item from {widget} did you mean?"

# Stop / exit
STOP_WITH_OPTIONS = "Okay, we'll drop that. What would you like to do instead?"
STOP_NO_SCOPE = "No problem, what would you like to do instead?"
PAUSED_LIST_ORDINAL = (
    "That list was closed. Say 'back to the options' to reopen it, "
    "or tell me what you want instead."
)

ARBITRATION_SYSTEM_PROMPT = """You are a selection assistant for a chat-driven workspace app.
The user was shown a list of options and replied with free text.
Decide which option, if any, the user meant.

Respond with a single JSON object and nothing else:
{"decision": "select" | "none" | "clarify" | "request_context",
 "choiceId": "<option id or null>",
 "choiceIndex": <zero-based index or null>,
 "confidence": <number between 0 and 1>,
 "reason": "<short justification>",
 "neededContext": ["<what you would need to decide>"]}

Rules:
- Use "select" only when one option clearly matches the user's intent.
- Use "none" when the user is not selecting from this list.
- Use "clarify" when several options fit equally well.
- Use "request_context" when extra context would let you decide."""


def format_arbitration_prompt(request: ArbitrationRequest) -> str:
    """User message for an arbitration request."""
    options = [
        {"index": i, "id": o.id, "label": o.label, "sublabel": o.sublabel}
        for i, o in enumerate(request.options)
    ]
    lines = [
        f"User input: {request.input}",
        "",
        "Options:",
        json.dumps(options, indent=2),
    ]
    if request.context:
        lines += ["", "Context:"]
        lines += [f"- {item}" for item in request.context]
    return "\n".join(lines)
