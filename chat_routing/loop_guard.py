"""
Loop guard for LLM arbitration.

Remembers the message id of the last option set sent to the arbitration
client so an unchanged, still-unresolved set is never arbitrated twice.
A different message id re-enables exactly one more call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class LoopGuard:
    """Per-session guard state, owned alongside the clarification state."""

    last_arbitrated_message_id: str | None = None
    suggested_id: str | None = None

    def should_suppress(self, message_id: str) -> bool:
        """True when this option set was already arbitrated."""
        return self.last_arbitrated_message_id == message_id

    def record(self, message_id: str, suggested_id: str | None = None) -> None:
        if self.last_arbitrated_message_id != message_id:
            logger.debug(f"Loop guard armed for {message_id}")
        self.last_arbitrated_message_id = message_id
        self.suggested_id = suggested_id

    def reset(self) -> None:
        self.last_arbitrated_message_id = None
        self.suggested_id = None
