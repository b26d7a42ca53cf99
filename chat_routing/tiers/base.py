"""
Routing tier strategy interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..context import TurnContext
from ..types import RoutingResult


class RoutingTier(ABC):
    """
    One rung of the routing ladder.

    ``try_resolve`` returns a ``RoutingResult`` to claim the turn (which
    stops the ladder) or ``None`` to pass it on.
    """

    tier: int | None = None
    label: str = ""

    @abstractmethod
    async def try_resolve(self, ctx: TurnContext) -> RoutingResult | None:
        """Try to claim the turn."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tier={self.tier}, label={self.label!r})"
