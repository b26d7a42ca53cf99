"""
Feature gates for the routing engine.

Each gate is a zero-argument callable so environment-backed gates are
read at call time rather than once at import.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass

Gate = Callable[[], bool]

TRUTHY = frozenset({"1", "true", "yes", "on"})

ENV_LLM_FALLBACK = "CHAT_ROUTING_LLM_FALLBACK"
ENV_AUTO_EXECUTE = "CHAT_ROUTING_LLM_AUTO_EXECUTE"
ENV_CONTEXT_RETRY = "CHAT_ROUTING_CONTEXT_RETRY"
ENV_SEMANTIC_LANE = "CHAT_ROUTING_SEMANTIC_LANE"
ENV_SELECTION_INTENT = "CHAT_ROUTING_SELECTION_INTENT_ARBITRATION"


def env_gate(name: str, environ: Mapping[str, str] | None = None) -> Gate:
    """Build a gate that reads ``name`` from the environment on every call."""

    def gate() -> bool:
        source = os.environ if environ is None else environ
        return source.get(name, "").strip().lower() in TRUTHY

    return gate


def constant_gate(value: bool) -> Gate:
    return lambda: value


@dataclass(frozen=True)
class FeatureGates:
    """
    Feature gates consumed by the dispatcher.

    Built once per request and passed through the turn context.
    """

    llm_fallback: Gate = constant_gate(False)
    auto_execute: Gate = constant_gate(False)
    context_retry: Gate = constant_gate(False)
    semantic_lane: Gate = constant_gate(False)
    selection_intent_arbitration: Gate = constant_gate(False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> FeatureGates:
        """Gates backed by ``CHAT_ROUTING_*`` environment variables."""
        return cls(
            llm_fallback=env_gate(ENV_LLM_FALLBACK, environ),
            auto_execute=env_gate(ENV_AUTO_EXECUTE, environ),
            context_retry=env_gate(ENV_CONTEXT_RETRY, environ),
            semantic_lane=env_gate(ENV_SEMANTIC_LANE, environ),
            selection_intent_arbitration=env_gate(ENV_SELECTION_INTENT, environ),
        )

    @classmethod
    def fixed(cls, **flags: bool) -> FeatureGates:
        """Constant gates, e.g. ``FeatureGates.fixed(llm_fallback=True)``."""
        unknown = set(flags) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown feature gates: {sorted(unknown)}")
        return cls(**{name: constant_gate(value) for name, value in flags.items()})

    def snapshot(self) -> dict[str, bool]:
        """Current value of every gate, for telemetry."""
        return {name: getattr(self, name)() for name in self.__dataclass_fields__}
