"""
Configuration management for chat routing.

Thresholds, matcher vocabularies, turn limits for short-lived memories,
the arbitration model, and telemetry output.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .types import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".chat-routing" / "config.json"


@dataclass
class MatcherConfig:
    """
    Configuration for the option matcher.

    ``verb_corrections`` is an allow-list: only the typos listed here are
    rewritten to a command verb. Anything else ("ope", "opn") passes
    through untouched and is left to badge/ordinal/label matching.
    """

    command_verbs: list[str] = field(
        default_factory=lambda: ["open", "show", "view", "go to", "launch", "display", "pull up"]
    )
    verb_corrections: dict[str, str] = field(
        default_factory=lambda: {
            "opwn": "open",
            "opne": "open",
            "oepn": "open",
            "shwo": "show",
            "sohw": "show",
        }
    )
    # Max edit distance for ordinal word typos ("secnod", "thrid")
    ordinal_max_distance: int = 2


@dataclass
class ArbitrationConfig:
    """Configuration for LLM arbitration."""

    auto_execute_confidence: float = 0.85
    min_confidence_select: float = 0.6
    auto_execute_allowed_reasons: list[str] = field(
        default_factory=lambda: ["no_deterministic_match"]
    )
    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "gpt-4o-mini"
    timeout_ms: int = 800
    temperature: float = 0.1
    max_tokens: int = 150
    max_context_retries: int = 1


@dataclass
class MemoryConfig:
    """Turn limits for short-lived routing memories."""

    snapshot_turn_limit: int = 3
    focus_latch_turn_limit: int = 5
    repair_memory_turn_limit: int = 1
    widget_selection_turn_limit: int = 2
    scope_cue_recovery_turn_limit: int = 6


@dataclass
class TelemetryConfig:
    """Configuration for the JSONL routing event log."""

    # Supports ~ expansion
    log_path: str = "~/.chat-routing/routing_events.jsonl"
    enabled: bool = True
    max_size_mb: float = 50.0
    max_files: int = 5
    session_id: str = ""


@dataclass
class RoutingConfig:
    """Complete routing configuration."""

    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    arbitration: ArbitrationConfig = field(default_factory=ArbitrationConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    def __post_init__(self) -> None:
        arb = self.arbitration
        if not 0.0 <= arb.min_confidence_select <= 1.0:
            raise ConfigurationError("arbitration.min_confidence_select", "must be within [0, 1]")
        if not arb.min_confidence_select <= arb.auto_execute_confidence <= 1.0:
            raise ConfigurationError(
                "arbitration.auto_execute_confidence",
                "must be within [min_confidence_select, 1]",
            )
        if arb.max_context_retries not in (0, 1):
            raise ConfigurationError("arbitration.max_context_retries", "must be 0 or 1")

    @classmethod
    def load(cls, path: Path | None = None) -> "RoutingConfig":
        """Load configuration from file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            return cls()

        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(str(path), f"not valid JSON ({e})") from e

        try:
            return cls(
                matcher=MatcherConfig(**data.get("matcher", {})),
                arbitration=ArbitrationConfig(**data.get("arbitration", {})),
                memory=MemoryConfig(**data.get("memory", {})),
                telemetry=TelemetryConfig(**data.get("telemetry", {})),
            )
        except TypeError as e:
            raise ConfigurationError(str(path), str(e)) from e

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(
                {
                    "matcher": self.matcher.__dict__,
                    "arbitration": self.arbitration.__dict__,
                    "memory": self.memory.__dict__,
                    "telemetry": self.telemetry.__dict__,
                },
                f,
                indent=2,
            )


default_config = RoutingConfig()
