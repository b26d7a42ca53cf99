"""
Routing telemetry.

Every behavior-changing branch of the router emits one ``RoutingEvent``
with a stable ``action`` string through a ``log(event)`` sink.

Usage:
    from chat_routing.telemetry import RoutingEventLog

    event_log = RoutingEventLog()
    context = TurnContext(..., log=event_log)
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import TelemetryConfig
from .types import RoutingEvent

logger = logging.getLogger(__name__)

LogSink = Callable[[RoutingEvent], None]


def emit(sink: LogSink | None, action: str, **metadata: Any) -> RoutingEvent:
    """Build an event and hand it to the sink. A failing sink never breaks routing."""
    event = RoutingEvent(action=action, metadata=metadata)
    if sink is None:
        return event
    try:
        sink(event)
    except Exception as e:
        logger.warning(f"Failed to log routing event {action}: {e}")
    return event


def logging_sink(event: RoutingEvent) -> None:
    """Forward events to the standard logging module."""
    logger.debug(f"{event.action} {event.metadata}")


class RoutingEventLog:
    """
    Appends routing events to a JSONL file.

    Useful to:
    1. Audit which tier claimed each turn
    2. Review arbitration outcomes and fallbacks
    3. Debug routing regressions

    Files past ``max_size_mb`` are shifted to ``<name>.1``, ``<name>.2``, ...
    keeping at most ``max_files`` generations.
    """

    def __init__(self, config: TelemetryConfig | None = None):
        self.config = config or TelemetryConfig()
        self.path: Path | None = None
        self.events_written = 0
        self.started_at = datetime.now().isoformat()

        if self.config.enabled:
            self.path = Path(self.config.log_path).expanduser()
            self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def session_id(self) -> str:
        return self.config.session_id or self.started_at

    @staticmethod
    def _generation(path: Path, n: int) -> Path:
        return path.with_name(f"{path.name}.{n}")

    def _size_mb(self) -> float:
        if self.path is None or not self.path.exists():
            return 0.0
        return self.path.stat().st_size / (1024 * 1024)

    def _rotate(self) -> None:
        """Shift every generation up by one; the oldest falls off."""
        path = self.path
        if path is None or not path.exists():
            return

        # max_files counts the live file, so 1 keeps no rotated generations
        if self.config.max_files <= 1:
            path.unlink()
            logger.info(f"Discarded full routing event log {path}")
            return

        oldest = self._generation(path, self.config.max_files - 1)
        if oldest.exists():
            oldest.unlink()
        for n in reversed(range(1, self.config.max_files - 1)):
            generation = self._generation(path, n)
            if generation.exists():
                generation.rename(self._generation(path, n + 1))
        path.rename(self._generation(path, 1))

        logger.info(f"Rotated routing event log {path}")

    def __call__(self, event: RoutingEvent) -> None:
        if self.path is None:
            return

        if self._size_mb() >= self.config.max_size_mb:
            self._rotate()

        record = asdict(event)
        record["session_id"] = self.session_id
        with self.path.open("a") as f:
            f.write(json.dumps(record, default=str) + "\n")
        self.events_written += 1

    def load_events(self) -> list[RoutingEvent]:
        """Read back the current generation, skipping lines that do not parse."""
        if self.path is None or not self.path.exists():
            return []

        events: list[RoutingEvent] = []
        for number, line in enumerate(self.path.read_text().splitlines(), start=1):
            try:
                data = json.loads(line)
                events.append(
                    RoutingEvent(
                        action=data["action"],
                        metadata=data.get("metadata") or {},
                        timestamp=data.get("timestamp", 0.0),
                    )
                )
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"Ignoring event log line {number}: {e}")
        return events

    def get_statistics(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "enabled": self.config.enabled,
            "log_path": str(self.path) if self.path else None,
            "events_logged": self.events_written,
            "session_id": self.session_id,
        }
        if self.path is not None and self.path.exists():
            stats["actions"] = dict(Counter(event.action for event in self.load_events()))
            stats["log_size_mb"] = self._size_mb()
        return stats


# Global event log instance
_event_log: RoutingEventLog | None = None


def get_event_log() -> RoutingEventLog:
    """Get or create the global event log."""
    global _event_log
    if _event_log is None:
        _event_log = RoutingEventLog()
    return _event_log


def set_event_log(event_log: RoutingEventLog | None) -> None:
    """Set the global event log."""
    global _event_log
    _event_log = event_log
