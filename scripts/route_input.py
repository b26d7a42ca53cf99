#!/usr/bin/env python3
"""
Route one chat input from the command line.

Builds a session from the given visible panels and pending options, routes
the input, and prints the routing result, the assistant messages and the
emitted events as JSON.

Examples:
    route_input.py "open links panel" --panel links-panel-d="Links Panel D"
    route_input.py "the second one" --option a="Summary 144" --option b="Summary 155"
    echo "open links panel" | route_input.py --panel p1="Links Panel D"

Feature gates come from CHAT_ROUTING_* environment variables; ``--llm``
attaches the configured arbitration client.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from chat_routing.arbitration_client import create_arbitration_client  # noqa: E402
from chat_routing.clarification_state import build_clarification  # noqa: E402
from chat_routing.config import RoutingConfig  # noqa: E402
from chat_routing.feature_gates import FeatureGates  # noqa: E402
from chat_routing.session import ChatSession  # noqa: E402
from chat_routing.types import Option, RoutingEvent, VisibleWidget  # noqa: E402


def parse_pair(value: str) -> tuple[str, str]:
    """Parse ``ID=TEXT``."""
    if "=" not in value:
        raise argparse.ArgumentTypeError(f"expected ID=TEXT, got {value!r}")
    key, text = value.split("=", 1)
    return key.strip(), text.strip()


def build_session(args: argparse.Namespace, events: list[RoutingEvent]) -> ChatSession:
    config = RoutingConfig.load(Path(args.config)) if args.config else RoutingConfig.load()
    client = None
    if args.llm:
        client = create_arbitration_client(config.arbitration)

    session = ChatSession(
        visible_widgets=[VisibleWidget(id=i, title=t) for i, t in args.panel],
        gates=FeatureGates.from_env(),
        config=config,
        log=events.append,
        arbitration_client=client,
    )

    if args.option:
        options = [Option(id=i, label=label) for i, label in args.option]
        clarification = build_clarification(options, "option_selection")
        session.set_pending_options(options)
        session.set_last_clarification(clarification)
    return session


def route_input(args: argparse.Namespace) -> dict:
    events: list[RoutingEvent] = []
    session = build_session(args, events)
    result = asyncio.run(session.handle(args.input))
    return {
        "result": asdict(result),
        "messages": [m.content for m in session.assistant_messages],
        "selected": [o.id for o in session.selections],
        "opened_panels": [panel_id for panel_id, _ in session.opened_panels],
        "events": [{"action": e.action, **e.metadata} for e in events],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Route a chat input through the routing ladder")
    parser.add_argument("input", nargs="?", help="Chat input (read from stdin when omitted)")
    parser.add_argument(
        "--panel", action="append", type=parse_pair, default=[], help="Visible panel as ID=TITLE"
    )
    parser.add_argument(
        "--option", action="append", type=parse_pair, default=[], help="Pending option as ID=LABEL"
    )
    parser.add_argument("--config", help="Path to a routing config JSON file")
    parser.add_argument("--llm", action="store_true", help="Attach the arbitration client")
    args = parser.parse_args(argv)

    if args.input is None:
        args.input = sys.stdin.read().strip()

    print(json.dumps(route_input(args), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
