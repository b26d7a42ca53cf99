"""
Pytest configuration and fixtures for chat routing tests.
"""

import pytest
import sys
from dataclasses import fields
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path so we can import the chat_routing package
sys.path.insert(0, str(Path(__file__).parent.parent))

from chat_routing.clarification_state import build_clarification
from chat_routing.context import TurnActions, TurnContext, TurnState
from chat_routing.feature_gates import FeatureGates
from chat_routing.loop_guard import LoopGuard
from chat_routing.types import (
    ArbitrationDecision,
    ArbitrationResponse,
    Option,
    VisibleWidget,
)


@pytest.fixture
def summary_options():
    """Three pending options from an earlier clarification."""
    return [
        Option(id="opt-144", label="Summary 144"),
        Option(id="opt-155", label="Summary 155"),
        Option(id="opt-notes", label="Meeting Notes"),
    ]


@pytest.fixture
def links_panels():
    """Three visible panels that all match "links panel"."""
    return [
        VisibleWidget(id="links-panels", title="Links Panels"),
        VisibleWidget(id="links-panel-d", title="Links Panel D"),
        VisibleWidget(id="links-panel-e", title="Links Panel E"),
    ]


@pytest.fixture
def actions():
    """TurnActions with a MagicMock for every mutator."""
    return TurnActions(**{f.name: MagicMock(name=f.name) for f in fields(TurnActions)})


@pytest.fixture
def events():
    """Collected telemetry events."""
    return []


@pytest.fixture
def make_context(actions, events):
    """Factory for a TurnContext wired to the mock actions and event list."""

    def _make(
        text,
        pending=None,
        clarification=None,
        gates=None,
        client=None,
        loop_guard=None,
        **kwargs,
    ):
        state_fields = {
            name: kwargs.pop(name)
            for name in list(kwargs)
            if name in TurnState.__dataclass_fields__
        }
        if pending and clarification is None:
            clarification = build_clarification(pending, "option_selection")
        state = TurnState(
            pending_options=list(pending or []),
            last_clarification=clarification,
            **state_fields,
        )
        return TurnContext(
            input=text,
            state=state,
            actions=actions,
            loop_guard=loop_guard or LoopGuard(),
            gates=gates or FeatureGates(),
            log=events.append,
            arbitration_client=client,
            **kwargs,
        )

    return _make


def _decision_response(decision="select", choice_id=None, confidence=0.9, **kwargs):
    return ArbitrationResponse.ok(
        ArbitrationDecision(
            decision=decision, choice_id=choice_id, confidence=confidence, **kwargs
        )
    )


@pytest.fixture
def respond():
    """Builder for successful arbitration responses."""
    return _decision_response


@pytest.fixture
def make_client():
    """Factory for a mock arbitration client returning the given responses in order."""

    def _make(*responses):
        client = MagicMock()
        client.arbitrate = AsyncMock(side_effect=list(responses))
        return client

    return _make


@pytest.fixture
def event_actions(events):
    """Callable returning the action names of the collected events, in order."""
    return lambda: [event.action for event in events]


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "hypothesis: property-based tests"
    )
    config.addinivalue_line(
        "markers", "slow: tests that take >1s"
    )
