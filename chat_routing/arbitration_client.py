"""
Arbitration clients.

Ask an LLM which option of a clarification the user meant. Clients honor
the arbitration contract: they never raise to the caller and report every
failure as a plain error string ("Timeout", "API error: 429", ...).

Supports:
- OpenAI (GPT-4o mini, GPT-4o)
- Anthropic (Claude Haiku, Sonnet)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

import anthropic
import openai
from dotenv import load_dotenv

from .config import ArbitrationConfig
from .prompts import ARBITRATION_SYSTEM_PROMPT, format_arbitration_prompt
from .types import (
    ArbitrationClientError,
    ArbitrationDecision,
    ArbitrationRequest,
    ArbitrationResponse,
    DecisionKind,
    OptionRef,
)

logger = logging.getLogger(__name__)

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


class Provider(Enum):
    """LLM provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


MODEL_REGISTRY: dict[str, tuple[Provider, str]] = {
    "gpt-4o-mini": (Provider.OPENAI, "gpt-4o-mini"),
    "gpt-4o": (Provider.OPENAI, "gpt-4o"),
    "haiku": (Provider.ANTHROPIC, "claude-haiku-4-5-20251001"),
    "sonnet": (Provider.ANTHROPIC, "claude-sonnet-4-20250514"),
    "claude-haiku-4-5-20251001": (Provider.ANTHROPIC, "claude-haiku-4-5-20251001"),
    "claude-sonnet-4-20250514": (Provider.ANTHROPIC, "claude-sonnet-4-20250514"),
}


def resolve_model(model: str, default: Provider = Provider.OPENAI) -> tuple[Provider, str]:
    """Resolve model shorthand to (provider, full_model_id)."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]
    if model.startswith("claude"):
        return (Provider.ANTHROPIC, model)
    if model.startswith(("gpt-", "o1", "o3")):
        return (Provider.OPENAI, model)
    return (default, model)


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_decision(content: str, options: list[OptionRef]) -> ArbitrationDecision:
    """
    Parse and validate the model's JSON reply.

    A ``choiceId`` that is not one of the options falls back to
    ``choiceIndex``; if neither identifies an option, a ``select`` becomes
    ``none``.

    Raises:
        ValueError: If the reply holds no valid JSON decision.
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ValueError("No JSON object in arbitration reply")

    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Arbitration reply is not a JSON object")

    decision = str(data.get("decision", "none")).lower()
    choice_id = data.get("choiceId", data.get("choice_id"))
    choice_index = data.get("choiceIndex", data.get("choice_index"))
    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = min(max(confidence, 0.0), 1.0)

    ids = [o.id for o in options]
    if choice_id not in ids:
        choice_id = None
        if isinstance(choice_index, int) and 0 <= choice_index < len(options):
            choice_id = options[choice_index].id
    if choice_id is not None:
        choice_index = ids.index(choice_id)
    else:
        choice_index = None

    if decision == DecisionKind.SELECT.value and choice_id is None:
        decision = DecisionKind.NONE.value

    needed = data.get("neededContext", data.get("needed_context", []))
    if isinstance(needed, str):
        needed = [needed]

    return ArbitrationDecision(
        decision=decision,
        choice_id=choice_id,
        choice_index=choice_index,
        confidence=confidence,
        reason=str(data.get("reason", "")),
        needed_context=[str(item) for item in needed or []],
    )


class BaseArbitrationClient(ABC):
    """Abstract base class for arbitration clients."""

    def __init__(self, config: ArbitrationConfig | None = None):
        self.config = config or ArbitrationConfig()

    @abstractmethod
    async def _complete(self, system: str, prompt: str) -> str:
        """Get the raw completion text."""
        pass

    @abstractmethod
    def _describe_error(self, error: Exception) -> str:
        """Map a provider exception to a contract error string."""
        pass

    async def arbitrate(self, request: ArbitrationRequest) -> ArbitrationResponse:
        """Ask the model which option the user meant."""
        start = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - start) * 1000

        try:
            content = await asyncio.wait_for(
                self._complete(ARBITRATION_SYSTEM_PROMPT, format_arbitration_prompt(request)),
                timeout=self.config.timeout_ms / 1000,
            )
            decision = parse_decision(content, request.options)
        except asyncio.TimeoutError:
            logger.info(f"Arbitration timed out after {self.config.timeout_ms}ms")
            return ArbitrationResponse.failed("Timeout", elapsed())
        except ValueError as e:
            logger.warning(f"Invalid arbitration reply: {e}")
            return ArbitrationResponse.failed(f"Invalid response: {e}", elapsed())
        except Exception as e:
            error = self._describe_error(e)
            logger.warning(f"Arbitration call failed: {error}")
            return ArbitrationResponse.failed(error, elapsed())

        return ArbitrationResponse.ok(decision, elapsed())


class OpenAIArbitrationClient(BaseArbitrationClient):
    """OpenAI chat completions arbitration client."""

    def __init__(
        self,
        config: ArbitrationConfig | None = None,
        api_key: str | None = None,
        model: str | None = None,
    ):
        super().__init__(config)
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ArbitrationClientError(
                "openai", "API key required. Set OPENAI_API_KEY environment variable."
            )
        self.model = model or resolve_model(self.config.model)[1]
        self.client = openai.AsyncOpenAI(
            api_key=self.api_key,
            timeout=self.config.timeout_ms / 1000,
            max_retries=0,
        )

    async def _complete(self, system: str, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    def _describe_error(self, error: Exception) -> str:
        if isinstance(error, openai.APITimeoutError):
            return "Timeout"
        if isinstance(error, openai.APIStatusError):
            return f"API error: {error.status_code}"
        if isinstance(error, openai.APIConnectionError):
            return f"Connection error: {error}"
        return str(error) or type(error).__name__


class AnthropicArbitrationClient(BaseArbitrationClient):
    """Anthropic messages arbitration client."""

    def __init__(
        self,
        config: ArbitrationConfig | None = None,
        api_key: str | None = None,
        model: str | None = None,
    ):
        super().__init__(config)
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ArbitrationClientError(
                "anthropic", "API key required. Set ANTHROPIC_API_KEY environment variable."
            )
        provider, resolved = resolve_model(self.config.model)
        self.model = model or (resolved if provider is Provider.ANTHROPIC else MODEL_REGISTRY["haiku"][1])
        self.client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.config.timeout_ms / 1000,
            max_retries=0,
        )

    async def _complete(self, system: str, prompt: str) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        content = ""
        for block in response.content:
            if block.type == "text":
                content += block.text
        return content

    def _describe_error(self, error: Exception) -> str:
        if isinstance(error, anthropic.APITimeoutError):
            return "Timeout"
        if isinstance(error, anthropic.APIStatusError):
            return f"API error: {error.status_code}"
        if isinstance(error, anthropic.APIConnectionError):
            return f"Connection error: {error}"
        return str(error) or type(error).__name__


def create_arbitration_client(config: ArbitrationConfig | None = None) -> BaseArbitrationClient:
    """Build the client for the configured model's provider."""
    config = config or ArbitrationConfig()
    provider, _ = resolve_model(config.model, default=Provider(config.provider))
    if provider is Provider.ANTHROPIC:
        return AnthropicArbitrationClient(config)
    return OpenAIArbitrationClient(config)


# Global client instance
_client: BaseArbitrationClient | None = None


def get_arbitration_client() -> BaseArbitrationClient:
    """Get or create the global arbitration client."""
    global _client
    if _client is None:
        _client = create_arbitration_client()
    return _client


def init_arbitration_client(config: ArbitrationConfig | None = None) -> BaseArbitrationClient:
    """Initialize the global arbitration client."""
    global _client
    _client = create_arbitration_client(config)
    return _client
