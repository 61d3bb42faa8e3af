"""
Language model completion capability.

The rest of the application talks to the model only through the
CompletionClient protocol: a system prompt, a list of chat turns and a tier
in, reply text out, CompletionError on any failure. AnthropicCompletionClient
is the production implementation on top of the Anthropic Messages API.

Tiers:
- FAST: short, cheap replies and classification work
- DEEP: first messages, complex messages and high-risk conversations
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

import anthropic

from amparo.config import Settings
from amparo.lib.circuit_breaker import CircuitBreaker, CircuitOpenError
from amparo.lib.exceptions import CompletionError

logger = logging.getLogger(__name__)


class ModelTier(StrEnum):
    FAST = "fast"
    DEEP = "deep"


@dataclass(frozen=True)
class ChatTurn:
    """One decrypted message of conversation history."""

    role: str  # user | assistant
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class CompletionClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: list[ChatTurn],
        tier: ModelTier,
    ) -> str:
        """
        Return the model's reply text.

        Raises:
            CompletionError: On provider errors, timeouts or empty replies.
        """
        ...


def prepare_messages(messages: list[ChatTurn]) -> list[dict[str, str]]:
    """
    Shape history for the Messages API.

    Consecutive turns of the same role are merged and leading assistant turns
    are dropped, since the API requires strictly alternating roles that start
    with a user turn.
    """
    prepared: list[dict[str, str]] = []
    for turn in messages:
        if not turn.content:
            continue
        if not prepared and turn.role != "user":
            continue
        if prepared and prepared[-1]["role"] == turn.role:
            prepared[-1]["content"] += "\n\n" + turn.content
            continue
        prepared.append(turn.to_dict())
    return prepared


class AnthropicCompletionClient:
    """
    CompletionClient backed by ``anthropic.AsyncAnthropic``.

    Every call is bounded by ``settings.completion_timeout`` and guarded by a
    circuit breaker so a failing provider is not hammered while it recovers.
    """

    def __init__(
        self,
        settings: Settings,
        client: Any = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self._breaker = breaker or CircuitBreaker(name="anthropic", failure_threshold=5, recovery_timeout=60.0)
        self._models = {
            ModelTier.FAST: (settings.fast_model, settings.fast_max_tokens),
            ModelTier.DEEP: (settings.deep_model, settings.deep_max_tokens),
        }

    async def complete(
        self,
        system_prompt: str,
        messages: list[ChatTurn],
        tier: ModelTier,
    ) -> str:
        model, max_tokens = self._models[tier]
        payload = prepare_messages(messages)
        if not payload:
            raise CompletionError("no user message to send")

        start = time.monotonic()
        try:
            async with self._breaker:
                response = await asyncio.wait_for(
                    self._client.messages.create(
                        model=model,
                        max_tokens=max_tokens,
                        system=system_prompt,
                        messages=payload,
                    ),
                    timeout=self._settings.completion_timeout,
                )
        except CircuitOpenError as e:
            raise CompletionError(str(e)) from e
        except TimeoutError as e:
            logger.warning("completion timed out", extra={"tier": tier.value, "model": model})
            raise CompletionError("completion timed out") from e
        except anthropic.APIError as e:
            logger.error("completion failed", extra={"tier": tier.value, "error": type(e).__name__})
            raise CompletionError("completion provider error") from e

        text = "".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", "text") == "text"
        ).strip()

        logger.debug(
            "completion received",
            extra={
                "tier": tier.value,
                "model": model,
                "latency_ms": int((time.monotonic() - start) * 1000),
                "response_length": len(text),
            },
        )

        if not text:
            raise CompletionError("completion returned no text")
        return text
