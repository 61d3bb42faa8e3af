"""
Tests for the completion client, prompt building and model tier selection.

Covers amparo/services/completion.py, amparo/services/prompts.py and
amparo/services/assistant_service.py.
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from amparo.lib.circuit_breaker import CircuitBreaker
from amparo.lib.exceptions import CompletionError
from amparo.services.assistant_service import SUMMARY_UNAVAILABLE, AssistantService, select_model_tier
from amparo.services.completion import AnthropicCompletionClient, ChatTurn, ModelTier, prepare_messages
from amparo.services.context_service import CheckinSummary, ConversationContext, GoalSummary
from amparo.services.prompts import BASE_SYSTEM_PROMPT, build_system_prompt


def _response(text: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def _anthropic_client(reply: str = "Olá, estou aqui.") -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_response(reply))
    return client


# =============================================================================
# prepare_messages
# =============================================================================


class TestPrepareMessages:
    def test_merges_consecutive_roles(self):
        turns = [ChatTurn("user", "a"), ChatTurn("user", "b"), ChatTurn("assistant", "c")]
        assert prepare_messages(turns) == [
            {"role": "user", "content": "a\n\nb"},
            {"role": "assistant", "content": "c"},
        ]

    def test_drops_leading_assistant_and_empty_turns(self):
        turns = [ChatTurn("assistant", "oi"), ChatTurn("user", ""), ChatTurn("user", "olá")]
        assert prepare_messages(turns) == [{"role": "user", "content": "olá"}]


# =============================================================================
# AnthropicCompletionClient
# =============================================================================


class TestAnthropicCompletionClient:
    @pytest.mark.asyncio
    async def test_tier_selects_model_and_token_limit(self, settings):
        client = _anthropic_client()
        completion = AnthropicCompletionClient(settings, client=client)

        await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.FAST)
        fast_kwargs = client.messages.create.await_args.kwargs
        await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.DEEP)
        deep_kwargs = client.messages.create.await_args.kwargs

        assert (fast_kwargs["model"], fast_kwargs["max_tokens"]) == (settings.fast_model, 1024)
        assert (deep_kwargs["model"], deep_kwargs["max_tokens"]) == (settings.deep_model, 2048)
        assert deep_kwargs["system"] == "sys"
        assert deep_kwargs["messages"] == [{"role": "user", "content": "oi"}]

    @pytest.mark.asyncio
    async def test_returns_joined_text(self, settings):
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[SimpleNamespace(type="text", text="Parte 1. "), SimpleNamespace(type="text", text="Parte 2.")]
            )
        )
        completion = AnthropicCompletionClient(settings, client=client)
        assert await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.FAST) == "Parte 1. Parte 2."

    @pytest.mark.asyncio
    async def test_provider_error_becomes_completion_error(self, settings):
        client = MagicMock()
        client.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))
        )
        completion = AnthropicCompletionClient(settings, client=client)
        with pytest.raises(CompletionError):
            await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.FAST)

    @pytest.mark.asyncio
    async def test_timeout_becomes_completion_error(self, settings):
        async def slow(**kwargs):
            await asyncio.sleep(1)
            return _response("tarde demais")

        client = MagicMock()
        client.messages.create = slow
        fast_settings = dataclasses.replace(settings, completion_timeout=0.01)
        completion = AnthropicCompletionClient(fast_settings, client=client)
        with pytest.raises(CompletionError):
            await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.FAST)

    @pytest.mark.asyncio
    async def test_empty_reply_is_an_error(self, settings):
        completion = AnthropicCompletionClient(settings, client=_anthropic_client("   "))
        with pytest.raises(CompletionError):
            await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.FAST)

    @pytest.mark.asyncio
    async def test_open_breaker_skips_provider(self, settings):
        client = _anthropic_client()
        breaker = CircuitBreaker(name="test", failure_threshold=1)
        with pytest.raises(RuntimeError):
            async with breaker:
                raise RuntimeError("down")

        completion = AnthropicCompletionClient(settings, client=client, breaker=breaker)
        with pytest.raises(CompletionError):
            await completion.complete("sys", [ChatTurn("user", "oi")], ModelTier.FAST)
        client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_user_turn(self, settings):
        completion = AnthropicCompletionClient(settings, client=_anthropic_client())
        with pytest.raises(CompletionError):
            await completion.complete("sys", [ChatTurn("assistant", "oi")], ModelTier.FAST)


# =============================================================================
# System prompt
# =============================================================================


class TestBuildSystemPrompt:
    def test_base_only(self):
        assert build_system_prompt(ConversationContext()) == BASE_SYSTEM_PROMPT
        assert build_system_prompt(None) == BASE_SYSTEM_PROMPT

    def test_layers_in_order(self):
        context = ConversationContext(
            active_goals=[GoalSummary("Voltar a estudar", 40)],
            identified_patterns=["financial_control"],
            risk_level="high",
            last_checkin=CheckinSummary(mood_score=6, created_at=datetime(2026, 10, 1, tzinfo=UTC)),
        )
        prompt = build_system_prompt(context)

        assert "- Voltar a estudar: 40% completo" in prompt
        assert "financial_control" in prompt
        assert "ALTO RISCO" in prompt
        assert "Humor: 6/10" in prompt
        positions = [prompt.index(s) for s in ("Voltar a estudar", "financial_control", "ALTO RISCO", "Humor")]
        assert positions == sorted(positions)

    def test_medium_risk_block(self):
        prompt = build_system_prompt(ConversationContext(risk_level="medium"))
        assert "risco moderado" in prompt
        assert "ALTO RISCO" not in prompt


# =============================================================================
# AssistantService
# =============================================================================


class TestModelTierSelection:
    @pytest.mark.parametrize(
        ("context", "tier"),
        [
            (ConversationContext(), ModelTier.FAST),
            (ConversationContext(is_first_message=True), ModelTier.DEEP),
            (ConversationContext(complexity_score=8), ModelTier.DEEP),
            (ConversationContext(complexity_score=7), ModelTier.FAST),
            (ConversationContext(risk_level="high"), ModelTier.DEEP),
            (ConversationContext(risk_level="medium"), ModelTier.FAST),
            (ConversationContext(needs_classification=True), ModelTier.FAST),
        ],
    )
    def test_select_model_tier(self, context, tier):
        assert select_model_tier(context) == tier


class TestAssistantService:
    @pytest.mark.asyncio
    async def test_fast_tier_sends_only_current_message(self, completion):
        assistant = AssistantService(completion)
        history = [ChatTurn("user", "antes"), ChatTurn("assistant", "resposta")]

        await assistant.generate_reply("agora", ConversationContext(), history)

        _, turns, tier = completion.complete.await_args.args
        assert tier == ModelTier.FAST
        assert turns == [ChatTurn("user", "agora")]

    @pytest.mark.asyncio
    async def test_deep_tier_sends_last_ten_turns(self, completion):
        assistant = AssistantService(completion)
        history = [ChatTurn("user" if i % 2 == 0 else "assistant", f"turno {i}") for i in range(14)]

        await assistant.generate_reply("agora", ConversationContext(is_first_message=True), history)

        _, turns, tier = completion.complete.await_args.args
        assert tier == ModelTier.DEEP
        assert turns == history[-10:] + [ChatTurn("user", "agora")]

    @pytest.mark.asyncio
    async def test_completion_error_propagates(self, completion):
        completion.complete.side_effect = CompletionError("down")
        with pytest.raises(CompletionError):
            await AssistantService(completion).generate_reply("oi", ConversationContext(), [])

    @pytest.mark.asyncio
    async def test_summary(self, completion):
        completion.complete.return_value = "Resumo breve."
        summary = await AssistantService(completion).summarize([ChatTurn("user", "oi")])
        assert summary == "Resumo breve."
        assert completion.complete.await_args.args[2] == ModelTier.FAST

    @pytest.mark.asyncio
    async def test_summary_failure_is_placeholder(self, completion):
        completion.complete.side_effect = CompletionError("down")
        assert await AssistantService(completion).summarize([ChatTurn("user", "oi")]) == SUMMARY_UNAVAILABLE
        assert await AssistantService(completion).summarize([]) == SUMMARY_UNAVAILABLE
