"""
Assistant reply generation.

Chooses the model tier for a message, builds the system prompt from the
user's context and asks the completion capability for a reply.

Tier rules:
- DEEP for the first message of a conversation, complex messages
  (complexity score above the threshold) and high-risk users
- FAST otherwise, including classification and summary requests

The FAST tier only sees the current message; the DEEP tier also gets the
most recent history turns.
"""

from __future__ import annotations

import logging

from amparo.services.completion import ChatTurn, CompletionClient, ModelTier
from amparo.services.context_service import ConversationContext
from amparo.services.prompts import SUMMARY_SYSTEM_PROMPT, build_summary_prompt, build_system_prompt

logger = logging.getLogger(__name__)

SUMMARY_UNAVAILABLE = "Resumo não disponível"


def select_model_tier(context: ConversationContext, complexity_threshold: int = 7) -> ModelTier:
    if (
        context.is_first_message
        or (context.complexity_score is not None and context.complexity_score > complexity_threshold)
        or context.risk_level == "high"
    ):
        return ModelTier.DEEP
    return ModelTier.FAST


class AssistantService:
    def __init__(
        self,
        completion: CompletionClient,
        complexity_threshold: int = 7,
        history_turns: int = 10,
    ) -> None:
        self._completion = completion
        self._complexity_threshold = complexity_threshold
        self._history_turns = history_turns

    def select_tier(self, context: ConversationContext) -> ModelTier:
        return select_model_tier(context, self._complexity_threshold)

    async def generate_reply(
        self,
        message: str,
        context: ConversationContext,
        history: list[ChatTurn],
    ) -> str:
        """
        Raises:
            CompletionError: Propagated from the completion client.
        """
        tier = self.select_tier(context)
        turns = [ChatTurn("user", message)]
        if tier == ModelTier.DEEP and self._history_turns:
            turns = history[-self._history_turns:] + turns

        logger.info("assistant_reply_requested tier=%s history=%d", tier.value, len(turns) - 1)
        return await self._completion.complete(build_system_prompt(context), turns, tier)

    async def summarize(self, turns: list[ChatTurn]) -> str:
        """Short summary of older turns; never raises."""
        if not turns:
            return SUMMARY_UNAVAILABLE
        try:
            return await self._completion.complete(
                SUMMARY_SYSTEM_PROMPT,
                [ChatTurn("user", build_summary_prompt(turns))],
                ModelTier.FAST,
            )
        except Exception as e:  # Intentional catch-all: a missing summary must not break the caller
            logger.warning("summary_failed", extra={"error": type(e).__name__})
            return SUMMARY_UNAVAILABLE
