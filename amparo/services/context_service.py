"""
Conversation context assembly.

Before the assistant replies, the user's durable context is gathered and
decrypted: active goals, previously identified abuse patterns, the stored
risk level and the most recent check-in. Individual decrypt failures
degrade gracefully: a goal that cannot be decrypted keeps its progress
with a placeholder title, and a history message that cannot be decrypted
is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from amparo.lib.encryption import EncryptedPayload, EncryptionSession
from amparo.lib.exceptions import CryptoError
from amparo.models import Message
from amparo.services.cache_service import CacheService, context_key
from amparo.services.chat_repository import ChatRepository
from amparo.services.completion import ChatTurn

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoalSummary:
    title: str
    progress: int


@dataclass(frozen=True)
class CheckinSummary:
    mood_score: int | None
    created_at: datetime


@dataclass
class ConversationContext:
    """Everything the prompt builder and tier selection need about a user."""

    active_goals: list[GoalSummary] = field(default_factory=list)
    identified_patterns: list[str] = field(default_factory=list)
    risk_level: str = "low"
    is_first_message: bool = False
    last_checkin: CheckinSummary | None = None
    complexity_score: int | None = None
    needs_classification: bool = False
    needs_summary: bool = False


def decrypt_history(rows: Iterable[Message], session: EncryptionSession) -> list[ChatTurn]:
    """Decrypt message rows in order, dropping any that fail to decrypt."""
    turns: list[ChatTurn] = []
    for row in rows:
        try:
            content = session.decrypt_data(EncryptedPayload.from_row(row, "content"))
        except CryptoError:
            logger.warning("Dropping undecryptable message from history", extra={"message_id": row.id})
            continue
        turns.append(ChatTurn(role=row.role, content=content))
    return turns


class ContextAssembler:
    """Builds a ConversationContext for one pipeline run."""

    def __init__(self, repository: ChatRepository, cache: CacheService | None = None) -> None:
        self._repository = repository
        self._cache = cache

    async def assemble(
        self,
        user_id: str,
        session: EncryptionSession,
        *,
        is_first_message: bool,
        complexity_score: int | None = None,
        needs_classification: bool = False,
        needs_summary: bool = False,
    ) -> ConversationContext:
        user = await self._repository.get_user(user_id)
        goals = await self._repository.active_goals(user_id)
        checkin = await self._repository.latest_checkin(user_id)

        return ConversationContext(
            active_goals=[
                GoalSummary(
                    title=session.decrypt_or_placeholder(EncryptedPayload.from_row(goal, "goal")),
                    progress=goal.progress or 0,
                )
                for goal in goals
            ],
            identified_patterns=await self.pattern_tags(user_id),
            risk_level=(user.risk_level if user is not None and user.risk_level else "low"),
            is_first_message=is_first_message,
            last_checkin=(
                CheckinSummary(mood_score=checkin.mood_score, created_at=checkin.created_at)
                if checkin is not None
                else None
            ),
            complexity_score=complexity_score,
            needs_classification=needs_classification,
            needs_summary=needs_summary,
        )

    async def pattern_tags(self, user_id: str) -> list[str]:
        """Pattern tags, served from the cache when it is available."""
        if self._cache is not None:
            cached = await self._cache.get(context_key(user_id))
            if isinstance(cached, list):
                return [str(tag) for tag in cached]

        tags = await self._repository.pattern_tags(user_id)
        if self._cache is not None:
            await self._cache.set(context_key(user_id), tags)
        return tags

    async def invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            await self._cache.delete(context_key(user_id))


__all__ = [
    "CheckinSummary",
    "ContextAssembler",
    "ConversationContext",
    "GoalSummary",
    "decrypt_history",
]
