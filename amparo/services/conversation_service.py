"""
Conversation management: create, list, read, rename and delete.

Every operation is scoped to the requesting user; a conversation owned by
someone else is indistinguishable from one that does not exist.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from amparo.config import Settings
from amparo.core.database import Database
from amparo.lib.encryption import EncryptedPayload, EncryptionSession
from amparo.lib.exceptions import OwnershipError, ValidationError
from amparo.models import DEFAULT_TITLE, Conversation, Message
from amparo.models.base import utcnow
from amparo.services.assistant_service import SUMMARY_UNAVAILABLE, AssistantService
from amparo.services.chat_repository import ChatRepository
from amparo.services.context_service import decrypt_history
from amparo.services.identity import Principal

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


def conversation_to_dict(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
    }


def _clean_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required")
    return title.strip()[:MAX_TITLE_LENGTH]


class ConversationService:
    def __init__(
        self,
        db: Database,
        repository: ChatRepository,
        settings: Settings,
        assistant: AssistantService | None = None,
    ) -> None:
        self._db = db
        self._repository = repository
        self._settings = settings
        self._assistant = assistant

    async def create(self, user_id: str, title: str | None = None) -> Conversation:
        conversation = Conversation(
            user_id=user_id,
            title=_clean_title(title) if title else DEFAULT_TITLE,
        )
        async with self._db.transaction() as session:
            session.add(conversation)
        return conversation

    async def list_for_user(self, user_id: str) -> list[Conversation]:
        async with self._db.session() as session:
            rows = await session.scalars(
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc())
            )
            return list(rows)

    async def get(self, user_id: str, conversation_id: str) -> Conversation:
        return await self._repository.get_owned_conversation(user_id, conversation_id)

    async def get_with_messages(self, principal: Principal, conversation_id: str) -> dict[str, Any]:
        """Conversation plus all its messages, decrypted. Unreadable messages get a placeholder."""
        conversation = await self.get(principal.user_id, conversation_id)

        async with self._db.session() as session:
            rows = list(
                await session.scalars(
                    select(Message)
                    .where(Message.conversation_id == conversation.id)
                    .order_by(Message.timestamp, Message.id)
                )
            )

        messages: list[dict[str, Any]] = []
        if rows:
            crypto = await self._session_for(principal)
            for row in rows:
                messages.append(
                    {
                        "id": row.id,
                        "role": row.role,
                        "content": crypto.decrypt_or_placeholder(EncryptedPayload.from_row(row, "content")),
                        "timestamp": row.timestamp.isoformat(),
                    }
                )

        return {**conversation_to_dict(conversation), "messages": messages}

    async def rename(self, user_id: str, conversation_id: str, title: Any) -> Conversation:
        clean = _clean_title(title)
        async with self._db.transaction() as session:
            conversation = await session.scalar(
                select(Conversation).where(
                    Conversation.id == conversation_id,
                    Conversation.user_id == user_id,
                )
            )
            if conversation is None:
                raise OwnershipError("conversation not found")
            conversation.title = clean
            conversation.updated_at = utcnow()
        return conversation

    async def delete(self, user_id: str, conversation_id: str) -> None:
        """Delete a conversation and, by cascade, all of its messages."""
        async with self._db.transaction() as session:
            conversation = await session.scalar(
                select(Conversation).where(
                    Conversation.id == conversation_id,
                    Conversation.user_id == user_id,
                )
            )
            if conversation is None:
                raise OwnershipError("conversation not found")
            await session.delete(conversation)

    async def summarize(self, principal: Principal, conversation_id: str) -> str:
        """Model-written summary of the conversation's recent history."""
        conversation = await self.get(principal.user_id, conversation_id)
        if self._assistant is None:
            return SUMMARY_UNAVAILABLE
        rows = await self._repository.recent_messages(conversation.id, self._settings.history_window)
        if not rows:
            return SUMMARY_UNAVAILABLE
        crypto = await self._session_for(principal)
        return await self._assistant.summarize(decrypt_history(rows, crypto))

    async def _session_for(self, principal: Principal) -> EncryptionSession:
        salt = await self._repository.ensure_salt(principal.user_id)
        return await EncryptionSession(
            principal.external_uid, salt, self._settings.master_secret
        ).prepare()
