"""
Datastore operations used by the realtime message pipeline.

Every method opens its own session from the Database, so one pipeline run
never holds a connection across the language model call. Writes that must
land together (a message plus its conversation's ``updated_at``) share one
transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from amparo.core.database import Database
from amparo.lib.encryption import EncryptedPayload, generate_salt
from amparo.lib.exceptions import OwnershipError
from amparo.models import Conversation, Goal, IdentifiedPattern, Message, ProgressCheckin, User
from amparo.models.base import utcnow
from amparo.models.conversation import ROLE_USER

logger = logging.getLogger(__name__)


class ChatRepository:
    """Persistence for conversations, messages and per-user context."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user(self, user_id: str) -> User | None:
        async with self.db.session() as session:
            return await session.get(User, user_id)

    async def ensure_salt(self, user_id: str) -> str:
        """
        Return the user's salt, generating and persisting one if absent.

        The write only applies while the column is still NULL, so concurrent
        callers converge on a single salt and an existing salt is never
        replaced.
        """
        async with self.db.transaction() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id, User.encryption_salt.is_(None))
                .values(encryption_salt=generate_salt())
            )
        async with self.db.session() as session:
            salt = await session.scalar(select(User.encryption_salt).where(User.id == user_id))
        if salt is None:
            raise OwnershipError("user not found")
        return salt

    async def set_risk_level(self, user_id: str, risk_level: str) -> None:
        async with self.db.transaction() as session:
            await session.execute(update(User).where(User.id == user_id).values(risk_level=risk_level))

    # =========================================================================
    # Conversations & messages
    # =========================================================================

    async def get_owned_conversation(self, user_id: str, conversation_id: Any) -> Conversation:
        """
        Raises:
            OwnershipError: If the conversation does not exist or belongs to someone else.
        """
        if not isinstance(conversation_id, str) or not conversation_id:
            raise OwnershipError("conversation not found")
        async with self.db.session() as session:
            conversation = await session.scalar(
                select(Conversation).where(
                    Conversation.id == conversation_id,
                    Conversation.user_id == user_id,
                )
            )
        if conversation is None:
            raise OwnershipError("conversation not found")
        return conversation

    async def insert_message(
        self,
        conversation_id: str,
        role: str,
        payload: EncryptedPayload,
    ) -> Message:
        """Store an encrypted message and bump the conversation's ``updated_at``."""
        message = Message(
            conversation_id=conversation_id,
            role=role,
            content_encrypted=payload.ciphertext,
            content_iv=payload.iv,
            content_auth_tag=payload.auth_tag,
            timestamp=utcnow(),
        )
        async with self.db.transaction() as session:
            session.add(message)
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=message.timestamp)
            )
        return message

    async def count_user_messages(self, conversation_id: str) -> int:
        async with self.db.session() as session:
            count = await session.scalar(
                select(func.count(Message.id)).where(
                    Message.conversation_id == conversation_id,
                    Message.role == ROLE_USER,
                )
            )
        return int(count or 0)

    async def update_title(self, conversation_id: str, title: str) -> None:
        async with self.db.transaction() as session:
            await session.execute(
                update(Conversation).where(Conversation.id == conversation_id).values(title=title)
            )

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """The last ``limit`` messages, oldest first."""
        async with self.db.session() as session:
            rows = await session.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.timestamp.desc(), Message.id.desc())
                .limit(limit)
            )
            newest_first = list(rows)
        newest_first.reverse()
        return newest_first

    # =========================================================================
    # Context
    # =========================================================================

    async def active_goals(self, user_id: str) -> list[Goal]:
        async with self.db.session() as session:
            rows = await session.scalars(
                select(Goal)
                .where(Goal.user_id == user_id, Goal.status == "active")
                .order_by(Goal.created_at.desc())
            )
            return list(rows)

    async def pattern_tags(self, user_id: str) -> list[str]:
        async with self.db.session() as session:
            rows = await session.scalars(
                select(IdentifiedPattern.pattern_type)
                .where(IdentifiedPattern.user_id == user_id)
                .order_by(IdentifiedPattern.identified_at)
            )
            return list(rows)

    async def latest_checkin(self, user_id: str) -> ProgressCheckin | None:
        async with self.db.session() as session:
            return await session.scalar(
                select(ProgressCheckin)
                .where(ProgressCheckin.user_id == user_id)
                .order_by(ProgressCheckin.created_at.desc())
                .limit(1)
            )

    async def add_patterns(self, user_id: str, pattern_types: list[str]) -> None:
        """Record pattern tags; tags the user already has are left untouched."""
        tags = [tag for tag in dict.fromkeys(pattern_types) if tag]
        if not tags:
            return
        async with self.db.transaction() as session:
            insert = pg_insert if self.db.engine.dialect.name == "postgresql" else sqlite_insert
            stmt = insert(IdentifiedPattern).values(
                [{"user_id": user_id, "pattern_type": tag, "identified_at": utcnow()} for tag in tags]
            )
            await session.execute(
                stmt.on_conflict_do_nothing(index_elements=["user_id", "pattern_type"])
            )
