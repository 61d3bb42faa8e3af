"""
Tests for Database and StepResult (amparo/core/).

Covers:
- transaction() commits, rolls back and wraps SQLAlchemy errors
- Foreign keys are enforced on SQLite so ON DELETE CASCADE holds
- ping()
- StepResult success/failure/unwrap
"""

from __future__ import annotations

import pytest
from conftest import create_conversation
from sqlalchemy import func, select

from amparo.core import Database, StepResult
from amparo.lib.exceptions import DatabaseError, OwnershipError
from amparo.models import Conversation, Message, User

# =============================================================================
# Database
# =============================================================================


class TestTransaction:
    @pytest.mark.asyncio
    async def test_commit(self, db):
        async with db.transaction() as session:
            session.add(User(external_uid="uid-commit"))

        async with db.session() as session:
            assert await session.scalar(select(func.count(User.id))) == 1

    @pytest.mark.asyncio
    async def test_domain_error_rolls_back_and_propagates(self, db):
        with pytest.raises(OwnershipError):
            async with db.transaction() as session:
                session.add(User(external_uid="uid-rollback"))
                await session.flush()
                raise OwnershipError("nope")

        async with db.session() as session:
            assert await session.scalar(select(func.count(User.id))) == 0

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_database_error(self, db):
        async with db.transaction() as session:
            session.add(User(external_uid="uid-dup"))

        with pytest.raises(DatabaseError):
            async with db.transaction() as session:
                session.add(User(external_uid="uid-dup"))

    @pytest.mark.asyncio
    async def test_foreign_keys_are_enforced(self, db):
        with pytest.raises(DatabaseError):
            async with db.transaction() as session:
                session.add(Conversation(user_id="no-such-user", title="x"))

    @pytest.mark.asyncio
    async def test_cascade_from_user(self, db, principal):
        conversation = await create_conversation(db, principal.user_id)
        async with db.transaction() as session:
            session.add(
                Message(
                    conversation_id=conversation.id,
                    role="user",
                    content_encrypted="00",
                    content_iv="00",
                    content_auth_tag="00",
                )
            )

        async with db.transaction() as session:
            user = await session.get(User, principal.user_id)
            await session.delete(user)

        async with db.session() as session:
            assert await session.scalar(select(func.count(Conversation.id))) == 0
            assert await session.scalar(select(func.count(Message.id))) == 0


@pytest.mark.asyncio
async def test_ping(db):
    assert await db.ping() is True


@pytest.mark.asyncio
async def test_ping_unreachable_database():
    database = Database("sqlite+aiosqlite:////nonexistent-dir/amparo.db")
    try:
        assert await database.ping() is False
    finally:
        await database.dispose()


# =============================================================================
# StepResult
# =============================================================================


def test_success():
    result = StepResult.success(42)
    assert result.ok
    assert result.unwrap() == 42


def test_failure_reraises():
    error = RuntimeError("boom")
    result = StepResult.failure(error)

    assert not result.ok
    assert result.value is None
    with pytest.raises(RuntimeError):
        result.unwrap()
