"""
Shared test fixtures for Amparo.

This module provides common fixtures used across all test modules:
- Environment setup (dev mode)
- Settings with a fixed master secret and identity secret
- In-memory SQLite Database (aiosqlite, StaticPool) with all tables
- ChatRepository over that database
- A fake completion client (AsyncMock) and RecordingSink, an in-memory event sink
- Helpers to create users, conversations and identity tokens

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

import os
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

# ---------------------------------------------------------------------------
# 1. Environment setup -- must run before any application imports
# ---------------------------------------------------------------------------

os.environ.setdefault("AMPARO_DEV_MODE", "1")
os.environ.setdefault("AMPARO_ENVIRONMENT", "development")

# ---------------------------------------------------------------------------
# Application imports (after env vars are set)
# ---------------------------------------------------------------------------

import jwt as pyjwt  # noqa: E402

from amparo.config import Settings  # noqa: E402
from amparo.core.database import Database  # noqa: E402
from amparo.lib.encryption import generate_salt  # noqa: E402
from amparo.models import Conversation, User  # noqa: E402
from amparo.services.chat_repository import ChatRepository  # noqa: E402
from amparo.services.events import EventKind, OutboundEvent  # noqa: E402
from amparo.services.identity import Principal  # noqa: E402

TEST_MASTER_SECRET = "test-master-secret-for-amparo"
TEST_IDENTITY_SECRET = "test-identity-secret-for-amparo"
MEMORY_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_REPLY = "Estou aqui com você. Quer me contar mais sobre o que aconteceu?"


# ---------------------------------------------------------------------------
# 2. settings
# ---------------------------------------------------------------------------

@pytest.fixture()
def settings() -> Settings:
    return Settings(
        master_secret=TEST_MASTER_SECRET,
        dev_mode=True,
        database_url=MEMORY_URL,
        identity_secret=TEST_IDENTITY_SECRET,
        cors_origins=["http://localhost:5173"],
    )


# ---------------------------------------------------------------------------
# 3. db / repository -- fresh in-memory database per test
# ---------------------------------------------------------------------------

@pytest.fixture()
async def db():
    """
    Provide a Database backed by an in-memory SQLite database.

    A fresh database is created for every test that requests this fixture.
    The engine is disposed after the test finishes.
    """
    database = Database(MEMORY_URL)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture()
def repository(db: Database) -> ChatRepository:
    return ChatRepository(db)


# ---------------------------------------------------------------------------
# 4. completion / sink
# ---------------------------------------------------------------------------

@pytest.fixture()
def completion() -> MagicMock:
    """Fake CompletionClient whose ``complete`` returns DEFAULT_REPLY."""
    client = MagicMock()
    client.complete = AsyncMock(return_value=DEFAULT_REPLY)
    return client


class RecordingSink:
    """EventSink that keeps every event in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[OutboundEvent] = []

    async def emit(self, event: OutboundEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


# ---------------------------------------------------------------------------
# 5. Factories
# ---------------------------------------------------------------------------

async def create_user(db: Database, external_uid: str = "uid-ana", with_salt: bool = True) -> Principal:
    user = User(
        external_uid=external_uid,
        email=f"{external_uid}@example.com",
        encryption_salt=generate_salt() if with_salt else None,
    )
    async with db.transaction() as session:
        session.add(user)
    return Principal(user_id=user.id, external_uid=external_uid, email=user.email)


async def create_conversation(db: Database, user_id: str, title: str = "Nova conversa") -> Conversation:
    conversation = Conversation(user_id=user_id, title=title)
    async with db.transaction() as session:
        session.add(conversation)
    return conversation


def make_token(uid: str, secret: str = TEST_IDENTITY_SECRET, expires_in: int = 3600, **claims) -> str:
    payload = {"sub": uid, "exp": int(time.time()) + expires_in, **claims}
    return pyjwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
async def principal(db: Database) -> Principal:
    return await create_user(db)


@pytest.fixture()
async def conversation(db: Database, principal: Principal) -> Conversation:
    return await create_conversation(db, principal.user_id)
