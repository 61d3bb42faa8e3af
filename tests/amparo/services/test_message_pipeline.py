"""
Tests for MessagePipeline (amparo/services/message_pipeline.py).

Covers:
- Event order for normal and emergency messages
- Encryption at rest of both sides of the exchange
- First-message title derivation
- Validation and ownership failures (nothing written)
- Reply failure after the user message was stored
- Best-effort pattern recording
"""

from __future__ import annotations

import pytest
from conftest import DEFAULT_REPLY, TEST_MASTER_SECRET, create_conversation, create_user

from amparo.lib.encryption import EncryptedPayload, EncryptionSession
from amparo.lib.errors import CONVERSATION_NOT_FOUND, EMPTY_MESSAGE, MESSAGE_FAILED, MESSAGE_TOO_LONG
from amparo.lib.exceptions import CompletionError
from amparo.models import User
from amparo.models.conversation import ROLE_USER
from amparo.services.assistant_service import AssistantService
from amparo.services.completion import ChatTurn, ModelTier
from amparo.services.context_service import ContextAssembler
from amparo.services.events import EventKind
from amparo.services.message_pipeline import (
    InboundMessage,
    MessagePipeline,
    PipelineStage,
    derive_title,
)
from amparo.services.risk_service import RiskClassifier, RiskLevel

MEDIUM_ANALYSIS = (
    '{"riskLevel": "medium", "isEmergency": false, "patterns": ["financial_control"], '
    '"suggestedActions": [], "reasoning": "controle"}'
)


@pytest.fixture
def pipeline(settings, repository, completion) -> MessagePipeline:
    return MessagePipeline(
        settings,
        repository,
        ContextAssembler(repository),
        RiskClassifier(completion, history_turns=settings.classifier_history_turns),
        AssistantService(completion),
    )


async def _crypto(repository, principal) -> EncryptionSession:
    salt = await repository.ensure_salt(principal.user_id)
    return await EncryptionSession(principal.external_uid, salt, TEST_MASTER_SECRET).prepare()


# =============================================================================
# Happy path
# =============================================================================


class TestNormalMessage:
    @pytest.mark.asyncio
    async def test_event_order(self, pipeline, principal, conversation, sink):
        outcome = await pipeline.handle(principal, InboundMessage(conversation.id, "Hoje foi um dia calmo."), sink)

        assert outcome.succeeded
        assert sink.kinds == [
            EventKind.MESSAGE_SAVED,
            EventKind.CONVERSATION_TITLE_UPDATED,
            EventKind.ASSISTANT_TYPING,
            EventKind.ASSISTANT_TYPING,
            EventKind.ASSISTANT_MESSAGE,
        ]
        assert [e.payload["isTyping"] for e in sink.events if e.kind == EventKind.ASSISTANT_TYPING] == [True, False]

        saved, reply = sink.events[0].payload, sink.events[-1].payload
        assert saved["messageId"] == outcome.user_message_id
        assert reply["messageId"] == outcome.assistant_message_id
        assert reply["message"] == DEFAULT_REPLY
        assert reply["emergencyContext"] is None

    @pytest.mark.asyncio
    async def test_both_messages_are_encrypted_at_rest(self, pipeline, repository, principal, conversation, sink):
        await pipeline.handle(principal, InboundMessage(conversation.id, "Hoje foi um dia calmo."), sink)

        rows = await repository.recent_messages(conversation.id, 20)
        crypto = await _crypto(repository, principal)

        assert [row.role for row in rows] == ["user", "assistant"]
        assert all("calmo" not in row.content_encrypted for row in rows)
        assert [crypto.decrypt_data(EncryptedPayload.from_row(row, "content")) for row in rows] == [
            "Hoje foi um dia calmo.",
            DEFAULT_REPLY,
        ]

    @pytest.mark.asyncio
    async def test_first_message_uses_deep_tier(self, pipeline, principal, conversation, sink, completion):
        await pipeline.handle(principal, InboundMessage(conversation.id, "Oi"), sink)
        assert completion.complete.await_args.args[2] == ModelTier.DEEP

    @pytest.mark.asyncio
    async def test_history_excludes_the_new_message(
        self, pipeline, repository, principal, conversation, sink, completion
    ):
        crypto = await _crypto(repository, principal)
        await repository.insert_message(conversation.id, ROLE_USER, crypto.encrypt_data("antes"))
        await repository.set_risk_level(principal.user_id, "high")

        await pipeline.handle(principal, InboundMessage(conversation.id, "agora"), sink)

        _, turns, tier = completion.complete.await_args.args
        assert tier == ModelTier.DEEP
        assert turns == [ChatTurn("user", "antes"), ChatTurn("user", "agora")]


# =============================================================================
# Title
# =============================================================================


class TestTitle:
    @pytest.mark.asyncio
    async def test_long_first_message_is_truncated(self, pipeline, repository, principal, conversation, sink):
        text = "a" * 60

        await pipeline.handle(principal, InboundMessage(conversation.id, f"  {text}  "), sink)

        event = sink.events[1]
        assert event.kind == EventKind.CONVERSATION_TITLE_UPDATED
        assert event.payload == {"conversationId": conversation.id, "title": "a" * 50 + "..."}
        refreshed = await repository.get_owned_conversation(principal.user_id, conversation.id)
        assert refreshed.title == "a" * 50 + "..."

    @pytest.mark.asyncio
    async def test_custom_title_is_kept(self, db, pipeline, repository, principal, sink):
        conversation = await create_conversation(db, principal.user_id, title="Meu diário")

        await pipeline.handle(principal, InboundMessage(conversation.id, "Oi"), sink)

        assert EventKind.CONVERSATION_TITLE_UPDATED not in sink.kinds
        refreshed = await repository.get_owned_conversation(principal.user_id, conversation.id)
        assert refreshed.title == "Meu diário"

    @pytest.mark.asyncio
    async def test_second_message_keeps_title(self, pipeline, principal, conversation, sink):
        await pipeline.handle(principal, InboundMessage(conversation.id, "primeira"), sink)
        sink.events.clear()

        await pipeline.handle(principal, InboundMessage(conversation.id, "segunda"), sink)

        assert EventKind.CONVERSATION_TITLE_UPDATED not in sink.kinds

    @pytest.mark.parametrize(
        ("message", "title"),
        [
            ("Oi", "Oi"),
            ("  espaços  ", "espaços"),
            ("x" * 50, "x" * 50),
            ("x" * 51, "x" * 50 + "..."),
        ],
    )
    def test_derive_title(self, message, title):
        assert derive_title(message) == title


# =============================================================================
# Emergency
# =============================================================================


class TestEmergency:
    @pytest.mark.asyncio
    async def test_threat_message(self, db, pipeline, principal, conversation, sink, completion):
        outcome = await pipeline.handle(principal, InboundMessage(conversation.id, "ele me ameaçou ontem"), sink)

        assert outcome.succeeded
        assert sink.kinds == [
            EventKind.MESSAGE_SAVED,
            EventKind.CONVERSATION_TITLE_UPDATED,
            EventKind.ASSISTANT_TYPING,
            EventKind.EMERGENCY_DETECTED,
            EventKind.ASSISTANT_TYPING,
            EventKind.ASSISTANT_MESSAGE,
        ]
        alert = sink.events[3].payload
        assert alert["riskLevel"] == "high"
        assert alert["isEmergency"] is True
        assert [r["phone"] for r in alert["resources"]] == ["190", "180", "188"]
        assert sink.events[-1].payload["emergencyContext"] == alert

        # Keyword path: only the reply is generated, with the deep model.
        completion.complete.assert_awaited_once()
        assert completion.complete.await_args.args[2] == ModelTier.DEEP

        async with db.session() as session:
            user = await session.get(User, principal.user_id)
        assert user.risk_level == "high"
        assert outcome.assessment.risk_level == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_high_risk_prompt_layer(self, pipeline, principal, conversation, sink, completion):
        await pipeline.handle(principal, InboundMessage(conversation.id, "ele disse que vai me matar"), sink)

        system_prompt = completion.complete.await_args.args[0]
        assert "ALTO RISCO" in system_prompt


# =============================================================================
# Patterns
# =============================================================================


class TestPatterns:
    @pytest.mark.asyncio
    async def test_medium_assessment_records_patterns(
        self, pipeline, repository, principal, conversation, sink, completion
    ):
        completion.complete.side_effect = [MEDIUM_ANALYSIS, DEFAULT_REPLY]

        outcome = await pipeline.handle(principal, InboundMessage(conversation.id, "ele controla meu dinheiro"), sink)

        assert outcome.succeeded
        assert EventKind.EMERGENCY_DETECTED not in sink.kinds
        assert sink.events[-1].payload["emergencyContext"] is None
        assert await repository.pattern_tags(principal.user_id) == ["financial_control"]

    @pytest.mark.asyncio
    async def test_pattern_failure_is_only_a_warning(
        self, pipeline, repository, principal, conversation, sink, completion, monkeypatch
    ):
        completion.complete.side_effect = [MEDIUM_ANALYSIS, DEFAULT_REPLY]

        async def broken(user_id, patterns):
            raise RuntimeError("database went away")

        monkeypatch.setattr(repository, "add_patterns", broken)

        outcome = await pipeline.handle(principal, InboundMessage(conversation.id, "ele controla meu dinheiro"), sink)

        assert outcome.succeeded
        assert outcome.warnings == ["patterns"]
        assert sink.kinds[-1] == EventKind.ASSISTANT_MESSAGE


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_other_users_conversation(self, db, pipeline, repository, conversation, sink, completion):
        intruder = await create_user(db, "uid-intruder")

        outcome = await pipeline.handle(intruder, InboundMessage(conversation.id, "oi"), sink)

        assert outcome.stage == PipelineStage.ERROR
        assert sink.kinds == [EventKind.ERROR]
        assert sink.events[0].payload["code"] == CONVERSATION_NOT_FOUND
        assert await repository.count_user_messages(conversation.id) == 0
        completion.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, pipeline, principal, sink):
        await pipeline.handle(principal, InboundMessage("no-such-id", "oi"), sink)
        assert sink.events[0].payload["code"] == CONVERSATION_NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   ", None])
    async def test_empty_message(self, pipeline, repository, principal, conversation, sink, message):
        await pipeline.handle(principal, InboundMessage(conversation.id, message), sink)

        assert sink.kinds == [EventKind.ERROR]
        assert sink.events[0].payload["code"] == EMPTY_MESSAGE
        assert await repository.count_user_messages(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_message_too_long(self, pipeline, principal, conversation, sink):
        await pipeline.handle(principal, InboundMessage(conversation.id, "a" * 4001), sink)
        assert sink.events[0].payload["code"] == MESSAGE_TOO_LONG

    @pytest.mark.asyncio
    async def test_reply_failure_keeps_user_message(
        self, pipeline, repository, principal, conversation, sink, completion
    ):
        completion.complete.side_effect = CompletionError("provider down")

        outcome = await pipeline.handle(principal, InboundMessage(conversation.id, "Oi"), sink)

        assert outcome.stage == PipelineStage.ERROR
        assert isinstance(outcome.error, CompletionError)
        assert sink.kinds == [
            EventKind.MESSAGE_SAVED,
            EventKind.CONVERSATION_TITLE_UPDATED,
            EventKind.ASSISTANT_TYPING,
            EventKind.ASSISTANT_TYPING,
            EventKind.ERROR,
        ]
        assert sink.events[3].payload == {"isTyping": False}
        assert sink.events[-1].payload["code"] == MESSAGE_FAILED
        assert await repository.count_user_messages(conversation.id) == 1
        assert len(await repository.recent_messages(conversation.id, 20)) == 1

    @pytest.mark.asyncio
    async def test_title_failure_does_not_stop_reply(
        self, pipeline, repository, principal, conversation, sink, monkeypatch
    ):
        async def broken(conversation_id, title):
            raise RuntimeError("locked")

        monkeypatch.setattr(repository, "update_title", broken)

        outcome = await pipeline.handle(principal, InboundMessage(conversation.id, "Oi"), sink)

        assert outcome.succeeded
        assert outcome.warnings == ["title"]
        assert EventKind.CONVERSATION_TITLE_UPDATED not in sink.kinds
        assert sink.kinds[-1] == EventKind.ASSISTANT_MESSAGE
