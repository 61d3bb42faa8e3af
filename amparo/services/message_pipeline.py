"""
Realtime message pipeline.

Turns one inbound chat message into an encrypted, persisted exchange with
the assistant, emitting progress events to the client along the way.

Stages (ERROR is reachable from any of them):

    RECEIVED -> VALIDATED -> PERSISTED_USER_MSG -> TITLE_MAYBE_UPDATED
    -> CONTEXT_ASSEMBLED -> RISK_ASSESSED -> REPLY_REQUESTED
    -> REPLY_PERSISTED -> EMITTED -> DONE

Failure policy:
- Validation or ownership failure: one error event, nothing written.
- Persisting the user message, requesting or persisting the reply:
  typing indicator cleared, one generic error event, run halts. Writes
  that already happened stand.
- Title update, per-message history decryption and pattern recording are
  best effort: failures are logged and the run continues.
- Risk classification never fails the run; the classifier falls back to
  low risk on its own.

Plaintext exists only in memory for the duration of one run and is never
logged. Each run derives the user's key once, in a worker thread.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from amparo.config import Settings
from amparo.core.step_result import StepResult
from amparo.lib.encryption import EncryptionSession
from amparo.lib.errors import CONVERSATION_NOT_FOUND, MESSAGE_FAILED, get_error_message
from amparo.lib.exceptions import AmparoException, OwnershipError, ValidationError
from amparo.lib.security import MessageValidator, hash_uid
from amparo.models import Conversation, Message
from amparo.models.conversation import ROLE_ASSISTANT, ROLE_USER
from amparo.services.assistant_service import AssistantService
from amparo.services.chat_repository import ChatRepository
from amparo.services.completion import ChatTurn
from amparo.services.context_service import ContextAssembler, ConversationContext, decrypt_history
from amparo.services.events import EventSink, OutboundEvent
from amparo.services.identity import Principal
from amparo.services.risk_service import RiskAssessment, RiskClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

TITLE_MAX_LENGTH = 50


class PipelineStage(StrEnum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PERSISTED_USER_MSG = "persisted_user_msg"
    TITLE_MAYBE_UPDATED = "title_maybe_updated"
    CONTEXT_ASSEMBLED = "context_assembled"
    RISK_ASSESSED = "risk_assessed"
    REPLY_REQUESTED = "reply_requested"
    REPLY_PERSISTED = "reply_persisted"
    EMITTED = "emitted"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class InboundMessage:
    conversation_id: Any
    message: Any

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> InboundMessage:
        return cls(conversation_id=frame.get("conversationId"), message=frame.get("message"))


@dataclass
class PipelineOutcome:
    """Summary of one run, mainly for logging and tests."""

    stage: PipelineStage = PipelineStage.RECEIVED
    user_message_id: str | None = None
    assistant_message_id: str | None = None
    assessment: RiskAssessment | None = None
    error: BaseException | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.stage == PipelineStage.DONE


def derive_title(message: str) -> str:
    """First 50 characters of the stripped message, with an ellipsis if cut."""
    text = message.strip()
    if len(text) > TITLE_MAX_LENGTH:
        return text[:TITLE_MAX_LENGTH] + "..."
    return text


async def _attempt(step: Callable[[], Awaitable[T]]) -> StepResult[T]:
    try:
        return StepResult.success(await step())
    except Exception as e:  # Intentional catch-all: every step failure is routed through the policy
        return StepResult.failure(e)


class MessagePipeline:
    """
    Orchestrates one inbound message end to end.

    All collaborators are injected; the pipeline holds no per-user state
    between runs and may be shared by every connection.
    """

    def __init__(
        self,
        settings: Settings,
        repository: ChatRepository,
        context_assembler: ContextAssembler,
        classifier: RiskClassifier,
        assistant: AssistantService,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._context = context_assembler
        self._classifier = classifier
        self._assistant = assistant

    async def handle(
        self,
        principal: Principal,
        inbound: InboundMessage,
        sink: EventSink,
    ) -> PipelineOutcome:
        outcome = PipelineOutcome()
        user_log = hash_uid(principal.user_id)

        # 1. Validate
        validated = await _attempt(lambda: self._validate(principal, inbound))
        if not validated.ok:
            return await self._reject(sink, outcome, validated.error)
        conversation, text = validated.unwrap()
        outcome.stage = PipelineStage.VALIDATED

        typing = False
        try:
            salt = await self._repository.ensure_salt(principal.user_id)
            crypto = await EncryptionSession(
                principal.external_uid, salt, self._settings.master_secret
            ).prepare()

            # 2. Persist the user message
            saved = await self._repository.insert_message(
                conversation.id, ROLE_USER, crypto.encrypt_data(text)
            )
            outcome.user_message_id = saved.id
            outcome.stage = PipelineStage.PERSISTED_USER_MSG
            await sink.emit(OutboundEvent.message_saved(saved.id, saved.timestamp))

            # 3. Title (best effort)
            first = await _attempt(lambda: self._maybe_update_title(conversation, text, sink))
            is_first_message = bool(first.value)
            if not first.ok:
                self._warn(outcome, "title", first.error, user_log)
            outcome.stage = PipelineStage.TITLE_MAYBE_UPDATED

            # 4. History and context
            history = await self._load_history(conversation.id, saved, crypto)
            context = await self._context.assemble(
                principal.user_id, crypto, is_first_message=is_first_message
            )
            outcome.stage = PipelineStage.CONTEXT_ASSEMBLED

            # 5. Risk
            await sink.emit(OutboundEvent.typing(True))
            typing = True
            assessment = await self._classifier.detect_emergency(text, history)
            outcome.assessment = assessment
            if assessment.is_emergency:
                await self._handle_emergency(principal, assessment, context, sink, user_log)
            outcome.stage = PipelineStage.RISK_ASSESSED

            # 6. Reply
            reply = await self._assistant.generate_reply(text, context, history)
            outcome.stage = PipelineStage.REPLY_REQUESTED
            await sink.emit(OutboundEvent.typing(False))
            typing = False

            # 7. Persist and emit the reply
            stored = await self._repository.insert_message(
                conversation.id, ROLE_ASSISTANT, crypto.encrypt_data(reply)
            )
            outcome.assistant_message_id = stored.id
            outcome.stage = PipelineStage.REPLY_PERSISTED
            await sink.emit(
                OutboundEvent.assistant_message(
                    stored.id,
                    reply,
                    stored.timestamp,
                    assessment.to_dict() if assessment.is_emergency else None,
                )
            )
            outcome.stage = PipelineStage.EMITTED

        except Exception as e:  # Intentional catch-all: the connection must survive any pipeline failure
            logger.error(
                "message_pipeline_failed",
                extra={"user": user_log, "stage": outcome.stage.value, "error": type(e).__name__},
            )
            if typing:
                await sink.emit(OutboundEvent.typing(False))
            await sink.emit(OutboundEvent.error(MESSAGE_FAILED, get_error_message(MESSAGE_FAILED)))
            outcome.error = e
            outcome.stage = PipelineStage.ERROR
            return outcome

        # 8. Patterns (best effort)
        if assessment.identified_patterns:
            recorded = await _attempt(
                lambda: self._record_patterns(principal.user_id, assessment.identified_patterns)
            )
            if not recorded.ok:
                self._warn(outcome, "patterns", recorded.error, user_log)

        outcome.stage = PipelineStage.DONE
        logger.info(
            "message_processed",
            extra={"user": user_log, "risk": assessment.risk_level.value, "warnings": len(outcome.warnings)},
        )
        return outcome

    # =========================================================================
    # Steps
    # =========================================================================

    async def _validate(self, principal: Principal, inbound: InboundMessage) -> tuple[Conversation, str]:
        text = MessageValidator.validate(inbound.message, self._settings.max_message_length)
        if not inbound.conversation_id:
            raise ValidationError("conversation id is required")
        conversation = await self._repository.get_owned_conversation(
            principal.user_id, inbound.conversation_id
        )
        return conversation, text

    async def _maybe_update_title(self, conversation: Conversation, text: str, sink: EventSink) -> bool:
        """Returns whether the saved message is the conversation's first user message."""
        count = await self._repository.count_user_messages(conversation.id)
        is_first = count == 1
        if is_first and conversation.has_default_title:
            title = derive_title(text)
            await self._repository.update_title(conversation.id, title)
            await sink.emit(OutboundEvent.title_updated(conversation.id, title))
        return is_first

    async def _load_history(
        self,
        conversation_id: str,
        saved: Message,
        crypto: EncryptionSession,
    ) -> list[ChatTurn]:
        rows = await self._repository.recent_messages(conversation_id, self._settings.history_window)
        return decrypt_history((row for row in rows if row.id != saved.id), crypto)

    async def _handle_emergency(
        self,
        principal: Principal,
        assessment: RiskAssessment,
        context: ConversationContext,
        sink: EventSink,
        user_log: str,
    ) -> None:
        logger.warning("emergency_detected", extra={"user": user_log, "risk": assessment.risk_level.value})
        await sink.emit(OutboundEvent.emergency_detected(assessment.to_dict()))
        await self._repository.set_risk_level(principal.user_id, assessment.risk_level.value)
        context.risk_level = assessment.risk_level.value

    async def _record_patterns(self, user_id: str, patterns: list[str]) -> None:
        await self._repository.add_patterns(user_id, patterns)
        await self._context.invalidate(user_id)

    # =========================================================================
    # Failure helpers
    # =========================================================================

    async def _reject(
        self,
        sink: EventSink,
        outcome: PipelineOutcome,
        error: BaseException | None,
    ) -> PipelineOutcome:
        code = error.code if isinstance(error, AmparoException) else MESSAGE_FAILED
        if isinstance(error, OwnershipError):
            code = CONVERSATION_NOT_FOUND
        await sink.emit(OutboundEvent.error(code, get_error_message(code)))
        if not isinstance(error, AmparoException):
            logger.error("message_validation_failed", extra={"error": type(error).__name__})
        outcome.error = error
        outcome.stage = PipelineStage.ERROR
        return outcome

    @staticmethod
    def _warn(outcome: PipelineOutcome, step: str, error: BaseException | None, user_log: str) -> None:
        logger.warning(
            "message_pipeline_step_failed",
            extra={"user": user_log, "step": step, "error": type(error).__name__},
        )
        outcome.warnings.append(step)
