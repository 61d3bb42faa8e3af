"""
Realtime events sent to the client during message processing.

Events are emitted in a fixed order for each inbound message:

    message_saved
    conversation_title_updated   (first message of a default-titled conversation)
    assistant_typing(true)
    emergency_detected           (only when the assessment is an emergency)
    assistant_typing(false)
    assistant_message

An ``error`` event may replace anything after message_saved. Payload keys
are camelCase because they go straight to the browser client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol


class EventKind(StrEnum):
    MESSAGE_SAVED = "message_saved"
    CONVERSATION_TITLE_UPDATED = "conversation_title_updated"
    ASSISTANT_TYPING = "assistant_typing"
    EMERGENCY_DETECTED = "emergency_detected"
    ASSISTANT_MESSAGE = "assistant_message"
    ERROR = "error"
    # Replies to conversation management frames
    CONVERSATION_CREATED = "conversation_created"
    CONVERSATIONS_LIST = "conversations_list"
    CONVERSATION_DATA = "conversation_data"
    CONVERSATION_UPDATED = "conversation_updated"
    CONVERSATION_DELETED = "conversation_deleted"


def _iso(value: datetime) -> str:
    return value.isoformat()


@dataclass(frozen=True)
class OutboundEvent:
    """A single event for the client: a kind tag plus its JSON payload."""

    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        return {"event": self.kind.value, "data": self.payload}

    @classmethod
    def message_saved(cls, message_id: str, timestamp: datetime) -> OutboundEvent:
        return cls(EventKind.MESSAGE_SAVED, {"messageId": message_id, "timestamp": _iso(timestamp)})

    @classmethod
    def title_updated(cls, conversation_id: str, title: str) -> OutboundEvent:
        return cls(
            EventKind.CONVERSATION_TITLE_UPDATED,
            {"conversationId": conversation_id, "title": title},
        )

    @classmethod
    def typing(cls, is_typing: bool) -> OutboundEvent:
        return cls(EventKind.ASSISTANT_TYPING, {"isTyping": is_typing})

    @classmethod
    def emergency_detected(cls, assessment: dict[str, Any]) -> OutboundEvent:
        return cls(EventKind.EMERGENCY_DETECTED, assessment)

    @classmethod
    def assistant_message(
        cls,
        message_id: str,
        message: str,
        timestamp: datetime,
        emergency_context: dict[str, Any] | None,
    ) -> OutboundEvent:
        return cls(
            EventKind.ASSISTANT_MESSAGE,
            {
                "messageId": message_id,
                "message": message,
                "timestamp": _iso(timestamp),
                "emergencyContext": emergency_context,
            },
        )

    @classmethod
    def error(cls, code: str, message: str) -> OutboundEvent:
        return cls(EventKind.ERROR, {"code": code, "message": message})


class EventSink(Protocol):
    """Destination for outbound events (a WebSocket connection in production)."""

    async def emit(self, event: OutboundEvent) -> None: ...
