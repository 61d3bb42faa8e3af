"""
Realtime chat over WebSocket.

Clients connect to ``/ws?token=<identity token>``. Each inbound frame is a
JSON object with a ``type``:

    user_message               {"conversationId", "message"}
    create_conversation        {"title"?}
    get_conversations          {}
    get_conversation           {"conversationId"}
    update_conversation_title  {"conversationId", "title"}
    delete_conversation        {"conversationId"}

Outbound frames are ``{"event": kind, "data": payload}``. Frames on one
connection are handled one at a time, in arrival order.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from amparo.lib.errors import (
    CONVERSATION_NOT_FOUND,
    INTERNAL_ERROR,
    RATE_LIMITED,
    VALIDATION_ERROR,
    get_error_message,
)
from amparo.lib.exceptions import AmparoException, AuthError, OwnershipError
from amparo.lib.security import SlidingWindowRateLimiter, hash_uid
from amparo.services.account_service import AccountService
from amparo.services.conversation_service import ConversationService, conversation_to_dict
from amparo.services.events import EventKind, OutboundEvent
from amparo.services.identity import Principal
from amparo.services.message_pipeline import InboundMessage, MessagePipeline

logger = logging.getLogger(__name__)

ws_router = APIRouter()


class WebSocketSink:
    """EventSink bound to one connection. Sends after the client left are dropped."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self.closed = False

    async def emit(self, event: OutboundEvent) -> None:
        if self.closed:
            return
        try:
            await self._websocket.send_json(event.to_frame())
        except (WebSocketDisconnect, RuntimeError, OSError):
            self.closed = True


def _error_event(error: BaseException) -> OutboundEvent:
    if isinstance(error, OwnershipError):
        code = CONVERSATION_NOT_FOUND
    elif isinstance(error, AmparoException):
        code = error.code
    else:
        code = INTERNAL_ERROR
    return OutboundEvent.error(code, get_error_message(code))


class ConnectionHandler:
    """Dispatches the frames of one authenticated connection."""

    def __init__(
        self,
        principal: Principal,
        sink: WebSocketSink,
        pipeline: MessagePipeline,
        conversations: ConversationService,
        chat_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self.principal = principal
        self.sink = sink
        self._pipeline = pipeline
        self._conversations = conversations
        self._chat_limiter = chat_limiter

    async def dispatch(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            await self.sink.emit(OutboundEvent.error(VALIDATION_ERROR, get_error_message(VALIDATION_ERROR)))
            return

        frame_type = frame.get("type")
        if frame_type == "user_message":
            if self._chat_limiter is not None and not self._chat_limiter.check(self.principal.user_id)[0]:
                await self.sink.emit(OutboundEvent.error(RATE_LIMITED, get_error_message(RATE_LIMITED)))
                return
            await self._pipeline.handle(self.principal, InboundMessage.from_frame(frame), self.sink)
            return

        handler = {
            "create_conversation": self._create_conversation,
            "get_conversations": self._get_conversations,
            "get_conversation": self._get_conversation,
            "update_conversation_title": self._update_title,
            "delete_conversation": self._delete_conversation,
        }.get(frame_type)
        if handler is None:
            await self.sink.emit(OutboundEvent.error(VALIDATION_ERROR, get_error_message(VALIDATION_ERROR)))
            return

        try:
            await self.sink.emit(await handler(frame))
        except AmparoException as e:
            await self.sink.emit(_error_event(e))
        except Exception as e:  # Intentional catch-all: one bad frame must not drop the connection
            logger.error(
                "websocket_frame_failed",
                extra={"user": hash_uid(self.principal.user_id), "type": frame_type, "error": type(e).__name__},
            )
            await self.sink.emit(_error_event(e))

    async def _create_conversation(self, frame: dict[str, Any]) -> OutboundEvent:
        conversation = await self._conversations.create(self.principal.user_id, frame.get("title"))
        return OutboundEvent(EventKind.CONVERSATION_CREATED, {"conversation": conversation_to_dict(conversation)})

    async def _get_conversations(self, frame: dict[str, Any]) -> OutboundEvent:
        items = await self._conversations.list_for_user(self.principal.user_id)
        return OutboundEvent(
            EventKind.CONVERSATIONS_LIST,
            {"conversations": [conversation_to_dict(c) for c in items]},
        )

    async def _get_conversation(self, frame: dict[str, Any]) -> OutboundEvent:
        data = await self._conversations.get_with_messages(self.principal, frame.get("conversationId"))
        return OutboundEvent(EventKind.CONVERSATION_DATA, data)

    async def _update_title(self, frame: dict[str, Any]) -> OutboundEvent:
        conversation = await self._conversations.rename(
            self.principal.user_id, frame.get("conversationId"), frame.get("title")
        )
        return OutboundEvent(EventKind.CONVERSATION_UPDATED, {"conversation": conversation_to_dict(conversation)})

    async def _delete_conversation(self, frame: dict[str, Any]) -> OutboundEvent:
        conversation_id = frame.get("conversationId")
        await self._conversations.delete(self.principal.user_id, conversation_id)
        return OutboundEvent(EventKind.CONVERSATION_DELETED, {"conversationId": conversation_id})


@ws_router.websocket("/ws")
async def chat_socket(websocket: WebSocket, token: str | None = None) -> None:
    accounts: AccountService = websocket.app.state.accounts
    try:
        principal = await accounts.authenticate(token or "")
    except AuthError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except AmparoException as e:
        logger.error("websocket_auth_failed", extra={"error": type(e).__name__})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    sink = WebSocketSink(websocket)
    handler = ConnectionHandler(
        principal,
        sink,
        websocket.app.state.pipeline,
        websocket.app.state.conversations,
        websocket.app.state.chat_rate_limiter,
    )
    user_log = hash_uid(principal.user_id)
    logger.info("websocket_connected", extra={"user": user_log})

    try:
        while not sink.closed:
            try:
                frame = await websocket.receive_json()
            except (KeyError, TypeError, ValueError):
                # Binary frames carry no text; malformed JSON raises ValueError
                await sink.emit(OutboundEvent.error(VALIDATION_ERROR, get_error_message(VALIDATION_ERROR)))
                continue
            await handler.dispatch(frame)
    except WebSocketDisconnect as e:
        logger.info("websocket_disconnected", extra={"user": user_log, "code": e.code})
    finally:
        sink.closed = True
