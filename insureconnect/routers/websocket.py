"""
WebSocket gateway for chat, presence and live notifications.

Connection lifecycle:
1. Authenticate the bearer credential (?token=... or Authorization header);
   refuse with close code 4001 before accepting on failure
2. Register the connection and announce presence
3. Process client events one at a time until disconnect
4. Unregister and announce the user offline once their last connection closes

Frames in both directions are JSON objects: {"event": str, "data": ...}.
Database work runs in worker threads so the event loop never blocks on
storage locks.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar
from uuid import UUID

import anyio
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session, sessionmaker

from insureconnect.core.config import settings
from insureconnect.core.deps import get_registry, get_session_factory, resolve_session
from insureconnect.core.exceptions import DomainError, ForbiddenError, ValidationError
from insureconnect.core.security import extract_bearer_token
from insureconnect.core.structured_logging import build_log_context
from insureconnect.core.websocket import ConnectionRegistry, encode_event
from insureconnect.db.session import storage_guard
from insureconnect.schemas.auth import UserSession
from insureconnect.services import chat_service, notification_service, post_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

T = TypeVar("T")

AUTH_FAILED_CLOSE_CODE = 4001


async def _run_db(factory: sessionmaker, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run `fn(db, ...)` in a worker thread with a short-lived session.

    Storage failures surface as TransientStorageError, so the event
    dispatcher reports them as an error frame instead of dropping the socket.
    """

    def _call() -> T:
        with factory() as db, storage_guard(db):
            return fn(db, *args, **kwargs)

    return await anyio.to_thread.run_sync(_call)


def _uuid_field(data: Any, key: str) -> UUID:
    """Accept either {"<key>": "<uuid>"} or a bare "<uuid>" payload."""
    raw = data.get(key) if isinstance(data, dict) else data
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError(f"'{key}' must be a valid id")


class GatewayConnection:
    """Event handlers for one authenticated connection."""

    def __init__(
        self,
        websocket: WebSocket,
        session: UserSession,
        registry: ConnectionRegistry,
        factory: sessionmaker,
    ):
        self.websocket = websocket
        self.session = session
        self.registry = registry
        self.factory = factory
        self.handlers: dict[str, Callable[[Any], Any]] = {
            "ping": self.on_ping,
            "join-chat": self.on_join_chat,
            "leave-chat": self.on_leave_chat,
            "send-message": self.on_send_message,
            "typing-start": self.on_typing_start,
            "typing-stop": self.on_typing_stop,
            "mark-notification-read": self.on_mark_notification_read,
            "like-post": self.on_like_post,
        }

    @property
    def user_id(self) -> UUID:
        return self.session.user_id

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_text(encode_event(event, data))

    async def send_error(self, event: str | None, error: str, detail: str) -> None:
        await self.send("error", {"event": event, "error": error, "detail": detail})

    async def dispatch(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            await self.send_error(None, ValidationError.category, "Frames must be JSON")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.send_error(None, ValidationError.category, "Frame needs an 'event' name")
            return

        event = frame["event"]
        handler = self.handlers.get(event)
        if handler is None:
            await self.send_error(event, ValidationError.category, f"Unknown event '{event}'")
            return

        try:
            await handler(frame.get("data"))
        except DomainError as e:
            await self.send_error(event, e.category, e.message)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def on_ping(self, data: Any) -> None:
        await self.send("pong", {})

    async def on_join_chat(self, data: Any) -> None:
        chat_id = _uuid_field(data, "chat_id")
        if settings.WS_ENFORCE_CHAT_MEMBERSHIP:
            allowed = await _run_db(self.factory, chat_service.is_participant, chat_id, self.user_id)
            if not allowed:
                raise ForbiddenError("Not a participant of this chat")
        self.registry.join_chat(chat_id, self.websocket)
        await self.send("joined-chat", {"chat_id": str(chat_id)})

    async def on_leave_chat(self, data: Any) -> None:
        chat_id = _uuid_field(data, "chat_id")
        self.registry.leave_chat(chat_id, self.websocket)
        await self.send("left-chat", {"chat_id": str(chat_id)})

    async def on_send_message(self, data: Any) -> None:
        """Persist then broadcast; failures go back to the sender only."""
        if not isinstance(data, dict):
            raise ValidationError("send-message needs an object payload")
        try:
            chat_id = _uuid_field(data, "chat_id") if data.get("chat_id") else None
            receiver_id = _uuid_field(data, "receiver_id") if data.get("receiver_id") else None
            size = data.get("attachment_size_bytes")
            await _run_db(
                self.factory,
                chat_service.send_message,
                sender_id=self.user_id,
                content=data.get("content") or "",
                type=data.get("type"),
                chat_id=chat_id,
                receiver_id=receiver_id,
                attachment_size_bytes=int(size) if size is not None else None,
                registry=self.registry,
            )
        except DomainError as e:
            await self.send(
                "message-error",
                {"chat_id": data.get("chat_id"), "error": e.category, "detail": e.message},
            )
        except Exception:
            logger.exception(
                "Message send failed",
                extra=build_log_context(user_id=self.user_id),
            )
            await self.send(
                "message-error",
                {
                    "chat_id": data.get("chat_id"),
                    "error": "internal_error",
                    "detail": "Failed to send message",
                },
            )

    async def _relay_typing(self, data: Any, event: str) -> None:
        chat_id = _uuid_field(data, "chat_id")
        if not self.registry.in_chat(chat_id, self.websocket):
            raise ForbiddenError("Join the chat before sending typing events")
        payload = {"chat_id": str(chat_id), "user_id": str(self.user_id)}
        if event == "user-typing":
            payload["user_name"] = self.session.name
        await self.registry.send_to_chat(chat_id, event, payload, exclude=self.websocket)

    async def on_typing_start(self, data: Any) -> None:
        await self._relay_typing(data, "user-typing")

    async def on_typing_stop(self, data: Any) -> None:
        await self._relay_typing(data, "user-stopped-typing")

    async def on_mark_notification_read(self, data: Any) -> None:
        notification_id = _uuid_field(data, "notification_id")

        def _mark(db: Session) -> int:
            notification_service.mark_read(db, notification_id, self.user_id)
            return notification_service.get_unread_count(db, self.user_id)

        count = await _run_db(self.factory, _mark)
        await self.registry.send_to_user(self.user_id, "unread-count", {"count": count})

    async def on_like_post(self, data: Any) -> None:
        post_id = _uuid_field(data, "post_id")
        liked = await _run_db(
            self.factory,
            post_service.toggle_like,
            post_id,
            self.user_id,
            registry=self.registry,
        )
        await self.registry.broadcast(
            "post-like-updated",
            {"post_id": str(post_id), "user_id": str(self.user_id), "liked": liked},
        )


@router.websocket("/ws")
async def websocket_gateway(
    websocket: WebSocket,
    token: str | None = Query(None),
    registry: ConnectionRegistry = Depends(get_registry),
    factory: sessionmaker = Depends(get_session_factory),
):
    """
    Real-time gateway.

    Server events: online-users, user-online, user-offline, joined-chat,
    left-chat, new-message, message-error, user-typing, user-stopped-typing,
    post-like-updated, notification, unread-count, error, pong.
    """
    credential = token or extract_bearer_token(websocket.headers.get("authorization"))
    try:
        session = await _run_db(factory, resolve_session, credential)
    except DomainError:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Authentication required")
        return

    await websocket.accept()
    connection = GatewayConnection(websocket, session, registry, factory)
    came_online = registry.add(session.user_id, websocket)
    logger.info("Gateway connected", extra=build_log_context(user_id=session.user_id))

    try:
        await connection.send(
            "online-users", [str(u) for u in registry.online_user_ids()]
        )
        unread = await _run_db(factory, notification_service.get_unread_count, session.user_id)
        await connection.send("unread-count", {"count": unread})
        if came_online:
            await registry.broadcast(
                "user-online", {"user_id": str(session.user_id)}, exclude=websocket
            )

        while True:
            raw = await websocket.receive_text()
            await connection.dispatch(raw)
    except WebSocketDisconnect:
        pass
    finally:
        went_offline = registry.remove(session.user_id, websocket)
        logger.info("Gateway disconnected", extra=build_log_context(user_id=session.user_id))
        if went_offline:
            await registry.broadcast("user-offline", {"user_id": str(session.user_id)})
