"""
Chat service - 1:1 conversations and message persistence.

Direct chats are unique per participant pair through `chats.pair_key`.
Messages get a per-chat `seq` from `chats.last_seq`; persisting a message
and broadcasting it happen under the chat's ordering lock, so every room
member observes messages in seq order.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from insureconnect.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from insureconnect.core.structured_logging import build_log_context
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import MessageType, TokenTransactionType
from insureconnect.db.models import Chat, ChatParticipant, Message, User
from insureconnect.db.session import storage_guard
from insureconnect.schemas.chat import MessageRead
from insureconnect.services import token_service

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000


def pair_key(user_a: UUID, user_b: UUID) -> str:
    """Order-independent key for a participant pair."""
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}:{high}"


# =============================================================================
# Conversations
# =============================================================================


def _find_by_pair(db: Session, key: str) -> Chat | None:
    return db.execute(
        select(Chat).options(joinedload(Chat.participants)).where(Chat.pair_key == key)
    ).unique().scalar_one_or_none()


def get_or_create_direct_chat(db: Session, user_id: UUID, peer_id: UUID) -> Chat:
    """
    Return the 1:1 chat between two users, creating it on first contact.

    Raises:
        ValidationError: user tried to chat with themselves
        NotFoundError: peer does not exist
    """
    if user_id == peer_id:
        raise ValidationError("Cannot start a conversation with yourself")

    key = pair_key(user_id, peer_id)
    existing = _find_by_pair(db, key)
    if existing:
        return existing

    if db.get(User, peer_id) is None:
        raise NotFoundError("User not found")

    with storage_guard(db):
        chat = Chat(
            is_group=False,
            pair_key=key,
            participants=[
                ChatParticipant(user_id=user_id),
                ChatParticipant(user_id=peer_id),
            ],
        )
        db.add(chat)
        try:
            db.commit()
        except IntegrityError:
            # Both sides opened the conversation at once; keep the winner's row
            db.rollback()
            existing = _find_by_pair(db, key)
            if existing is None:
                raise
            return existing

    logger.info("Direct chat created", extra=build_log_context(user_id=user_id, chat_id=chat.id))
    return chat


def is_participant(db: Session, chat_id: UUID, user_id: UUID) -> bool:
    return (
        db.execute(
            select(ChatParticipant.id).where(
                ChatParticipant.chat_id == chat_id,
                ChatParticipant.user_id == user_id,
            )
        ).first()
        is not None
    )


def get_chat_for_participant(db: Session, chat_id: UUID, user_id: UUID) -> Chat:
    """
    Raises:
        NotFoundError: chat does not exist
        ForbiddenError: user is not a participant
    """
    chat = db.execute(
        select(Chat).options(joinedload(Chat.participants)).where(Chat.id == chat_id)
    ).unique().scalar_one_or_none()
    if not chat:
        raise NotFoundError("Chat not found")
    if not any(p.user_id == user_id for p in chat.participants):
        raise ForbiddenError("Not a participant of this chat")
    return chat


def list_conversations(
    db: Session,
    user_id: UUID,
    registry: ConnectionRegistry | None = None,
) -> list[dict]:
    """Conversations for the sidebar, most recently active first."""
    chats = db.execute(
        select(Chat)
        .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .where(ChatParticipant.user_id == user_id)
        .order_by(Chat.updated_at.desc())
    ).scalars().all()

    conversations = []
    for chat in chats:
        other = db.execute(
            select(User)
            .join(ChatParticipant, ChatParticipant.user_id == User.id)
            .where(ChatParticipant.chat_id == chat.id, User.id != user_id)
        ).scalars().first()
        last = db.execute(
            select(Message)
            .where(Message.chat_id == chat.id)
            .order_by(Message.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        conversations.append(
            {
                "id": chat.id,
                "participant": other,
                "last_message": last.content if last else "",
                "timestamp": last.created_at if last else chat.updated_at,
                "online": bool(other and registry and registry.is_online(other.id)),
            }
        )
    return conversations


# =============================================================================
# Messages
# =============================================================================


def list_messages(
    db: Session,
    chat_id: UUID,
    user_id: UUID,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Message], int]:
    """Page 1 is the most recent window; each page is returned oldest first."""
    get_chat_for_participant(db, chat_id, user_id)

    total = db.execute(
        select(func.count()).select_from(Message).where(Message.chat_id == chat_id)
    ).scalar_one()
    items = db.execute(
        select(Message)
        .options(joinedload(Message.sender))
        .where(Message.chat_id == chat_id)
        .order_by(Message.seq.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(reversed(items)), total


def message_payload(message: Message) -> dict:
    return MessageRead.model_validate(message).model_dump(mode="json")


def send_message(
    db: Session,
    sender_id: UUID,
    content: str,
    type: str | None = None,
    chat_id: UUID | None = None,
    receiver_id: UUID | None = None,
    attachment_size_bytes: int | None = None,
    registry: ConnectionRegistry | None = None,
) -> Message:
    """
    Persist a message, then broadcast it as `new-message` to the chat room.

    Broadcast happens only after the commit and under the chat's ordering
    lock; a failed write raises and nothing is broadcast.

    Raises:
        ValidationError: empty/oversized content, unknown type, no target
        NotFoundError: chat or receiver does not exist
        ForbiddenError: sender is not a participant
        InsufficientBalanceError: attachment cost exceeds the sender's balance
    """
    if not content or not content.strip():
        raise ValidationError("Message content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    message_type = MessageType.parse(type)
    if message_type is None:
        raise ValidationError(f"Unknown message type '{type}'")

    if chat_id is not None:
        chat = get_chat_for_participant(db, chat_id, sender_id)
    elif receiver_id is not None:
        chat = get_or_create_direct_chat(db, sender_id, receiver_id)
    else:
        raise ValidationError("Either chat_id or receiver_id is required")

    if receiver_id is None:
        receiver_id = next(
            (p.user_id for p in chat.participants if p.user_id != sender_id), None
        )
    elif not any(p.user_id == receiver_id for p in chat.participants):
        raise ValidationError("Receiver is not a participant of this chat")

    attachment_cost = 0
    if message_type is not MessageType.TEXT:
        attachment_cost = token_service.file_token_cost(attachment_size_bytes)

    # Release the read transaction before queueing on the chat lock
    db.commit()

    lock = registry.chat_lock(chat.id) if registry is not None else nullcontext()
    with lock:
        with storage_guard(db):
            if attachment_cost:
                token_service.apply_debit(
                    db,
                    sender_id,
                    attachment_cost,
                    TokenTransactionType.FILE_UPLOAD,
                    f"Chat attachment ({message_type.value.lower()})",
                )

            now = datetime.now(timezone.utc)
            db.execute(
                update(Chat)
                .where(Chat.id == chat.id)
                .values(last_seq=Chat.last_seq + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            seq = db.execute(select(Chat.last_seq).where(Chat.id == chat.id)).scalar_one()

            message = Message(
                chat_id=chat.id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                type=message_type.value,
                seq=seq,
                attachment_size_bytes=attachment_size_bytes,
                created_at=now,
            )
            db.add(message)
            db.flush()
            payload = message_payload(message)
            db.commit()

        logger.info(
            "Message persisted (seq=%s)",
            seq,
            extra=build_log_context(user_id=sender_id, chat_id=chat.id),
        )
        if registry is not None:
            registry.push_to_chat(chat.id, "new-message", payload)

    return message
