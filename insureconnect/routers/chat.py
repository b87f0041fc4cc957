"""Chat router - direct conversations over HTTP."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from insureconnect.core.deps import get_current_session, get_db, get_registry
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.chat import (
    ChatRead,
    ConversationCreate,
    ConversationSummary,
    MessageCreate,
    MessageListResponse,
    MessageRead,
)
from insureconnect.schemas.user import UserSummary
from insureconnect.services import chat_service

router = APIRouter()


@router.get("/conversations", response_model=list[ConversationSummary])
def list_conversations(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Most recently active first, with the peer's online flag."""
    return chat_service.list_conversations(db, session.user_id, registry=registry)


@router.post("/conversations", response_model=ChatRead)
def open_conversation(
    data: ConversationCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    chat = chat_service.get_or_create_direct_chat(db, session.user_id, data.receiver_id)
    return ChatRead(
        id=chat.id,
        is_group=chat.is_group,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        participants=[UserSummary.model_validate(p.user) for p in chat.participants],
    )


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
def list_messages(
    chat_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = chat_service.list_messages(db, chat_id, session.user_id, page=page, limit=limit)
    return MessageListResponse(items=items, page=page, limit=limit, total=total)


@router.post("/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
def send_message(
    data: MessageCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Persist, then broadcast `new-message` to everyone in the chat room."""
    return chat_service.send_message(
        db,
        sender_id=session.user_id,
        content=data.content,
        type=data.type,
        chat_id=data.chat_id,
        receiver_id=data.receiver_id,
        attachment_size_bytes=data.attachment_size_bytes,
        registry=registry,
    )
