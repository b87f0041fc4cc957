"""Posts router - feed, submission and engagement."""

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from insureconnect.core.deps import get_current_session, get_db, get_registry
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.post import (
    CommentCreate,
    CommentRead,
    LikeToggleResponse,
    PostCreate,
    PostListResponse,
    PostRead,
)
from insureconnect.services import post_service

router = APIRouter()


@router.get("", response_model=PostListResponse)
def list_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    category: str | None = Query(None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Approved posts, newest first."""
    posts, total = post_service.list_feed(db, page=page, limit=limit, category=category)
    return PostListResponse(
        items=post_service.to_post_reads(db, posts, viewer_id=session.user_id),
        page=page,
        limit=limit,
        total=total,
    )


@router.post("", response_model=PostRead, status_code=status.HTTP_201_CREATED)
def create_post(
    data: PostCreate,
    idempotency_key: str | None = Header(None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Submit a post for review. Charges its token cost up front."""
    post = post_service.submit_post(
        db,
        author_id=session.user_id,
        title=data.title,
        content=data.content,
        category=data.category,
        image_url=data.image_url,
        image_size_bytes=data.image_size_bytes,
        idempotency_key=idempotency_key,
    )
    post = post_service.get_post_or_404(db, post.id)
    return post_service.to_post_reads(db, [post], viewer_id=session.user_id)[0]


@router.get("/{post_id}", response_model=PostRead)
def get_post(
    post_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    post = post_service.get_post(db, post_id, viewer_id=session.user_id, viewer_role=session.role)
    return post_service.to_post_reads(db, [post], viewer_id=session.user_id)[0]


@router.post("/{post_id}/like", response_model=LikeToggleResponse)
def toggle_like(
    post_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    liked = post_service.toggle_like(db, post_id, session.user_id, registry=registry)
    return LikeToggleResponse(liked=liked)


@router.get("/{post_id}/comments", response_model=list[CommentRead])
def list_comments(
    post_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return post_service.list_comments(db, post_id)


@router.post(
    "/{post_id}/comments",
    response_model=CommentRead,
    status_code=status.HTTP_201_CREATED,
)
def add_comment(
    post_id: UUID,
    data: CommentCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return post_service.add_comment(
        db, post_id, session.user_id, data.content, registry=registry
    )
