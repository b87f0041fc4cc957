"""Admin router - moderation queue, token request resolution, stats."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from insureconnect.core.deps import get_db, get_registry, require_role
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import Role
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.post import PostListResponse, PostRead, PostReject
from insureconnect.schemas.token import (
    TokenRequestListResponse,
    TokenRequestRead,
    TokenRequestReject,
)
from insureconnect.schemas.user import AdminStats, AdminUserListResponse, AdminUserRead
from insureconnect.services import post_service, token_request_service, user_service

router = APIRouter()

require_admin = require_role(Role.ADMIN)


@router.get("/stats", response_model=AdminStats)
def get_stats(
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return AdminStats(**post_service.get_admin_stats(db))


@router.get("/users", response_model=AdminUserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Every account with balance, verification flag and post count, newest first."""
    rows, total = user_service.list_users(db, page=page, limit=limit)
    items = [
        AdminUserRead.model_validate(user).model_copy(update={"post_count": post_count})
        for user, post_count in rows
    ]
    return AdminUserListResponse(items=items, page=page, limit=limit, total=total)


# =============================================================================
# Post moderation
# =============================================================================


@router.get("/posts/pending", response_model=PostListResponse)
def list_pending_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Review queue, oldest first."""
    posts, total = post_service.list_pending(db, page=page, limit=limit)
    return PostListResponse(
        items=post_service.to_post_reads(db, posts),
        page=page,
        limit=limit,
        total=total,
    )


@router.post("/posts/{post_id}/approve", response_model=PostRead)
def approve_post(
    post_id: UUID,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    post_service.approve_post(db, post_id, session.user_id, registry=registry)
    post = post_service.get_post_or_404(db, post_id)
    return post_service.to_post_reads(db, [post])[0]


@router.post("/posts/{post_id}/reject", response_model=PostRead)
def reject_post(
    post_id: UUID,
    data: PostReject | None = None,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Reject and refund the post's token cost."""
    post_service.reject_post(
        db,
        post_id,
        session.user_id,
        reason=data.reason if data else None,
        registry=registry,
    )
    post = post_service.get_post_or_404(db, post_id)
    return post_service.to_post_reads(db, [post])[0]


# =============================================================================
# Token requests
# =============================================================================


@router.get("/token-requests", response_model=TokenRequestListResponse)
def list_pending_token_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    items, total = token_request_service.list_pending_requests(db, page=page, limit=limit)
    return TokenRequestListResponse(items=items, page=page, limit=limit, total=total)


@router.post("/token-requests/{request_id}/approve", response_model=TokenRequestRead)
def approve_token_request(
    request_id: UUID,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return token_request_service.approve_request(
        db, request_id, session.user_id, registry=registry
    )


@router.post("/token-requests/{request_id}/reject", response_model=TokenRequestRead)
def reject_token_request(
    request_id: UUID,
    data: TokenRequestReject | None = None,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return token_request_service.reject_request(
        db,
        request_id,
        session.user_id,
        reason=data.reason if data else None,
        registry=registry,
    )
