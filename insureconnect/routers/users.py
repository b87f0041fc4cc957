"""Users router - profiles and presence."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from insureconnect.core.async_utils import run_async
from insureconnect.core.deps import get_current_session, get_db, get_registry
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import Role
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.post import PostListResponse
from insureconnect.schemas.user import UserListResponse, UserRead, UserSummary, UserUpdate
from insureconnect.services import post_service, search_service, user_service

router = APIRouter()


@router.get("", response_model=UserListResponse)
def search_users(
    q: str = Query(..., description="Name or email fragment (at least 2 characters)"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    users, total = search_service.search_users(db, q, page=page, limit=limit)
    return UserListResponse(items=users, page=page, limit=limit, total=total)


@router.get("/me", response_model=UserRead)
def get_me(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return user_service.get_user(db, session.user_id)


@router.patch("/me", response_model=UserRead)
def update_me(
    data: UserUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return user_service.update_profile(
        db,
        session.user_id,
        name=data.name,
        email=str(data.email) if data.email is not None else None,
        avatar_url=data.avatar_url,
    )


@router.post("/me/revoke-sessions")
def revoke_my_sessions(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Invalidate every issued token and drop live gateway connections."""
    token_version = user_service.revoke_sessions(db, session.user_id)
    closed = run_async(registry.close_user(session.user_id))
    return {"token_version": token_version, "connections_closed": closed}


@router.get("/online", response_model=list[UUID])
def list_online_users(
    session: UserSession = Depends(get_current_session),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return registry.online_user_ids()


@router.get("/{user_id}", response_model=UserSummary)
def get_user(
    user_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return user_service.get_user(db, user_id)


@router.get("/{user_id}/posts", response_model=PostListResponse)
def list_user_posts(
    user_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Approved posts; the author and admins also see pending/rejected ones."""
    user_service.get_user(db, user_id)
    include_unapproved = session.user_id == user_id or session.role.has_at_least(Role.ADMIN)
    posts, total = post_service.list_user_posts(
        db, user_id, include_unapproved=include_unapproved, page=page, limit=limit
    )
    return PostListResponse(
        items=post_service.to_post_reads(db, posts, viewer_id=session.user_id),
        page=page,
        limit=limit,
        total=total,
    )
