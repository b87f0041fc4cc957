"""
Search Service - case-insensitive substring search over members and posts.

Only approved posts are searchable. Queries shorter than MIN_QUERY_LENGTH
(after trimming) are rejected.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from insureconnect.core.exceptions import ValidationError
from insureconnect.db.enums import PostStatus
from insureconnect.db.models import Post, User

MIN_QUERY_LENGTH = 2


class SearchScope(str, Enum):
    ALL = "all"
    POSTS = "posts"
    USERS = "users"


def escape_like_string(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally (escape char: backslash)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def normalize_query(query: str | None) -> str:
    term = (query or "").strip()
    if len(term) < MIN_QUERY_LENGTH:
        raise ValidationError(f"Search query must be at least {MIN_QUERY_LENGTH} characters")
    return term


def _like_pattern(query: str | None) -> str:
    return f"%{escape_like_string(normalize_query(query))}%"


def search_users(
    db: Session,
    query: str | None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[User], int]:
    """Active members whose name or email contains the query."""
    pattern = _like_pattern(query)
    stmt = select(User).where(
        User.is_active.is_(True),
        or_(
            User.name.ilike(pattern, escape="\\"),
            User.email.ilike(pattern, escape="\\"),
        ),
    )
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    users = db.execute(
        stmt.order_by(User.name.asc(), User.id.asc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(users), total


def search_posts(db: Session, query: str | None, limit: int = 10) -> list[Post]:
    """Approved posts whose title or content contains the query, newest first."""
    pattern = _like_pattern(query)
    stmt = (
        select(Post)
        .options(joinedload(Post.author))
        .where(
            Post.status == PostStatus.APPROVED.value,
            or_(
                Post.title.ilike(pattern, escape="\\"),
                Post.content.ilike(pattern, escape="\\"),
            ),
        )
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def search(
    db: Session,
    query: str | None,
    scope: SearchScope = SearchScope.ALL,
    limit: int = 10,
) -> dict:
    """Global search; only the requested sections are present in the result."""
    term = normalize_query(query)
    results: dict = {}
    if scope in (SearchScope.ALL, SearchScope.POSTS):
        results["posts"] = search_posts(db, term, limit=limit)
    if scope in (SearchScope.ALL, SearchScope.USERS):
        results["users"], _ = search_users(db, term, limit=limit)
    return results
