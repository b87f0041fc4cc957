"""User account service."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from insureconnect.core.config import settings
from insureconnect.core.exceptions import ConflictError, NotFoundError, ValidationError
from insureconnect.core.structured_logging import build_log_context
from insureconnect.db.enums import Role, TokenTransactionType
from insureconnect.db.models import Post, User
from insureconnect.db.session import storage_guard
from insureconnect.services import token_service

logger = logging.getLogger(__name__)


def create_user(
    db: Session,
    email: str,
    name: str,
    role: Role = Role.CUSTOMER,
    grant_tokens: int | None = None,
    is_verified: bool = False,
) -> User:
    """
    Create a user with a zero balance, then credit the signup grant through
    the ledger so balance == SUM(transactions) from the first row.

    `grant_tokens=None` uses SIGNUP_TOKEN_GRANT; 0 grants nothing.
    """
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not name or not name.strip():
        raise ValidationError("Name is required")
    role_value = role.value if isinstance(role, Role) else str(role)
    if not Role.has_value(role_value):
        raise ValidationError(f"Unknown role '{role_value}'")

    grant = settings.SIGNUP_TOKEN_GRANT if grant_tokens is None else grant_tokens
    if grant < 0:
        raise ValidationError("Signup grant cannot be negative")

    with storage_guard(db):
        user = User(
            email=email,
            name=name.strip(),
            role=role_value,
            token_balance=0,
            is_verified=is_verified,
        )
        db.add(user)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email already registered")

        if grant:
            token_service.apply_credit(
                db,
                user.id,
                grant,
                TokenTransactionType.SIGNUP_BONUS,
                "Welcome bonus tokens",
            )
        db.commit()

    db.refresh(user)
    logger.info("User created (role=%s)", user.role, extra=build_log_context(user_id=user.id))
    return user


def get_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(User.email == (email or "").strip().lower())
    ).scalar_one_or_none()


def revoke_sessions(db: Session, user_id: UUID) -> int:
    """Invalidate every outstanding session token. Returns the new token_version."""
    with storage_guard(db):
        result = db.execute(
            update(User)
            .where(User.id == user_id)
            .values(token_version=User.token_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("User not found")
        db.commit()
    return db.execute(select(User.token_version).where(User.id == user_id)).scalar_one()


def update_profile(
    db: Session,
    user_id: UUID,
    name: str | None = None,
    email: str | None = None,
    avatar_url: str | None = None,
) -> User:
    """
    Update the caller's own profile. Fields left as None are unchanged.

    Raises:
        ValidationError: blank name or email
        ConflictError: email belongs to another account
        NotFoundError: user does not exist
    """
    with storage_guard(db):
        user = get_user(db, user_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Name cannot be empty")
            user.name = name.strip()
        if email is not None:
            email = email.strip().lower()
            if not email or "@" not in email:
                raise ValidationError("A valid email is required")
            taken = db.execute(
                select(User.id).where(User.email == email, User.id != user_id)
            ).first()
            if taken:
                raise ConflictError("Email is already taken")
            user.email = email
        if avatar_url is not None:
            user.avatar_url = avatar_url.strip() or None
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email is already taken")
        db.commit()

    logger.info("Profile updated", extra=build_log_context(user_id=user_id))
    return user


def list_users(db: Session, page: int = 1, limit: int = 20) -> tuple[list[tuple[User, int]], int]:
    """Every account, newest first, with the number of posts each has written."""
    post_counts = (
        select(Post.author_id, func.count(Post.id).label("post_count"))
        .group_by(Post.author_id)
        .subquery()
    )
    rows = db.execute(
        select(User, func.coalesce(post_counts.c.post_count, 0))
        .outerjoin(post_counts, post_counts.c.author_id == User.id)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    total = db.execute(select(func.count(User.id))).scalar_one()
    return [(user, count) for user, count in rows], total
