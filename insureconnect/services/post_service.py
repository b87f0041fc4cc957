"""
Post service - submission, moderation and engagement.

Moderation lifecycle:
    PENDING -> APPROVED
    PENDING -> REJECTED (refunds the captured token_cost)

Each transition is a conditional UPDATE guarded by `status = 'PENDING'`,
executed in the same transaction as its refund and its notification row.
A second approve/reject on a resolved post matches no row and fails with
InvalidStateError, so a post is refunded and notified at most once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from insureconnect.core.config import settings
from insureconnect.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from insureconnect.core.structured_logging import build_log_context
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import (
    NotificationType,
    PostCategory,
    PostStatus,
    Role,
    TokenTransactionType,
)
from insureconnect.db.models import Post, PostComment, PostLike, User
from insureconnect.db.session import storage_guard
from insureconnect.schemas.post import PostRead
from insureconnect.schemas.user import UserSummary
from insureconnect.services import notification_service, token_service

logger = logging.getLogger(__name__)


# =============================================================================
# Submission
# =============================================================================


def _validate_submission(title: str, content: str, category: str) -> PostCategory:
    if not title or not title.strip():
        raise ValidationError("Title is required")
    if not content or not content.strip():
        raise ValidationError("Content is required")
    if len(content) > settings.POST_CONTENT_MAX_LENGTH:
        raise ValidationError(
            f"Content must be at most {settings.POST_CONTENT_MAX_LENGTH} characters"
        )
    parsed = PostCategory.parse(category)
    if parsed is None:
        raise ValidationError(f"Unknown category '{category}'")
    return parsed


def submit_post(
    db: Session,
    author_id: UUID,
    title: str,
    content: str,
    category: str,
    image_url: str | None = None,
    image_size_bytes: int | None = None,
    idempotency_key: str | None = None,
) -> Post:
    """
    Create a PENDING post and charge its token cost in one unit.

    Cost = DEFAULT_POST_TOKEN_COST + 1 token per started KB of image.

    Raises:
        ValidationError: empty fields, content too long, unknown category
        InsufficientBalanceError: author cannot afford the post
    """
    parsed_category = _validate_submission(title, content, category)
    cost = token_service.post_token_cost(image_size_bytes)

    with storage_guard(db):
        replay = token_service.find_by_idempotency_key(db, author_id, idempotency_key)
        if replay is not None:
            if replay.post_id is None:
                raise ConflictError("Idempotency key already used for another charge")
            db.rollback()
            return get_post_or_404(db, replay.post_id)

        post = Post(
            title=title.strip(),
            content=content,
            category=parsed_category.value,
            image_url=image_url,
            image_size_bytes=image_size_bytes,
            author_id=author_id,
            token_cost=cost,
            status=PostStatus.PENDING.value,
        )
        db.add(post)
        db.flush()

        token_service.apply_debit(
            db,
            author_id,
            cost,
            TokenTransactionType.POST_CREATION,
            f"Post creation: {post.title}",
            post_id=post.id,
            idempotency_key=idempotency_key,
        )
        db.commit()

    logger.info(
        "Post submitted for review (cost=%s)",
        cost,
        extra=build_log_context(user_id=author_id, post_id=post.id),
    )
    return post


# =============================================================================
# Moderation
# =============================================================================


def _transition(
    db: Session,
    post_id: UUID,
    reviewer_id: UUID,
    to_status: PostStatus,
    reason: str | None = None,
) -> Post:
    """Compare-and-set PENDING -> to_status. Runs inside the caller's unit."""
    now = datetime.now(timezone.utc)
    result = db.execute(
        update(Post)
        .where(Post.id == post_id, Post.status == PostStatus.PENDING.value)
        .values(
            status=to_status.value,
            reviewed_by_id=reviewer_id,
            reviewed_at=now,
            rejection_reason=reason,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.execute(
            select(Post.status).where(Post.id == post_id)
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError("Post not found")
        raise InvalidStateError(f"Post already {current.lower()}")

    return db.execute(
        select(Post)
        .where(Post.id == post_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


def approve_post(
    db: Session,
    post_id: UUID,
    reviewer_id: UUID,
    registry: ConnectionRegistry | None = None,
) -> Post:
    """
    Approve a pending post and notify its author. No token movement.

    Raises:
        NotFoundError: post does not exist
        InvalidStateError: post is already approved or rejected
    """
    with storage_guard(db):
        post = _transition(db, post_id, reviewer_id, PostStatus.APPROVED)
        notification = notification_service.build_notification(
            post.author_id,
            NotificationType.POST_APPROVED,
            "Post Approved",
            f'Your post "{post.title}" has been approved and is now visible to everyone.',
        )
        db.add(notification)
        db.commit()

    logger.info(
        "Post approved",
        extra=build_log_context(user_id=reviewer_id, post_id=post_id),
    )
    notification_service.push_notification(db, notification, registry)
    return post


def reject_post(
    db: Session,
    post_id: UUID,
    reviewer_id: UUID,
    reason: str | None = None,
    registry: ConnectionRegistry | None = None,
) -> Post:
    """
    Reject a pending post, refund its token_cost and notify its author.

    Raises:
        NotFoundError: post does not exist
        InvalidStateError: post is already approved or rejected
    """
    reason = reason.strip() if reason and reason.strip() else None

    with storage_guard(db):
        post = _transition(db, post_id, reviewer_id, PostStatus.REJECTED, reason)
        token_service.apply_credit(
            db,
            post.author_id,
            post.token_cost,
            TokenTransactionType.REFUND,
            f"Post rejected: {post.title}",
            post_id=post.id,
        )
        message = f'Your post "{post.title}" was rejected.'
        if reason:
            message += f" Reason: {reason}"
        message += f" Your {post.token_cost} tokens have been refunded."
        notification = notification_service.build_notification(
            post.author_id,
            NotificationType.POST_REJECTED,
            "Post Rejected",
            message,
        )
        db.add(notification)
        db.commit()

    logger.info(
        "Post rejected, refunded %s tokens",
        post.token_cost,
        extra=build_log_context(user_id=reviewer_id, post_id=post_id),
    )
    notification_service.push_notification(db, notification, registry)
    return post


# =============================================================================
# Reads
# =============================================================================


def get_post_or_404(db: Session, post_id: UUID) -> Post:
    post = db.execute(
        select(Post).options(joinedload(Post.author)).where(Post.id == post_id)
    ).scalar_one_or_none()
    if not post:
        raise NotFoundError("Post not found")
    return post


def get_post(
    db: Session,
    post_id: UUID,
    viewer_id: UUID | None = None,
    viewer_role: Role | None = None,
) -> Post:
    """Approved posts are public; others are visible to their author and admins."""
    post = get_post_or_404(db, post_id)
    if post.status != PostStatus.APPROVED.value:
        is_author = viewer_id is not None and post.author_id == viewer_id
        is_admin = viewer_role is not None and Role(viewer_role).has_at_least(Role.ADMIN)
        if not (is_author or is_admin):
            raise NotFoundError("Post not found")
    return post


def _paginate(db: Session, query, page: int, limit: int) -> tuple[list[Post], int]:
    total = db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    items = db.execute(
        query.options(joinedload(Post.author)).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total


def list_feed(
    db: Session,
    page: int = 1,
    limit: int = 10,
    category: str | None = None,
) -> tuple[list[Post], int]:
    """Approved posts, newest first."""
    query = select(Post).where(Post.status == PostStatus.APPROVED.value)
    if category:
        parsed = PostCategory.parse(category)
        if parsed is None:
            raise ValidationError(f"Unknown category '{category}'")
        query = query.where(Post.category == parsed.value)
    return _paginate(db, query.order_by(Post.created_at.desc()), page, limit)


def list_pending(db: Session, page: int = 1, limit: int = 20) -> tuple[list[Post], int]:
    """Review queue, oldest first."""
    query = (
        select(Post)
        .where(Post.status == PostStatus.PENDING.value)
        .order_by(Post.created_at.asc())
    )
    return _paginate(db, query, page, limit)


def list_user_posts(
    db: Session,
    author_id: UUID,
    include_unapproved: bool = False,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Post], int]:
    query = select(Post).where(Post.author_id == author_id)
    if not include_unapproved:
        query = query.where(Post.status == PostStatus.APPROVED.value)
    return _paginate(db, query.order_by(Post.created_at.desc()), page, limit)


def to_post_reads(db: Session, posts: list[Post], viewer_id: UUID | None = None) -> list[PostRead]:
    """Attach like/comment counts and the viewer's like flag."""
    if not posts:
        return []
    ids = [p.id for p in posts]

    like_counts = dict(
        db.execute(
            select(PostLike.post_id, func.count())
            .where(PostLike.post_id.in_(ids))
            .group_by(PostLike.post_id)
        ).all()
    )
    comment_counts = dict(
        db.execute(
            select(PostComment.post_id, func.count())
            .where(PostComment.post_id.in_(ids))
            .group_by(PostComment.post_id)
        ).all()
    )
    liked: set[UUID] = set()
    if viewer_id is not None:
        liked = set(
            db.execute(
                select(PostLike.post_id).where(
                    PostLike.post_id.in_(ids), PostLike.user_id == viewer_id
                )
            ).scalars()
        )

    return [
        PostRead(
            id=p.id,
            title=p.title,
            content=p.content,
            category=p.category,
            image_url=p.image_url,
            token_cost=p.token_cost,
            status=p.status,
            rejection_reason=p.rejection_reason,
            reviewed_by_id=p.reviewed_by_id,
            reviewed_at=p.reviewed_at,
            created_at=p.created_at,
            author=UserSummary.model_validate(p.author),
            likes=like_counts.get(p.id, 0),
            comments=comment_counts.get(p.id, 0),
            is_liked=p.id in liked,
        )
        for p in posts
    ]


# =============================================================================
# Engagement (approved posts only)
# =============================================================================


def _get_approved(db: Session, post_id: UUID) -> Post:
    post = db.get(Post, post_id)
    if not post or post.status != PostStatus.APPROVED.value:
        raise NotFoundError("Post not found")
    return post


def toggle_like(
    db: Session,
    post_id: UUID,
    user_id: UUID,
    registry: ConnectionRegistry | None = None,
) -> bool:
    """Like or unlike. Returns the new liked state."""
    notification = None
    with storage_guard(db):
        post = _get_approved(db, post_id)
        existing = db.execute(
            select(PostLike).where(PostLike.post_id == post_id, PostLike.user_id == user_id)
        ).scalar_one_or_none()

        if existing:
            db.delete(existing)
            db.commit()
            return False

        db.add(PostLike(post_id=post_id, user_id=user_id))
        if post.author_id != user_id:
            liker = db.get(User, user_id)
            notification = notification_service.build_notification(
                post.author_id,
                NotificationType.LIKE,
                "New Like",
                f'{liker.name if liker else "Someone"} liked your post "{post.title}"',
            )
            db.add(notification)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request from the same user already liked it
            db.rollback()
            return True

    if notification is not None:
        notification_service.push_notification(db, notification, registry)
    return True


def add_comment(
    db: Session,
    post_id: UUID,
    user_id: UUID,
    content: str,
    registry: ConnectionRegistry | None = None,
) -> PostComment:
    if not content or not content.strip():
        raise ValidationError("Comment cannot be empty")

    notification = None
    with storage_guard(db):
        post = _get_approved(db, post_id)
        comment = PostComment(post_id=post_id, user_id=user_id, content=content.strip())
        db.add(comment)
        if post.author_id != user_id:
            commenter = db.get(User, user_id)
            notification = notification_service.build_notification(
                post.author_id,
                NotificationType.COMMENT,
                "New Comment",
                f'{commenter.name if commenter else "Someone"} commented on your post "{post.title}"',
            )
            db.add(notification)
        db.commit()

    if notification is not None:
        notification_service.push_notification(db, notification, registry)
    return db.execute(
        select(PostComment).options(joinedload(PostComment.user)).where(PostComment.id == comment.id)
    ).scalar_one()


def list_comments(db: Session, post_id: UUID) -> list[PostComment]:
    """Oldest first."""
    _get_approved(db, post_id)
    return list(
        db.execute(
            select(PostComment)
            .options(joinedload(PostComment.user))
            .where(PostComment.post_id == post_id)
            .order_by(PostComment.created_at.asc())
        ).scalars()
    )


# =============================================================================
# Admin dashboard
# =============================================================================


def get_admin_stats(db: Session) -> dict:
    return {
        "total_users": db.execute(select(func.count()).select_from(User)).scalar_one(),
        "total_posts": db.execute(select(func.count()).select_from(Post)).scalar_one(),
        "pending_posts": db.execute(
            select(func.count()).select_from(Post).where(Post.status == PostStatus.PENDING.value)
        ).scalar_one(),
        "total_tokens": token_service.total_tokens_issued(db),
    }
