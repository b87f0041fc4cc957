"""
Token request service - user top-up requests resolved once by an admin.

pending -> approved (credits `amount` as PURCHASE in the same transaction)
pending -> rejected (no token movement)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from insureconnect.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from insureconnect.core.structured_logging import build_log_context
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import NotificationType, TokenRequestStatus, TokenTransactionType
from insureconnect.db.models import TokenRequest
from insureconnect.db.session import storage_guard
from insureconnect.services import notification_service, token_service

logger = logging.getLogger(__name__)


def create_request(
    db: Session,
    user_id: UUID,
    amount: int,
    price: Decimal,
    description: str | None = None,
) -> TokenRequest:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer")
    if price is None or Decimal(price) <= 0:
        raise ValidationError("Price must be positive")

    with storage_guard(db):
        request = TokenRequest(
            user_id=user_id,
            amount=amount,
            price=Decimal(price),
            description=(description or "").strip() or f"Request for {amount} tokens",
            status=TokenRequestStatus.PENDING.value,
        )
        db.add(request)
        db.commit()

    logger.info("Token request created", extra=build_log_context(user_id=user_id))
    return request


def _paginate(db: Session, query, page: int, limit: int) -> tuple[list[TokenRequest], int]:
    total = db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    items = db.execute(query.offset((page - 1) * limit).limit(limit)).scalars().all()
    return list(items), total


def list_user_requests(
    db: Session, user_id: UUID, page: int = 1, limit: int = 20
) -> tuple[list[TokenRequest], int]:
    query = (
        select(TokenRequest)
        .where(TokenRequest.user_id == user_id)
        .order_by(TokenRequest.created_at.desc())
    )
    return _paginate(db, query, page, limit)


def list_pending_requests(
    db: Session, page: int = 1, limit: int = 20
) -> tuple[list[TokenRequest], int]:
    """Oldest first."""
    query = (
        select(TokenRequest)
        .where(TokenRequest.status == TokenRequestStatus.PENDING.value)
        .order_by(TokenRequest.created_at.asc())
    )
    return _paginate(db, query, page, limit)


def _resolve(
    db: Session,
    request_id: UUID,
    admin_id: UUID,
    to_status: TokenRequestStatus,
    reason: str | None = None,
) -> TokenRequest:
    now = datetime.now(timezone.utc)
    result = db.execute(
        update(TokenRequest)
        .where(
            TokenRequest.id == request_id,
            TokenRequest.status == TokenRequestStatus.PENDING.value,
        )
        .values(
            status=to_status.value,
            reviewed_by_id=admin_id,
            reviewed_at=now,
            rejection_reason=reason,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.execute(
            select(TokenRequest.status).where(TokenRequest.id == request_id)
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError("Token request not found")
        raise InvalidStateError(f"Token request already {current}")

    return db.execute(
        select(TokenRequest)
        .where(TokenRequest.id == request_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


def approve_request(
    db: Session,
    request_id: UUID,
    admin_id: UUID,
    registry: ConnectionRegistry | None = None,
) -> TokenRequest:
    """
    Approve a pending request and credit its amount.

    Raises:
        NotFoundError: request does not exist
        InvalidStateError: request already resolved
    """
    with storage_guard(db):
        request = _resolve(db, request_id, admin_id, TokenRequestStatus.APPROVED)
        token_service.apply_credit(
            db,
            request.user_id,
            request.amount,
            TokenTransactionType.PURCHASE,
            f"Token purchase: {request.amount} tokens",
        )
        notification = notification_service.build_notification(
            request.user_id,
            NotificationType.TOKENS,
            "Tokens Added",
            f"Your token request for {request.amount} tokens has been approved!",
        )
        db.add(notification)
        db.commit()

    logger.info(
        "Token request approved, credited %s tokens",
        request.amount,
        extra=build_log_context(user_id=request.user_id),
    )
    notification_service.push_notification(db, notification, registry)
    return request


def reject_request(
    db: Session,
    request_id: UUID,
    admin_id: UUID,
    reason: str | None = None,
    registry: ConnectionRegistry | None = None,
) -> TokenRequest:
    reason = reason.strip() if reason and reason.strip() else None

    with storage_guard(db):
        request = _resolve(db, request_id, admin_id, TokenRequestStatus.REJECTED, reason)
        message = f"Your token request for {request.amount} tokens was rejected."
        if reason:
            message += f" Reason: {reason}"
        notification = notification_service.build_notification(
            request.user_id,
            NotificationType.TOKENS,
            "Token Request Rejected",
            message,
        )
        db.add(notification)
        db.commit()

    logger.info("Token request rejected", extra=build_log_context(user_id=request.user_id))
    notification_service.push_notification(db, notification, registry)
    return request
