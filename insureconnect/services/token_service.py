"""
Token accounting - the only writer of users.token_balance.

Every balance change happens in the same transaction as the ledger row
that explains it, so at every commit point

    users.token_balance == SUM(token_transactions.amount)

Debits use a conditional UPDATE (`... WHERE token_balance >= :amount`) so
the balance check and the write are a single row-level compare-and-set;
concurrent debits can never both succeed against a balance that only
covers one of them.
"""

from __future__ import annotations

import logging
import math
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from insureconnect.core.config import settings
from insureconnect.core.exceptions import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from insureconnect.core.structured_logging import build_log_context
from insureconnect.db.enums import TokenTransactionType
from insureconnect.db.models import TokenTransaction, User
from insureconnect.db.session import storage_guard

logger = logging.getLogger(__name__)


# =============================================================================
# Pricing
# =============================================================================


def file_token_cost(size_bytes: int | None) -> int:
    """1 token per started KB of attachment."""
    if not size_bytes or size_bytes <= 0:
        return 0
    return math.ceil(size_bytes / 1024)


def post_token_cost(image_size_bytes: int | None = None) -> int:
    """Base post cost plus the attached image's size cost."""
    return settings.DEFAULT_POST_TOKEN_COST + file_token_cost(image_size_bytes)


# =============================================================================
# Ledger primitives (no commit; callers own the transaction)
# =============================================================================


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Token amount must be a positive integer")


def find_by_idempotency_key(db: Session, user_id: UUID, idempotency_key: str | None) -> TokenTransaction | None:
    if not idempotency_key:
        return None
    return db.execute(
        select(TokenTransaction).where(
            TokenTransaction.user_id == user_id,
            TokenTransaction.idempotency_key == idempotency_key,
        )
    ).scalar_one_or_none()


def _append(
    db: Session,
    user_id: UUID,
    amount: int,
    type: TokenTransactionType,
    description: str,
    post_id: UUID | None,
    idempotency_key: str | None,
) -> TokenTransaction:
    entry = TokenTransaction(
        user_id=user_id,
        amount=amount,
        type=TokenTransactionType(type).value,
        description=description[:500],
        post_id=post_id,
        idempotency_key=idempotency_key,
    )
    db.add(entry)
    db.flush()
    return entry


def apply_debit(
    db: Session,
    user_id: UUID,
    amount: int,
    type: TokenTransactionType,
    description: str,
    post_id: UUID | None = None,
    idempotency_key: str | None = None,
) -> TokenTransaction:
    """
    Decrement the balance and append a negative ledger row inside the
    caller's transaction.

    Raises:
        ValidationError: amount is not a positive integer
        NotFoundError: user does not exist
        InsufficientBalanceError: balance < amount
    """
    _validate_amount(amount)

    replay = find_by_idempotency_key(db, user_id, idempotency_key)
    if replay is not None:
        return replay

    result = db.execute(
        update(User)
        .where(User.id == user_id, User.token_balance >= amount)
        .values(token_balance=User.token_balance - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.execute(
            select(User.token_balance).where(User.id == user_id)
        ).scalar_one_or_none()
        if available is None:
            raise NotFoundError("User not found")
        raise InsufficientBalanceError(
            f"Insufficient token balance: {amount} required, {available} available",
            required=amount,
            available=available,
        )

    return _append(db, user_id, -amount, type, description, post_id, idempotency_key)


def apply_credit(
    db: Session,
    user_id: UUID,
    amount: int,
    type: TokenTransactionType,
    description: str,
    post_id: UUID | None = None,
    idempotency_key: str | None = None,
) -> TokenTransaction:
    """Increment the balance and append a positive ledger row inside the caller's transaction."""
    _validate_amount(amount)

    replay = find_by_idempotency_key(db, user_id, idempotency_key)
    if replay is not None:
        return replay

    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(token_balance=User.token_balance + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("User not found")

    return _append(db, user_id, amount, type, description, post_id, idempotency_key)


def _commit_ledger_unit(db: Session, user_id: UUID, idempotency_key: str | None) -> TokenTransaction | None:
    """
    Commit the current unit. A unique-key collision means a concurrent retry
    with the same idempotency key won; return its row instead.
    """
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if idempotency_key:
            replay = find_by_idempotency_key(db, user_id, idempotency_key)
            if replay is not None:
                return replay
        raise
    return None


# =============================================================================
# Public operations (one atomic unit each)
# =============================================================================


def debit(
    db: Session,
    user_id: UUID,
    amount: int,
    type: TokenTransactionType,
    description: str,
    related_post_id: UUID | None = None,
    idempotency_key: str | None = None,
) -> TokenTransaction:
    """Atomically debit `amount` tokens and record a ledger row."""
    with storage_guard(db):
        entry = apply_debit(
            db, user_id, amount, type, description, related_post_id, idempotency_key
        )
        replay = _commit_ledger_unit(db, user_id, idempotency_key)
    if replay is not None:
        return replay
    logger.info(
        "Debited %s tokens (%s)",
        amount,
        type.value if isinstance(type, TokenTransactionType) else type,
        extra=build_log_context(user_id=user_id, post_id=related_post_id),
    )
    return entry


def credit(
    db: Session,
    user_id: UUID,
    amount: int,
    type: TokenTransactionType,
    description: str,
    related_post_id: UUID | None = None,
    idempotency_key: str | None = None,
) -> TokenTransaction:
    """Atomically credit `amount` tokens and record a ledger row."""
    with storage_guard(db):
        entry = apply_credit(
            db, user_id, amount, type, description, related_post_id, idempotency_key
        )
        replay = _commit_ledger_unit(db, user_id, idempotency_key)
    if replay is not None:
        return replay
    logger.info(
        "Credited %s tokens (%s)",
        amount,
        type.value if isinstance(type, TokenTransactionType) else type,
        extra=build_log_context(user_id=user_id, post_id=related_post_id),
    )
    return entry


def charge_file_upload(
    db: Session,
    user_id: UUID,
    filename: str,
    size_bytes: int,
    idempotency_key: str | None = None,
) -> TokenTransaction | None:
    """Charge a chat attachment. Zero-cost files are free and leave no ledger row."""
    cost = file_token_cost(size_bytes)
    if cost == 0:
        return None
    return debit(
        db,
        user_id,
        cost,
        TokenTransactionType.FILE_UPLOAD,
        f"File upload: {filename}",
        idempotency_key=idempotency_key,
    )


# =============================================================================
# Reads
# =============================================================================


def get_balance(db: Session, user_id: UUID) -> int:
    balance = db.execute(
        select(User.token_balance).where(User.id == user_id)
    ).scalar_one_or_none()
    if balance is None:
        raise NotFoundError("User not found")
    return balance


def ledger_sum(db: Session, user_id: UUID) -> int:
    return db.execute(
        select(func.coalesce(func.sum(TokenTransaction.amount), 0)).where(
            TokenTransaction.user_id == user_id
        )
    ).scalar_one()


def verify_ledger(db: Session, user_id: UUID) -> bool:
    """True when the stored balance matches the ledger."""
    return get_balance(db, user_id) == ledger_sum(db, user_id)


def list_transactions(
    db: Session,
    user_id: UUID,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[TokenTransaction], int]:
    """Newest first. Returns (items, total)."""
    base = select(TokenTransaction).where(TokenTransaction.user_id == user_id)
    total = db.execute(
        select(func.count()).select_from(base.subquery())
    ).scalar_one()
    items = db.execute(
        base.order_by(TokenTransaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(items), total


def total_tokens_issued(db: Session) -> int:
    """Sum of every positive ledger entry (admin dashboard)."""
    return db.execute(
        select(func.coalesce(func.sum(TokenTransaction.amount), 0)).where(
            TokenTransaction.amount > 0
        )
    ).scalar_one()
