"""SQLAlchemy ORM models for user accounts."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from insureconnect.db.base import Base
from insureconnect.db.enums import Role
from insureconnect.db.models._common import utcnow


class User(Base):
    """
    A registered member of the network.

    `token_balance` is only ever mutated by token_service; it always equals
    the sum of the user's token_transactions.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_users_token_balance_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.CUSTOMER.value)
    token_balance: Mapped[int] = mapped_column(nullable=False, default=0)
    is_verified: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    # Bumped to revoke every outstanding session token
    token_version: Mapped[int] = mapped_column(nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)
