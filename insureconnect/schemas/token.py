"""Token ledger and purchase-request schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TokenTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: int
    type: str
    description: str
    post_id: UUID | None
    created_at: datetime


class TransactionListResponse(BaseModel):
    items: list[TokenTransactionRead]
    page: int
    limit: int
    total: int


class BalanceResponse(BaseModel):
    balance: int


class TokenRequestCreate(BaseModel):
    amount: int
    price: Decimal
    description: str | None = Field(default=None, max_length=500)


class TokenRequestReject(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class TokenRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    amount: int
    price: Decimal
    description: str
    status: str
    reviewed_by_id: UUID | None
    reviewed_at: datetime | None
    rejection_reason: str | None
    created_at: datetime


class TokenRequestListResponse(BaseModel):
    items: list[TokenRequestRead]
    page: int
    limit: int
    total: int


class FileUploadCharge(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    size_bytes: int = Field(ge=0)


class FileUploadChargeResponse(BaseModel):
    cost: int
    balance: int
    transaction: TokenTransactionRead | None
