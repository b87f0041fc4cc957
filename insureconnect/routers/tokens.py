"""Tokens router - balance, ledger history, top-up requests, upload charges."""

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from insureconnect.core.deps import get_current_session, get_db
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.token import (
    BalanceResponse,
    FileUploadCharge,
    FileUploadChargeResponse,
    TokenRequestCreate,
    TokenRequestListResponse,
    TokenRequestRead,
    TransactionListResponse,
)
from insureconnect.services import token_request_service, token_service

router = APIRouter()


@router.get("/balance", response_model=BalanceResponse)
def get_balance(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return BalanceResponse(balance=token_service.get_balance(db, session.user_id))


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Ledger entries, newest first."""
    items, total = token_service.list_transactions(db, session.user_id, page=page, limit=limit)
    return TransactionListResponse(items=items, page=page, limit=limit, total=total)


@router.post(
    "/requests",
    response_model=TokenRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def create_token_request(
    data: TokenRequestCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return token_request_service.create_request(
        db, session.user_id, data.amount, data.price, data.description
    )


@router.get("/requests", response_model=TokenRequestListResponse)
def list_my_token_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = token_request_service.list_user_requests(
        db, session.user_id, page=page, limit=limit
    )
    return TokenRequestListResponse(items=items, page=page, limit=limit, total=total)


@router.post("/file-upload", response_model=FileUploadChargeResponse)
def charge_file_upload(
    data: FileUploadCharge,
    idempotency_key: str | None = Header(None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Charge for a file the storage layer accepted (1 token per started KB)."""
    entry = token_service.charge_file_upload(
        db,
        session.user_id,
        data.filename,
        data.size_bytes,
        idempotency_key=idempotency_key,
    )
    return FileUploadChargeResponse(
        cost=token_service.file_token_cost(data.size_bytes),
        balance=token_service.get_balance(db, session.user_id),
        transaction=entry,
    )
