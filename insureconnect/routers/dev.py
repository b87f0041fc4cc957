"""Development-only endpoints for local testing."""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from insureconnect.core.config import settings
from insureconnect.core.deps import get_db
from insureconnect.core.exceptions import ForbiddenError
from insureconnect.core.rate_limit import limiter
from insureconnect.core.security import create_session_token
from insureconnect.db.enums import Role
from insureconnect.schemas.auth import DevLoginRequest, TokenResponse
from insureconnect.services import user_service

router = APIRouter()


def _verify_dev_secret(x_dev_secret: str = Header(...)):
    """
    Verify dev secret header.

    Provides an extra layer of protection for dev endpoints
    beyond just the ENV check.
    """
    if x_dev_secret != settings.DEV_SECRET:
        raise ForbiddenError("Invalid dev secret")


@router.post(
    "/login",
    response_model=TokenResponse,
    dependencies=[Depends(_verify_dev_secret)],
)
@limiter.limit(f"{settings.RATE_LIMIT_AUTH}/minute")
def dev_login(
    request: Request,
    data: DevLoginRequest,
    db: Session = Depends(get_db),
):
    """
    Mint a session token for an email, creating a customer account on first use.

    Requires X-Dev-Secret header matching DEV_SECRET env var.
    """
    user = user_service.get_user_by_email(db, data.email)
    if user is None:
        user = user_service.create_user(
            db, email=data.email, name=data.email.split("@")[0], role=Role.CUSTOMER
        )
    token = create_session_token(user.id, user.role, user.token_version)
    return TokenResponse(access_token=token, user_id=user.id, role=Role(user.role))
