"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Callable, Generator
from uuid import UUID

from fastapi import Depends, Request
from starlette.requests import HTTPConnection
from sqlalchemy.orm import Session, sessionmaker

from insureconnect.core.exceptions import ForbiddenError, UnauthorizedError
from insureconnect.core.security import decode_session_token, extract_bearer_token
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import Role
from insureconnect.db.session import SessionLocal
from insureconnect.schemas.auth import UserSession


def get_session_factory() -> sessionmaker:
    """Session factory; overridden in tests to point at a scratch database."""
    return SessionLocal


def get_db(
    factory: sessionmaker = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = factory()
    try:
        yield db
    finally:
        db.close()


def get_registry(connection: HTTPConnection) -> ConnectionRegistry:
    """The app's live connection registry (HTTP and WebSocket routes)."""
    return connection.app.state.registry


def resolve_session(db: Session, token: str | None) -> UserSession:
    """
    Resolve a bearer credential to a session.

    Validates:
    - Token is present, signed and not expired
    - User exists and is active
    - Token version matches (for revocation support)
    - Role is a known enum value

    Shared by the HTTP dependency and the WebSocket handshake.
    """
    from insureconnect.db.models import User

    if not token:
        raise UnauthorizedError("Not authenticated")

    try:
        payload = decode_session_token(token)
        user_id = UUID(payload["sub"])
    except Exception:
        raise UnauthorizedError("Invalid session")

    user = db.get(User, user_id)
    if not user:
        raise UnauthorizedError("User not found")

    if not user.is_active:
        raise UnauthorizedError("Account disabled")

    if user.token_version != payload.get("token_version"):
        raise UnauthorizedError("Session revoked")

    if not Role.has_value(user.role):
        raise ForbiddenError(f"Unknown role '{user.role}'. Contact administrator.")

    return UserSession(
        user_id=user.id,
        role=Role(user.role),
        email=user.email,
        name=user.name,
    )


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
) -> UserSession:
    """
    Get full session context: user_id, role, display fields.

    This is the PRIMARY auth dependency for most endpoints.

    Raises:
        UnauthorizedError: Not authenticated
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    return resolve_session(db, token)


def require_role(min_role: Role) -> Callable[..., UserSession]:
    """
    Dependency factory for role-based authorization.

    All role checks go through Role.has_at_least so the privilege order is
    defined in one place.

    Usage:
        @router.post("/admin", dependencies=[Depends(require_role(Role.ADMIN))])
    """

    def dependency(session: UserSession = Depends(get_current_session)) -> UserSession:
        if not session.role.has_at_least(min_role):
            raise ForbiddenError(f"Role '{session.role.value}' not authorized for this action")
        return session

    return dependency
