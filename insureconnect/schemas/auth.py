"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel, EmailStr

from insureconnect.db.enums import Role


class UserSession(BaseModel):
    """
    Full session context for authenticated requests and gateway connections.

    Returned by the get_current_session dependency and carries everything
    needed for authorization decisions.
    """
    user_id: UUID
    role: Role  # Validated enum
    email: str
    name: str


class DevLoginRequest(BaseModel):
    email: EmailStr


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: UUID
    role: Role
