# src/domains/auth/models.py
from typing import Any, List, Optional

from prisma.models import Broker, Profile, Role
from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    cedula_ruc: str = Field(min_length=10, max_length=13)
    phone: Optional[str] = Field(default=None, max_length=20)
    broker_name: str = Field(min_length=2, max_length=100)
    broker_description: Optional[str] = Field(default=None, max_length=500)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token_hash: str = Field(min_length=1)
    password: str = Field(min_length=8)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8)


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)


class ChangeEmailRequest(BaseModel):
    new_email: EmailStr
    password: str = Field(min_length=1)


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: str
    last_name: str
    cedula_ruc: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool

    @classmethod
    def from_prisma(
        cls, profile: Profile, email: Optional[str] = None
    ) -> "AuthUser":
        return cls(
            id=profile.id,
            email=email,
            first_name=profile.firstName,
            last_name=profile.lastName,
            cedula_ruc=profile.cedulaRuc,
            phone=profile.phone,
            avatar_url=profile.avatarUrl,
            is_active=profile.isActive,
        )


class AuthBroker(BaseModel):
    id: str
    name: str
    description: Optional[str] = None

    @classmethod
    def from_prisma(cls, broker: Broker) -> "AuthBroker":
        return cls(id=broker.id, name=broker.name, description=broker.description)


class AuthRole(BaseModel):
    id: str
    name: str
    description: Optional[str] = None

    @classmethod
    def from_prisma(cls, role: Role) -> "AuthRole":
        return cls(id=role.id, name=role.name, description=role.description)


class SessionTokens(BaseModel):
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0

    @classmethod
    def from_provider(cls, session: Any) -> "SessionTokens":
        """Map a provider session; a missing session (unconfirmed email) is empty."""
        if not session:
            return cls()
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at or 0,
        )


class CurrentUser(BaseModel):
    """The caller's profile with its broker, roles and flattened permissions."""

    user: AuthUser
    broker: Optional[AuthBroker] = None
    roles: List[AuthRole]
    permissions: List[str]


class AuthResponse(CurrentUser):
    session: SessionTokens
