# src/domains/auth/dependencies.py
import logging

import jwt
from fastapi import Depends, Header
from jwt import PyJWKClient
from prisma.models import Profile

from prisma import Prisma
from src.core.database import get_db
from src.core.settings import settings
from src.domains.brokers.service import BrokerHierarchyService
from src.shared.exceptions import (
    BaseHTTPException,
    ForbiddenError,
    InvalidTokenError,
    UnauthorizedError,
    UnlinkedProfileError,
)
from src.shared.permissions.services import PermissionService

from .types import AuthContext, SupabaseJwtPayload

logger = logging.getLogger(__name__)

JWKS_URL = f"{settings.SUPABASE_URL}/auth/v1/jwks" if settings.SUPABASE_URL else None

_jwks_client = PyJWKClient(JWKS_URL) if JWKS_URL else None


def decode_supabase_jwt(token: str) -> SupabaseJwtPayload:
    """
    Verifies JWT token. Uses JWT_SECRET for development mode if available,
    otherwise falls back to Supabase JWKS for production.
    """
    if settings.JWT_SECRET:
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=["HS256"],
                options={"verify_aud": False},
            )
            return SupabaseJwtPayload(**dict(payload))
        except jwt.PyJWTError:
            raise InvalidTokenError()

    if not _jwks_client:
        raise BaseHTTPException("Supabase not configured")
    try:
        signing_key = _jwks_client.get_signing_key_from_jwt(token).key
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256", "ES256"],
            options={"verify_aud": False},
        )
        return SupabaseJwtPayload(**dict(payload))
    except jwt.PyJWTError:
        raise InvalidTokenError()


def get_bearer_token(authorization: str = Header(None)) -> str:
    """Extracts the raw bearer token from the Authorization header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Missing token")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthorizedError("Missing token")
    return token


def get_token_payload(token: str = Depends(get_bearer_token)) -> SupabaseJwtPayload:
    return decode_supabase_jwt(token)


def get_auth_id(payload: SupabaseJwtPayload = Depends(get_token_payload)) -> str:
    """
    Returns the user's UUID (from the `sub` claim), which is also the
    Profile primary key.
    """
    if not payload.sub:
        raise InvalidTokenError()
    return payload.sub


async def get_current_profile(
    auth_id: str = Depends(get_auth_id), db: Prisma = Depends(get_db)
) -> Profile:
    """
    Finds the profile for the authenticated user.
    """
    profile = await db.profile.find_unique(where={"id": auth_id})
    if not profile:
        raise UnlinkedProfileError()
    return profile


async def build_auth_context(
    db: Prisma, profile: Profile, email: str | None = None
) -> AuthContext:
    """
    Load the roles, permissions and broker position of an active profile.

    Raises:
        ForbiddenError: If the profile has been deactivated
    """
    if not profile.isActive:
        logger.warning(f"Inactive user {profile.id} attempted to authenticate")
        raise ForbiddenError("User account is inactive")

    hierarchy_service = BrokerHierarchyService(db)
    permission_service = PermissionService(db, hierarchy_service)

    user_roles = await db.userrole.find_many(
        where={"userId": profile.id},
        include={"role": True},
        order={"assignedAt": "asc"},
    )
    user_permissions = await permission_service.get_user_permissions(profile.id)
    broker_context = await hierarchy_service.get_broker_context(profile.brokerId)

    logger.debug(
        f"Auth context for {profile.id}: broker={profile.brokerId}, "
        f"accessible={len(broker_context.accessible_broker_ids)}, "
        f"level={broker_context.hierarchy_level}"
    )

    return AuthContext(
        user_id=profile.id,
        email=email,
        broker_id=profile.brokerId,
        roles=[user_role.role.name for user_role in user_roles if user_role.role],
        permissions=user_permissions.permissions,
        broker_context=broker_context,
    )


async def get_auth_context(
    payload: SupabaseJwtPayload = Depends(get_token_payload),
    profile: Profile = Depends(get_current_profile),
    db: Prisma = Depends(get_db),
) -> AuthContext:
    """
    Per-request authorization context attached to every protected route.
    """
    return await build_auth_context(db, profile, payload.email)
