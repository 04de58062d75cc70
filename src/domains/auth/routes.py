# src/domains/auth/routes.py
from fastapi import APIRouter, Depends, status

from prisma import Prisma
from src.core.database import get_db
from src.core.supabase import AuthProvider, get_auth_provider
from src.domains.auth.dependencies import get_auth_context, get_bearer_token
from src.domains.auth.models import (
    AuthResponse,
    AuthUser,
    ChangeEmailRequest,
    ChangePasswordRequest,
    CurrentUser,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from src.domains.auth.service import AuthService
from src.domains.auth.types import AuthContext
from src.shared.permissions.types import MessageResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="register",
)
async def register(
    request: RegisterRequest,
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> AuthResponse:
    """Sign up and create a new root broker administered by the new user."""
    service = AuthService(db, auth_provider)
    return await service.register(request)


@router.post("/login", response_model=AuthResponse, operation_id="login")
async def login(
    request: LoginRequest,
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> AuthResponse:
    service = AuthService(db, auth_provider)
    return await service.login(request)


@router.post("/logout", response_model=MessageResponse, operation_id="logout")
async def logout(
    token: str = Depends(get_bearer_token),
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> MessageResponse:
    service = AuthService(db, auth_provider)
    return await service.logout(context.user_id, token)


@router.post("/refresh", response_model=AuthResponse, operation_id="refreshToken")
async def refresh_token(
    request: RefreshTokenRequest,
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> AuthResponse:
    service = AuthService(db, auth_provider)
    return await service.refresh_token(request)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    operation_id="forgotPassword",
)
async def forgot_password(
    request: ForgotPasswordRequest,
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> MessageResponse:
    service = AuthService(db, auth_provider)
    return await service.forgot_password(request)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    operation_id="resetPassword",
)
async def reset_password(
    request: ResetPasswordRequest,
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> MessageResponse:
    service = AuthService(db, auth_provider)
    return await service.reset_password(request)


@router.get("/me", response_model=CurrentUser, operation_id="getCurrentUser")
async def get_current_user(
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> CurrentUser:
    """The caller's profile, broker, roles and permissions."""
    service = AuthService(db, auth_provider)
    return await service.get_current_user_with_context(
        context.user_id, context.email
    )


@router.put(
    "/change-password",
    response_model=MessageResponse,
    operation_id="changePassword",
)
async def change_password(
    request: ChangePasswordRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> MessageResponse:
    service = AuthService(db, auth_provider)
    return await service.change_password(context.user_id, request)


@router.put("/profile", response_model=AuthUser, operation_id="updateProfile")
async def update_profile(
    request: UpdateProfileRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> AuthUser:
    service = AuthService(db, auth_provider)
    return await service.update_profile(context.user_id, request)


@router.put(
    "/change-email",
    response_model=MessageResponse,
    operation_id="changeEmail",
)
async def change_email(
    request: ChangeEmailRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> MessageResponse:
    service = AuthService(db, auth_provider)
    return await service.change_email(context.user_id, request)
