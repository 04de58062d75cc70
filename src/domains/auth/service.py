# src/domains/auth/service.py
import logging
from typing import Any, Optional

from prisma.models import Profile

from prisma import Prisma
from src.core.settings import settings
from src.core.supabase import AuthProvider
from src.domains.auth.models import (
    AuthBroker,
    AuthResponse,
    AuthRole,
    AuthUser,
    ChangeEmailRequest,
    ChangePasswordRequest,
    CurrentUser,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SessionTokens,
    UpdateProfileRequest,
)
from src.shared.exceptions import (
    AuthProviderError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ProfileCreationError,
    UnauthorizedError,
    UnlinkedProfileError,
    ValidationError,
)
from src.shared.permissions.models import RoleName
from src.shared.permissions.services import PermissionService
from src.shared.permissions.types import MessageResponse

logger = logging.getLogger(__name__)


class AuthService:
    """
    Account lifecycle on top of the external auth provider.

    The provider owns credentials and sessions; this service keeps the
    Profile, its broker and its role assignments in step with it.
    """

    def __init__(
        self,
        db: Prisma,
        auth_provider: AuthProvider,
        permission_service: Optional[PermissionService] = None,
    ):
        self.db = db
        self.auth_provider = auth_provider
        self.permission_service = permission_service or PermissionService(db)

    async def register(self, request: RegisterRequest) -> AuthResponse:
        """
        Sign a user up and give them a new root broker to administer.

        The broker, the profile and the self-assigned ``broker_admin`` role
        are created in one transaction. If it fails the auth identity is
        deleted again.

        Raises:
            ConflictError: If the cedula/RUC or broker name is already taken
            AuthProviderError: If the provider rejects the sign-up
            ProfileCreationError: If the transaction fails
        """
        existing_profile = await self.db.profile.find_unique(
            where={"cedulaRuc": request.cedula_ruc}
        )
        if existing_profile:
            raise ConflictError("Cedula/RUC already registered")

        existing_broker = await self.db.broker.find_unique(
            where={"name": request.broker_name}
        )
        if existing_broker:
            raise ConflictError("Broker name already exists")

        auth_result = await self.auth_provider.sign_up(
            request.email, request.password
        )
        user_id = auth_result.user.id

        try:
            async with self.db.tx() as transaction:
                broker = await transaction.broker.create(
                    data={
                        "name": request.broker_name,
                        "description": request.broker_description,
                    }
                )
                profile = await transaction.profile.create(
                    data={
                        "id": user_id,
                        "firstName": request.first_name,
                        "lastName": request.last_name,
                        "cedulaRuc": request.cedula_ruc,
                        "phone": request.phone or None,
                        "brokerId": broker.id,
                    }
                )
                admin_role = await transaction.role.find_unique(
                    where={"name": RoleName.BROKER_ADMIN.value}
                )
                if not admin_role:
                    raise NotFoundError("broker_admin role not found")

                await transaction.userrole.create(
                    data={
                        "userId": user_id,
                        "roleId": admin_role.id,
                        "assignedBy": user_id,
                    }
                )
        except Exception as e:
            logger.error(
                f"Failed to create profile for {request.email} ({user_id}): {e}",
                exc_info=True,
            )
            await self.auth_provider.admin_delete_user(user_id)
            raise ProfileCreationError() from e

        logger.info(
            f"Registered user {user_id} as broker_admin of new broker {broker.id}"
        )
        current = await self._current_user(
            profile, auth_result.user.email, broker=broker
        )
        return AuthResponse(
            **current.model_dump(),
            session=SessionTokens.from_provider(auth_result.session),
        )

    async def login(self, request: LoginRequest) -> AuthResponse:
        """
        Raises:
            UnauthorizedError: If the credentials are rejected
            UnlinkedProfileError: If the identity has no profile
            ForbiddenError: If the profile is deactivated
        """
        try:
            auth_result = await self.auth_provider.sign_in(
                request.email, request.password
            )
        except AuthProviderError as e:
            logger.warning(f"Failed login for {request.email}: {e.detail}")
            raise UnauthorizedError("Invalid credentials")

        profile = await self._get_active_profile(auth_result.user.id)
        current = await self._current_user(profile, auth_result.user.email)

        logger.info(
            f"User {profile.id} logged in with {len(current.roles)} roles and "
            f"{len(current.permissions)} permissions"
        )
        return AuthResponse(
            **current.model_dump(),
            session=SessionTokens.from_provider(auth_result.session),
        )

    async def logout(self, user_id: str, access_token: str) -> MessageResponse:
        await self.auth_provider.sign_out(access_token)
        logger.info(f"User {user_id} logged out")
        return MessageResponse(message="Logged out successfully")

    async def get_current_user_with_context(
        self, user_id: str, email: Optional[str] = None
    ) -> CurrentUser:
        profile = await self._get_active_profile(user_id)
        return await self._current_user(profile, email)

    async def refresh_token(self, request: RefreshTokenRequest) -> AuthResponse:
        """
        Exchange a refresh token for a new session.

        Deactivated profiles are refused here as they are on login.
        """
        try:
            auth_result = await self.auth_provider.refresh_session(
                request.refresh_token
            )
        except AuthProviderError:
            raise UnauthorizedError("Invalid or expired refresh token")

        profile = await self._get_active_profile(auth_result.user.id)
        current = await self._current_user(profile, auth_result.user.email)
        return AuthResponse(
            **current.model_dump(),
            session=SessionTokens.from_provider(auth_result.session),
        )

    async def forgot_password(
        self, request: ForgotPasswordRequest
    ) -> MessageResponse:
        await self.auth_provider.send_password_reset(
            request.email, f"{settings.CLIENT_URL}/reset-password"
        )
        return MessageResponse(message="Password reset email sent")

    async def reset_password(
        self, request: ResetPasswordRequest
    ) -> MessageResponse:
        """
        Raises:
            ValidationError: If the recovery token is invalid or expired
        """
        try:
            user = await self.auth_provider.verify_recovery_token(request.token_hash)
        except AuthProviderError as e:
            logger.warning(f"Password reset token rejected: {e.detail}")
            raise ValidationError("Invalid or expired reset token")

        await self.auth_provider.admin_update_user(
            user.id, {"password": request.password}
        )
        logger.info(f"Password reset completed for user {user.id}")
        return MessageResponse(message="Password reset successfully")

    async def change_password(
        self, user_id: str, request: ChangePasswordRequest
    ) -> MessageResponse:
        """
        Raises:
            NotFoundError: If the user has no profile
            UnauthorizedError: If the current password is wrong
        """
        profile = await self.db.profile.find_unique(where={"id": user_id})
        if not profile:
            raise NotFoundError("User not found")

        auth_user = await self.auth_provider.admin_get_user(user_id)
        await self._verify_password(user_id, auth_user.email, request.current_password)

        await self.auth_provider.admin_update_user(
            user_id, {"password": request.new_password}
        )
        logger.info(f"Password changed for user {user_id}")
        return MessageResponse(message="Password changed successfully")

    async def update_profile(
        self, user_id: str, request: UpdateProfileRequest
    ) -> AuthUser:
        """
        Update name and phone. Omitted fields are kept; an empty phone clears it.

        Raises:
            NotFoundError: If the profile does not exist
            ForbiddenError: If the profile is deactivated
            ValidationError: If a name is blank or the phone is too short
        """
        existing = await self.db.profile.find_unique(where={"id": user_id})
        if not existing:
            raise NotFoundError("User profile not found")
        if not existing.isActive:
            raise ForbiddenError("Cannot update profile for inactive user")

        if request.first_name is not None and not request.first_name.strip():
            raise ValidationError("First name cannot be empty")
        if request.last_name is not None and not request.last_name.strip():
            raise ValidationError("Last name cannot be empty")

        phone = existing.phone
        if request.phone is not None:
            phone = request.phone.strip() or None
            if phone and len(phone) < 8:
                raise ValidationError("Phone number must be at least 8 characters")

        profile = await self.db.profile.update(
            where={"id": user_id},
            data={
                "firstName": (request.first_name or existing.firstName).strip(),
                "lastName": (request.last_name or existing.lastName).strip(),
                "phone": phone,
            },
        )
        logger.info(f"Profile updated for user {user_id}")
        return AuthUser.from_prisma(profile)

    async def change_email(
        self, user_id: str, request: ChangeEmailRequest
    ) -> MessageResponse:
        """
        Raises:
            NotFoundError: If the profile does not exist
            ForbiddenError: If the profile is deactivated
            ValidationError: If the new email equals the current one
            ConflictError: If another account already uses the new email
            UnauthorizedError: If the password is wrong
        """
        existing = await self.db.profile.find_unique(where={"id": user_id})
        if not existing:
            raise NotFoundError("User profile not found")
        if not existing.isActive:
            raise ForbiddenError("Cannot change email for inactive user")

        auth_user = await self.auth_provider.admin_get_user(user_id)
        current_email = auth_user.email or ""
        new_email = str(request.new_email)

        if new_email.lower() == current_email.lower():
            raise ValidationError("New email must be different from current email")

        users = await self.auth_provider.admin_list_users()
        if any(
            (user.email or "").lower() == new_email.lower() and user.id != user_id
            for user in users
        ):
            raise ConflictError("Email address is already in use by another account")

        await self._verify_password(user_id, current_email, request.password)

        await self.auth_provider.admin_update_user(user_id, {"email": new_email})
        logger.info(
            f"User {user_id} changed email from {current_email} to {new_email}"
        )
        return MessageResponse(message="Email changed successfully")

    async def _verify_password(self, user_id: str, email: str, password: str) -> None:
        try:
            await self.auth_provider.sign_in(email, password)
        except AuthProviderError:
            logger.warning(f"Password verification failed for user {user_id}")
            raise UnauthorizedError("Current password is incorrect")

    async def _get_active_profile(self, user_id: str) -> Profile:
        profile = await self.db.profile.find_unique(
            where={"id": user_id}, include={"broker": True}
        )
        if not profile:
            raise UnlinkedProfileError()
        if not profile.isActive:
            logger.warning(f"Deactivated user {user_id} attempted to sign in")
            raise ForbiddenError("User account is deactivated")
        return profile

    async def _current_user(
        self, profile: Any, email: Optional[str], broker: Any = None
    ) -> CurrentUser:
        broker = broker or profile.broker
        user_roles = await self.db.userrole.find_many(
            where={"userId": profile.id},
            include={"role": True},
            order={"assignedAt": "asc"},
        )
        user_permissions = await self.permission_service.get_user_permissions(
            profile.id
        )

        return CurrentUser(
            user=AuthUser.from_prisma(profile, email),
            broker=AuthBroker.from_prisma(broker) if broker else None,
            roles=[
                AuthRole.from_prisma(user_role.role)
                for user_role in user_roles
                if user_role.role
            ],
            permissions=user_permissions.permissions,
        )
