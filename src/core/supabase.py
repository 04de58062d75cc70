import logging
from typing import Any, List, Optional

from supabase import Client, create_client

from src.core.settings import settings
from src.shared.exceptions import AuthProviderError

logger = logging.getLogger(__name__)


class AuthProvider:
    """
    Supabase auth service for credentials, sessions and identity administration.

    Calls that establish a session (sign-up, sign-in, refresh, recovery) run
    on a fresh anon client so the shared client never holds a user's session.
    The service-role client covers the admin surface, including revoking a
    caller's session by its access token. The Supabase user id is the Profile
    primary key.
    """

    def __init__(self) -> None:
        if (
            not settings.SUPABASE_URL
            or not settings.SUPABASE_ANON_KEY
            or not settings.SUPABASE_SERVICE_ROLE_KEY
        ):
            raise ValueError("Supabase configuration is required for auth provider")

        self.client: Client = create_client(
            settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY
        )
        self.admin_client: Client = create_client(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY
        )

    def _session_client(self) -> Client:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)

    async def sign_up(self, email: str, password: str) -> Any:
        """
        Create a new identity with email/password credentials.

        Returns:
            The provider auth response (``user`` and optional ``session``)

        Raises:
            AuthProviderError: If the provider rejects the sign-up
        """
        try:
            client = self._session_client()
            result = client.auth.sign_up({"email": email, "password": password})
        except Exception as e:
            raise AuthProviderError(f"Failed to create user: {str(e)}")

        if not result.user:
            raise AuthProviderError("Failed to create user")
        return result

    async def sign_in(self, email: str, password: str) -> Any:
        """
        Sign in with email/password.

        Raises:
            AuthProviderError: If the credentials are rejected
        """
        try:
            result = self._session_client().auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise AuthProviderError(str(e) or "Invalid credentials")

        if not result.user or not result.session:
            raise AuthProviderError("Invalid credentials")
        return result

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session behind the given access token."""
        try:
            self.admin_client.auth.admin.sign_out(access_token, "local")
        except Exception as e:
            raise AuthProviderError(
                f"Failed to logout from authentication service: {str(e)}"
            )

    async def refresh_session(self, refresh_token: str) -> Any:
        try:
            client = self._session_client()
            result = client.auth.refresh_session(refresh_token)
        except Exception as e:
            raise AuthProviderError(f"Invalid or expired refresh token: {str(e)}")

        if not result.user or not result.session:
            raise AuthProviderError("Invalid or expired refresh token")
        return result

    async def send_password_reset(self, email: str, redirect_to: str) -> None:
        try:
            self.client.auth.reset_password_for_email(
                email, {"redirect_to": redirect_to}
            )
        except Exception as e:
            raise AuthProviderError(f"Failed to send password reset email: {str(e)}")

    async def verify_recovery_token(self, token_hash: str) -> Any:
        try:
            result = self._session_client().auth.verify_otp(
                {"token_hash": token_hash, "type": "recovery"}
            )
        except Exception as e:
            raise AuthProviderError(f"Invalid or expired reset token: {str(e)}")

        if not result.user:
            raise AuthProviderError("Invalid or expired reset token")
        return result.user

    async def get_user(self, access_token: str) -> Any:
        """Resolve the user behind an access token."""
        try:
            result = self.client.auth.get_user(access_token)
        except Exception as e:
            raise AuthProviderError(f"Invalid or expired token: {str(e)}")

        if not result or not result.user:
            raise AuthProviderError("Invalid or expired token")
        return result.user

    async def admin_get_user(self, user_id: str) -> Any:
        try:
            result = self.admin_client.auth.admin.get_user_by_id(user_id)
        except Exception as e:
            raise AuthProviderError(
                f"User not found in authentication system: {str(e)}"
            )

        if not result or not result.user:
            raise AuthProviderError("User not found in authentication system")
        return result.user

    async def admin_update_user(self, user_id: str, attributes: dict) -> None:
        try:
            self.admin_client.auth.admin.update_user_by_id(user_id, attributes)
        except Exception as e:
            raise AuthProviderError(f"Failed to update user: {str(e)}")

    async def admin_list_users(self) -> List[Any]:
        try:
            return list(self.admin_client.auth.admin.list_users())
        except Exception as e:
            raise AuthProviderError(f"Failed to list users: {str(e)}")

    async def admin_delete_user(self, user_id: str) -> None:
        """
        Delete an identity, used to undo a sign-up whose profile never landed.

        Failures are logged rather than raised so the original error reaches
        the caller.
        """
        try:
            self.admin_client.auth.admin.delete_user(user_id)
        except Exception as e:
            logger.error(
                f"Failed to delete auth user {user_id} during cleanup: {e}",
                exc_info=True,
            )


# Global auth provider instance
auth_provider: Optional[AuthProvider] = (
    AuthProvider()
    if (
        settings.SUPABASE_URL
        and settings.SUPABASE_ANON_KEY
        and settings.SUPABASE_SERVICE_ROLE_KEY
    )
    else None
)


def get_auth_provider() -> AuthProvider:
    """Auth provider dependency for FastAPI dependency injection."""
    if auth_provider is None:
        raise AuthProviderError("Supabase not configured")
    return auth_provider
