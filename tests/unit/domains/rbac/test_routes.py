"""
Tests for RBAC routes in src/domains/rbac/routes.py

Route functions are called directly with the values their dependencies
would resolve to.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi import HTTPException

from src.domains.auth.types import AuthContext
from src.domains.rbac.models import (
    AccessMatrixRequest,
    CheckPermissionRequest,
    UserRoleRequest,
)
from src.domains.rbac.routes import (
    assign_role_to_user,
    check_user_permission,
    get_my_permissions,
    get_resource_access_matrix,
    get_user_roles,
    get_users_with_permission,
)
from tests.fixtures.broker_fixtures import ROOT_SUBTREE
from tests.utils.prisma_records import make_profile


class TestRoleAssignmentRoutes:
    @pytest.mark.asyncio
    async def test_assign_passes_caller_and_allowed_brokers(
        self, admin_context: AuthContext
    ):
        mock_db = Mock()
        with patch("src.domains.rbac.routes.UserRoleService") as mock_service_class:
            mock_service = Mock()
            mock_service.assign_role_to_user = AsyncMock(return_value="assignment")
            mock_service_class.return_value = mock_service

            result = await assign_role_to_user(
                request=UserRoleRequest(user_id="user-2", role_id="role-agent"),
                allowed_broker_ids=list(ROOT_SUBTREE),
                context=admin_context,
                db=mock_db,
            )

        assert result == "assignment"
        mock_service.assign_role_to_user.assert_called_once_with(
            "user-2", "role-agent", "user-1", list(ROOT_SUBTREE)
        )


class TestCrossUserReads:
    """Reads about another user are gated by the caller's hierarchy."""

    @pytest.mark.asyncio
    async def test_roles_of_user_in_hierarchy(
        self, admin_context: AuthContext, mock_prisma: Mock
    ):
        mock_prisma.profile.find_unique.return_value = make_profile(
            user_id="user-2", broker_id="broker-south"
        )

        result = await get_user_roles(
            user_id="user-2",
            allowed_broker_ids=list(ROOT_SUBTREE),
            context=admin_context,
            db=mock_prisma,
        )

        assert result == []
        mock_prisma.userrole.find_many.assert_called_once()

    @pytest.mark.asyncio
    async def test_roles_of_user_outside_hierarchy_raises_403(
        self, north_admin_context: AuthContext, mock_prisma: Mock
    ):
        mock_prisma.profile.find_unique.return_value = make_profile(
            user_id="user-2", broker_id="broker-south"
        )
        allowed = north_admin_context.broker_context.accessible_broker_ids

        with pytest.raises(HTTPException) as exc_info:
            await get_user_roles(
                user_id="user-2",
                allowed_broker_ids=allowed,
                context=north_admin_context,
                db=mock_prisma,
            )

        assert exc_info.value.status_code == 403
        mock_prisma.userrole.find_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_users_with_permission_filtered_by_broker(
        self, admin_context: AuthContext
    ):
        with patch(
            "src.domains.rbac.routes.PermissionService"
        ) as mock_service_class:
            mock_service = Mock()
            mock_service.get_users_with_permission = AsyncMock(return_value="users")
            mock_service_class.return_value = mock_service

            await get_users_with_permission(
                permission="clients:read",
                allowed_broker_ids=["broker-root"],
                context=admin_context,
                db=Mock(),
            )

        mock_service.get_users_with_permission.assert_called_once_with(
            "clients:read", {"brokerId": {"in": ["broker-root"]}}
        )

    @pytest.mark.asyncio
    async def test_check_permission_is_audited(self, admin_context: AuthContext):
        with patch(
            "src.domains.rbac.routes.AuthorizationService"
        ) as mock_service_class:
            mock_service = Mock()
            mock_service.check_user_permission = AsyncMock(return_value=True)
            mock_service_class.return_value = mock_service

            result = await check_user_permission(
                request=CheckPermissionRequest(
                    user_id="user-2", permission="clients:read"
                ),
                allowed_broker_ids=list(ROOT_SUBTREE),
                context=admin_context,
                db=Mock(),
            )

        assert result.has_permission is True
        mock_service.log_permission_check.assert_called_once_with(
            "user-2", "clients:read", True, {"checked_by": "user-1"}
        )

    def test_check_permission_request_rejects_malformed_permission(self):
        with pytest.raises(HTTPException):
            CheckPermissionRequest(user_id="user-2", permission="clients")

    @pytest.mark.asyncio
    async def test_access_matrix_validates_every_user(
        self, admin_context: AuthContext
    ):
        with patch(
            "src.domains.rbac.routes.AuthorizationService"
        ) as mock_service_class:
            mock_service = Mock()
            mock_service.validate_user_access = AsyncMock()
            mock_service.get_resource_access_matrix = AsyncMock(return_value="grid")
            mock_service_class.return_value = mock_service

            result = await get_resource_access_matrix(
                request=AccessMatrixRequest(
                    user_ids=["user-2", "user-3", "user-2"],
                    resources=["clients:read"],
                ),
                allowed_broker_ids=list(ROOT_SUBTREE),
                context=admin_context,
                db=Mock(),
            )

        assert result == "grid"
        assert mock_service.validate_user_access.await_count == 2


class TestSelfService:
    @pytest.mark.asyncio
    async def test_my_permissions_use_caller_id(self, agent_context: AuthContext):
        with patch(
            "src.domains.rbac.routes.PermissionService"
        ) as mock_service_class:
            mock_service = Mock()
            mock_service.get_user_permissions = AsyncMock(return_value="perms")
            mock_service_class.return_value = mock_service

            result = await get_my_permissions(context=agent_context, db=Mock())

        assert result == "perms"
        mock_service.get_user_permissions.assert_called_once_with("user-agent")
