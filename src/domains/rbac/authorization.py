# src/domains/rbac/authorization.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from prisma import Prisma
from src.domains.rbac.models import (
    AccessMatrix,
    AccessMatrixSummary,
    AccessSummaryCounts,
    AccessSummaryRole,
    AnyResourceAccessResult,
    FilteredResources,
    FilteredUsers,
    ManageUserResult,
    PermissionCheckEvent,
    ProfileSummary,
    ResourceAccessResult,
    ResourceActionRequest,
    ResourceGrant,
    ResourceRequirement,
    RoleAssignmentValidation,
    RoleResponse,
    UserAccessSummary,
)
from src.domains.rbac.service import UserRoleService
from src.shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from src.shared.permissions.models import USER_MANAGEMENT_PERMISSIONS, PermissionString
from src.shared.permissions.services import PermissionService, role_grant_filter

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Receives one event per recorded permission check."""

    def record(self, event: PermissionCheckEvent) -> None: ...


class LoggingAuditSink:
    """Writes permission check events to the ``audit`` logger."""

    def __init__(self, audit_logger: Optional[logging.Logger] = None):
        self.logger = audit_logger or logging.getLogger("audit")

    def record(self, event: PermissionCheckEvent) -> None:
        level = logging.INFO if event.granted else logging.WARNING
        self.logger.log(
            level,
            f"Permission check: user={event.user_id} permission={event.permission} "
            f"granted={event.granted} context={event.context or {}}",
        )


class AuthorizationService:
    """
    Request-level authorization checks built on the permission engine and
    the broker hierarchy.

    Every method acting on another user goes through ``validate_user_access``
    first, which refuses targets outside the caller's accessible brokers.
    Routes apply the same gate before any other cross-user read.
    """

    def __init__(
        self,
        db: Prisma,
        permission_service: Optional[PermissionService] = None,
        user_role_service: Optional[UserRoleService] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.db = db
        self.permission_service = permission_service or PermissionService(db)
        self.user_role_service = user_role_service or UserRoleService(db)
        self.audit_sink: AuditSink = audit_sink or LoggingAuditSink()

    async def validate_user_access(
        self, target_user_id: str, accessible_broker_ids: List[str]
    ) -> None:
        """
        Raises:
            ValidationError: If no target user is given
            NotFoundError: If the target user or its broker is missing
            ForbiddenError: If the target's broker is not accessible
        """
        if not target_user_id:
            raise ValidationError("Target user ID is required for validation")

        target_user = await self.db.profile.find_unique(where={"id": target_user_id})
        if not target_user:
            raise NotFoundError("Target user not found")

        if not target_user.brokerId:
            raise NotFoundError("Target user does not belong to a broker")

        if target_user.brokerId not in accessible_broker_ids:
            logger.warning(
                f"Access to user {target_user_id} (broker {target_user.brokerId}) "
                "denied: outside caller's broker hierarchy"
            )
            raise ForbiddenError(
                "Access denied: You cannot manage users outside of your "
                "broker's hierarchy"
            )

    async def check_user_permission(
        self, user_id: str, permission: str, accessible_broker_ids: List[str]
    ) -> bool:
        await self.validate_user_access(user_id, accessible_broker_ids)
        return await self.permission_service.user_has_permission(user_id, permission)

    async def can_user_access_resource(
        self, user_id: str, resource: str, action: str
    ) -> ResourceAccessResult:
        permission = f"{resource}:{action}"
        try:
            allowed = await self.permission_service.user_has_permission(
                user_id, permission
            )
        except ValidationError as e:
            return ResourceAccessResult(
                allowed=False, permission=permission, user_id=user_id, error=e.detail
            )
        return ResourceAccessResult(
            allowed=allowed, permission=permission, user_id=user_id
        )

    async def can_user_access_any_resource(
        self, user_id: str, resource_actions: List[ResourceActionRequest]
    ) -> AnyResourceAccessResult:
        permissions = [f"{ra.resource}:{ra.action}" for ra in resource_actions]
        try:
            allowed = await self.permission_service.user_has_any_permission(
                user_id, permissions
            )
        except ValidationError as e:
            return AnyResourceAccessResult(
                allowed=False, permissions=permissions, user_id=user_id, error=e.detail
            )
        return AnyResourceAccessResult(
            allowed=allowed, permissions=permissions, user_id=user_id
        )

    async def filter_users_by_permission(
        self,
        user_ids: List[str],
        permission: str,
        accessible_broker_ids: List[str],
    ) -> FilteredUsers:
        """
        Split ``user_ids`` into users holding ``permission`` and the rest.

        Only users inside the accessible brokers are checked; anyone outside
        them is reported as unauthorized.
        """
        parsed = PermissionString.parse(permission)

        accessible_users = await self.db.profile.find_many(
            where={"id": {"in": user_ids}, "brokerId": {"in": accessible_broker_ids}}
        )
        accessible_user_ids = [user.id for user in accessible_users]

        authorized_user_ids: List[str] = []
        if accessible_user_ids:
            user_roles = await self.db.userrole.find_many(
                where={
                    "userId": {"in": accessible_user_ids},
                    "role": role_grant_filter(parsed.resource, parsed.stored_action),
                }  # type: ignore[arg-type]
            )
            holders = {user_role.userId for user_role in user_roles}
            authorized_user_ids = [
                uid for uid in dict.fromkeys(user_ids) if uid in holders
            ]

        authorized = set(authorized_user_ids)
        unauthorized_user_ids = [uid for uid in user_ids if uid not in authorized]
        return FilteredUsers(
            permission=permission,
            authorized_users=authorized_user_ids,
            unauthorized_users=unauthorized_user_ids,
            total_users=len(user_ids),
            authorized_count=len(authorized_user_ids),
        )

    async def filter_resources_by_user_permissions(
        self, user_id: str, resources: List[ResourceRequirement]
    ) -> FilteredResources:
        user_permissions = await self.permission_service.get_user_permissions(user_id)
        granted = set(user_permissions.permissions)

        accessible: List[ResourceRequirement] = []
        inaccessible: List[ResourceRequirement] = []
        for resource in resources:
            required = f"{resource.resource}:{resource.required_action}"
            (accessible if required in granted else inaccessible).append(resource)

        return FilteredResources(
            user_id=user_id,
            accessible_resources=accessible,
            inaccessible_resources=inaccessible,
            total_resources=len(resources),
            accessible_count=len(accessible),
        )

    async def can_user_manage_user(
        self, manager_id: str, target_user_id: str
    ) -> ManageUserResult:
        can_manage_users = await self.permission_service.user_has_any_permission(
            manager_id, list(USER_MANAGEMENT_PERMISSIONS)
        )
        if not can_manage_users:
            return ManageUserResult(
                allowed=False,
                reason="Manager does not have user management permissions",
                manager_id=manager_id,
                target_user_id=target_user_id,
            )

        if manager_id == target_user_id:
            can_manage_self = await self.permission_service.user_has_permission(
                manager_id, "users:update:own"
            )
            return ManageUserResult(
                allowed=can_manage_self,
                reason=(
                    "Self-management allowed"
                    if can_manage_self
                    else "Self-management not permitted"
                ),
                manager_id=manager_id,
                target_user_id=target_user_id,
                is_self_management=True,
            )

        return ManageUserResult(
            allowed=True,
            reason="User management authorized",
            manager_id=manager_id,
            target_user_id=target_user_id,
        )

    async def get_user_access_summary(
        self, user_id: str, accessible_broker_ids: List[str]
    ) -> UserAccessSummary:
        await self.validate_user_access(user_id, accessible_broker_ids)

        user_roles = await self.user_role_service.get_user_roles(user_id)
        user_permissions = await self.permission_service.get_user_permissions(user_id)

        permissions_by_resource: Dict[str, List[ResourceGrant]] = {}
        for permission in user_permissions.detailed_permissions:
            permissions_by_resource.setdefault(permission.resource, []).append(
                ResourceGrant(
                    action=permission.action,
                    description=permission.description,
                    from_role=permission.from_role,
                )
            )

        return UserAccessSummary(
            user_id=user_id,
            summary=AccessSummaryCounts(
                role_count=len(user_roles),
                permission_count=len(user_permissions.permissions),
                resource_count=len(permissions_by_resource),
            ),
            roles=[
                AccessSummaryRole(
                    id=role.id,
                    name=role.name,
                    assigned_at=role.assigned_at,
                    assigned_by=role.assigned_by,
                    permission_count=len(role.permissions),
                )
                for role in user_roles
            ],
            permissions_by_resource=permissions_by_resource,
            flat_permissions=user_permissions.permissions,
        )

    async def validate_role_assignment(
        self, assigner_id: str, target_user_id: str, role_id: str
    ) -> RoleAssignmentValidation:
        """
        Explain whether an assignment would succeed, without attempting it.

        Never raises for a failed precondition; the first failing one is
        reported in ``reason``.
        """

        def invalid(reason: str) -> RoleAssignmentValidation:
            return RoleAssignmentValidation(
                valid=False,
                reason=reason,
                assigner_id=assigner_id,
                target_user_id=target_user_id,
                role_id=role_id,
            )

        can_assign_roles = await self.permission_service.user_has_permission(
            assigner_id, "users:assign:roles"
        )
        if not can_assign_roles:
            return invalid("Assigner does not have role assignment permissions")

        target_user = await self.db.profile.find_unique(where={"id": target_user_id})
        if not target_user:
            return invalid("Target user not found")

        role = await self.db.role.find_unique(where={"id": role_id})
        if not role:
            return invalid("Role not found")

        existing = await self.db.userrole.find_unique(
            where={"userId_roleId": {"userId": target_user_id, "roleId": role_id}}
        )
        if existing:
            return invalid("User already has this role")

        return RoleAssignmentValidation(
            valid=True,
            reason="Role assignment is valid",
            assigner_id=assigner_id,
            target_user_id=target_user_id,
            role_id=role_id,
            target_user=ProfileSummary.from_prisma(target_user),
            role=RoleResponse.from_prisma(role),
        )

    def log_permission_check(
        self,
        user_id: str,
        permission: str,
        granted: bool,
        context: Optional[Dict[str, Any]] = None,
    ) -> PermissionCheckEvent:
        event = PermissionCheckEvent(
            timestamp=datetime.now(timezone.utc),
            user_id=user_id,
            permission=permission,
            granted=granted,
            context=context,
        )
        self.audit_sink.record(event)
        return event

    async def get_resource_access_matrix(
        self, user_ids: List[str], resources: List[str]
    ) -> AccessMatrix:
        """
        Boolean grid of users by permission strings.

        Each cell is literal membership of the string in the user's
        permission set; no scope or hierarchy evaluation happens here.
        """
        matrix: Dict[str, Dict[str, bool]] = {}
        for user_id in user_ids:
            user_permissions = await self.permission_service.get_user_permissions(
                user_id
            )
            granted = set(user_permissions.permissions)
            matrix[user_id] = {resource: resource in granted for resource in resources}

        granted_cells = sum(
            1 for row in matrix.values() for allowed in row.values() if allowed
        )
        return AccessMatrix(
            matrix=matrix,
            user_count=len(user_ids),
            resource_count=len(resources),
            summary=AccessMatrixSummary(
                total_cells=len(user_ids) * len(resources),
                granted_cells=granted_cells,
            ),
        )
