import asyncio
import logging
from typing import Any, Dict, List, Optional

from prisma.models import Profile

from prisma import Prisma
from src.domains.brokers.service import BrokerHierarchyService
from src.shared.exceptions import ConflictError, NotFoundError

from .models import BROKER_SCOPED_RESOURCES, PermissionString
from .types import (
    DetailedPermission,
    MessageResponse,
    PermissionResponse,
    ResourceAction,
    ResourcePermissions,
    RoleSummary,
    ScopedPermission,
    UsersWithPermission,
    UserPermissions,
    UserPermissionsWithScope,
    UserSummary,
    UserWithRoles,
)

logger = logging.getLogger(__name__)

ROLE_GRANTS_INCLUDE: Dict[str, Any] = {
    "role": {"include": {"rolePermissions": {"include": {"permission": True}}}}
}


def role_grant_filter(resource: str, action: str) -> Dict[str, Any]:
    """UserRole ``role`` filter matching roles that carry ``resource:action``."""
    return {
        "is": {
            "rolePermissions": {
                "some": {"permission": {"is": {"resource": resource, "action": action}}}
            }
        }
    }


class PermissionService:
    """
    Permission catalogue management and permission evaluation.

    Evaluation methods never raise for a denial or for a failed lookup; they
    return False or an empty list. Only a malformed permission string raises.
    """

    def __init__(
        self,
        db: Prisma,
        hierarchy_service: Optional[BrokerHierarchyService] = None,
    ):
        self.db = db
        self.hierarchy_service = hierarchy_service or BrokerHierarchyService(db)

    # Catalogue management

    async def create_permission(
        self, resource: str, action: str, description: Optional[str] = None
    ) -> PermissionResponse:
        existing = await self.db.permission.find_unique(
            where={"resource_action": {"resource": resource, "action": action}}
        )
        if existing:
            raise ConflictError("Permission already exists")

        permission = await self.db.permission.create(
            data={"resource": resource, "action": action, "description": description}
        )
        logger.info(f"Created permission {resource}:{action}")
        return PermissionResponse.from_prisma(permission)

    async def get_permissions(self) -> List[PermissionResponse]:
        permissions = await self.db.permission.find_many(
            order=[{"resource": "asc"}, {"action": "asc"}]
        )
        return [
            PermissionResponse.from_prisma(permission) for permission in permissions
        ]

    async def get_permissions_by_resource(
        self, resource: str
    ) -> List[PermissionResponse]:
        permissions = await self.db.permission.find_many(
            where={"resource": resource}, order={"action": "asc"}
        )
        return [
            PermissionResponse.from_prisma(permission) for permission in permissions
        ]

    async def get_permission_by_id(self, permission_id: str) -> PermissionResponse:
        permission = await self.db.permission.find_unique(where={"id": permission_id})
        if not permission:
            raise NotFoundError("Permission not found")
        return PermissionResponse.from_prisma(permission)

    async def update_permission(
        self, permission_id: str, description: Optional[str]
    ) -> PermissionResponse:
        permission = await self.db.permission.find_unique(where={"id": permission_id})
        if not permission:
            raise NotFoundError("Permission not found")

        updated = await self.db.permission.update(
            where={"id": permission_id}, data={"description": description}
        )
        if not updated:
            raise NotFoundError("Permission not found")
        return PermissionResponse.from_prisma(updated)

    async def delete_permission(self, permission_id: str) -> MessageResponse:
        permission = await self.db.permission.find_unique(
            where={"id": permission_id}, include={"rolePermissions": True}
        )
        if not permission:
            raise NotFoundError("Permission not found")

        if permission.rolePermissions:
            raise ConflictError("Cannot delete permission that is assigned to roles")

        await self.db.permission.delete(where={"id": permission_id})
        logger.info(f"Deleted permission {permission.resource}:{permission.action}")
        return MessageResponse(message="Permission deleted successfully")

    async def get_resource_permissions(self) -> ResourcePermissions:
        """Group the whole catalogue by resource."""
        grouped: ResourcePermissions = {}
        for permission in await self.get_permissions():
            grouped.setdefault(permission.resource, []).append(
                ResourceAction(
                    id=permission.id,
                    action=permission.action,
                    description=permission.description,
                )
            )
        return grouped

    # Evaluation

    async def user_has_permission(self, user_id: str, permission: str) -> bool:
        """
        Check whether any of the user's roles carries the permission exactly.

        Everything after the first colon is matched against the stored action,
        so ``users:assign:roles`` matches the ``assign:roles`` row.

        Raises:
            InvalidPermissionFormatError: If the permission string is malformed
        """
        parsed = PermissionString.parse(permission)

        try:
            user_role = await self.db.userrole.find_first(
                where={
                    "userId": user_id,
                    "role": role_grant_filter(parsed.resource, parsed.stored_action),
                }  # type: ignore[arg-type]
            )
        except Exception as e:
            logger.error(
                f"Permission lookup failed for user {user_id} ({permission}): {e}",
                exc_info=True,
            )
            return False

        return user_role is not None

    async def user_has_any_permission(
        self, user_id: str, permissions: List[str]
    ) -> bool:
        for permission in permissions:
            if await self.user_has_permission(user_id, permission):
                return True
        return False

    async def get_user_permissions(self, user_id: str) -> UserPermissions:
        """
        Union of the permissions granted by all of a user's roles.

        A permission granted by several roles is listed once and attributed
        to the first role that grants it.
        """
        user_roles = await self.db.userrole.find_many(
            where={"userId": user_id},
            include=ROLE_GRANTS_INCLUDE,
            order={"assignedAt": "asc"},
        )

        seen: set[str] = set()
        permissions: List[str] = []
        detailed_permissions: List[DetailedPermission] = []

        for user_role in user_roles:
            if not user_role.role:
                continue
            for role_permission in user_role.role.rolePermissions or []:
                permission = role_permission.permission
                if not permission:
                    continue
                permission_string = f"{permission.resource}:{permission.action}"
                if permission_string in seen:
                    continue
                seen.add(permission_string)
                permissions.append(permission_string)
                detailed_permissions.append(
                    DetailedPermission(
                        id=permission.id,
                        resource=permission.resource,
                        action=permission.action,
                        description=permission.description,
                        from_role=user_role.role.name,
                    )
                )

        return UserPermissions(
            user_id=user_id,
            permissions=permissions,
            detailed_permissions=detailed_permissions,
            role_count=len(user_roles),
        )

    async def get_users_with_permission(
        self, permission: str, broker_filter: Dict[str, Any]
    ) -> UsersWithPermission:
        """
        List users holding a permission, restricted by a profile broker filter.

        A user reached through several roles appears once with all of them.
        """
        parsed = PermissionString.parse(permission)

        where: Dict[str, Any] = {
            "role": role_grant_filter(parsed.resource, parsed.stored_action),
            "user": {"is": broker_filter},
        }
        user_roles = await self.db.userrole.find_many(
            where=where,  # type: ignore[arg-type]
            include={"user": True, "role": True},
        )

        users: Dict[str, UserWithRoles] = {}
        for user_role in user_roles:
            if not user_role.user or not user_role.role:
                continue
            role = RoleSummary(id=user_role.role.id, name=user_role.role.name)
            entry = users.get(user_role.user.id)
            if entry:
                entry.roles.append(role)
                continue
            users[user_role.user.id] = UserWithRoles(
                user=UserSummary.from_prisma(user_role.user),
                roles=[role],
            )

        return UsersWithPermission(
            permission=str(parsed),
            user_count=len(users),
            users=list(users.values()),
        )

    async def _get_profile_with_grants(self, user_id: str) -> Optional[Profile]:
        return await self.db.profile.find_unique(
            where={"id": user_id},
            include={"userRoles": {"include": ROLE_GRANTS_INCLUDE}},
        )

    @staticmethod
    def _holds(profile: Profile, parsed: PermissionString) -> bool:
        """
        True if a role of the profile carries the base ``resource:action`` or
        the full stored action (``read:own``).
        """
        accepted = {parsed.action, parsed.stored_action}
        for user_role in profile.userRoles or []:
            if not user_role.role:
                continue
            for role_permission in user_role.role.rolePermissions or []:
                permission = role_permission.permission
                if (
                    permission
                    and permission.resource == parsed.resource
                    and permission.action in accepted
                ):
                    return True
        return False

    async def user_has_permission_in_broker(
        self, user_id: str, permission: str, target_broker_id: str
    ) -> bool:
        """
        Check a permission against a specific broker.

        Without a scope the target must be in the user's hierarchy (system
        users, having no broker, pass once they hold the permission). The
        ``own`` scope requires the target to be exactly the user's broker.
        Any other scope is denied, and that includes the trailing segment of a
        compound action: ``users:assign:roles`` never passes here.

        Raises:
            InvalidPermissionFormatError: If the permission string is malformed
        """
        parsed = PermissionString.parse(permission)

        try:
            profile = await self._get_profile_with_grants(user_id)
            if not profile:
                logger.warning(
                    f"User profile {user_id} not found for permission check "
                    f"{permission} on broker {target_broker_id}"
                )
                return False

            if not self._holds(profile, parsed):
                logger.debug(f"User {user_id} lacks base permission {parsed.base}")
                return False

            if parsed.scope is None:
                if not profile.brokerId:
                    return True
                return await self.hierarchy_service.can_user_access_broker(
                    profile.brokerId, target_broker_id
                )

            if parsed.is_own_scope:
                is_own_broker = (
                    profile.brokerId is not None
                    and profile.brokerId == target_broker_id
                )
                logger.debug(
                    f"Own scope check for user {user_id}: broker "
                    f"{profile.brokerId} vs {target_broker_id} -> {is_own_broker}"
                )
                return is_own_broker

            logger.warning(
                f"Unknown permission scope '{parsed.scope}' in {permission} "
                f"for user {user_id}"
            )
            return False

        except Exception as e:
            logger.error(
                f"Error checking permission {permission} for user {user_id} "
                f"in broker {target_broker_id}: {e}",
                exc_info=True,
            )
            return False

    async def get_effective_broker_ids(
        self, user_id: str, permission: str
    ) -> List[str]:
        """
        Broker IDs the user may apply a permission to.

        Empty without the permission or without a broker, the user's own
        broker for the ``own`` scope, otherwise the user's whole subtree. A
        compound action such as ``users:assign:roles`` resolves to the subtree
        even though ``user_has_permission_in_broker`` denies it.

        Raises:
            InvalidPermissionFormatError: If the permission string is malformed
        """
        parsed = PermissionString.parse(permission)

        try:
            profile = await self._get_profile_with_grants(user_id)
            if not profile or not self._holds(profile, parsed):
                return []

            if not profile.brokerId:
                logger.debug(f"System user {user_id} has no broker context")
                return []

            if parsed.is_own_scope:
                return [profile.brokerId]

            return await self.hierarchy_service.get_descendant_broker_ids(
                profile.brokerId
            )

        except Exception as e:
            logger.error(
                f"Error getting effective broker IDs for user {user_id} "
                f"({permission}): {e}",
                exc_info=True,
            )
            return []

    def is_permission_broker_scoped(self, permission: str) -> bool:
        """
        True for ``:own`` permissions and for resources that always belong to
        a broker.
        """
        parsed = PermissionString.parse(permission)
        return parsed.is_own_scope or parsed.resource in BROKER_SCOPED_RESOURCES

    async def get_user_permissions_with_broker_scope(
        self, user_id: str
    ) -> UserPermissionsWithScope:
        base = await self.get_user_permissions(user_id)

        async def scope_of(permission: str) -> ScopedPermission:
            effective_broker_ids = await self.get_effective_broker_ids(
                user_id, permission
            )
            return ScopedPermission(
                permission=permission,
                is_broker_scoped=self.is_permission_broker_scoped(permission),
                effective_broker_ids=effective_broker_ids,
                effective_broker_count=len(effective_broker_ids),
            )

        enhanced = await asyncio.gather(
            *(scope_of(permission) for permission in base.permissions)
        )
        return UserPermissionsWithScope(
            **base.model_dump(), enhanced_permissions=list(enhanced)
        )
