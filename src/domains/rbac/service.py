# src/domains/rbac/service.py
import logging
from typing import Any, Dict, List, Optional

from prisma.models import Profile

from prisma import Prisma
from src.domains.rbac.models import (
    AssignedRole,
    BulkPermissionAssignment,
    BulkRoleAssignment,
    ProfileSummary,
    RoleCreate,
    RoleDetail,
    RoleHolder,
    RoleListItem,
    RolePermissionAssignment,
    RolePermissionItem,
    RolePermissions,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
    UserRoleAssignment,
    UserRoleHolder,
)
from src.shared.exceptions import ConflictError, ForbiddenError, NotFoundError
from src.shared.permissions.types import (
    MessageResponse,
    PermissionResponse,
    UserSummary,
)

logger = logging.getLogger(__name__)

ROLE_PERMISSIONS_INCLUDE: Dict[str, Any] = {
    "rolePermissions": {"include": {"permission": True}}
}


def _role_permission_items(role: Any) -> List[RolePermissionItem]:
    return [
        RolePermissionItem.from_prisma(role_permission)
        for role_permission in (role.rolePermissions or [])
        if role_permission.permission
    ]


def _assigner(user_role: Any) -> Optional[ProfileSummary]:
    if not user_role.assigner:
        return None
    return ProfileSummary.from_prisma(user_role.assigner)


class RoleService:
    """Role catalogue and role-to-permission grants."""

    def __init__(self, db: Prisma):
        self.db = db

    async def create_role(self, role_data: RoleCreate) -> RoleResponse:
        existing = await self.db.role.find_unique(where={"name": role_data.name})
        if existing:
            raise ConflictError("Role already exists")

        role = await self.db.role.create(
            data={
                "name": role_data.name,
                "description": role_data.description,
                "level": role_data.level,
            }
        )
        logger.info(f"Created role {role.name} (level {role.level})")
        return RoleResponse.from_prisma(role)

    async def get_roles(self) -> List[RoleListItem]:
        roles = await self.db.role.find_many(
            include={**ROLE_PERMISSIONS_INCLUDE, "userRoles": True},
            order={"name": "asc"},
        )

        return [
            RoleListItem(
                **RoleResponse.from_prisma(role).model_dump(),
                permissions=_role_permission_items(role),
                permission_count=len(role.rolePermissions or []),
                user_count=len(role.userRoles or []),
            )
            for role in roles
        ]

    async def get_role_by_id(self, role_id: str) -> RoleDetail:
        role = await self.db.role.find_unique(
            where={"id": role_id},
            include={
                **ROLE_PERMISSIONS_INCLUDE,
                "userRoles": {"include": {"user": True, "assigner": True}},
            },
        )
        if not role:
            raise NotFoundError("Role not found")

        return RoleDetail(
            **RoleResponse.from_prisma(role).model_dump(),
            permissions=_role_permission_items(role),
            users=[
                RoleHolder(
                    user=UserSummary.from_prisma(user_role.user),
                    assigned_at=user_role.assignedAt,
                    assigned_by=_assigner(user_role),
                )
                for user_role in (role.userRoles or [])
                if user_role.user
            ],
        )

    async def get_role_by_name(self, name: str) -> RoleWithPermissions:
        role = await self.db.role.find_unique(
            where={"name": name}, include=ROLE_PERMISSIONS_INCLUDE
        )
        if not role:
            raise NotFoundError("Role not found")

        return RoleWithPermissions(
            **RoleResponse.from_prisma(role).model_dump(),
            permissions=_role_permission_items(role),
        )

    async def update_role(self, role_id: str, updates: RoleUpdate) -> RoleResponse:
        role = await self.db.role.find_unique(where={"id": role_id})
        if not role:
            raise NotFoundError("Role not found")

        if updates.name and updates.name != role.name:
            existing = await self.db.role.find_unique(where={"name": updates.name})
            if existing:
                raise ConflictError("Role name already exists")

        data = updates.model_dump(exclude_unset=True)
        updated = await self.db.role.update(
            where={"id": role_id},
            data=data,  # type: ignore[arg-type]
        )
        if not updated:
            raise NotFoundError("Role not found")
        return RoleResponse.from_prisma(updated)

    async def delete_role(self, role_id: str) -> MessageResponse:
        role = await self.db.role.find_unique(
            where={"id": role_id}, include={"userRoles": True}
        )
        if not role:
            raise NotFoundError("Role not found")

        if role.userRoles:
            raise ConflictError("Cannot delete role that is assigned to users")

        # Role grants cascade with the role
        await self.db.role.delete(where={"id": role_id})
        logger.info(f"Deleted role {role.name}")
        return MessageResponse(message="Role deleted successfully")

    async def assign_permission_to_role(
        self, role_id: str, permission_id: str
    ) -> RolePermissionAssignment:
        role = await self.db.role.find_unique(where={"id": role_id})
        if not role:
            raise NotFoundError("Role not found")

        permission = await self.db.permission.find_unique(where={"id": permission_id})
        if not permission:
            raise NotFoundError("Permission not found")

        existing = await self.db.rolepermission.find_unique(
            where={
                "roleId_permissionId": {
                    "roleId": role_id,
                    "permissionId": permission_id,
                }
            }
        )
        if existing:
            raise ConflictError("Role already has this permission")

        await self.db.rolepermission.create(
            data={"roleId": role_id, "permissionId": permission_id}
        )
        logger.info(
            f"Granted {permission.resource}:{permission.action} to role {role.name}"
        )
        return RolePermissionAssignment(
            role=RoleResponse.from_prisma(role),
            permission=PermissionResponse.from_prisma(permission),
            message="Permission assigned to role successfully",
        )

    async def remove_permission_from_role(
        self, role_id: str, permission_id: str
    ) -> MessageResponse:
        key: Any = {
            "roleId_permissionId": {"roleId": role_id, "permissionId": permission_id}
        }
        existing = await self.db.rolepermission.find_unique(where=key)
        if not existing:
            raise NotFoundError("Role does not have this permission")

        await self.db.rolepermission.delete(where=key)
        logger.info(f"Revoked permission {permission_id} from role {role_id}")
        return MessageResponse(message="Permission removed from role successfully")

    async def get_role_permissions(self, role_id: str) -> RolePermissions:
        role = await self.db.role.find_unique(
            where={"id": role_id}, include=ROLE_PERMISSIONS_INCLUDE
        )
        if not role:
            raise NotFoundError("Role not found")

        return RolePermissions(
            role_id=role.id,
            role_name=role.name,
            permissions=_role_permission_items(role),
        )

    async def _require_role_and_permissions(
        self, role_id: str, permission_ids: List[str]
    ) -> None:
        role = await self.db.role.find_unique(where={"id": role_id})
        if not role:
            raise NotFoundError("Role not found")

        unique_ids = list(dict.fromkeys(permission_ids))
        if not unique_ids:
            return
        permissions = await self.db.permission.find_many(
            where={"id": {"in": unique_ids}}
        )
        if len(permissions) != len(unique_ids):
            raise NotFoundError("One or more permissions not found")

    async def bulk_assign_permissions(
        self, role_id: str, permission_ids: List[str]
    ) -> BulkPermissionAssignment:
        """
        Grant several permissions at once, skipping those the role already has.

        Raises:
            ConflictError: If the role already has every requested permission
        """
        permission_ids = list(dict.fromkeys(permission_ids))
        await self._require_role_and_permissions(role_id, permission_ids)

        existing = await self.db.rolepermission.find_many(
            where={"roleId": role_id, "permissionId": {"in": permission_ids}}
        )
        existing_ids = {role_permission.permissionId for role_permission in existing}
        new_ids = [pid for pid in permission_ids if pid not in existing_ids]

        if not new_ids:
            raise ConflictError("Role already has all specified permissions")

        count = await self.db.rolepermission.create_many(
            data=[{"roleId": role_id, "permissionId": pid} for pid in new_ids]
        )
        logger.info(f"Granted {count} permissions to role {role_id}")
        return BulkPermissionAssignment(
            message=f"Successfully assigned {count} new permissions to role",
            assigned_permissions=len(new_ids),
            skipped_permissions=len(existing_ids),
        )

    async def replace_role_permissions(
        self, role_id: str, permission_ids: List[str]
    ) -> BulkPermissionAssignment:
        """Atomically replace every grant of a role."""
        permission_ids = list(dict.fromkeys(permission_ids))
        await self._require_role_and_permissions(role_id, permission_ids)

        async with self.db.tx() as transaction:
            await transaction.rolepermission.delete_many(where={"roleId": role_id})
            count = 0
            if permission_ids:
                count = await transaction.rolepermission.create_many(
                    data=[
                        {"roleId": role_id, "permissionId": pid}
                        for pid in permission_ids
                    ]
                )

        logger.info(f"Replaced grants of role {role_id} with {count} permissions")
        return BulkPermissionAssignment(
            message="Role permissions replaced successfully",
            assigned_permissions=count,
        )


class UserRoleService:
    """
    Role assignments for users.

    Mutations accept the caller's ``allowed_broker_ids``; a target user whose
    broker is outside that set is refused before anything is written.
    """

    def __init__(self, db: Prisma):
        self.db = db

    async def _get_target_user(
        self, user_id: str, allowed_broker_ids: Optional[List[str]], verb: str
    ) -> Profile:
        user = await self.db.profile.find_unique(
            where={"id": user_id}, include={"broker": True}
        )
        if not user:
            raise NotFoundError("User not found")

        if allowed_broker_ids is not None and user.brokerId not in allowed_broker_ids:
            broker_name = user.broker.name if user.broker else "Unknown"
            logger.warning(
                f"Refused to {verb} roles for user {user_id} outside the caller's "
                f"broker hierarchy (broker {user.brokerId})"
            )
            raise ForbiddenError(
                f"Access denied: Cannot {verb} roles for users outside your broker "
                f"hierarchy. User belongs to broker: {broker_name}"
            )
        return user

    async def _require_roles(self, role_ids: List[str]) -> None:
        if not role_ids:
            return
        roles = await self.db.role.find_many(where={"id": {"in": role_ids}})
        if len(roles) != len(role_ids):
            raise NotFoundError("One or more roles not found")

    async def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        assigned_by: str,
        allowed_broker_ids: Optional[List[str]] = None,
    ) -> UserRoleAssignment:
        role = await self.db.role.find_unique(where={"id": role_id})
        if not role:
            raise NotFoundError("Role not found")

        await self._get_target_user(user_id, allowed_broker_ids, "assign")

        existing = await self.db.userrole.find_unique(
            where={"userId_roleId": {"userId": user_id, "roleId": role_id}}
        )
        if existing:
            raise ConflictError("User already has this role")

        user_role = await self.db.userrole.create(
            data={"userId": user_id, "roleId": role_id, "assignedBy": assigned_by},
            include={"role": True, "user": True, "assigner": True},
        )
        logger.info(f"User {assigned_by} assigned role {role.name} to user {user_id}")
        return UserRoleAssignment(
            user=ProfileSummary.from_prisma(user_role.user),  # type: ignore[arg-type]
            role=RoleResponse.from_prisma(user_role.role or role),
            assigned_at=user_role.assignedAt,
            assigned_by=_assigner(user_role),
        )

    async def remove_role_from_user(
        self,
        user_id: str,
        role_id: str,
        allowed_broker_ids: Optional[List[str]] = None,
    ) -> MessageResponse:
        await self._get_target_user(user_id, allowed_broker_ids, "remove")

        key: Any = {"userId_roleId": {"userId": user_id, "roleId": role_id}}
        existing = await self.db.userrole.find_unique(where=key)
        if not existing:
            raise NotFoundError("User does not have this role")

        await self.db.userrole.delete(where=key)
        logger.info(f"Removed role {role_id} from user {user_id}")
        return MessageResponse(message="Role removed from user successfully")

    async def get_user_roles(self, user_id: str) -> List[AssignedRole]:
        user_roles = await self.db.userrole.find_many(
            where={"userId": user_id},
            include={
                "role": {"include": ROLE_PERMISSIONS_INCLUDE},
                "assigner": True,
            },
            order={"assignedAt": "asc"},
        )

        return [
            AssignedRole(
                id=user_role.role.id,
                name=user_role.role.name,
                description=user_role.role.description,
                assigned_at=user_role.assignedAt,
                assigned_by=_assigner(user_role),
                permissions=_role_permission_items(user_role.role),
            )
            for user_role in user_roles
            if user_role.role
        ]

    async def get_users_with_role(
        self, role_name: str, broker_filter: Dict[str, Any]
    ) -> List[UserRoleHolder]:
        user_roles = await self.db.userrole.find_many(
            where={
                "role": {"is": {"name": role_name}},
                "user": {"is": broker_filter},
            },  # type: ignore[arg-type]
            include={"user": True, "role": True, "assigner": True},
        )

        return [
            UserRoleHolder(
                user=UserSummary.from_prisma(user_role.user),
                role=RoleResponse.from_prisma(user_role.role),
                assigned_at=user_role.assignedAt,
                assigned_by=_assigner(user_role),
            )
            for user_role in user_roles
            if user_role.user and user_role.role
        ]

    async def assign_multiple_roles(
        self,
        user_id: str,
        role_ids: List[str],
        assigned_by: str,
        allowed_broker_ids: Optional[List[str]] = None,
    ) -> BulkRoleAssignment:
        """
        Assign several roles, skipping those the user already holds.

        Raises:
            ConflictError: If the user already holds every requested role
        """
        role_ids = list(dict.fromkeys(role_ids))
        await self._get_target_user(user_id, allowed_broker_ids, "assign")
        await self._require_roles(role_ids)

        existing = await self.db.userrole.find_many(
            where={"userId": user_id, "roleId": {"in": role_ids}}
        )
        existing_ids = {user_role.roleId for user_role in existing}
        new_ids = [rid for rid in role_ids if rid not in existing_ids]

        if not new_ids:
            raise ConflictError("User already has all specified roles")

        count = await self.db.userrole.create_many(
            data=[
                {"userId": user_id, "roleId": rid, "assignedBy": assigned_by}
                for rid in new_ids
            ]
        )
        logger.info(f"User {assigned_by} assigned {count} roles to user {user_id}")
        return BulkRoleAssignment(
            message=f"Successfully assigned {count} new roles to user",
            assigned_roles=len(new_ids),
            skipped_roles=len(existing_ids),
        )

    async def replace_user_roles(
        self,
        user_id: str,
        role_ids: List[str],
        assigned_by: str,
        allowed_broker_ids: Optional[List[str]] = None,
    ) -> BulkRoleAssignment:
        """Atomically replace every role a user holds."""
        role_ids = list(dict.fromkeys(role_ids))
        await self._get_target_user(user_id, allowed_broker_ids, "assign")
        await self._require_roles(role_ids)

        async with self.db.tx() as transaction:
            await transaction.userrole.delete_many(where={"userId": user_id})
            count = 0
            if role_ids:
                count = await transaction.userrole.create_many(
                    data=[
                        {"userId": user_id, "roleId": rid, "assignedBy": assigned_by}
                        for rid in role_ids
                    ]
                )

        logger.info(f"User {assigned_by} replaced roles of user {user_id} ({count})")
        return BulkRoleAssignment(
            message="User roles replaced successfully",
            assigned_roles=count,
        )
