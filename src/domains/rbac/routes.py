# src/domains/rbac/routes.py
from typing import List

from fastapi import APIRouter, Depends, status

from prisma import Prisma
from src.core.database import get_db
from src.domains.auth.dependencies import get_auth_context
from src.domains.auth.types import AuthContext
from src.domains.rbac.authorization import AuthorizationService
from src.domains.rbac.models import (
    AccessMatrix,
    AccessMatrixRequest,
    AssignedRole,
    BulkPermissionAssignment,
    BulkRoleAssignment,
    CheckPermissionRequest,
    FilteredUsers,
    FilterUsersByPermissionRequest,
    ManageUserResult,
    PermissionCheckResult,
    PermissionCreate,
    PermissionUpdate,
    ReplaceRolePermissionsRequest,
    ReplaceUserRolesRequest,
    RoleAssignmentValidation,
    RoleCreate,
    RoleDetail,
    RoleListItem,
    RolePermissionAssignment,
    RolePermissionRequest,
    RolePermissions,
    RolePermissionsRequest,
    RoleResponse,
    RoleUpdate,
    UserAccessSummary,
    UserRoleAssignment,
    UserRoleHolder,
    UserRoleRequest,
    UserRolesRequest,
)
from src.domains.rbac.service import RoleService, UserRoleService
from src.shared.permissions.dependencies import (
    get_broker_filter,
    require_broker_access,
    require_permission,
    require_role,
)
from src.shared.permissions.models import RoleName
from src.shared.permissions.services import PermissionService
from src.shared.permissions.types import (
    MessageResponse,
    PermissionResponse,
    ResourcePermissions,
    UserPermissions,
    UserPermissionsWithScope,
    UsersWithPermission,
)

router = APIRouter(prefix="/rbac", tags=["RBAC"])


# Roles


@router.post(
    "/roles",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createRole",
)
async def create_role(
    role_data: RoleCreate,
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> RoleResponse:
    service = RoleService(db)
    return await service.create_role(role_data)


@router.get("/roles", response_model=List[RoleListItem], operation_id="getRoles")
async def get_roles(
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> List[RoleListItem]:
    service = RoleService(db)
    return await service.get_roles()


@router.get(
    "/roles/by-name/{role_name}/users",
    response_model=List[UserRoleHolder],
    operation_id="getUsersWithRole",
)
async def get_users_with_role(
    role_name: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> List[UserRoleHolder]:
    """Users holding the role, limited to the caller's broker hierarchy."""
    service = UserRoleService(db)
    return await service.get_users_with_role(
        role_name, get_broker_filter(allowed_broker_ids)
    )


@router.get(
    "/roles/{role_id}/permissions",
    response_model=RolePermissions,
    operation_id="getRolePermissions",
)
async def get_role_permissions(
    role_id: str,
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> RolePermissions:
    service = RoleService(db)
    return await service.get_role_permissions(role_id)


@router.get("/roles/{role_id}", response_model=RoleDetail, operation_id="getRole")
async def get_role(
    role_id: str,
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> RoleDetail:
    service = RoleService(db)
    return await service.get_role_by_id(role_id)


@router.put("/roles/{role_id}", response_model=RoleResponse, operation_id="updateRole")
async def update_role(
    role_id: str,
    updates: RoleUpdate,
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> RoleResponse:
    service = RoleService(db)
    return await service.update_role(role_id, updates)


@router.delete(
    "/roles/{role_id}", response_model=MessageResponse, operation_id="deleteRole"
)
async def delete_role(
    role_id: str,
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> MessageResponse:
    """Delete a role. Refused while any user still holds it."""
    service = RoleService(db)
    return await service.delete_role(role_id)


# Permission catalogue


@router.post(
    "/permissions",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createPermission",
)
async def create_permission(
    permission_data: PermissionCreate,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> PermissionResponse:
    service = PermissionService(db)
    return await service.create_permission(
        permission_data.resource,
        permission_data.action,
        permission_data.description,
    )


@router.get(
    "/permissions",
    response_model=List[PermissionResponse],
    operation_id="getPermissions",
)
async def get_permissions(
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> List[PermissionResponse]:
    service = PermissionService(db)
    return await service.get_permissions()


@router.get(
    "/permissions/grouped",
    response_model=ResourcePermissions,
    operation_id="getPermissionsGroupedByResource",
)
async def get_permissions_grouped(
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> ResourcePermissions:
    service = PermissionService(db)
    return await service.get_resource_permissions()


@router.get(
    "/permissions/resource/{resource}",
    response_model=List[PermissionResponse],
    operation_id="getPermissionsByResource",
)
async def get_permissions_by_resource(
    resource: str,
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> List[PermissionResponse]:
    service = PermissionService(db)
    return await service.get_permissions_by_resource(resource)


@router.get(
    "/permissions/{permission}/users",
    response_model=UsersWithPermission,
    operation_id="getUsersWithPermission",
)
async def get_users_with_permission(
    permission: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> UsersWithPermission:
    service = PermissionService(db)
    return await service.get_users_with_permission(
        permission, get_broker_filter(allowed_broker_ids)
    )


@router.put(
    "/permissions/{permission_id}",
    response_model=PermissionResponse,
    operation_id="updatePermission",
)
async def update_permission(
    permission_id: str,
    updates: PermissionUpdate,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> PermissionResponse:
    service = PermissionService(db)
    return await service.update_permission(permission_id, updates.description)


@router.delete(
    "/permissions/{permission_id}",
    response_model=MessageResponse,
    operation_id="deletePermission",
)
async def delete_permission(
    permission_id: str,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> MessageResponse:
    service = PermissionService(db)
    return await service.delete_permission(permission_id)


# Role grants


@router.post(
    "/roles/permissions/assign",
    response_model=RolePermissionAssignment,
    status_code=status.HTTP_201_CREATED,
    operation_id="assignPermissionToRole",
)
async def assign_permission_to_role(
    request: RolePermissionRequest,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> RolePermissionAssignment:
    service = RoleService(db)
    return await service.assign_permission_to_role(
        request.role_id, request.permission_id
    )


@router.delete(
    "/roles/permissions/remove",
    response_model=MessageResponse,
    operation_id="removePermissionFromRole",
)
async def remove_permission_from_role(
    request: RolePermissionRequest,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> MessageResponse:
    service = RoleService(db)
    return await service.remove_permission_from_role(
        request.role_id, request.permission_id
    )


@router.post(
    "/roles/permissions/assign-multiple",
    response_model=BulkPermissionAssignment,
    status_code=status.HTTP_201_CREATED,
    operation_id="bulkAssignPermissionsToRole",
)
async def bulk_assign_permissions(
    request: RolePermissionsRequest,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> BulkPermissionAssignment:
    service = RoleService(db)
    return await service.bulk_assign_permissions(
        request.role_id, request.permission_ids
    )


@router.put(
    "/roles/permissions/replace",
    response_model=BulkPermissionAssignment,
    operation_id="replaceRolePermissions",
)
async def replace_role_permissions(
    request: ReplaceRolePermissionsRequest,
    context: AuthContext = Depends(require_role(RoleName.BROKER_ADMIN)),
    db: Prisma = Depends(get_db),
) -> BulkPermissionAssignment:
    service = RoleService(db)
    return await service.replace_role_permissions(
        request.role_id, request.permission_ids
    )


# User roles


@router.post(
    "/users/roles/assign",
    response_model=UserRoleAssignment,
    status_code=status.HTTP_201_CREATED,
    operation_id="assignRoleToUser",
)
async def assign_role_to_user(
    request: UserRoleRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> UserRoleAssignment:
    service = UserRoleService(db)
    return await service.assign_role_to_user(
        request.user_id, request.role_id, context.user_id, allowed_broker_ids
    )


@router.delete(
    "/users/roles/remove",
    response_model=MessageResponse,
    operation_id="removeRoleFromUser",
)
async def remove_role_from_user(
    request: UserRoleRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> MessageResponse:
    service = UserRoleService(db)
    return await service.remove_role_from_user(
        request.user_id, request.role_id, allowed_broker_ids
    )


@router.post(
    "/users/roles/assign-multiple",
    response_model=BulkRoleAssignment,
    status_code=status.HTTP_201_CREATED,
    operation_id="assignMultipleRolesToUser",
)
async def assign_multiple_roles(
    request: UserRolesRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> BulkRoleAssignment:
    service = UserRoleService(db)
    return await service.assign_multiple_roles(
        request.user_id, request.role_ids, context.user_id, allowed_broker_ids
    )


@router.put(
    "/users/roles/replace",
    response_model=BulkRoleAssignment,
    operation_id="replaceUserRoles",
)
async def replace_user_roles(
    request: ReplaceUserRolesRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:assign:roles")),
    db: Prisma = Depends(get_db),
) -> BulkRoleAssignment:
    service = UserRoleService(db)
    return await service.replace_user_roles(
        request.user_id, request.role_ids, context.user_id, allowed_broker_ids
    )


# Cross-user reads and checks


@router.get(
    "/users/{user_id}/roles",
    response_model=List[AssignedRole],
    operation_id="getUserRoles",
)
async def get_user_roles(
    user_id: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> List[AssignedRole]:
    await AuthorizationService(db).validate_user_access(user_id, allowed_broker_ids)
    service = UserRoleService(db)
    return await service.get_user_roles(user_id)


@router.get(
    "/users/{user_id}/permissions",
    response_model=UserPermissions,
    operation_id="getUserPermissions",
)
async def get_user_permissions(
    user_id: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> UserPermissions:
    await AuthorizationService(db).validate_user_access(user_id, allowed_broker_ids)
    service = PermissionService(db)
    return await service.get_user_permissions(user_id)


@router.post(
    "/users/check-permission",
    response_model=PermissionCheckResult,
    operation_id="checkUserPermission",
)
async def check_user_permission(
    request: CheckPermissionRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> PermissionCheckResult:
    service = AuthorizationService(db)
    has_permission = await service.check_user_permission(
        request.user_id, request.permission, allowed_broker_ids
    )
    service.log_permission_check(
        request.user_id,
        request.permission,
        has_permission,
        {"checked_by": context.user_id},
    )
    return PermissionCheckResult(
        user_id=request.user_id,
        permission=request.permission,
        has_permission=has_permission,
    )


@router.get(
    "/users/{user_id}/access-summary",
    response_model=UserAccessSummary,
    operation_id="getUserAccessSummary",
)
async def get_user_access_summary(
    user_id: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> UserAccessSummary:
    service = AuthorizationService(db)
    return await service.get_user_access_summary(user_id, allowed_broker_ids)


@router.get(
    "/users/{user_id}/can-manage",
    response_model=ManageUserResult,
    operation_id="canManageUser",
)
async def can_manage_user(
    user_id: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> ManageUserResult:
    """Whether the caller may manage the given user."""
    service = AuthorizationService(db)
    await service.validate_user_access(user_id, allowed_broker_ids)
    return await service.can_user_manage_user(context.user_id, user_id)


@router.post(
    "/users/filter-by-permission",
    response_model=FilteredUsers,
    operation_id="filterUsersByPermission",
)
async def filter_users_by_permission(
    request: FilterUsersByPermissionRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> FilteredUsers:
    service = AuthorizationService(db)
    return await service.filter_users_by_permission(
        request.user_ids, request.permission, allowed_broker_ids
    )


@router.post(
    "/users/validate-role-assignment",
    response_model=RoleAssignmentValidation,
    operation_id="validateRoleAssignment",
)
async def validate_role_assignment(
    request: UserRoleRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> RoleAssignmentValidation:
    service = AuthorizationService(db)
    await service.validate_user_access(request.user_id, allowed_broker_ids)
    return await service.validate_role_assignment(
        context.user_id, request.user_id, request.role_id
    )


@router.post(
    "/access-matrix",
    response_model=AccessMatrix,
    operation_id="getResourceAccessMatrix",
)
async def get_resource_access_matrix(
    request: AccessMatrixRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("users:read")),
    db: Prisma = Depends(get_db),
) -> AccessMatrix:
    service = AuthorizationService(db)
    for user_id in dict.fromkeys(request.user_ids):
        await service.validate_user_access(user_id, allowed_broker_ids)
    return await service.get_resource_access_matrix(
        request.user_ids, request.resources
    )


# Self-service


@router.get("/me/roles", response_model=List[AssignedRole], operation_id="getMyRoles")
async def get_my_roles(
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
) -> List[AssignedRole]:
    service = UserRoleService(db)
    return await service.get_user_roles(context.user_id)


@router.get(
    "/me/permissions",
    response_model=UserPermissions,
    operation_id="getMyPermissions",
)
async def get_my_permissions(
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
) -> UserPermissions:
    service = PermissionService(db)
    return await service.get_user_permissions(context.user_id)


@router.get(
    "/me/permissions/broker-scope",
    response_model=UserPermissionsWithScope,
    operation_id="getMyPermissionsWithBrokerScope",
)
async def get_my_permissions_with_broker_scope(
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
) -> UserPermissionsWithScope:
    """Each of the caller's permissions with the brokers it applies to."""
    service = PermissionService(db)
    return await service.get_user_permissions_with_broker_scope(context.user_id)


@router.get(
    "/me/access-summary",
    response_model=UserAccessSummary,
    operation_id="getMyAccessSummary",
)
async def get_my_access_summary(
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
) -> UserAccessSummary:
    service = AuthorizationService(db)
    return await service.get_user_access_summary(context.user_id, allowed_broker_ids)
