# src/domains/rbac/models.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from prisma.models import Profile, Role, RolePermission
from pydantic import BaseModel, Field, field_validator

from src.shared.permissions.models import PermissionString
from src.shared.permissions.types import PermissionResponse, UserSummary

# Requests


class RoleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    level: int = Field(default=1, ge=1)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    level: Optional[int] = Field(default=None, ge=1)


class PermissionCreate(BaseModel):
    resource: str = Field(min_length=1)
    action: str = Field(min_length=1)
    description: Optional[str] = None


class PermissionUpdate(BaseModel):
    description: Optional[str] = None


class RolePermissionRequest(BaseModel):
    role_id: str
    permission_id: str


class RolePermissionsRequest(BaseModel):
    role_id: str
    permission_ids: List[str] = Field(min_length=1)


class ReplaceRolePermissionsRequest(BaseModel):
    role_id: str
    permission_ids: List[str]


class UserRoleRequest(BaseModel):
    user_id: str
    role_id: str


class UserRolesRequest(BaseModel):
    user_id: str
    role_ids: List[str] = Field(min_length=1)


class ReplaceUserRolesRequest(BaseModel):
    user_id: str
    role_ids: List[str]


class CheckPermissionRequest(BaseModel):
    user_id: str
    permission: str

    @field_validator("permission")
    @classmethod
    def validate_permission(cls, v: str) -> str:
        PermissionString.parse(v)
        return v


class FilterUsersByPermissionRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)
    permission: str


class AccessMatrixRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)
    resources: List[str] = Field(min_length=1)


class ResourceActionRequest(BaseModel):
    resource: str
    action: str


class ResourceRequirement(BaseModel):
    id: str
    resource: str
    required_action: str


# Responses


class ProfileSummary(BaseModel):
    id: str
    first_name: str
    last_name: str

    @classmethod
    def from_prisma(cls, profile: Profile) -> "ProfileSummary":
        return cls(
            id=profile.id, first_name=profile.firstName, last_name=profile.lastName
        )


class RoleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    level: int = 1
    created_at: Optional[datetime] = None

    @classmethod
    def from_prisma(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            level=role.level,
            created_at=role.createdAt,
        )


class RolePermissionItem(BaseModel):
    id: str
    resource: str
    action: str
    description: Optional[str] = None
    assigned_at: Optional[datetime] = None

    @classmethod
    def from_prisma(cls, role_permission: RolePermission) -> "RolePermissionItem":
        permission = role_permission.permission
        return cls(
            id=permission.id,  # type: ignore[union-attr]
            resource=permission.resource,  # type: ignore[union-attr]
            action=permission.action,  # type: ignore[union-attr]
            description=permission.description,  # type: ignore[union-attr]
            assigned_at=role_permission.createdAt,
        )


class RoleWithPermissions(RoleResponse):
    permissions: List[RolePermissionItem]


class RoleListItem(RoleWithPermissions):
    permission_count: int
    user_count: int


class RoleHolder(BaseModel):
    user: UserSummary
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[ProfileSummary] = None


class RoleDetail(RoleWithPermissions):
    users: List[RoleHolder]


class RolePermissionAssignment(BaseModel):
    role: RoleResponse
    permission: PermissionResponse
    message: str


class RolePermissions(BaseModel):
    role_id: str
    role_name: str
    permissions: List[RolePermissionItem]


class BulkPermissionAssignment(BaseModel):
    message: str
    assigned_permissions: int
    skipped_permissions: int = 0


class UserRoleAssignment(BaseModel):
    user: ProfileSummary
    role: RoleResponse
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[ProfileSummary] = None


class AssignedRole(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[ProfileSummary] = None
    permissions: List[RolePermissionItem]


class UserRoleHolder(BaseModel):
    user: UserSummary
    role: RoleResponse
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[ProfileSummary] = None


class BulkRoleAssignment(BaseModel):
    message: str
    assigned_roles: int
    skipped_roles: int = 0


# Authorization results


class PermissionCheckResult(BaseModel):
    user_id: str
    permission: str
    has_permission: bool


class ResourceAccessResult(BaseModel):
    allowed: bool
    permission: str
    user_id: str
    error: Optional[str] = None


class AnyResourceAccessResult(BaseModel):
    allowed: bool
    permissions: List[str]
    user_id: str
    error: Optional[str] = None


class FilteredUsers(BaseModel):
    permission: str
    authorized_users: List[str]
    unauthorized_users: List[str]
    total_users: int
    authorized_count: int


class FilteredResources(BaseModel):
    user_id: str
    accessible_resources: List[ResourceRequirement]
    inaccessible_resources: List[ResourceRequirement]
    total_resources: int
    accessible_count: int


class ManageUserResult(BaseModel):
    allowed: bool
    reason: str
    manager_id: str
    target_user_id: str
    is_self_management: bool = False


class AccessSummaryCounts(BaseModel):
    role_count: int
    permission_count: int
    resource_count: int


class AccessSummaryRole(BaseModel):
    id: str
    name: str
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[ProfileSummary] = None
    permission_count: int


class ResourceGrant(BaseModel):
    action: str
    description: Optional[str] = None
    from_role: str


class UserAccessSummary(BaseModel):
    user_id: str
    summary: AccessSummaryCounts
    roles: List[AccessSummaryRole]
    permissions_by_resource: Dict[str, List[ResourceGrant]]
    flat_permissions: List[str]


class RoleAssignmentValidation(BaseModel):
    valid: bool
    reason: str
    assigner_id: str
    target_user_id: str
    role_id: str
    target_user: Optional[ProfileSummary] = None
    role: Optional[RoleResponse] = None


class AccessMatrixSummary(BaseModel):
    total_cells: int
    granted_cells: int


class AccessMatrix(BaseModel):
    matrix: Dict[str, Dict[str, bool]]
    user_count: int
    resource_count: int
    summary: AccessMatrixSummary


class PermissionCheckEvent(BaseModel):
    timestamp: datetime
    user_id: str
    permission: str
    granted: bool
    context: Optional[Dict[str, Any]] = None
