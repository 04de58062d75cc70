"""Result types returned by the permission engine."""

from datetime import datetime
from typing import Dict, List, Optional

from prisma.models import Permission, Profile
from pydantic import BaseModel


class PermissionResponse(BaseModel):
    id: str
    resource: str
    action: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_prisma(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
            created_at=permission.createdAt,
        )


class ResourceAction(BaseModel):
    id: str
    action: str
    description: Optional[str] = None


class DetailedPermission(BaseModel):
    id: str
    resource: str
    action: str
    description: Optional[str] = None
    from_role: str


class UserPermissions(BaseModel):
    user_id: str
    permissions: List[str]
    detailed_permissions: List[DetailedPermission]
    role_count: int


class ScopedPermission(BaseModel):
    permission: str
    is_broker_scoped: bool
    effective_broker_ids: List[str]
    effective_broker_count: int


class UserPermissionsWithScope(UserPermissions):
    enhanced_permissions: List[ScopedPermission]


class UserSummary(BaseModel):
    id: str
    first_name: str
    last_name: str
    cedula_ruc: Optional[str] = None
    is_active: Optional[bool] = None

    @classmethod
    def from_prisma(cls, profile: Profile) -> "UserSummary":
        return cls(
            id=profile.id,
            first_name=profile.firstName,
            last_name=profile.lastName,
            cedula_ruc=profile.cedulaRuc,
            is_active=profile.isActive,
        )


class RoleSummary(BaseModel):
    id: str
    name: str


class UserWithRoles(BaseModel):
    user: UserSummary
    roles: List[RoleSummary]


class UsersWithPermission(BaseModel):
    permission: str
    user_count: int
    users: List[UserWithRoles]


class MessageResponse(BaseModel):
    message: str


ResourcePermissions = Dict[str, List[ResourceAction]]
