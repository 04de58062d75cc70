"""
Shared permission system for broker-scoped role-based access control.

Permissions are ``resource:action`` strings, optionally suffixed with a
``:own`` scope. Evaluation lives in ``PermissionService``; the FastAPI route
guards live in ``src.shared.permissions.dependencies`` and are imported from
there directly.

Usage:
    from src.shared.permissions.dependencies import (
        require_broker_access,
        require_permission,
    )

    @router.get("/clients")
    async def list_clients(
        context: AuthContext = Depends(require_permission("clients:read")),
        allowed_broker_ids: List[str] = Depends(require_broker_access()),
    ):
        pass
"""

from .models import (
    BROKER_SCOPED_RESOURCES,
    ROLE_PERMISSIONS,
    PermissionScope,
    PermissionString,
    RoleName,
)
from .services import PermissionService

__all__ = [
    "BROKER_SCOPED_RESOURCES",
    "PermissionScope",
    "PermissionService",
    "PermissionString",
    "ROLE_PERMISSIONS",
    "RoleName",
]
