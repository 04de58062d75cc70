from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set

from src.shared.exceptions import InvalidPermissionFormatError


class PermissionScope(str, Enum):
    """Scope suffixes understood by broker-scoped evaluation."""

    OWN = "own"


class RoleName(str, Enum):
    """
    The canonical roles every broker hierarchy is built on.

    Any branching on a role name goes through this enum.
    """

    BROKER_ADMIN = "broker_admin"  # Registers a broker, full access to its tree
    EMPLOYEE = "employee"  # Manages clients across the tree
    AGENT = "agent"  # Invited sub-broker, own broker only


ROLE_LEVELS: dict[RoleName, int] = {
    RoleName.BROKER_ADMIN: 1,
    RoleName.EMPLOYEE: 2,
    RoleName.AGENT: 3,
}

ROLE_DESCRIPTIONS: dict[RoleName, str] = {
    RoleName.BROKER_ADMIN: "Administrator with full access to the broker system",
    RoleName.EMPLOYEE: "Employee with access to manage clients and view reports",
    RoleName.AGENT: "Agent with limited access to their own clients",
}

# Resources whose data always belongs to a broker, whether or not an
# ``:own`` variant of the permission exists.
BROKER_SCOPED_RESOURCES: frozenset[str] = frozenset(
    {"clients", "policies", "records", "invitations"}
)

# Any one of these lets a user manage another user.
USER_MANAGEMENT_PERMISSIONS: tuple[str, ...] = (
    "users:update",
    "users:delete",
    "users:assign:roles",
)


@dataclass(frozen=True)
class PermissionString:
    """
    Parsed form of ``resource:action`` or ``resource:action:scope``.

    Stored Permission rows keep everything after ``resource:`` in their
    ``action`` column (``read:own``, ``assign:roles``); ``stored_action``
    rebuilds that value.
    """

    resource: str
    action: str
    scope: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "PermissionString":
        """
        Parse a permission string.

        Raises:
            InvalidPermissionFormatError: If resource or action is missing
        """
        if not isinstance(value, str):
            raise InvalidPermissionFormatError()

        parts = value.split(":", 2)
        resource = parts[0]
        action = parts[1] if len(parts) > 1 else ""

        if not resource or not action:
            raise InvalidPermissionFormatError()

        scope = parts[2] if len(parts) > 2 and parts[2] else None
        return cls(resource=resource, action=action, scope=scope)

    @property
    def stored_action(self) -> str:
        return f"{self.action}:{self.scope}" if self.scope else self.action

    @property
    def base(self) -> str:
        return f"{self.resource}:{self.action}"

    @property
    def is_own_scope(self) -> bool:
        return self.scope == PermissionScope.OWN.value

    def __str__(self) -> str:
        return f"{self.resource}:{self.stored_action}"


# Seeded permission catalogue: (resource, action, description)
DEFAULT_PERMISSIONS: list[tuple[str, str, str]] = [
    ("invitations", "create", "Create new invitations"),
    ("invitations", "read", "View invitations"),
    ("invitations", "update", "Update invitation status"),
    ("invitations", "delete", "Delete invitations"),
    ("clients", "create", "Create new clients"),
    ("clients", "read", "View clients"),
    ("clients", "update", "Update client information"),
    ("clients", "delete", "Delete clients"),
    ("clients", "read:own", "View own clients only"),
    ("clients", "update:own", "Update own clients only"),
    ("users", "create", "Create new users"),
    ("users", "read", "View all users"),
    ("users", "update", "Update user information"),
    ("users", "delete", "Delete users"),
    ("users", "read:own", "View own user profile"),
    ("users", "update:own", "Update own user profile"),
    ("users", "assign:roles", "Assign roles to users"),
]

ROLE_PERMISSIONS: dict[RoleName, Set[str]] = {
    RoleName.BROKER_ADMIN: {
        # Full access to every resource
        "invitations:create",
        "invitations:read",
        "invitations:update",
        "invitations:delete",
        "clients:create",
        "clients:read",
        "clients:update",
        "clients:delete",
        "users:create",
        "users:read",
        "users:update",
        "users:delete",
        "users:assign:roles",
    },
    RoleName.EMPLOYEE: {
        # Manages clients, reads users
        "invitations:read",
        "clients:create",
        "clients:read",
        "clients:update",
        "users:read",
        "users:read:own",
        "users:update:own",
    },
    RoleName.AGENT: {
        # Own clients and own profile only
        "clients:create",
        "clients:read:own",
        "clients:update:own",
        "users:read:own",
        "users:update:own",
    },
}
