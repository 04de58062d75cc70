import logging
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from fastapi import Depends

from src.domains.auth.dependencies import get_auth_context
from src.domains.auth.types import AuthContext
from src.shared.exceptions import (
    BaseHTTPException,
    BrokerContextMissingError,
    ForbiddenError,
)

from .models import PermissionScope, PermissionString, RoleName

logger = logging.getLogger(__name__)

BrokerAccessScope = Literal["own", "hierarchy"]


def require_permission(
    permission: str,
) -> Callable[..., Awaitable[AuthContext]]:
    """
    Dependency factory for permission-based authorization.

    Creates a dependency that validates the current user holds the given
    permission string through any of their roles.

    Args:
        permission: ``resource:action`` or ``resource:action:scope``

    Returns:
        Async dependency function that validates permission and returns the
        caller's auth context

    Raises:
        InvalidPermissionFormatError: At route definition time, for a malformed
            permission string
    """
    PermissionString.parse(permission)

    async def check_permission(
        context: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if not context.has_permission(permission):
            logger.warning(
                f"Permission denied for user {context.user_id}: {permission} required"
            )
            raise ForbiddenError(f"Insufficient permissions: {permission} required")
        return context

    return check_permission


def require_any_permission(
    *permissions: str,
) -> Callable[..., Awaitable[AuthContext]]:
    """Like ``require_permission`` but any one of ``permissions`` suffices."""
    for permission in permissions:
        PermissionString.parse(permission)

    async def check_any_permission(
        context: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if not any(context.has_permission(p) for p in permissions):
            required = ", ".join(permissions)
            logger.warning(
                f"Permission denied for user {context.user_id}: "
                f"one of {required} required"
            )
            raise ForbiddenError(
                f"Insufficient permissions: one of {required} required"
            )
        return context

    return check_any_permission


def require_role(role: RoleName) -> Callable[..., Awaitable[AuthContext]]:
    async def check_role(
        context: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if not context.has_role(role):
            logger.warning(
                f"Role denied for user {context.user_id}: {role.value} required"
            )
            raise ForbiddenError(f"Insufficient role: {role.value} required")
        return context

    return check_role


def resolve_allowed_broker_ids(
    context: AuthContext,
    scope: str = "hierarchy",
    skip_for_system_users: bool = False,
) -> Optional[List[str]]:
    """
    Broker IDs the caller may touch for the given access scope.

    Returns:
        The caller's broker alone for ``own``, the caller's subtree for
        ``hierarchy``, or None when a system user is let through unrestricted

    Raises:
        BrokerContextMissingError: If the context carries no broker context
        ForbiddenError: If a system user reaches a broker-scoped route
        BaseHTTPException: For an unknown scope (500)
    """
    broker_context = context.broker_context
    if broker_context is None:
        logger.error(f"Broker context missing for user {context.user_id}")
        raise BrokerContextMissingError()

    if broker_context.is_system_user:
        if skip_for_system_users:
            return None
        raise ForbiddenError("Broker access required")

    if scope == PermissionScope.OWN.value:
        return [broker_context.user_broker_id]  # type: ignore[list-item]

    if scope == "hierarchy":
        return list(broker_context.accessible_broker_ids)

    logger.error(f"Invalid broker access scope '{scope}'")
    raise BaseHTTPException("Invalid broker access scope")


def require_broker_access(
    scope: BrokerAccessScope = "hierarchy",
    skip_for_system_users: bool = False,
) -> Callable[..., Awaitable[Optional[List[str]]]]:
    """
    Dependency factory resolving the broker IDs a route may filter on.

    Args:
        scope: ``own`` restricts to the caller's broker, ``hierarchy`` allows
            the caller's whole subtree
        skip_for_system_users: Let users without a broker through with no
            broker restriction (the dependency yields None)
    """

    async def check_broker_access(
        context: AuthContext = Depends(get_auth_context),
    ) -> Optional[List[str]]:
        return resolve_allowed_broker_ids(context, scope, skip_for_system_users)

    return check_broker_access


async def require_specific_broker_access(
    broker_id: str,
    context: AuthContext = Depends(get_auth_context),
) -> str:
    """
    Guard for routes with a ``broker_id`` path parameter: the broker must be
    within the caller's hierarchy.
    """
    allowed_broker_ids = resolve_allowed_broker_ids(context)
    validate_broker_access(broker_id, allowed_broker_ids)
    return broker_id


def get_broker_filter(allowed_broker_ids: Optional[List[str]]) -> Dict[str, Any]:
    """Prisma ``where`` fragment restricting rows to the allowed brokers."""
    if allowed_broker_ids is None:
        return {}
    return {"brokerId": {"in": allowed_broker_ids}}


def validate_broker_access(
    broker_id: Optional[str], allowed_broker_ids: Optional[List[str]]
) -> None:
    """
    Raises:
        ForbiddenError: If ``broker_id`` is outside ``allowed_broker_ids``
    """
    if allowed_broker_ids is None:
        return
    if not broker_id or broker_id not in allowed_broker_ids:
        raise ForbiddenError("Access denied to this broker")
