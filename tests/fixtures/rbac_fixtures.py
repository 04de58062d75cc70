"""
Test fixtures for roles, grants and per-request auth contexts.
"""

from unittest.mock import Mock

import pytest

from src.domains.auth.types import AuthContext
from src.shared.permissions.models import ROLE_LEVELS, ROLE_PERMISSIONS, RoleName
from tests.fixtures.broker_fixtures import ROOT_SUBTREE
from tests.helpers.route_testing import RouteTestHelper
from tests.utils.prisma_records import make_role


def seeded_role(role: RoleName) -> Mock:
    return make_role(
        role.value, level=ROLE_LEVELS[role], permissions=sorted(ROLE_PERMISSIONS[role])
    )


@pytest.fixture
def admin_role() -> Mock:
    return seeded_role(RoleName.BROKER_ADMIN)


@pytest.fixture
def employee_role() -> Mock:
    return seeded_role(RoleName.EMPLOYEE)


@pytest.fixture
def agent_role() -> Mock:
    return seeded_role(RoleName.AGENT)


@pytest.fixture
def admin_context() -> AuthContext:
    """broker_admin of broker-root, which sees the whole root subtree."""
    return RouteTestHelper.create_auth_context(
        user_id="user-1",
        broker_id="broker-root",
        accessible_broker_ids=list(ROOT_SUBTREE),
    )


@pytest.fixture
def north_admin_context() -> AuthContext:
    return RouteTestHelper.create_auth_context(
        user_id="user-north",
        broker_id="broker-north",
        accessible_broker_ids=["broker-north", "broker-north-a", "broker-north-b"],
        hierarchy_level=1,
    )


@pytest.fixture
def agent_context() -> AuthContext:
    return RouteTestHelper.create_auth_context(
        user_id="user-agent",
        broker_id="broker-north-a",
        roles=(RoleName.AGENT,),
        hierarchy_level=2,
    )


@pytest.fixture
def system_context() -> AuthContext:
    return RouteTestHelper.create_auth_context(
        user_id="system-1", broker_id=None, roles=(RoleName.BROKER_ADMIN,)
    )
