"""
Global pytest configuration and fixtures for the Broker API test suite.
"""

import os
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock

import jwt
import pytest

# Set test environment variables before the application settings load
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only-32-chars"

# Import fixtures from fixture modules
from tests.fixtures.auth_fixtures import *  # noqa: E402, F403, F401
from tests.fixtures.broker_fixtures import *  # noqa: E402, F403, F401
from tests.fixtures.invitation_fixtures import *  # noqa: E402, F403, F401
from tests.fixtures.rbac_fixtures import *  # noqa: E402, F403, F401

PRISMA_MODELS = (
    "broker",
    "profile",
    "role",
    "permission",
    "rolepermission",
    "userrole",
    "invitation",
)

PRISMA_ACTIONS = (
    "find_unique",
    "find_first",
    "find_many",
    "create",
    "create_many",
    "update",
    "update_many",
    "upsert",
    "delete",
    "delete_many",
    "count",
)


@pytest.fixture
def mock_prisma() -> Mock:
    """
    Mock Prisma client for unit tests that don't need real database.

    ``tx()`` yields the same mock, so writes made inside a transaction are
    asserted on the regular model mocks.
    """
    mock_db = Mock()
    # Make async methods return AsyncMock
    for model in PRISMA_MODELS:
        delegate = Mock()
        for action in PRISMA_ACTIONS:
            setattr(delegate, action, AsyncMock())
        delegate.find_many.return_value = []
        setattr(mock_db, model, delegate)

    mock_db.query_raw = AsyncMock(return_value=[])

    transaction = AsyncMock()
    transaction.__aenter__.return_value = mock_db
    transaction.__aexit__.return_value = False
    mock_db.tx = Mock(return_value=transaction)

    return mock_db


@pytest.fixture
def test_jwt_secret() -> str:
    """JWT secret for generating test tokens."""
    return "test-secret-key-for-testing-only-32-chars"


@pytest.fixture
def valid_jwt_payload() -> Dict[str, Any]:
    """Valid JWT payload for testing."""
    return {
        "sub": "user-1",
        "email": "user-1@example.com",
        "aud": "authenticated",
        "iss": "supabase",
    }


@pytest.fixture
def valid_jwt_token(test_jwt_secret: str, valid_jwt_payload: Dict[str, Any]) -> str:
    """Generate a valid JWT token for testing."""
    return jwt.encode(valid_jwt_payload, test_jwt_secret, algorithm="HS256")


@pytest.fixture
def auth_headers(valid_jwt_token: str) -> Dict[str, str]:
    """Generate authentication headers with valid JWT token."""
    return {"Authorization": f"Bearer {valid_jwt_token}"}
