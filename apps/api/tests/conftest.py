"""
Global pytest configuration and fixtures for the QuickBooks sync API test suite.
"""

import os
from typing import Dict, Generator
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before settings are loaded
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-32-chars")
os.environ.setdefault("QBO_CLIENT_ID", "test-client-id")
os.environ.setdefault("QBO_CLIENT_SECRET", "test-client-secret")

from src.domains.sync.dependencies import get_auth_service, get_repository  # noqa: E402
from src.main import app  # noqa: E402

# Import fixtures from fixture modules
from tests.fixtures.quickbooks_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.sync_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.sync_fixtures import TEST_REALM_ID  # noqa: E402


@pytest.fixture
def mock_prisma() -> Mock:
    """
    Mock Prisma client for repository tests that don't need a real database.
    """
    mock_db = Mock()
    for model_name in ("qboconnection", "invoice", "payment", "synclog"):
        model = Mock()
        for method in (
            "find_unique",
            "find_first",
            "find_many",
            "count",
            "create",
            "update",
            "update_many",
            "upsert",
            "group_by",
        ):
            setattr(model, method, AsyncMock())
        setattr(mock_db, model_name, model)
    return mock_db


@pytest.fixture
def client(repository, mock_auth_service) -> Generator[TestClient, None, None]:
    """
    FastAPI test client wired to the in-memory repository.

    The lifespan (and with it the Prisma connection) is not entered; storage
    and the token manager come from dependency overrides.
    """
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_auth_service] = lambda: mock_auth_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def realm_headers() -> Dict[str, str]:
    """Headers selecting the seeded test connection."""
    return {"realm-id": TEST_REALM_ID}
