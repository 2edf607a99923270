"""Pytest fixtures for audit tests."""

import os
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


@pytest.fixture(autouse=True)
def reset_settings():
    """Reset settings before each test."""
    from unifi_audit.config import reload_settings
    # Set test environment variables
    os.environ.setdefault("AUDIT_SERVER_PORT", "8080")
    os.environ.setdefault("AUDIT_LOG_LEVEL", "DEBUG")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    reload_settings()
    yield


@pytest.fixture
def memory_engine():
    """Single-connection in-memory SQLite engine shared across sessions."""
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def repository(memory_engine):
    from unifi_audit.repository import AuditRepository
    return AuditRepository(engine=memory_engine)


@pytest.fixture
def test_client():
    """Create a test client for the FastAPI app."""
    from unifi_audit.server import app
    return TestClient(app)


@pytest.fixture
def mock_unifi_client():
    """AsyncMock controller client usable as an async context manager.

    Every collector returns an empty payload; tests override what they need.
    """
    from tests.fixtures.unifi_responses import EMPTY_COLLECTOR_RESULTS

    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    for method, value in EMPTY_COLLECTOR_RESULTS.items():
        setattr(client, method, AsyncMock(return_value=value))
    return client
