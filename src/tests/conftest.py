"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timezone
from typing import Any

import pytest

# Set test environment before importing settings
os.environ["ENV"] = "development"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"


@pytest.fixture
def sample_cluster_data() -> dict[str, Any]:
    """Sample persisted cluster data for testing."""
    now = datetime.now(timezone.utc)
    return {
        "id": 1,
        "resource_version": 0,
        "name": "test-cluster-01",
        "status": "CONNECTED",
        "credential_blob": b"apiVersion: v1\nkind: Config\n",
        "description": "Test cluster",
        "created_at": now,
        "modified_at": now,
    }


@pytest.fixture
def sample_user_data() -> dict[str, Any]:
    """Sample persisted user data for testing."""
    now = datetime.now(timezone.utc)
    return {
        "id": 7,
        "resource_version": 3,
        "name": "alice",
        "password_hash": "$2b$04$abcdefghijklmnopqrstuuv0123456789abcdefghijklmnopqrstu",
        "status": "ACTIVE",
        "role": "admin",
        "email": "alice@example.com",
        "created_at": now,
        "modified_at": now,
    }


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line(
        "markers", "integration: Integration tests (require external services)"
    )
    config.addinivalue_line("markers", "slow: Slow tests")
