"""Pytest configuration and shared fixtures."""

import os
from typing import Any
from uuid import uuid4

import pytest

# Set test environment before importing settings
os.environ["ENV"] = "development"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"


@pytest.fixture
def sample_cluster_record() -> dict[str, Any]:
    """A cluster record as stored in clusters.json."""
    return {
        "id": str(uuid4()),
        "name": "demo",
        "type": "kubernetes",
        "regions": ["nbg1", "fsn1"],
        "size": "ha",
        "providerId": str(uuid4()),
        "nodeCount": 3,
        "state": "ready",
        "createdAt": "2024-01-15T10:30:00+00:00",
        "updatedAt": "2024-01-15T10:30:00+00:00",
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
