"""
Pytest configuration and shared fixtures for the lead scoring backend tests.

This module provides:
- Async test execution with pytest-asyncio
- Fake clocks, in-memory repositories, a model registry and an audit log
- Sample leads with a spread of interaction histories
- Synthetic labeled data seeded with np.random.seed(42)
- A mocked asyncpg pool for the Postgres repositories

Builders used directly by test modules live in leadscore.tests.factories.
"""

from typing import List
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from leadscore.services.audit import AuditLog
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.repositories import (
    InMemoryABTestRepository,
    InMemoryLeadRepository,
    InMemoryModelRepository,
    InMemoryOutcomeRepository,
)
from leadscore.tests.factories import (
    FakeClock,
    FakeDateTimeClock,
    make_interactions,
    make_labeled_data,
    make_lead,
)


# ============================================================
# PYTEST PLUGINS CONFIGURATION
# ============================================================

pytest_plugins: List[str] = ['pytest_asyncio']


def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: model fitting over grids or many folds
    - integration: tests that drive the full FastAPI application
    """
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests that exercise the full application")


# ============================================================
# CLOCKS
# ============================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def datetime_clock() -> FakeDateTimeClock:
    return FakeDateTimeClock()


# ============================================================
# DATA
# ============================================================


@pytest.fixture
def labeled_data():
    """400 rows whose label follows the first feature with some noise."""
    np.random.seed(42)
    return make_labeled_data(n=400, noise=0.5)


@pytest.fixture
def lead_repository() -> InMemoryLeadRepository:
    repository = InMemoryLeadRepository()
    for i in range(60):
        repository.add(make_lead(f"lead-{i}"), make_interactions(i % 5))
    return repository


# ============================================================
# REPOSITORIES & REGISTRY
# ============================================================


@pytest.fixture
def outcome_repository() -> InMemoryOutcomeRepository:
    return InMemoryOutcomeRepository()


@pytest.fixture
def model_repository() -> InMemoryModelRepository:
    return InMemoryModelRepository()


@pytest.fixture
def ab_test_repository() -> InMemoryABTestRepository:
    return InMemoryABTestRepository()


@pytest.fixture
def registry(model_repository: InMemoryModelRepository) -> ModelRegistry:
    return ModelRegistry(model_repository)


@pytest.fixture
def audit() -> AuditLog:
    return AuditLog(limit=100)


# ============================================================
# DATABASE
# ============================================================


@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool whose acquire() yields a connection with execute,
    fetch and fetchrow mocked.

    Usage:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetch.return_value = [{"payload": "..."}]
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)
    pool.close = AsyncMock(return_value=None)

    return pool
