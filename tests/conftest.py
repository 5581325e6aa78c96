"""
conftest.py - Shared pytest fixtures for will tests

Provides common fixtures used across unit, conformance and functional tests:
- Will managers (empty, with a funded and fully allocated will)
- Replica stores and projection engines on a temporary database
- API settings and test clients
"""

import pytest

from fastapi.testclient import TestClient

from testament import ReplicaStore, ProjectionEngine, EventLog
from testament.api import create_app
from testament.config import Settings

from tests.will_helpers import make_manager, setup_funded_will


@pytest.fixture
def manager():
    """Will manager at 2025-01-01 with no wills."""
    return make_manager()


@pytest.fixture
def funded_manager(manager):
    """Manager holding TESTATOR's will: 60/40 split, guardian, 10 locked + 5 flexible."""
    return setup_funded_will(manager)


@pytest.fixture
def store(tmp_path):
    return ReplicaStore(tmp_path / "replica.db")


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def engine(manager, store):
    """Projection engine following the manager's event log; stopped on teardown."""
    engine = ProjectionEngine(manager.events, store)
    engine.start()
    yield engine
    engine.stop()


@pytest.fixture
def settings():
    return Settings(app_env="test", allowed_origins="*", _env_file=None)


@pytest.fixture
def client(store, settings):
    return TestClient(create_app(store, settings))
