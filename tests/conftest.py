"""
Shared fixtures for the execution engine tests.
"""

import pytest

from ilmd.storage.execution_log import ExecutionLogWriter
from ilmd.storage.repository import ExecutionStore
from tests.utils.engine_fixtures import MONDAY, ManualClock


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "ilm.db")


@pytest.fixture
def store(db_path):
    store = ExecutionStore(db_path)
    store.ensure_schema()
    return store


@pytest.fixture
def log_writer(db_path, store):
    return ExecutionLogWriter(db_path)


@pytest.fixture
def clock():
    """Monday 02:05."""
    return ManualClock(MONDAY.replace(hour=2, minute=5))
