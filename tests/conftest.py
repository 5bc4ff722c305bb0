"""
Shared fixtures for the dbkit test suite.

Relational tests run against in-memory SQLite through SQLAlchemy; key-value
tests replace the Valkey client and its connection pool with mocks.
"""

from typing import Any, List, Optional, Sequence
from unittest.mock import MagicMock, patch

import pytest

from dbkit.database import (
    CrudOperations,
    DatabaseClient,
    DatabaseConfig,
    ExecResult,
    FragmentBuilder,
    close_global_database,
)
from dbkit.cache import close_global_kv_client


USERS_DDL = """
CREATE TABLE {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT,
    email TEXT,
    status TEXT,
    visits INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP,
    deleted_at TIMESTAMP
)
"""


class RecordingExecutor(CrudOperations):
    """CRUD operations that record statements instead of running them."""

    def __init__(self, prefix: str = "", supports_insert_set: bool = True):
        self.prefix = prefix
        self.builder = FragmentBuilder()
        self.supports_insert_set = supports_insert_set
        self.statements: List[tuple] = []
        self.result = ExecResult(rowcount=1, lastrowid=42)
        self.rows: List[Any] = []
        self.row: Optional[Any] = (3,)
        self.error: Optional[Exception] = None

    def _record(self, sql: str, params: Sequence[Any]) -> None:
        self.statements.append((sql, list(params)))
        if self.error is not None:
            raise self.error

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        self._record(sql, params)
        return self.result

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Any]:
        self._record(sql, params)
        return self.rows

    def query_row(self, sql: str, params: Sequence[Any] = ()) -> Optional[Any]:
        self._record(sql, params)
        return self.row

    @property
    def last(self) -> tuple:
        return self.statements[-1]


@pytest.fixture(autouse=True)
def reset_global_clients():
    """Make sure no test leaks a process-wide client into the next one."""
    yield
    close_global_database()
    close_global_kv_client()


@pytest.fixture
def recorder():
    """CRUD operations over a statement recorder."""
    return RecordingExecutor()


@pytest.fixture
def db():
    """In-memory SQLite client with a ``users`` table."""
    client = DatabaseClient(DatabaseConfig(dsn="sqlite://"))
    client.execute(USERS_DDL.format(table="users"))
    yield client
    client.close()


@pytest.fixture
def prefixed_db():
    """In-memory SQLite client with prefix ``app`` and an ``app_users`` table."""
    client = DatabaseClient(DatabaseConfig(dsn="sqlite://", prefix="app"))
    client.execute(USERS_DDL.format(table="app_users"))
    yield client
    client.close()


@pytest.fixture
def mock_valkey():
    """Mock Valkey client returned for every KeyValueClient built in the test."""
    with patch("dbkit.cache.client.ConnectionPool"), \
            patch("dbkit.cache.client.valkey.Valkey") as valkey_cls:
        mock_client = MagicMock()
        mock_client.ping.return_value = True
        valkey_cls.return_value = mock_client
        yield mock_client
