"""
Relational client and transactions.

``DatabaseClient`` owns a pooled SQLAlchemy engine and runs each statement on
its own autocommitting connection. ``DatabaseTransaction`` runs every
statement on one connection until it is committed or rolled back. Both expose
the same CRUD operations.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from .config import (
    DatabaseConfig,
    DatabaseConnectionError,
    DriverError,
    TransactionClosedError,
)
from .crud import CrudOperations, ExecResult
from .fragments import FragmentBuilder

logger = logging.getLogger(__name__)


def _driver_params(params: Sequence[Any]):
    # No parameters means the DBAPI does no placeholder interpolation
    return tuple(params) if params else None


def _execute(conn: Connection, sql: str, params: Sequence[Any]) -> ExecResult:
    logger.debug(f"Execute: {sql} {list(params)}")
    result = conn.exec_driver_sql(sql, _driver_params(params))
    if result.returns_rows:
        # INSERT ... RETURNING <id>
        row = result.first()
        return ExecResult(
            rowcount=1 if row is not None else 0,
            lastrowid=row[0] if row is not None else None,
        )
    return ExecResult(rowcount=result.rowcount, lastrowid=result.lastrowid)


def _insert_returning(dialect) -> bool:
    """True when generated keys must be read back with RETURNING."""
    return not dialect.postfetch_lastrowid and dialect.insert_returning


def _query(conn: Connection, sql: str, params: Sequence[Any]) -> List[Row]:
    logger.debug(f"Query: {sql} {list(params)}")
    return list(conn.exec_driver_sql(sql, _driver_params(params)).fetchall())


def _query_row(conn: Connection, sql: str, params: Sequence[Any]) -> Optional[Row]:
    logger.debug(f"Query row: {sql} {list(params)}")
    return conn.exec_driver_sql(sql, _driver_params(params)).first()


class DatabaseClient(CrudOperations):
    """
    Pooled relational client with CRUD helpers.

    The connection is verified when the client is created; a client that
    cannot reach its database is never returned.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """
        Initialize the engine and verify connectivity.

        Args:
            config: DatabaseConfig instance, defaults to environment-based config

        Raises:
            DatabaseConnectionError: If the database cannot be reached
        """
        self.config = config or DatabaseConfig.from_env()
        self.prefix = self.config.prefix

        logger.info(f"Initializing database client: {self.config}")

        self.engine: Engine = create_engine(self.config.url, **self.config.to_engine_kwargs())
        self.builder = FragmentBuilder.for_dialect(self.engine.dialect)
        self.supports_insert_set = self.engine.dialect.name in ("mysql", "mariadb")
        self.insert_returning = _insert_returning(self.engine.dialect)
        self.id_column = self.config.id_column

        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self.engine.dispose()
            logger.error(f"Failed to connect to database: {e}")
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e

        logger.info(f"Database client connected ({self.engine.dialect.name})")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        """
        Run a data-modifying statement in its own transaction.

        Raises:
            DriverError: If preparation, execution or result decoding fails
        """
        try:
            with self.engine.begin() as conn:
                return _execute(conn, sql, params)
        except SQLAlchemyError as e:
            raise DriverError(f"Statement failed: {e}") from e

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run a query and return all rows."""
        try:
            with self.engine.connect() as conn:
                return _query(conn, sql, params)
        except SQLAlchemyError as e:
            raise DriverError(f"Query failed: {e}") from e

    def query_row(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        """Run a query and return the first row, or None."""
        try:
            with self.engine.connect() as conn:
                return _query_row(conn, sql, params)
        except SQLAlchemyError as e:
            raise DriverError(f"Query failed: {e}") from e

    def begin(self) -> "DatabaseTransaction":
        """
        Start a new transaction.

        Returns:
            DatabaseTransaction sharing this client's prefix and dialect

        Raises:
            DriverError: If no connection could be checked out
        """
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as e:
            raise DriverError(f"Failed to start transaction: {e}") from e

        try:
            trans = conn.begin()
        except SQLAlchemyError as e:
            conn.close()
            raise DriverError(f"Failed to start transaction: {e}") from e

        return DatabaseTransaction(
            conn,
            trans,
            prefix=self.prefix,
            builder=self.builder,
            supports_insert_set=self.supports_insert_set,
            insert_returning=self.insert_returning,
            id_column=self.id_column,
        )

    @contextmanager
    def transaction(self) -> Iterator["DatabaseTransaction"]:
        """
        Transaction with automatic commit/rollback.

        Usage:
            with client.transaction() as tx:
                tx.insert("users", {"name": "ada"})
                tx.add("stats", "users", step=1)
        """
        tx = self.begin()
        try:
            yield tx
        except Exception as e:
            if not tx.closed:
                try:
                    tx.rollback()
                except DriverError as rollback_error:
                    logger.error(f"Rollback after failed transaction also failed: {rollback_error}")
            logger.error(f"Transaction rolled back: {e}")
            raise
        else:
            if not tx.closed:
                tx.commit()

    def get_connection_info(self) -> Dict[str, Any]:
        """
        Get connection information for monitoring.

        Returns:
            Dictionary with connection details
        """
        info = {
            "database_type": self.engine.dialect.name,
            "url": self.engine.url.render_as_string(hide_password=True),
            "prefix": self.prefix,
        }

        pool = self.engine.pool
        if hasattr(pool, "size"):
            info.update({
                "pool_size": pool.size(),
                "checked_in": pool.checkedin(),
                "checked_out": pool.checkedout(),
            })

        return info

    def close(self) -> None:
        """Close database connections and clean up resources."""
        self.engine.dispose()
        logger.info("Database connections closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class DatabaseTransaction(CrudOperations):
    """
    An open transaction with the same CRUD helpers as the client.

    After ``commit()`` or ``rollback()`` every further call raises
    TransactionClosedError.
    """

    def __init__(
        self,
        conn: Connection,
        trans,
        prefix: str = "",
        builder: Optional[FragmentBuilder] = None,
        supports_insert_set: bool = False,
        insert_returning: bool = False,
        id_column: str = "id",
    ):
        self._conn = conn
        self._trans = trans
        self.prefix = prefix
        self.builder = builder or FragmentBuilder.for_dialect(conn.dialect)
        self.supports_insert_set = supports_insert_set
        self.insert_returning = insert_returning
        self.id_column = id_column
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the transaction has been committed or rolled back."""
        return self._closed

    def _connection(self) -> Connection:
        if self._closed:
            raise TransactionClosedError("Transaction has already been committed or rolled back")
        return self._conn

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        conn = self._connection()
        try:
            return _execute(conn, sql, params)
        except SQLAlchemyError as e:
            raise DriverError(f"Statement failed: {e}") from e

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        conn = self._connection()
        try:
            return _query(conn, sql, params)
        except SQLAlchemyError as e:
            raise DriverError(f"Query failed: {e}") from e

    def query_row(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        conn = self._connection()
        try:
            return _query_row(conn, sql, params)
        except SQLAlchemyError as e:
            raise DriverError(f"Query failed: {e}") from e

    def _finish(self, action: str) -> None:
        self._connection()
        try:
            getattr(self._trans, action)()
        except SQLAlchemyError as e:
            raise DriverError(f"Transaction {action} failed: {e}") from e
        finally:
            self._closed = True
            self._conn.close()

    def commit(self) -> None:
        """Commit the transaction and release its connection."""
        self._finish("commit")

    def rollback(self) -> None:
        """Roll back the transaction and release its connection."""
        self._finish("rollback")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._closed:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


# Global client instance for convenience
_global_database: Optional[DatabaseClient] = None
_global_lock = threading.Lock()


def get_database(
    dsn: Optional[str] = None,
    config: Optional[DatabaseConfig] = None,
) -> DatabaseClient:
    """
    Get or create the process-wide database client.

    The first call builds the client; later calls return the same instance
    and ignore any configuration they pass.

    Args:
        dsn: Optional DSN, used when no config is given
        config: Optional DatabaseConfig, uses environment config if neither
            is provided

    Returns:
        DatabaseClient: Global client instance
    """
    global _global_database

    if config is None and dsn is not None:
        config = DatabaseConfig(dsn=dsn)

    with _global_lock:
        if _global_database is None:
            _global_database = DatabaseClient(config)
        elif config is not None and config != _global_database.config:
            logger.warning("Database client already initialized, ignoring new configuration")

    return _global_database


def close_global_database() -> None:
    """Close the global client and forget it."""
    global _global_database

    with _global_lock:
        if _global_database:
            _global_database.close()
            _global_database = None
