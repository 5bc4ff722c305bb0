"""
Database configuration for the relational wrapper.

This module provides connection configuration with support for:
- MySQL/MariaDB (Go-style DSNs are accepted and converted to PyMySQL URLs)
- PostgreSQL
- SQLite (in-memory or file based, handy for tests)

Configuration is loaded from environment variables with sensible defaults.
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import StaticPool, QueuePool

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# <user>:<pass>@<net>(<addr>)/<dbname>?<params>
_GO_DSN_PATTERN = re.compile(
    r"^(?:(?P<credentials>.*)@)?"
    r"(?:(?P<net>[a-z0-9]+)\((?P<addr>[^)]*)\))?"
    r"/(?P<dbname>[^?]*)"
    r"(?:\?(?P<params>.*))?$"
)


class DatabaseError(Exception):
    """Base exception for relational database issues."""
    pass


class DatabaseConfigurationError(DatabaseError):
    """Custom exception for database configuration issues."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Custom exception for database connection issues."""
    pass


class DriverError(DatabaseError):
    """Statement execution or result decoding failure reported by the driver."""
    pass


class TransactionClosedError(DriverError):
    """Raised when a transaction is used after commit or rollback."""
    pass


def parse_go_dsn(dsn: str) -> URL:
    """
    Convert a Go-style MySQL DSN into a SQLAlchemy URL.

    Format: ``<user>:<pass>@tcp(<host>:<port>)/<dbName>?charset=<charset>``

    Args:
        dsn: The DSN string

    Returns:
        SQLAlchemy URL using the PyMySQL driver

    Raises:
        DatabaseConfigurationError: If the DSN cannot be parsed
    """
    match = _GO_DSN_PATTERN.match(dsn)
    if not match:
        raise DatabaseConfigurationError(f"Invalid DSN: {dsn!r}")

    username = password = None
    credentials = match.group("credentials")
    if credentials is not None:
        username, _, password = credentials.partition(":")
        password = password or None

    host = port = None
    query: Dict[str, str] = {}
    net = match.group("net") or "tcp"
    addr = match.group("addr") or ""
    if net == "unix":
        query["unix_socket"] = addr
    elif net == "tcp":
        host, _, port_text = addr.partition(":")
        if port_text:
            if not port_text.isdigit():
                raise DatabaseConfigurationError(f"Invalid port in DSN: {port_text!r}")
            port = int(port_text)
    else:
        raise DatabaseConfigurationError(f"Unsupported network type in DSN: {net}")

    params = match.group("params")
    if params:
        for pair in params.split("&"):
            key, sep, value = pair.partition("=")
            if not key or not sep:
                raise DatabaseConfigurationError(f"Invalid DSN parameter: {pair!r}")
            query[key] = value

    return URL.create(
        "mysql+pymysql",
        username=username or None,
        password=password,
        host=host or None,
        port=port,
        database=match.group("dbname") or None,
        query=query,
    )


def to_sqlalchemy_url(dsn: str) -> URL:
    """
    Normalize a DSN into a SQLAlchemy URL.

    Strings containing ``://`` are treated as SQLAlchemy URLs,
    everything else as a Go-style MySQL DSN.
    """
    if "://" in dsn:
        try:
            return make_url(dsn)
        except ArgumentError as e:
            raise DatabaseConfigurationError(f"Invalid database URL: {e}") from e
    return parse_go_dsn(dsn)


@dataclass
class DatabaseConfig:
    """
    Configuration for the relational client, applied once at construction.

    Attributes:
        dsn: Go-style MySQL DSN or any SQLAlchemy URL
        prefix: Table-name prefix joined with an underscore
        conn_max_lifetime: Seconds before a pooled connection is recycled
        max_idle_conns: Connections kept open in the pool
        max_overflow: Extra connections allowed beyond the pool size
        pool_timeout: Seconds to wait for a pooled connection
        echo: Enable SQL statement logging in SQLAlchemy
        id_column: Generated-key column read back with RETURNING on backends
            whose driver reports no last row id
    """

    dsn: str = "sqlite://"
    prefix: str = ""
    conn_max_lifetime: int = 3600
    max_idle_conns: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    echo: bool = False
    id_column: str = "id"

    def __post_init__(self):
        if self.conn_max_lifetime <= 0:
            raise DatabaseConfigurationError("conn_max_lifetime must be a positive number of seconds")
        if self.max_idle_conns < 0:
            raise DatabaseConfigurationError("max_idle_conns cannot be negative")

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """
        Create DatabaseConfig from environment variables.

        Environment variables:
        - DATABASE_URL: Go-style DSN or SQLAlchemy URL
        - DB_PREFIX: Table-name prefix (default: empty)
        - DB_CONN_MAX_LIFETIME: Connection recycle time in seconds (default: 3600)
        - DB_MAX_IDLE_CONNS: Pool size (default: 10)
        - DB_MAX_OVERFLOW: Pool overflow (default: 20)
        - DB_POOL_TIMEOUT: Pool checkout timeout (default: 30)
        - DB_ECHO: Log SQL statements (default: false)
        - DB_ID_COLUMN: Generated-key column name (default: id)

        Returns:
            DatabaseConfig: Configuration instance with values from environment
        """
        return cls(
            dsn=os.getenv("DATABASE_URL", "sqlite://"),
            prefix=os.getenv("DB_PREFIX", ""),
            conn_max_lifetime=int(os.getenv("DB_CONN_MAX_LIFETIME", "3600")),
            max_idle_conns=int(os.getenv("DB_MAX_IDLE_CONNS", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            id_column=os.getenv("DB_ID_COLUMN", "id"),
        )

    @property
    def url(self) -> URL:
        """SQLAlchemy URL for the configured DSN."""
        return to_sqlalchemy_url(self.dsn)

    @property
    def db_type(self) -> str:
        """Backend name, e.g. 'mysql', 'postgresql' or 'sqlite'."""
        return self.url.get_backend_name()

    def to_engine_kwargs(self) -> Dict[str, Any]:
        """
        Convert configuration to create_engine() parameters.

        Returns:
            Dict[str, Any]: Engine parameters for the configured backend
        """
        kwargs: Dict[str, Any] = {"echo": self.echo}
        url = self.url

        if self.db_type == "sqlite":
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every checkout sees a fresh database
                kwargs.update({
                    "poolclass": StaticPool,
                    "connect_args": {"check_same_thread": False},
                })
            else:
                kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        else:
            kwargs.update({
                "poolclass": QueuePool,
                "pool_size": self.max_idle_conns,
                "max_overflow": self.max_overflow,
                "pool_timeout": self.pool_timeout,
                "pool_recycle": self.conn_max_lifetime,
                "pool_pre_ping": True,
            })

        return kwargs

    def __str__(self) -> str:
        """String representation hiding sensitive information."""
        try:
            url_display = self.url.render_as_string(hide_password=True)
        except DatabaseConfigurationError:
            url_display = "<invalid>"
        return (
            f"DatabaseConfig(url={url_display}, prefix={self.prefix!r}, "
            f"conn_max_lifetime={self.conn_max_lifetime}, "
            f"max_idle_conns={self.max_idle_conns})"
        )
