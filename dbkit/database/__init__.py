"""
Relational database wrapper.

This package provides connection configuration, a SQL fragment builder and
CRUD helpers shared by pooled connections and transactions.
"""

from .config import (
    DatabaseConfig,
    DatabaseError,
    DatabaseConfigurationError,
    DatabaseConnectionError,
    DriverError,
    TransactionClosedError,
    parse_go_dsn,
    to_sqlalchemy_url,
)
from .fragments import (
    SqlMap,
    Raw,
    Param,
    Fragment,
    FragmentBuilder,
    build_where,
    build_values,
)
from .crud import CrudOperations, ExecResult, StatementExecutor
from .client import (
    DatabaseClient,
    DatabaseTransaction,
    get_database,
    close_global_database,
)

__all__ = [
    # Configuration
    'DatabaseConfig',
    'parse_go_dsn',
    'to_sqlalchemy_url',

    # Errors
    'DatabaseError',
    'DatabaseConfigurationError',
    'DatabaseConnectionError',
    'DriverError',
    'TransactionClosedError',

    # Fragments
    'SqlMap',
    'Raw',
    'Param',
    'Fragment',
    'FragmentBuilder',
    'build_where',
    'build_values',

    # CRUD
    'CrudOperations',
    'ExecResult',
    'StatementExecutor',

    # Client
    'DatabaseClient',
    'DatabaseTransaction',
    'get_database',
    'close_global_database',
]
