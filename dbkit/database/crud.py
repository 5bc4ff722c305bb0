"""
CRUD operations built on the fragment builder.

``CrudOperations`` is a mixin: it only needs something that can execute a
statement, run a query and fetch a single row. Both the pooled
``DatabaseClient`` and an open ``DatabaseTransaction`` provide that, so every
operation below behaves the same inside and outside a transaction.
"""

import logging
from typing import Any, List, NamedTuple, Optional, Protocol, Sequence

from sqlalchemy.engine import Row

from .config import DriverError
from .fragments import Fragment, FragmentBuilder, SqlMap

logger = logging.getLogger(__name__)


class ExecResult(NamedTuple):
    """Outcome of a data-modifying statement."""

    rowcount: int
    lastrowid: Optional[int]


class StatementExecutor(Protocol):
    """Minimal capability shared by a pooled connection and a transaction."""

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        ...

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        ...

    def query_row(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        ...


def _append_where(sql: str, where: Fragment, params: List[Any]) -> str:
    if where:
        sql += f" WHERE {where.sql}"
        params.extend(where.params)
    return sql


class CrudOperations:
    """
    Insert/Update/Delete/Count/Add/Minus/Fetch helpers.

    Subclasses provide ``execute``, ``query``, ``query_row``, ``prefix``,
    ``builder``, ``supports_insert_set``, ``insert_returning`` and
    ``id_column``.
    """

    prefix: str = ""
    builder: FragmentBuilder
    supports_insert_set: bool = False
    insert_returning: bool = False
    id_column: str = "id"

    def table_name(self, name: str) -> str:
        """
        Get the table name with the configured prefix.

        Returns ``name`` unchanged when no prefix is set, otherwise
        ``<prefix>_<name>``.
        """
        if not self.prefix:
            return name
        return f"{self.prefix}_{name}"

    def _quoted_table(self, name: str) -> str:
        return self.builder.quote(self.table_name(name))

    def fetch_rows(self, sql: str, wheres: Optional[SqlMap] = None) -> List[Row]:
        """
        Query multiple rows.

        Args:
            sql: Statement prefix, e.g. ``SELECT id, name FROM users``
            wheres: Optional conditions appended as a WHERE clause

        Returns:
            List of result rows
        """
        params: List[Any] = []
        sql = _append_where(sql, self.builder.where(wheres), params)
        return self.query(sql, params)

    def fetch_row(self, sql: str, wheres: Optional[SqlMap] = None) -> Optional[Row]:
        """Query a single row, or None when nothing matches."""
        params: List[Any] = []
        sql = _append_where(sql, self.builder.where(wheres), params)
        return self.query_row(sql, params)

    def count(self, table: str, wheres: Optional[SqlMap] = None, strict: bool = False) -> int:
        """
        Count the records matching some conditions.

        Read failures are logged and reported as 0 unless ``strict`` is set,
        in which case the DriverError propagates.
        """
        sql = f"SELECT COUNT(0) AS num_rows FROM {self._quoted_table(table)}"
        try:
            row = self.fetch_row(sql, wheres)
        except DriverError as e:
            if strict:
                raise
            logger.warning(f"Count on {self.table_name(table)} failed, returning 0: {e}")
            return 0
        return int(row[0]) if row is not None else 0

    def insert(self, table: str, data: SqlMap) -> int:
        """
        Insert a row.

        With ``insert_returning`` set the statement ends in
        ``RETURNING <id_column>`` and the identifier is read from the result
        row instead of the driver's last row id.

        Returns:
            The generated row identifier

        Raises:
            DriverError: If execution fails or no identifier was generated
        """
        if not self.supports_insert_set:
            fields = self.builder.insert_values(data)
            sql = f"INSERT INTO {self._quoted_table(table)} {fields.sql}"
        elif data:
            fields = self.builder.assignments(data)
            sql = f"INSERT INTO {self._quoted_table(table)} SET {fields.sql}"
        else:
            # MySQL has no DEFAULT VALUES clause
            fields = Fragment("() VALUES ()", [])
            sql = f"INSERT INTO {self._quoted_table(table)} {fields.sql}"

        if self.insert_returning:
            sql += f" RETURNING {self.builder.quote(self.id_column)}"

        result = self.execute(sql, fields.params)
        if result.lastrowid is None:
            raise DriverError(f"No generated identifier for insert into {self.table_name(table)}")
        return result.lastrowid

    def update(self, table: str, data: SqlMap, wheres: Optional[SqlMap] = None) -> int:
        """Update rows and return the number of rows affected."""
        fields = self.builder.assignments(data)
        params = list(fields.params)
        sql = f"UPDATE {self._quoted_table(table)} SET {fields.sql}"
        sql = _append_where(sql, self.builder.where(wheres), params)
        return self.execute(sql, params).rowcount

    def delete(self, table: str, wheres: Optional[SqlMap] = None) -> int:
        """
        Delete rows and return the number of rows affected.

        Without conditions every row in the table is deleted.
        """
        params: List[Any] = []
        sql = f"DELETE FROM {self._quoted_table(table)}"
        sql = _append_where(sql, self.builder.where(wheres), params)
        return self.execute(sql, params).rowcount

    def _step(self, operator: str, table: str, column: str, wheres: Optional[SqlMap], step: int) -> int:
        quoted = self.builder.quote(column)
        params: List[Any] = [step]
        sql = (
            f"UPDATE {self._quoted_table(table)} "
            f"SET {quoted} = {quoted} {operator} {self.builder.placeholder}"
        )
        sql = _append_where(sql, self.builder.where(wheres), params)
        return self.execute(sql, params).rowcount

    def add(self, table: str, column: str, wheres: Optional[SqlMap] = None, step: int = 1) -> int:
        """
        Increment a column in a single UPDATE statement.

        Returns:
            Number of rows affected
        """
        return self._step("+", table, column, wheres, step)

    def minus(self, table: str, column: str, wheres: Optional[SqlMap] = None, step: int = 1) -> int:
        """Decrement a column in a single UPDATE statement."""
        return self._step("-", table, column, wheres, step)
