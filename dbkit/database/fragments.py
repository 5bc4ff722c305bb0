"""
SQL fragment builder.

Turns a mapping of column names to values into parameterized WHERE and
SET fragments. Besides plain values, three kinds of value change the
generated SQL instead of being bound as parameters:

- ``None`` becomes ``NULL`` in assignments and a bare raw predicate in WHERE
- the strings ``"null"`` and ``"now()"`` (any case) become ``NULL`` and the
  current-timestamp function in assignments
- ``Raw`` wraps SQL text that is emitted verbatim

The string sentinels make it impossible to store the literal text "null"
or "now()" through a plain value. Wrap such data in ``Param`` to force it
to be bound.
"""

from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

# Column name -> value, used for both SET and WHERE fragments
SqlMap = Dict[str, Any]

NULL_SENTINEL = "null"
NOW_SENTINEL = "now()"

_PLACEHOLDERS = {
    "qmark": "?",
    "format": "%s",
    "pyformat": "%s",
}

_NOW_FUNCTIONS = {
    "mysql": "NOW()",
    "mariadb": "NOW()",
    "postgresql": "NOW()",
}


class Raw:
    """SQL text emitted as-is, never bound as a parameter."""

    __slots__ = ("sql",)

    def __init__(self, sql: str):
        self.sql = sql

    def __eq__(self, other):
        return isinstance(other, Raw) and other.sql == self.sql

    def __repr__(self) -> str:
        return f"Raw({self.sql!r})"


class Param:
    """A value that is always bound, even when it looks like a sentinel."""

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __eq__(self, other):
        return isinstance(other, Param) and other.value == self.value

    def __repr__(self) -> str:
        return f"Param({self.value!r})"


class Fragment(NamedTuple):
    """A partial SQL clause and its bound parameters, in placeholder order."""

    sql: str
    params: List[Any]

    def __bool__(self) -> bool:
        return bool(self.sql)


def backtick_quote(name: str) -> str:
    """Quote an identifier the MySQL way."""
    return "`{}`".format(name.replace("`", "``"))


class FragmentBuilder:
    """
    Builds WHERE, SET and INSERT fragments for one SQL dialect.

    Args:
        placeholder: Bound-parameter marker, '?' or '%s'
        now_function: SQL emitted for the "now()" sentinel
        quote: Identifier quoting function
    """

    def __init__(
        self,
        placeholder: str = "?",
        now_function: str = "NOW()",
        quote: Callable[[str], str] = backtick_quote,
    ):
        self.placeholder = placeholder
        self.now_function = now_function
        self.quote = quote

    @classmethod
    def for_dialect(cls, dialect) -> "FragmentBuilder":
        """
        Create a builder matching a SQLAlchemy dialect.

        Args:
            dialect: SQLAlchemy Dialect instance (e.g. ``engine.dialect``)

        Returns:
            FragmentBuilder using the dialect's paramstyle and quoting
        """
        placeholder = _PLACEHOLDERS.get(dialect.paramstyle)
        if placeholder is None:
            raise ValueError(f"Unsupported paramstyle: {dialect.paramstyle}")

        return cls(
            placeholder=placeholder,
            now_function=_NOW_FUNCTIONS.get(dialect.name, "CURRENT_TIMESTAMP"),
            quote=dialect.identifier_preparer.quote_identifier,
        )

    def where(self, data: Optional[SqlMap]) -> Fragment:
        """
        Build a WHERE fragment joined with AND.

        A ``None`` value emits the key as a bare predicate, so callers can
        pass conditions such as ``{"deleted_at IS NULL": None}``. An empty
        or missing mapping yields an empty fragment; callers must then omit
        the WHERE keyword.
        """
        fields: List[str] = []
        values: List[Any] = []
        for column, value in (data or {}).items():
            if value is None:
                fields.append(column)
            elif isinstance(value, Raw):
                fields.append(value.sql)
            else:
                if isinstance(value, Param):
                    value = value.value
                fields.append(f"{self.quote(column)} = {self.placeholder}")
                values.append(value)
        return Fragment(" AND ".join(fields), values)

    def _expression(self, value: Any) -> Tuple[str, List[Any]]:
        """SQL expression and parameters for one assigned value."""
        if value is None:
            return "NULL", []
        if isinstance(value, Raw):
            return value.sql, []
        if isinstance(value, Param):
            return self.placeholder, [value.value]
        if isinstance(value, str):
            lowered = value.lower()
            if lowered == NULL_SENTINEL:
                return "NULL", []
            if lowered == NOW_SENTINEL:
                return self.now_function, []
        return self.placeholder, [value]

    def assignments(self, data: Optional[SqlMap]) -> Fragment:
        """Build a SET fragment joined with commas."""
        fields: List[str] = []
        values: List[Any] = []
        for column, value in (data or {}).items():
            expression, params = self._expression(value)
            fields.append(f"{self.quote(column)} = {expression}")
            values.extend(params)
        return Fragment(", ".join(fields), values)

    def insert_values(self, data: Optional[SqlMap]) -> Fragment:
        """Build a ``(cols) VALUES (exprs)`` fragment with the same value rules as SET."""
        columns: List[str] = []
        expressions: List[str] = []
        values: List[Any] = []
        for column, value in (data or {}).items():
            expression, params = self._expression(value)
            columns.append(self.quote(column))
            expressions.append(expression)
            values.extend(params)
        if not columns:
            return Fragment("DEFAULT VALUES", [])
        return Fragment(
            "({}) VALUES ({})".format(", ".join(columns), ", ".join(expressions)),
            values,
        )


_default_builder = FragmentBuilder()


def build_where(data: Optional[SqlMap]) -> Fragment:
    """WHERE fragment using MySQL-style quoting and '?' placeholders."""
    return _default_builder.where(data)


def build_values(data: Optional[SqlMap]) -> Fragment:
    """SET fragment using MySQL-style quoting and '?' placeholders."""
    return _default_builder.assignments(data)
