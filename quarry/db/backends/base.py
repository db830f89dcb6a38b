"""
Quarry DB Backend — Base Adapter Interface.

All database backends must implement this interface. The ``QuarryDatabase``
engine delegates to the appropriate adapter based on the connection URL.

This interface abstracts differences between SQLite, PostgreSQL, and MySQL:
- Parameter placeholder style (:name vs %(name)s)
- Native boolean support
- Last-insert-id retrieval
- Introspection queries

Compiled SQL always carries ``:name`` placeholders; adapters translate
them to the driver's param style in ``adapt_sql``.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ...faults.domains import QueryFault

logger = logging.getLogger("quarry.db.backends")

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ColumnInfo",
    "ParamType",
    "Statement",
    "named_to_pyformat",
]


@dataclass
class AdapterCapabilities:
    """Describes what a specific backend supports."""

    supports_returning: bool = False
    supports_native_bool: bool = False
    supports_drop_column: bool = True
    param_style: str = "named"  # named (:name) | pyformat (%(name)s)
    identifier_limit: Optional[int] = None
    name: str = "base"


@dataclass
class ColumnInfo:
    """Introspection result for a single column."""

    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False
    max_length: Optional[int] = None


class ParamType(str, Enum):
    """Bind type inferred from the shape of a value."""

    INT = "int"
    BOOL = "bool"
    NULL = "null"
    STR = "str"

    @classmethod
    def infer(cls, value: Any) -> "ParamType":
        # bool first: bool is an int subclass
        if isinstance(value, bool):
            return cls.BOOL
        if isinstance(value, int):
            return cls.INT
        if value is None:
            return cls.NULL
        return cls.STR


# String literals and quoted identifiers are skipped; ``::`` casts never match.
_NAMED_RE = re.compile(
    r"""'(?:[^']|'')*'|"(?:[^"]|"")*"|`[^`]*`|(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)"""
)


def named_to_pyformat(sql: str) -> str:
    """Rewrite ``:name`` placeholders as ``%(name)s``, escaping bare ``%``."""
    sql = sql.replace("%", "%%")

    def _swap(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name is None:
            return match.group(0)
        return f"%({name})s"

    return _NAMED_RE.sub(_swap, sql)


class DatabaseAdapter(ABC):
    """
    Abstract database adapter interface.

    All backends must implement these methods. The ``QuarryDatabase``
    engine uses this interface to run statements and introspect schemas.
    """

    capabilities: AdapterCapabilities = AdapterCapabilities()

    @abstractmethod
    def connect(self, url: str, **options) -> None:
        """Open a connection to the database."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close the database connection."""
        ...

    @abstractmethod
    def cursor(self) -> Any:
        """Return a fresh DB-API cursor on the open connection."""
        ...

    # ── Execution ────────────────────────────────────────────────────

    def run(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Execute ``sql`` with named params and return the cursor."""
        cursor = self.cursor()
        cursor.execute(self.adapt_sql(sql), dict(params or {}))
        return cursor

    def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Execute and return all rows as dicts."""
        return rows_as_dicts(self.run(sql, params))

    # ── Introspection ────────────────────────────────────────────────

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        ...

    @abstractmethod
    def get_tables(self) -> List[str]:
        """List all table names."""
        ...

    @abstractmethod
    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        """Get column info for a table."""
        ...

    # ── SQL adaptation ───────────────────────────────────────────────

    def adapt_sql(self, sql: str) -> str:
        """
        Adapt ``:name`` placeholders to the backend's param style.

        Override this in backends that use a different param style.
        """
        return sql

    def coerce(self, value: Any, param_type: ParamType) -> Any:
        """Convert a Python value to what the driver should receive."""
        if param_type is ParamType.NULL:
            return None
        if param_type is ParamType.BOOL:
            return bool(value) if self.capabilities.supports_native_bool else int(value)
        if param_type is ParamType.INT:
            return int(value)
        if isinstance(value, (str, bytes, bytearray, float, Decimal)):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if isinstance(value, Enum):
            return value.value
        return str(value)

    def last_insert_id(self, cursor: Any) -> Optional[int]:
        """Extract last inserted ID from cursor."""
        if hasattr(cursor, "lastrowid"):
            return cursor.lastrowid
        return None

    @property
    def is_connected(self) -> bool:
        """Check if the adapter is connected."""
        return False

    @property
    def dialect(self) -> str:
        """Return the SQL dialect name."""
        return self.capabilities.name


def rows_as_dicts(cursor: Any) -> List[Dict[str, Any]]:
    """Turn every remaining row of a DB-API cursor into a dict."""
    if cursor.description is None:
        return []
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


class Statement:
    """
    A prepared statement bound to one adapter.

    Values are bound by name, coerced according to their ``ParamType``,
    and sent to the driver on ``execute()``. Driver errors come back as
    ``QueryFault`` carrying the SQL and the bound parameter names.

    Usage:
        stmt = db.prepare("SELECT * FROM users WHERE id = :id")
        stmt.bind_value("id", 1)
        stmt.execute()
        row = stmt.fetch_one()
    """

    __slots__ = ("_adapter", "sql", "_params", "_cursor", "_rows", "_context")

    def __init__(self, adapter: DatabaseAdapter, sql: str, context: Optional[Dict[str, str]] = None):
        self._adapter = adapter
        self.sql = sql
        self._params: Dict[str, Any] = {}
        self._cursor: Any = None
        self._rows: Optional[List[Dict[str, Any]]] = None
        self._context = context or {}

    def bind_value(self, name: str, value: Any, param_type: Optional[ParamType] = None) -> "Statement":
        name = name.lstrip(":")
        if param_type is None:
            param_type = ParamType.infer(value)
        self._params[name] = self._adapter.coerce(value, param_type)
        return self

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self._params)

    def execute(self) -> bool:
        """
        Run the statement.

        Raises:
            QueryFault: When the driver rejects the statement
        """
        try:
            self._cursor = self._adapter.run(self.sql, self._params)
        except QueryFault:
            raise
        except Exception as exc:
            raise QueryFault(
                table=self._context.get("table", "<raw>"),
                operation=self._context.get("operation", "execute"),
                reason=str(exc),
                metadata={"sql": self.sql[:200], "params": sorted(self._params)},
            ) from exc
        self._rows = None
        return True

    def _fetched(self) -> List[Dict[str, Any]]:
        if self._cursor is None:
            raise QueryFault(
                table=self._context.get("table", "<raw>"),
                operation="fetch",
                reason="statement has not been executed",
                metadata={"sql": self.sql[:200]},
            )
        if self._rows is None:
            self._rows = rows_as_dicts(self._cursor)
        return self._rows

    def fetch_all(self) -> List[Dict[str, Any]]:
        return list(self._fetched())

    def fetch_one(self) -> Optional[Dict[str, Any]]:
        rows = self._fetched()
        return rows[0] if rows else None

    def fetch_column(self, index: int = 0) -> Any:
        """Return one column of the first row, or None."""
        row = self.fetch_one()
        if row is None:
            return None
        return list(row.values())[index]

    @property
    def row_count(self) -> int:
        if self._cursor is None:
            return 0
        return max(self._cursor.rowcount, 0)

    @property
    def last_insert_id(self) -> Optional[int]:
        if self._cursor is None:
            return None
        return self._adapter.last_insert_id(self._cursor)

    def __repr__(self) -> str:
        return f"Statement({self.sql[:60]!r})"
