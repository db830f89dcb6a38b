"""
Quarry DB Backend — PostgreSQL adapter via psycopg2.

Provides synchronous PostgreSQL support with autocommit connections and
introspection through information_schema.

Requires psycopg2:
    pip install quarry[postgres]
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
    named_to_pyformat,
)

logger = logging.getLogger("quarry.db.backends.postgres")

__all__ = ["PostgresAdapter"]

try:
    import psycopg2
    import psycopg2.errors
except ImportError:
    psycopg2 = None  # type: ignore[assignment]


class PostgresAdapter(DatabaseAdapter):
    """
    PostgreSQL adapter using psycopg2.

    Features:
    - Autocommit connection (transactions belong to the caller)
    - Native booleans and RETURNING support
    - ``:name`` → ``%(name)s`` placeholder conversion (string-literal safe)
    - Last insert id via LASTVAL()
    """

    capabilities = AdapterCapabilities(
        supports_returning=True,
        supports_native_bool=True,
        supports_drop_column=True,
        param_style="pyformat",  # %(name)s
        identifier_limit=63,
        name="pgsql",
    )

    def __init__(self):
        self._connection: Any = None
        self._connected = False

    def connect(self, url: str, **options) -> None:
        if self._connected:
            return
        if psycopg2 is None:
            raise ImportError(
                "psycopg2 is required for PostgreSQL support.\n"
                "Install: pip install psycopg2-binary"
            )
        self._connection = psycopg2.connect(_normalize_pg_url(url), **options)
        self._connection.autocommit = True
        self._connected = True
        info = _parse_pg_url(url)
        logger.info(f"PostgreSQL connected: {info['host']}:{info['port']}/{info['dbname']}")

    def disconnect(self) -> None:
        if not self._connected:
            return
        if self._connection:
            self._connection.close()
            self._connection = None
        self._connected = False
        logger.info("PostgreSQL disconnected")

    def cursor(self) -> Any:
        if not self._connected:
            raise RuntimeError("Not connected to PostgreSQL")
        return self._connection.cursor()

    def adapt_sql(self, sql: str) -> str:
        """Convert :name placeholders to %(name)s for psycopg2."""
        return named_to_pyformat(sql)

    def last_insert_id(self, cursor: Any) -> Optional[int]:
        """Read the value most recently produced by a sequence in this session."""
        probe = self.cursor()
        try:
            probe.execute("SELECT LASTVAL()")
        except psycopg2.errors.ObjectNotInPrerequisiteState:
            # no sequence has been touched yet in this session
            return None
        row = probe.fetchone()
        return row[0] if row else None

    # ── Introspection ────────────────────────────────────────────────

    def table_exists(self, table_name: str) -> bool:
        rows = self.query(
            "SELECT EXISTS(SELECT 1 FROM information_schema.tables "
            "WHERE table_schema='public' AND table_name=:name) AS e",
            {"name": table_name},
        )
        return bool(rows and rows[0].get("e"))

    def get_tables(self) -> List[str]:
        rows = self.query(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema='public' ORDER BY table_name"
        )
        return [r["table_name"] for r in rows]

    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = self.query(
            "SELECT column_name, data_type, is_nullable, column_default, "
            "character_maximum_length "
            "FROM information_schema.columns "
            "WHERE table_schema='public' AND table_name=:name "
            "ORDER BY ordinal_position",
            {"name": table_name},
        )
        return [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default=row.get("column_default"),
                max_length=row.get("character_maximum_length"),
            )
            for row in rows
        ]

    @property
    def is_connected(self) -> bool:
        return self._connected


def _normalize_pg_url(url: str) -> str:
    """libpq accepts postgresql:// and postgres://; map pgsql:// onto them."""
    if url.startswith("pgsql://"):
        return "postgresql://" + url[len("pgsql://"):]
    return url


def _parse_pg_url(url: str) -> Dict[str, Any]:
    """Split a postgres URL into host/port/dbname for logging."""
    from urllib.parse import urlparse

    parsed = urlparse(_normalize_pg_url(url))
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "dbname": (parsed.path or "/").lstrip("/") or None,
    }
