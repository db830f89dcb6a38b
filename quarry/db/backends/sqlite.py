"""
Quarry DB Backend — SQLite adapter via the standard library ``sqlite3``.

This is the default backend. ``sqlite3`` understands ``:name``
placeholders natively, so compiled SQL is passed through unchanged.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, List

from .base import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
)

logger = logging.getLogger("quarry.db.backends.sqlite")

__all__ = ["SQLiteAdapter"]


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter using sqlite3.

    Features:
    - Autocommit mode (transactions belong to the caller)
    - Foreign key enforcement
    - Introspection through sqlite_master and PRAGMA table_info
    """

    capabilities = AdapterCapabilities(
        supports_returning=False,
        supports_native_bool=False,
        supports_drop_column=False,
        param_style="named",
        identifier_limit=None,
        name="sqlite",
    )

    def __init__(self):
        self._connection: Any = None
        self._connected = False
        self._lock = threading.Lock()

    def connect(self, url: str, **options) -> None:
        if self._connected:
            return
        with self._lock:
            if self._connected:
                return
            db_path = self._parse_url(url)
            options.setdefault("isolation_level", None)
            self._connection = sqlite3.connect(db_path, **options)
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connected = True
            logger.info(f"SQLite connected: {db_path}")

    def disconnect(self) -> None:
        if not self._connected:
            return
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
            self._connected = False
            logger.info("SQLite disconnected")

    def cursor(self) -> Any:
        if not self._connected:
            raise RuntimeError("Not connected")
        return self._connection.cursor()

    # ── Introspection ────────────────────────────────────────────────

    def table_exists(self, table_name: str) -> bool:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=:name",
            {"name": table_name},
        )
        return bool(rows)

    def get_tables(self) -> List[str]:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type='table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        quoted = table_name.replace('"', '""')
        rows = self.query(f'PRAGMA table_info("{quoted}")')
        return [
            ColumnInfo(
                name=row["name"],
                data_type=row["type"],
                nullable=not row["notnull"],
                default=row["dflt_value"],
                primary_key=bool(row["pk"]),
            )
            for row in rows
        ]

    @property
    def is_connected(self) -> bool:
        return self._connected

    @staticmethod
    def _parse_url(url: str) -> str:
        """Extract file path from sqlite URL."""
        for prefix in ("sqlite:///", "sqlite://"):
            if url.startswith(prefix):
                path = url[len(prefix):]
                return path or ":memory:"
        return url.replace("sqlite:", "").lstrip("/") or ":memory:"
