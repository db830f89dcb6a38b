"""
Quarry Schema — identifier quoting.

The Wrapper quotes table and column identifiers for one dialect:
backticks for MySQL, double quotes for SQLite and PostgreSQL. The
wildcard ``*`` is never quoted, dotted names are quoted part by part
and ``column as alias`` expressions keep their alias.

Usage:
    w = Wrapper("mysql")
    w.wrap("users.id")          # `users`.`id`
    w.wrap("p.*")               # `p`.*
    w.wrap("name as label")     # `name` AS `label`
"""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from ..faults.domains import UnsupportedDriverFault

__all__ = ["Wrapper", "SUPPORTED_DRIVERS", "IDENTIFIER_LIMITS"]

SUPPORTED_DRIVERS = ("mysql", "sqlite", "pgsql")

IDENTIFIER_LIMITS = {
    "mysql": 64,
    "pgsql": 63,
    "sqlite": 255,
}

_QUOTES = {
    "mysql": "`",
    "sqlite": '"',
    "pgsql": '"',
}

_ALIAS_RE = re.compile(r"\s+as\s+", re.IGNORECASE)


class Wrapper:
    """Dialect-aware identifier quoting."""

    __slots__ = ("driver", "quote", "limit")

    def __init__(self, driver: str):
        driver = driver.lower()
        if driver not in SUPPORTED_DRIVERS:
            raise UnsupportedDriverFault(driver)
        self.driver = driver
        self.quote = _QUOTES[driver]
        self.limit = IDENTIFIER_LIMITS[driver]

    def wrap(self, value: str) -> str:
        """Quote an identifier, a dotted path, or an aliased expression."""
        value = value.strip()
        parts = _ALIAS_RE.split(value, maxsplit=1)
        if len(parts) == 2:
            return f"{self.wrap(parts[0])} AS {self.wrap_segment(parts[1])}"
        if "." in value:
            return ".".join(self.wrap_segment(part) for part in value.split("."))
        return self.wrap_segment(value)

    def wrap_segment(self, value: str) -> str:
        """Quote a single identifier segment (no dots)."""
        if value == "*":
            return value
        value = self.truncate(value)
        escaped = value.replace(self.quote, self.quote * 2)
        return f"{self.quote}{escaped}{self.quote}"

    def wrap_table(self, table: str, prefix: str = "") -> str:
        """Quote a table name, applying a table prefix to its last segment."""
        if prefix:
            parts = _ALIAS_RE.split(table.strip(), maxsplit=1)
            schema, dot, name = parts[0].rpartition(".")
            table = f"{schema}{dot}{prefix}{name}"
            if len(parts) == 2:
                table = f"{table} as {parts[1]}"
        return self.wrap(table)

    def wrap_column(self, column: str) -> str:
        return self.wrap(column)

    def columnize(self, columns: Iterable[str]) -> str:
        """Quote a list of columns into a comma-separated string."""
        return ", ".join(self.wrap(column) for column in columns)

    def truncate(self, name: str) -> str:
        """Cut an identifier to the dialect's length limit."""
        return name[: self.limit]

    @staticmethod
    def quote_string(value: str) -> str:
        """Render a string literal with embedded quotes doubled."""
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def quote_enum_values(self, values: Sequence[str]) -> str:
        """Render allowed enum values as a quoted, comma-separated list."""
        return ", ".join(self.quote_string(v) for v in values)

    def __repr__(self) -> str:
        return f"Wrapper({self.driver!r})"
