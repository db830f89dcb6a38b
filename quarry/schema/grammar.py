"""
Quarry Schema Grammar — dialect-specific DDL fragments.

Maps the abstract column vocabulary used by Blueprint to MySQL, SQLite
and PostgreSQL SQL, and compiles modifiers, indexes, foreign keys and
the standalone ALTER statements. Each ``compile_*`` method returns a
single statement without a trailing semicolon.

Also hosts the DML fragments the query builder cannot express
portably: insert verbs and upsert conflict clauses.

Usage:
    g = Grammar("mysql")
    g.map_column_type("string", {"length": 50})   # VARCHAR(50)
    g.map_modifier("unsigned")                     # UNSIGNED
    Grammar("sqlite").map_column_type("string", {"length": 50})
    # TEXT COLLATE NOCASE
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union, TYPE_CHECKING

from ..faults.domains import (
    DriverCapabilityFault,
    InvalidForeignKeyFault,
)
from .wrapper import Wrapper, IDENTIFIER_LIMITS

if TYPE_CHECKING:
    from .column import ColumnDefinition, IndexDefinition, DropDefinition
    from .foreign_key import ForeignKeyConstraint

__all__ = ["Grammar", "SUPPORTED_TYPES", "FALLBACK_TYPE", "FOREIGN_KEY_ACTIONS"]

logger = logging.getLogger("quarry.schema")

FALLBACK_TYPE = "TEXT"

FOREIGN_KEY_ACTIONS = ("CASCADE", "RESTRICT", "SET NULL", "SET DEFAULT", "NO ACTION")
_SQLITE_ACTIONS = ("CASCADE", "RESTRICT", "SET NULL", "NO ACTION")

_TYPE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "string": {"length": 255},
    "char": {"length": 255},
    "decimal": {"precision": 8, "scale": 2},
}

TypeRenderer = Callable[["Grammar", Dict[str, Any]], str]


def _optional_precision(name: str) -> TypeRenderer:
    """``NAME(p)`` when a non-zero precision is given, else ``NAME``."""
    def render(grammar: "Grammar", params: Dict[str, Any]) -> str:
        precision = params.get("precision")
        return f"{name}({precision})" if precision else name
    return render


def _mysql_double(grammar: "Grammar", params: Dict[str, Any]) -> str:
    precision, scale = params.get("precision"), params.get("scale")
    if precision is not None and scale is not None:
        return f"DOUBLE({precision}, {scale})"
    return "DOUBLE"


def _mysql_enum(grammar: "Grammar", params: Dict[str, Any]) -> str:
    return f"ENUM({grammar.wrapper.quote_enum_values(params['allowed'])})"


def _checked_enum(grammar: "Grammar", params: Dict[str, Any]) -> str:
    if "name" not in params:
        return "TEXT"
    allowed = grammar.wrapper.quote_enum_values(params["allowed"])
    return f"TEXT CHECK ({grammar.wrap(params['name'])} IN ({allowed}))"


# ── Column type vocabulary ──────────────────────────────────────────────────
#
# Values are either format templates (filled from the column parameters
# plus _TYPE_DEFAULTS) or renderers taking (grammar, params).

SUPPORTED_TYPES: Dict[str, Dict[str, Union[str, TypeRenderer]]] = {
    "mysql": {
        "id": "INT UNSIGNED AUTO_INCREMENT",
        "big_increments": "BIGINT UNSIGNED AUTO_INCREMENT",
        "integer": "INT",
        "big_integer": "BIGINT",
        "unsigned_big_integer": "BIGINT UNSIGNED",
        "string": "VARCHAR({length})",
        "char": "CHAR({length})",
        "text": "TEXT",
        "long_text": "LONGTEXT",
        "boolean": "TINYINT(1)",
        "decimal": "DECIMAL({precision}, {scale})",
        "double": _mysql_double,
        "float": _optional_precision("FLOAT"),
        "enum": _mysql_enum,
        "json": "JSON",
        "date": "DATE",
        "date_time": _optional_precision("DATETIME"),
        "time": _optional_precision("TIME"),
        "timestamp": _optional_precision("TIMESTAMP"),
        "binary": "BLOB",
        "uuid": "CHAR(36)",
    },
    "sqlite": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "big_increments": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "integer": "INTEGER",
        "big_integer": "INTEGER",
        "unsigned_big_integer": "INTEGER",
        "string": "TEXT COLLATE NOCASE",
        "char": "TEXT",
        "text": "TEXT",
        "long_text": "TEXT",
        "boolean": "INTEGER",
        "decimal": "NUMERIC",
        "double": "REAL",
        "float": "REAL",
        "enum": _checked_enum,
        "json": "TEXT",
        "date": "TEXT",
        "date_time": "TEXT",
        "time": "TEXT",
        "timestamp": "DATETIME",
        "binary": "BLOB",
        "uuid": "TEXT",
    },
    "pgsql": {
        "id": "SERIAL",
        "big_increments": "BIGSERIAL",
        "integer": "INTEGER",
        "big_integer": "BIGINT",
        "unsigned_big_integer": "BIGINT",
        "string": "VARCHAR({length})",
        "char": "CHAR({length})",
        "text": "TEXT",
        "long_text": "TEXT",
        "boolean": "BOOLEAN",
        "decimal": "DECIMAL({precision}, {scale})",
        "double": "DOUBLE PRECISION",
        "float": "REAL",
        "enum": _checked_enum,
        "json": "JSON",
        "date": "DATE",
        "date_time": _optional_precision("TIMESTAMP"),
        "time": _optional_precision("TIME"),
        "timestamp": _optional_precision("TIMESTAMP"),
        "binary": "BYTEA",
        "uuid": "UUID",
    },
}

# Types whose SQLite rendering already declares the primary key inline.
INLINE_PRIMARY_TYPES = frozenset({"id", "big_increments"})


class Grammar:
    """
    Per-dialect DDL compiler.

    Raises:
        UnsupportedDriverFault: for any driver other than mysql, sqlite, pgsql
    """

    __slots__ = ("driver", "wrapper", "_types")

    def __init__(self, driver: str):
        self.wrapper = Wrapper(driver)
        self.driver = self.wrapper.driver
        self._types = SUPPORTED_TYPES[self.driver]

    # ── Dialect checks ───────────────────────────────────────────────

    def is_mysql(self) -> bool:
        return self.driver == "mysql"

    def is_sqlite(self) -> bool:
        return self.driver == "sqlite"

    def is_pgsql(self) -> bool:
        return self.driver == "pgsql"

    def is_driver(self, *drivers: str) -> bool:
        return self.driver in drivers

    # ── Identifier helpers (delegated to Wrapper) ────────────────────

    def wrap(self, value: str) -> str:
        return self.wrapper.wrap(value)

    def wrap_table(self, table: str, prefix: str = "") -> str:
        return self.wrapper.wrap_table(table, prefix)

    def wrap_column(self, column: str) -> str:
        return self.wrapper.wrap_column(column)

    def columnize(self, columns: Sequence[str]) -> str:
        return self.wrapper.columnize(columns)

    # ── Types & modifiers ────────────────────────────────────────────

    def supports_type(self, type_: str) -> bool:
        return type_ in self._types

    def map_column_type(self, type_: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """
        Map an abstract column type to this dialect's SQL type.

        Unknown types fall back to ``TEXT``.
        """
        template = self._types.get(type_)
        if template is None:
            logger.warning(f"Unmapped column type '{type_}' for {self.driver}, using {FALLBACK_TYPE}")
            return FALLBACK_TYPE

        merged = {**_TYPE_DEFAULTS.get(type_, {}), **{k: v for k, v in (params or {}).items() if v is not None}}
        if callable(template):
            return template(self, merged)
        return template.format(**merged)

    def map_modifier(self, name: str, value: Any = None) -> str:
        """
        Map a column modifier to a clause, or ``""`` when the dialect
        has no equivalent.
        """
        mysql = self.is_mysql()

        if name == "nullable":
            return "NULL"
        if name == "required":
            return "NOT NULL"
        if name == "unique":
            return "UNIQUE"
        if name == "default":
            return f"DEFAULT {self.format_default(value)}"
        if name == "default_current_timestamp":
            return "DEFAULT CURRENT_TIMESTAMP"
        if name == "on_update_current_timestamp":
            return "ON UPDATE CURRENT_TIMESTAMP" if mysql else ""
        if name == "unsigned":
            return "UNSIGNED" if mysql else ""
        if name == "auto_increment":
            if mysql:
                return "AUTO_INCREMENT"
            if self.is_sqlite():
                return "PRIMARY KEY AUTOINCREMENT"
            return ""
        if name == "after":
            return f"AFTER {self.wrap_column(value)}" if mysql else ""
        if name == "charset":
            return f"CHARACTER SET {value}" if mysql else ""
        if name == "collation":
            return f"COLLATE {value}" if mysql else ""
        if name == "comment":
            return f"COMMENT {self.wrapper.quote_string(value)}" if mysql else ""

        logger.debug(f"Unknown column modifier '{name}' ignored for {self.driver}")
        return ""

    def format_default(self, value: Any) -> str:
        """Render a Python value as a DEFAULT literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            if self.is_pgsql():
                return "TRUE" if value else "FALSE"
            return str(int(value))
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        return self.wrapper.quote_string(value)

    def compile_column(self, column: "ColumnDefinition") -> str:
        """Compile a column definition: name, type, then modifiers in order."""
        params = dict(column.parameters)
        if column.type == "enum":
            params.setdefault("name", column.name)

        parts = [self.wrap_column(column.name), self.map_column_type(column.type, params)]
        for name, value in column.modifiers:
            # id types carry their own auto-increment clause
            if name == "auto_increment" and column.type in INLINE_PRIMARY_TYPES:
                continue
            clause = self.map_modifier(name, value)
            if clause:
                parts.append(clause)
        return " ".join(parts)

    def inlines_primary_key(self, column: "ColumnDefinition") -> bool:
        """
        True when this dialect declares the column's primary key inline
        (SQLite AUTOINCREMENT columns), so the table-level PRIMARY KEY
        must leave it out.
        """
        if not self.is_sqlite():
            return False
        return column.type in INLINE_PRIMARY_TYPES or column.has_modifier("auto_increment")

    # ── Constraints & indexes ────────────────────────────────────────

    def foreign_key_name(self, table: str, on_table: str, columns: Sequence[str]) -> str:
        """Constraint name, unique per source table, truncated to the identifier limit."""
        return self.wrapper.truncate(f"fk_{table}_{on_table}_" + "_".join(columns))

    def compile_foreign_key(self, table: str, fk: "ForeignKeyConstraint") -> str:
        """
        Compile a named ``CONSTRAINT ... FOREIGN KEY`` clause.

        Raises:
            InvalidForeignKeyFault: missing referenced table/columns or an
                unknown referential action
        """
        if not fk.columns:
            raise InvalidForeignKeyFault([], "no source columns given")
        if not fk.on_table:
            raise InvalidForeignKeyFault(fk.columns, "referenced table is missing, call on() or constrained()")
        if not fk.reference_columns:
            raise InvalidForeignKeyFault(fk.columns, "referenced columns are missing, call references()")

        name = self.foreign_key_name(table, fk.on_table, fk.columns)
        sql = (
            f"CONSTRAINT {self.wrap(name)} "
            f"FOREIGN KEY ({self.columnize(fk.columns)}) "
            f"REFERENCES {self.wrap_table(fk.on_table)} ({self.columnize(fk.reference_columns)})"
        )
        if fk.delete_action:
            sql += f" ON DELETE {self._referential_action(fk, fk.delete_action)}"
        if fk.update_action:
            sql += f" ON UPDATE {self._referential_action(fk, fk.update_action)}"
        return sql

    def _referential_action(self, fk: "ForeignKeyConstraint", action: str) -> str:
        action = action.upper()
        if action not in FOREIGN_KEY_ACTIONS:
            raise InvalidForeignKeyFault(fk.columns, f"unknown referential action '{action}'")
        if self.is_sqlite() and action not in _SQLITE_ACTIONS:
            return "NO ACTION"
        return action

    def index_name(self, table: str, index_type: str, columns: Sequence[str]) -> str:
        """Deterministic index name, truncated to the identifier limit."""
        if self.is_sqlite():
            name = f"idx_{table}_" + "_".join(columns)
        else:
            name = f"{table}_{index_type}_" + "_".join(columns)
        return name[: IDENTIFIER_LIMITS[self.driver]]

    def compile_index(self, table: str, index: "IndexDefinition") -> str:
        name = self.wrap(self.index_name(table, index.type, index.columns))
        unique = "UNIQUE " if index.type == "unique" else ""
        using = " USING btree" if self.is_pgsql() else ""
        return (
            f"CREATE {unique}INDEX {name} ON {self.wrap_table(table)}"
            f"{using} ({self.columnize(index.columns)})"
        )

    # ── Standalone ALTER helpers ─────────────────────────────────────

    def compile_add_column(self, table: str, column: "ColumnDefinition") -> str:
        return f"ALTER TABLE {self.wrap_table(table)} ADD COLUMN {column.to_sql(self)}"

    def compile_add_foreign(self, table: str, fk: "ForeignKeyConstraint") -> str:
        if self.is_sqlite():
            raise DriverCapabilityFault(self.driver, "adding foreign keys to an existing table")
        return f"ALTER TABLE {self.wrap_table(table)} ADD {self.compile_foreign_key(table, fk)}"

    def compile_drop(self, table: str, drop: "DropDefinition") -> str:
        if drop.kind == "column":
            return self.compile_drop_column(table, drop.columns)
        if drop.kind == "foreign":
            return self.compile_drop_foreign(table, drop.columns, drop.on_table)
        return self.compile_drop_index(table, drop.columns, drop.kind)

    def compile_drop_column(self, table: str, columns: Sequence[str]) -> str:
        if self.is_sqlite():
            raise DriverCapabilityFault(self.driver, "dropping columns")
        drops = ", ".join(f"DROP COLUMN {self.wrap_column(c)}" for c in columns)
        return f"ALTER TABLE {self.wrap_table(table)} {drops}"

    def compile_drop_index(self, table: str, columns: Sequence[str], index_type: str = "index") -> str:
        name = self.wrap(self.index_name(table, index_type, columns))
        if self.is_mysql():
            return f"ALTER TABLE {self.wrap_table(table)} DROP INDEX {name}"
        return f"DROP INDEX {name}"

    def compile_drop_foreign(self, table: str, columns: Sequence[str], on_table: str) -> str:
        if self.is_sqlite():
            raise DriverCapabilityFault(self.driver, "dropping foreign keys")
        name = self.wrap(self.foreign_key_name(table, on_table, columns))
        keyword = "FOREIGN KEY" if self.is_mysql() else "CONSTRAINT"
        return f"ALTER TABLE {self.wrap_table(table)} DROP {keyword} {name}"

    def compile_rename_column(self, table: str, old: str, new: str) -> str:
        if self.is_sqlite():
            raise DriverCapabilityFault(self.driver, "renaming columns")
        return (
            f"ALTER TABLE {self.wrap_table(table)} "
            f"RENAME COLUMN {self.wrap_column(old)} TO {self.wrap_column(new)}"
        )

    def compile_drop_table(self, table: str, if_exists: bool = False) -> str:
        exists = "IF EXISTS " if if_exists else ""
        return f"DROP TABLE {exists}{self.wrap_table(table)}"

    # ── DML fragments used by the query builder ──────────────────────

    def compile_insert_verb(self, ignore: bool = False, replace: bool = False) -> str:
        """Leading verb of an INSERT for the ignore/replace options."""
        if replace:
            if self.is_mysql():
                return "REPLACE INTO"
            if self.is_sqlite():
                return "INSERT OR REPLACE INTO"
            logger.warning("REPLACE is not supported on pgsql, compiling a plain INSERT")
            return "INSERT INTO"
        if ignore:
            if self.is_mysql():
                return "INSERT IGNORE INTO"
            if self.is_sqlite():
                return "INSERT OR IGNORE INTO"
        return "INSERT INTO"

    def compile_conflict(
        self,
        columns: Sequence[str],
        conflict: Sequence[str] = (),
        update: Union[Sequence[str], Mapping[str, str], None] = None,
        ignore: bool = False,
    ) -> str:
        """
        Compile the trailing upsert clause.

        ``update`` lists the columns refreshed from the incoming row, or
        maps a column to the incoming column it is refreshed from.
        Returns ``""`` when no conflict handling applies.
        """
        if update:
            pairs = update.items() if isinstance(update, Mapping) else ((c, c) for c in update)
            if self.is_mysql():
                sets = ", ".join(f"{self.wrap(col)} = VALUES({self.wrap(src)})" for col, src in pairs)
                return f" ON DUPLICATE KEY UPDATE {sets}"
            target = self.columnize(conflict or columns[:1])
            excluded = "EXCLUDED" if self.is_pgsql() else "excluded"
            sets = ", ".join(f"{self.wrap(col)} = {excluded}.{self.wrap(src)}" for col, src in pairs)
            return f" ON CONFLICT ({target}) DO UPDATE SET {sets}"

        if ignore and self.is_pgsql():
            target = f" ({self.columnize(conflict)})" if conflict else ""
            return f" ON CONFLICT{target} DO NOTHING"

        if conflict and not self.is_mysql():
            return f" ON CONFLICT ({self.columnize(conflict)}) DO NOTHING"
        return ""

    def compile_returning(self, columns: Sequence[str]) -> str:
        if not columns:
            return ""
        if not self.is_pgsql():
            logger.warning(f"RETURNING is only supported on pgsql, ignored for {self.driver}")
            return ""
        return f" RETURNING {', '.join('*' if c == '*' else self.wrap(c) for c in columns)}"

    def __repr__(self) -> str:
        return f"Grammar({self.driver!r})"
