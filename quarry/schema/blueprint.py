"""
Quarry Schema Blueprint — fluent table definitions.

A Blueprint collects columns, keys, indexes, drops and renames for one
table and compiles them through a Grammar:

- ``compile_create()``: one CREATE TABLE (columns, primary key, inline
  foreign keys) followed by one CREATE INDEX per secondary index.
- ``compile_alter()``: only the recorded drops and renames. Additive
  changes go through ``Grammar.compile_add_column`` and
  ``Grammar.compile_add_foreign``.

Usage:
    bp = Blueprint("posts", Grammar("pgsql"))
    bp.id()
    bp.string("title", 120)
    bp.foreign_id("user_id").constrained().cascade_on_delete()
    bp.timestamps()
    bp.index("title")
    for sql in bp.compile_create():
        db.exec(sql)
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

from ..faults.domains import InvalidBlueprintArgumentFault
from .column import ColumnDefinition, DropDefinition, IndexDefinition
from .foreign_key import ForeignKeyConstraint
from .grammar import Grammar

__all__ = ["Blueprint"]

logger = logging.getLogger("quarry.schema")

Columns = Union[str, Sequence[str]]


def _as_tuple(columns: Columns) -> tuple:
    return (columns,) if isinstance(columns, str) else tuple(columns)


class Blueprint:
    """In-memory description of one table, compiled to DDL by a Grammar."""

    def __init__(self, table: str, grammar: Grammar, alter: bool = False):
        self.table = table
        self.grammar = grammar
        self.alter = alter
        self.columns: List[ColumnDefinition] = []
        self.indexes: List[IndexDefinition] = []
        self.primary_keys: List[tuple] = []
        self.foreign_keys: List[ForeignKeyConstraint] = []
        self.drops: List[DropDefinition] = []
        self.renames: List[tuple] = []

    def add_column(self, type_: str, name: str, **parameters) -> ColumnDefinition:
        column = ColumnDefinition(name, type_, parameters, grammar=self.grammar)
        self.columns.append(column)
        if type_ in ("id", "big_increments"):
            self.primary(name)
        return column

    # ── Column factories ─────────────────────────────────────────────

    def id(self, name: str = "id") -> ColumnDefinition:
        return self.add_column("id", name)

    def big_increments(self, name: str = "id") -> ColumnDefinition:
        return self.add_column("big_increments", name)

    def string(self, name: str, length: int = 255) -> ColumnDefinition:
        if length <= 0:
            raise InvalidBlueprintArgumentFault(name, f"string length must be positive, got {length}")
        return self.add_column("string", name, length=length)

    def char(self, name: str, length: int = 255) -> ColumnDefinition:
        if length <= 0:
            raise InvalidBlueprintArgumentFault(name, f"char length must be positive, got {length}")
        return self.add_column("char", name, length=length)

    def integer(self, name: str) -> ColumnDefinition:
        return self.add_column("integer", name)

    def big_integer(self, name: str) -> ColumnDefinition:
        return self.add_column("big_integer", name)

    def unsigned_big_integer(self, name: str) -> ColumnDefinition:
        return self.add_column("unsigned_big_integer", name)

    def text(self, name: str) -> ColumnDefinition:
        return self.add_column("text", name)

    def long_text(self, name: str) -> ColumnDefinition:
        return self.add_column("long_text", name)

    def boolean(self, name: str) -> ColumnDefinition:
        return self.add_column("boolean", name)

    def decimal(self, name: str, precision: int = 8, scale: int = 2) -> ColumnDefinition:
        return self.add_column("decimal", name, precision=precision, scale=scale)

    def double(self, name: str, precision: Optional[int] = None, scale: Optional[int] = None) -> ColumnDefinition:
        return self.add_column("double", name, precision=precision, scale=scale)

    def float(self, name: str, precision: Optional[int] = None) -> ColumnDefinition:
        return self.add_column("float", name, precision=precision)

    def enum(self, name: str, allowed: Sequence[str]) -> ColumnDefinition:
        if not allowed:
            raise InvalidBlueprintArgumentFault(name, "enum values cannot be empty")
        return self.add_column("enum", name, allowed=list(allowed))

    def json(self, name: str) -> ColumnDefinition:
        return self.add_column("json", name)

    def date(self, name: str) -> ColumnDefinition:
        return self.add_column("date", name)

    def date_time(self, name: str, precision: int = 0) -> ColumnDefinition:
        return self.add_column("date_time", name, precision=precision)

    def time(self, name: str, precision: int = 0) -> ColumnDefinition:
        return self.add_column("time", name, precision=precision)

    def timestamp(self, name: str, precision: int = 0) -> ColumnDefinition:
        return self.add_column("timestamp", name, precision=precision)

    def binary(self, name: str) -> ColumnDefinition:
        return self.add_column("binary", name)

    def uuid(self, name: str) -> ColumnDefinition:
        return self.add_column("uuid", name)

    def ip_address(self, name: str) -> ColumnDefinition:
        return self.string(name, 45)

    def mac_address(self, name: str) -> ColumnDefinition:
        return self.string(name, 17)

    # ── Column groups ────────────────────────────────────────────────

    def timestamps(self) -> None:
        """``created_at`` and ``updated_at``, both defaulting to now."""
        self.timestamp("created_at").use_current()
        self.timestamp("updated_at").use_current().use_current_on_update()

    def nullable_timestamps(self) -> None:
        self.timestamp("created_at").nullable()
        self.timestamp("updated_at").nullable()

    def remember_token(self) -> ColumnDefinition:
        return self.string("remember_token", 100).nullable()

    def soft_deletes(self, name: str = "deleted_at") -> ColumnDefinition:
        return self.timestamp(name).nullable()

    # ── Keys & indexes ───────────────────────────────────────────────

    def foreign_id(self, name: str) -> ForeignKeyConstraint:
        """Unsigned integer column plus a foreign key on it."""
        self.integer(name).unsigned()
        return self.foreign(name)

    def foreign(self, columns: Columns, table: Optional[str] = None) -> ForeignKeyConstraint:
        constraint = ForeignKeyConstraint(columns)
        if table:
            constraint.on(table)
        self.foreign_keys.append(constraint)
        return constraint

    def constrained(self, column: str, table: Optional[str] = None) -> ForeignKeyConstraint:
        return self.foreign(column).constrained(table)

    def primary(self, columns: Columns) -> None:
        self.primary_keys.append(_as_tuple(columns))

    def unique(self, columns: Columns) -> None:
        self.indexes.append(IndexDefinition("unique", _as_tuple(columns)))

    def index(self, columns: Columns) -> None:
        self.indexes.append(IndexDefinition("index", _as_tuple(columns)))

    # ── Alterations ──────────────────────────────────────────────────

    def drop_column(self, columns: Columns) -> "Blueprint":
        self.drops.append(DropDefinition("column", _as_tuple(columns)))
        return self

    def drop_index(self, columns: Columns, type_: str = "index") -> "Blueprint":
        if type_ not in ("index", "unique"):
            raise InvalidBlueprintArgumentFault(", ".join(_as_tuple(columns)), f"unknown index type '{type_}'")
        self.drops.append(DropDefinition(type_, _as_tuple(columns)))
        return self

    def drop_foreign(self, columns: Columns, on_table: str) -> "Blueprint":
        """Drop the constraint created by ``foreign(columns).on(on_table)``."""
        self.drops.append(DropDefinition("foreign", _as_tuple(columns), on_table))
        return self

    def rename_column(self, old: str, new: str) -> "Blueprint":
        self.renames.append((old, new))
        return self

    # ── Compilation ──────────────────────────────────────────────────

    def compile_create(self) -> List[str]:
        grammar = self.grammar
        elements = [column.to_sql(grammar) for column in self.columns]

        inline = {c.name for c in self.columns if grammar.inlines_primary_key(c)}
        for key in self.primary_keys:
            columns = [c for c in key if c not in inline]
            if columns:
                elements.append(f"PRIMARY KEY ({grammar.columnize(columns)})")

        for fk in self.foreign_keys:
            elements.append(grammar.compile_foreign_key(self.table, fk))

        body = ",\n    ".join(elements)
        statements = [f"CREATE TABLE {grammar.wrap_table(self.table)} (\n    {body}\n)"]
        statements.extend(grammar.compile_index(self.table, index) for index in self.indexes)

        for sql in statements:
            logger.debug(f"compiled: {sql}")
        return statements

    def compile_alter(self) -> List[str]:
        if self.columns or self.foreign_keys:
            logger.debug(
                f"ALTER blueprint for '{self.table}' holds column/foreign key definitions; "
                "they are not compiled here, use Grammar.compile_add_column/compile_add_foreign"
            )
        statements = [self.grammar.compile_drop(self.table, drop) for drop in self.drops]
        statements.extend(
            self.grammar.compile_rename_column(self.table, old, new) for old, new in self.renames
        )
        for sql in statements:
            logger.debug(f"compiled: {sql}")
        return statements

    def compile(self) -> List[str]:
        return self.compile_alter() if self.alter else self.compile_create()

    def __repr__(self) -> str:
        mode = "alter" if self.alter else "create"
        return f"Blueprint({self.table!r}, {self.grammar.driver!r}, {mode})"
