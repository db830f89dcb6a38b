"""
Quarry Schema facade — run blueprints against a database.

Usage:
    schema = Schema(db)
    schema.create("users", lambda t: (t.id(), t.string("name"), t.timestamps()))
    schema.table("users", lambda t: t.rename_column("name", "full_name"))
    schema.has_column("users", "full_name")   # True
    schema.drop_if_exists("users")
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ..db.engine import QuarryDatabase, get_database
from .blueprint import Blueprint
from .grammar import Grammar

__all__ = ["Schema"]

logger = logging.getLogger("quarry.schema")


class Schema:
    """Executes Blueprint DDL through a QuarryDatabase."""

    def __init__(self, db: Optional[QuarryDatabase] = None):
        self.db = db or get_database()
        self.grammar = Grammar(self.db.get_driver())

    def _table(self, table: str) -> str:
        return f"{self.db.prefix}{table}"

    def blueprint(self, table: str, alter: bool = False) -> Blueprint:
        return Blueprint(self._table(table), self.grammar, alter=alter)

    def create(self, table: str, callback: Callable[[Blueprint], object]) -> List[str]:
        """Build a CREATE blueprint, run it, and return the executed SQL."""
        blueprint = self.blueprint(table)
        callback(blueprint)
        statements = blueprint.compile_create()
        self._run(statements)
        logger.info(f"Created table '{blueprint.table}'")
        return statements

    def table(self, table: str, callback: Callable[[Blueprint], object]) -> List[str]:
        """Build an ALTER blueprint (drops and renames), run it, and return the SQL."""
        blueprint = self.blueprint(table, alter=True)
        callback(blueprint)
        statements = blueprint.compile_alter()
        self._run(statements)
        return statements

    def drop(self, table: str) -> None:
        self.raw(self.grammar.compile_drop_table(self._table(table)))

    def drop_if_exists(self, table: str) -> None:
        self.raw(self.grammar.compile_drop_table(self._table(table), if_exists=True))

    def raw(self, sql: str) -> int:
        return self.db.exec(sql)

    def has_table(self, table: str) -> bool:
        return self.db.table_exists(self._table(table))

    def has_column(self, table: str, column: str) -> bool:
        return any(info.name == column for info in self.db.get_columns(self._table(table)))

    def _run(self, statements: List[str]) -> None:
        for sql in statements:
            self.db.exec(sql)
