"""
Quarry Schema — column, index and drop definitions.

A ColumnDefinition records an abstract type, its parameters and an
ordered list of modifiers. It compiles once; after ``to_sql()`` it is
frozen and further modifier calls raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from ..faults.domains import InvalidBlueprintArgumentFault

if TYPE_CHECKING:
    from .grammar import Grammar

__all__ = ["ColumnDefinition", "IndexDefinition", "DropDefinition"]


@dataclass(frozen=True)
class IndexDefinition:
    """A secondary index: ``type`` is "index" or "unique"."""

    type: str
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class DropDefinition:
    """A pending drop recorded by an ALTER blueprint."""

    kind: str  # column | index | unique | foreign
    columns: Tuple[str, ...]
    on_table: Optional[str] = None


class ColumnDefinition:
    """
    Fluent column definition.

    Example:
        blueprint.string("email", 120).unique().comment("login")
        blueprint.timestamp("seen_at").nullable().default(None)
    """

    __slots__ = ("name", "type", "parameters", "modifiers", "_grammar", "_sql")

    def __init__(
        self,
        name: str,
        type_: str,
        parameters: Optional[Dict[str, Any]] = None,
        grammar: Optional["Grammar"] = None,
    ):
        self.name = name
        self.type = type_
        self.parameters: Dict[str, Any] = dict(parameters or {})
        self.modifiers: List[Tuple[str, Any]] = []
        self._grammar = grammar
        self._sql: Optional[str] = None

    def _add(self, modifier: str, value: Any = None) -> "ColumnDefinition":
        if self._sql is not None:
            raise InvalidBlueprintArgumentFault(
                self.name, f"cannot add '{modifier}' after the column was compiled"
            )
        self.modifiers.append((modifier, value))
        return self

    def has_modifier(self, modifier: str) -> bool:
        return any(name == modifier for name, _ in self.modifiers)

    # ── Modifiers ────────────────────────────────────────────────────

    def nullable(self) -> "ColumnDefinition":
        return self._add("nullable")

    def required(self) -> "ColumnDefinition":
        return self._add("required")

    def unique(self) -> "ColumnDefinition":
        return self._add("unique")

    def default(self, value: Any) -> "ColumnDefinition":
        return self._add("default", value)

    def unsigned(self) -> "ColumnDefinition":
        return self._add("unsigned")

    def auto_increment(self) -> "ColumnDefinition":
        return self._add("auto_increment")

    def after(self, column: str) -> "ColumnDefinition":
        """Place the column after another one (MySQL only)."""
        return self._add("after", column)

    def charset(self, charset: str) -> "ColumnDefinition":
        return self._add("charset", charset)

    def collation(self, collation: str) -> "ColumnDefinition":
        return self._add("collation", collation)

    def comment(self, comment: str) -> "ColumnDefinition":
        return self._add("comment", comment)

    def use_current(self) -> "ColumnDefinition":
        """Default the column to CURRENT_TIMESTAMP."""
        return self._add("default_current_timestamp")

    def use_current_on_update(self) -> "ColumnDefinition":
        """Refresh the column to CURRENT_TIMESTAMP on update (MySQL only)."""
        return self._add("on_update_current_timestamp")

    # ── Compilation ──────────────────────────────────────────────────

    def to_sql(self, grammar: Optional["Grammar"] = None) -> str:
        """Compile to a column definition fragment (cached)."""
        if self._sql is None:
            grammar = grammar or self._grammar
            if grammar is None:
                raise InvalidBlueprintArgumentFault(self.name, "no grammar to compile with")
            self._sql = grammar.compile_column(self)
        return self._sql

    @property
    def compiled(self) -> bool:
        return self._sql is not None

    def __repr__(self) -> str:
        return f"ColumnDefinition({self.name!r}, {self.type!r})"
