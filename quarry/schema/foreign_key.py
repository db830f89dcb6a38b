"""
Quarry Schema — foreign key constraints.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

from ..utils import before_last, plural

__all__ = ["ForeignKeyConstraint"]


class ForeignKeyConstraint:
    """
    Fluent foreign key definition, compiled by Grammar.compile_foreign_key.

    Example:
        blueprint.foreign_id("user_id").constrained().cascade_on_delete()
        blueprint.foreign("author_id").references("id").on("users")
    """

    __slots__ = ("columns", "reference_columns", "on_table", "delete_action", "update_action")

    def __init__(self, columns: Union[str, Sequence[str]]):
        self.columns: List[str] = [columns] if isinstance(columns, str) else list(columns)
        self.reference_columns: List[str] = []
        self.on_table: Optional[str] = None
        self.delete_action: Optional[str] = None
        self.update_action: Optional[str] = None

    def references(self, columns: Union[str, Sequence[str]]) -> "ForeignKeyConstraint":
        self.reference_columns = [columns] if isinstance(columns, str) else list(columns)
        return self

    def on(self, table: str) -> "ForeignKeyConstraint":
        self.on_table = table
        return self

    def constrained(self, table: Optional[str] = None, column: str = "id") -> "ForeignKeyConstraint":
        """
        Reference ``column`` on ``table``; the table defaults to the plural
        of the first column name without its ``_id`` suffix
        (``user_id`` -> ``users``).
        """
        if table is None:
            table = plural(before_last(self.columns[0], "_id")).lower()
        return self.references(column).on(table)

    def on_delete(self, action: str) -> "ForeignKeyConstraint":
        self.delete_action = action.upper()
        return self

    def on_update(self, action: str) -> "ForeignKeyConstraint":
        self.update_action = action.upper()
        return self

    def cascade_on_delete(self) -> "ForeignKeyConstraint":
        return self.on_delete("cascade")

    def cascade_on_update(self) -> "ForeignKeyConstraint":
        return self.on_update("cascade")

    def set_null_on_delete(self) -> "ForeignKeyConstraint":
        return self.on_delete("set null")

    def set_null_on_update(self) -> "ForeignKeyConstraint":
        return self.on_update("set null")

    def set_default_on_delete(self) -> "ForeignKeyConstraint":
        return self.on_delete("set default")

    def set_default_on_update(self) -> "ForeignKeyConstraint":
        return self.on_update("set default")

    def no_action_on_delete(self) -> "ForeignKeyConstraint":
        return self.on_delete("no action")

    def no_action_on_update(self) -> "ForeignKeyConstraint":
        return self.on_update("no action")

    def restrict_on_delete(self) -> "ForeignKeyConstraint":
        return self.on_delete("restrict")

    def restrict_on_update(self) -> "ForeignKeyConstraint":
        return self.on_update("restrict")

    def __repr__(self) -> str:
        return f"ForeignKeyConstraint({self.columns!r} -> {self.on_table}{self.reference_columns!r})"
