"""
Quarry Query State — immutable values threaded through a builder chain.

A QueryBuilder holds exactly two state values, a WhereState and a
QuerySpec. Every fluent call replaces them with new values; terminal
operations take a snapshot and swap fresh defaults back in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from ..faults.domains import InvalidWhereClauseFault

__all__ = ["FetchMode", "WhereState", "QuerySpec", "placeholder_base"]

_NON_WORD_RE = re.compile(r"\W+")


def placeholder_base(column: str) -> str:
    """Bind name derived from a column: ``users.id`` -> ``usersid``."""
    return _NON_WORD_RE.sub("", column) or "param"


class FetchMode(str, Enum):
    """Shape of fetched rows."""

    DICT = "dict"
    ENTITY = "entity"
    COLUMN = "column"


@dataclass(frozen=True)
class WhereState:
    """
    Accumulated WHERE fragment and its bindings.

    ``reserved`` holds every bind name handed out for the statement so
    far; ``pending_groups`` holds the (connector, negated) pairs of
    groups opened by a callable where() that have not emitted a clause
    yet.
    """

    sql: str = ""
    bindings: Mapping[str, Any] = field(default_factory=dict)
    reserved: FrozenSet[str] = frozenset()
    pending_groups: Tuple[Tuple[str, bool], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.sql.strip()

    @property
    def group_open(self) -> bool:
        return bool(self.pending_groups)

    def reserve(self, base: str) -> Tuple[str, "WhereState"]:
        """Return an unused bind name derived from ``base`` (``id``, ``id1``, ``id2``...)."""
        name, suffix = base, 0
        while name in self.reserved:
            suffix += 1
            name = f"{base}{suffix}"
        return name, replace(self, reserved=self.reserved | {name})

    def bind(self, base: str, value: Any) -> Tuple[str, "WhereState"]:
        """Reserve a name for ``value`` and record the binding."""
        name, state = self.reserve(base)
        return name, replace(state, bindings={**state.bindings, name: value})

    def merge_bindings(self, bindings: Mapping[str, Any]) -> "WhereState":
        """
        Add caller-named bindings (raw fragments).

        Raises:
            InvalidWhereClauseFault: if a name is already bound in this statement
        """
        clashes = sorted(set(bindings) & self.reserved)
        if clashes:
            raise InvalidWhereClauseFault(
                f"raw binding name(s) {', '.join(clashes)} already used in this statement"
            )
        return replace(
            self,
            bindings={**self.bindings, **bindings},
            reserved=self.reserved | frozenset(bindings),
        )

    def append(self, connector: str, clause: str) -> "WhereState":
        """
        Append one clause. Groups still pending open right before it,
        joined by the connector of the call that opened the outermost.
        """
        if self.pending_groups:
            lead = self.pending_groups[0][0]
            opens = "".join("NOT (" if negated else "(" for _, negated in self.pending_groups)
            joiner = f" {lead} " if self.sql and not self.sql.endswith("(") else ""
            return replace(self, sql=f"{self.sql}{joiner}{opens}{clause}", pending_groups=())

        joiner = f" {connector} " if self.sql and not self.sql.endswith("(") else ""
        return replace(self, sql=f"{self.sql}{joiner}{clause}")

    def open_group(self, connector: str, negated: bool = False) -> "WhereState":
        return replace(self, pending_groups=self.pending_groups + ((connector, negated),))

    def close_group(self, before: "WhereState") -> "WhereState":
        """
        Close the group opened on ``before``: a group that never emitted
        a clause is dropped, otherwise a ``)`` is appended.
        """
        if len(self.pending_groups) > len(before.pending_groups):
            return replace(self, pending_groups=before.pending_groups)
        return replace(self, sql=f"{self.sql})")

    def compile(self) -> str:
        return f" WHERE {self.sql}" if not self.is_empty else ""


@dataclass(frozen=True)
class QuerySpec:
    """Everything a SELECT needs besides its WHERE clause."""

    select: Tuple[str, ...] = ()
    distinct: bool = False
    source: Optional[str] = None
    alias: Optional[str] = None
    joins: Tuple[str, ...] = ()
    order: Tuple[str, ...] = ()
    group: Tuple[str, ...] = ()
    having: Tuple[str, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    fetch: Optional[FetchMode] = None
    mappers: Tuple[Callable[[list], list], ...] = ()
    prefetch: Tuple[Any, ...] = ()
