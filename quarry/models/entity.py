"""
Quarry Entity — the capability set the query and relation layers need.

Anything that provides a table name, a primary-key name, a row factory
and a relation cache can take part in eager loading. ``Model`` is the
ready-made implementation; other classes can satisfy the protocol
structurally.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from .query import QueryBuilder

__all__ = ["Entity", "RelationCache"]

_MISSING = object()


class RelationCache:
    """
    Per-entity map of relation name to resolved value.

    Presence of a key means "loaded": a relation resolved to ``None`` or
    to an empty list is loaded, a relation never resolved is not.
    """

    __slots__ = ("_values",)

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    def is_loaded(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def forget(self, name: Optional[str] = None) -> None:
        """Drop one relation, or every relation when ``name`` is None."""
        if name is None:
            self._values.clear()
        else:
            self._values.pop(name, None)

    def names(self) -> List[str]:
        return list(self._values)

    def items(self) -> List[Tuple[str, Any]]:
        return list(self._values.items())

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"RelationCache({sorted(self._values)!r})"


@runtime_checkable
class Entity(Protocol):
    """
    Structural interface of an entity.

    Entity classes must also be constructible without arguments; the
    relation layer builds a blank instance to read relation accessors
    at class level (``has()``, ``with_count()``).
    """

    relations: RelationCache

    @classmethod
    def get_table(cls) -> str: ...

    @classmethod
    def get_primary_key(cls) -> str: ...

    @classmethod
    def load_attributes(cls, row: Mapping[str, Any]) -> "Entity": ...

    @classmethod
    def query(cls) -> "QueryBuilder": ...

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> Any: ...
