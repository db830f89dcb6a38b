"""
Quarry Relations — declarative relation descriptors.

A relation is declared as an entity method decorated with ``@relation``
that returns one of six descriptor kinds. Descriptors are plain frozen
configuration: they name the related entity and the key columns the
loader joins on. Mutating helpers (``create``, ``associate``,
``attach``/``detach``/``sync``/``toggle``) act through the owning
entity, which the descriptor holds by weak reference.

Usage:
    class Post(Model):
        @relation
        def author(self):
            return belongs_to(self, User)

        @relation
        def comments(self):
            return has_many(self, Comment, scope=lambda q: q.where("approved", 1))

        @relation
        def tags(self):
            return belongs_to_many(self, Tag, append=["role"])

    post.tags().sync([2, 3, 5])
"""

from __future__ import annotations

import functools
import logging
import weakref
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
    TYPE_CHECKING,
)

from ..faults.domains import DetachedRelationFault, InvalidRelationFault
from ..utils.inflect import before_last, singular

if TYPE_CHECKING:
    from .query import QueryBuilder

__all__ = [
    "RelationKind",
    "RelationDescriptor",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "BelongsToMany",
    "HasManyThrough",
    "HasOneThrough",
    "relation",
    "has_one",
    "has_many",
    "belongs_to",
    "belongs_to_many",
    "has_many_through",
    "has_one_through",
    "foreign_key_for",
    "pivot_table_for",
    "RELATION_MARKER",
]

logger = logging.getLogger("quarry.relations")

RELATION_MARKER = "__quarry_relation__"

Scope = Callable[["QueryBuilder"], Any]


class RelationKind(str, Enum):
    """Tag the loader dispatches on."""

    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"
    BELONGS_TO = "belongsTo"
    BELONGS_TO_MANY = "belongsToMany"
    HAS_MANY_THROUGH = "hasManyThrough"
    HAS_ONE_THROUGH = "hasOneThrough"


TO_ONE_KINDS = frozenset({RelationKind.HAS_ONE, RelationKind.BELONGS_TO, RelationKind.HAS_ONE_THROUGH})


# ── Naming defaults ─────────────────────────────────────────────────────────


def foreign_key_for(table: str) -> str:
    """Default foreign key pointing at ``table``: ``users`` -> ``user_id``."""
    return f"{singular(before_last(table, '_id')).lower()}_id"


def pivot_table_for(first: str, second: str) -> str:
    """Default pivot table: both table names sorted and joined with ``_``."""
    return "_".join(sorted([first.lower(), second.lower()]))


def _key_of(value: Any) -> Any:
    """Accept an entity or a raw key; entities contribute their primary key."""
    if hasattr(value, "get_primary_key") and hasattr(value, "get"):
        return value.get(value.get_primary_key())
    return value


def _normalize_ids(ids: Any) -> Tuple[List[Any], Dict[Any, Dict[str, Any]]]:
    """
    Flatten the id forms accepted by pivot helpers.

    ``ids`` may be one key, one entity, an iterable of either, or a
    mapping of key to extra pivot attributes.
    """
    if ids is None:
        return [], {}
    if isinstance(ids, Mapping):
        keys = [_key_of(key) for key in ids]
        return keys, {_key_of(key): dict(attrs or {}) for key, attrs in ids.items()}
    if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
        return [_key_of(ids)], {}
    return [_key_of(item) for item in ids], {}


# ── Descriptors ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, kw_only=True)
class RelationDescriptor:
    """
    Common relation configuration.

    Attributes:
        related: Related entity class
        owner_ref: Weak reference to the entity the accessor was called on
        lazy: Whether first access may load the relation on demand
        append: Extra pivot/through columns copied onto related entities
        scope: Callable applied to every query for this relation
        name: Accessor name, filled in by ``@relation``
    """

    kind = None  # overridden per subclass

    related: Type[Any]
    owner_ref: Optional[weakref.ref] = field(default=None, compare=False, repr=False)
    lazy: bool = True
    append: Tuple[str, ...] = ()
    scope: Optional[Scope] = field(default=None, compare=False, repr=False)
    name: str = ""

    @property
    def is_to_one(self) -> bool:
        return self.kind in TO_ONE_KINDS

    def default(self) -> Any:
        """Value cached when nothing matches: None or a fresh empty list."""
        return None if self.is_to_one else []

    @property
    def owner(self) -> Any:
        """
        The owning entity.

        Raises:
            DetachedRelationFault: when no owner was bound or it was collected
        """
        owner = self.owner_ref() if self.owner_ref is not None else None
        if owner is None:
            raise DetachedRelationFault(
                entity=getattr(self.related, "__name__", str(self.related)),
                relation=self.name or self.kind.value,
                reason="the owning entity is no longer available",
            )
        return owner

    def _owner_key(self, column: str) -> Any:
        owner = self.owner
        value = owner.get(column)
        if value is None or value == "":
            raise DetachedRelationFault(
                entity=type(owner).__name__,
                relation=self.name or self.kind.value,
                reason=f"owner key '{column}' is not set; save the entity first",
            )
        return value

    def _forget(self) -> None:
        owner = self.owner_ref() if self.owner_ref is not None else None
        if owner is not None and self.name:
            owner.relations.forget(self.name)

    def new_query(self) -> "QueryBuilder":
        """Fresh builder on the related entity with the relation scope applied."""
        query = self.related.query()
        if self.scope is not None:
            self.scope(query)
        return query


@dataclass(frozen=True, kw_only=True)
class _HasOneOrMany(RelationDescriptor):
    foreign_key: str
    local_key: str

    def query(self) -> "QueryBuilder":
        """Builder restricted to the owner's related rows."""
        return self.new_query().where(self.foreign_key, self._owner_key(self.local_key))

    def create(self, attributes: Mapping[str, Any]) -> Any:
        """Create a related entity with the foreign key filled from the owner."""
        key = self._owner_key(self.local_key)
        entity = self.related.create({**attributes, self.foreign_key: key})
        self._forget()
        return entity

    def first_or_create(
        self,
        attributes: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Return the first related entity matching ``attributes``, creating it if absent."""
        existing = self.query().where(dict(attributes)).first()
        if existing is not None:
            return existing
        return self.create({**attributes, **(values or {})})

    def update_or_create(
        self,
        attributes: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Update the first related entity matching ``attributes``, or create one."""
        existing = self.query().where(dict(attributes)).first()
        if existing is None:
            return self.create({**attributes, **(values or {})})
        existing.fill(values or {})
        existing.save()
        self._forget()
        return existing


@dataclass(frozen=True, kw_only=True)
class HasOne(_HasOneOrMany):
    kind = RelationKind.HAS_ONE


@dataclass(frozen=True, kw_only=True)
class HasMany(_HasOneOrMany):
    kind = RelationKind.HAS_MANY


@dataclass(frozen=True, kw_only=True)
class BelongsTo(RelationDescriptor):
    kind = RelationKind.BELONGS_TO

    foreign_key: str
    owner_key: str

    def associate(self, entity: Any) -> Any:
        """Point the owner's foreign key at ``entity`` (an entity or a key)."""
        owner = self.owner
        owner.set(self.foreign_key, entity.get(self.owner_key) if hasattr(entity, "get") else entity)
        if self.name:
            if hasattr(entity, "get"):
                owner.relations.set(self.name, entity)
            else:
                owner.relations.forget(self.name)
        return owner

    def dissociate(self) -> Any:
        owner = self.owner
        owner.set(self.foreign_key, None)
        if self.name:
            owner.relations.set(self.name, None)
        return owner


@dataclass(frozen=True, kw_only=True)
class BelongsToMany(RelationDescriptor):
    """
    Many-to-many through a pivot table.

    Pivot rows carry ``foreign_pivot_key`` (the owner side) and
    ``related_pivot_key`` (the related side), plus any extra columns.
    """

    kind = RelationKind.BELONGS_TO_MANY

    table: str
    foreign_pivot_key: str
    related_pivot_key: str
    parent_key: str
    related_key: str

    def pivot_query(self) -> "QueryBuilder":
        """Builder on the pivot table restricted to the owner's rows."""
        owner_key = self._owner_key(self.parent_key)
        return (
            self.related.query()
            .new_query(self.table)
            .where(self.foreign_pivot_key, owner_key)
        )

    def attached_ids(self) -> List[Any]:
        """Related keys currently present in the pivot for the owner."""
        return self.pivot_query().pluck(self.related_pivot_key)

    def attach(self, ids: Any, attributes: Optional[Mapping[str, Any]] = None) -> int:
        """
        Insert pivot rows linking the owner to ``ids``.

        Returns:
            Number of pivot rows inserted
        """
        keys, per_key = _normalize_ids(ids)
        if not keys:
            return 0
        owner_key = self._owner_key(self.parent_key)
        rows = [
            {
                self.foreign_pivot_key: owner_key,
                self.related_pivot_key: key,
                **(attributes or {}),
                **per_key.get(key, {}),
            }
            for key in keys
        ]
        # A batch insert needs identical column sets on every row.
        columns = set().union(*(row.keys() for row in rows))
        rows = [{column: row.get(column) for column in columns} for row in rows]

        builder = self.related.query().new_query(self.table)
        builder.insert(rows)
        self._forget()
        logger.debug(f"Attached {len(rows)} row(s) to pivot '{self.table}'")
        return len(rows)

    def detach(self, ids: Any = None) -> int:
        """
        Delete pivot rows for the owner, all of them when ``ids`` is None.

        Returns:
            Number of pivot rows deleted
        """
        keys, _ = _normalize_ids(ids)
        if ids is not None and not keys:
            return 0
        query = self.pivot_query()
        if keys:
            query.where_in(self.related_pivot_key, keys)
        query.delete()
        self._forget()
        return query.row_count

    def update_existing_pivot(self, id_: Any, attributes: Mapping[str, Any]) -> bool:
        if not attributes:
            return False
        updated = (
            self.pivot_query()
            .where(self.related_pivot_key, _key_of(id_))
            .update(dict(attributes))
        )
        self._forget()
        return updated

    def sync(self, ids: Any, detaching: bool = True) -> Dict[str, List[Any]]:
        """
        Make the pivot hold exactly ``ids`` for the owner.

        Keys are compared by their string form, so ``3`` and ``"3"`` are
        the same key.

        Returns:
            {"attached": [...], "detached": [...], "updated": [...]}
        """
        keys, per_key = _normalize_ids(ids)
        current = self.attached_ids()
        current_index = {str(key) for key in current}
        wanted_index = {str(key) for key in keys}

        changes: Dict[str, List[Any]] = {"attached": [], "detached": [], "updated": []}

        if detaching:
            changes["detached"] = [key for key in current if str(key) not in wanted_index]
            if changes["detached"]:
                self.detach(changes["detached"])

        missing = [key for key in dict.fromkeys(keys) if str(key) not in current_index]
        if missing:
            self.attach({key: per_key.get(key, {}) for key in missing})
            changes["attached"] = missing

        for key in dict.fromkeys(keys):
            if str(key) in current_index and per_key.get(key):
                if self.update_existing_pivot(key, per_key[key]):
                    changes["updated"].append(key)

        self._forget()
        return changes

    def sync_without_detaching(self, ids: Any) -> Dict[str, List[Any]]:
        return self.sync(ids, detaching=False)

    def toggle(self, ids: Any) -> Dict[str, List[Any]]:
        """Detach the keys that are attached and attach the ones that are not."""
        keys, per_key = _normalize_ids(ids)
        current_index = {str(key) for key in self.attached_ids()}

        detach = [key for key in dict.fromkeys(keys) if str(key) in current_index]
        attach = [key for key in dict.fromkeys(keys) if str(key) not in current_index]
        if detach:
            self.detach(detach)
        if attach:
            self.attach({key: per_key.get(key, {}) for key in attach})
        self._forget()
        return {"attached": attach, "detached": detach}


@dataclass(frozen=True, kw_only=True)
class _Through(RelationDescriptor):
    """
    Distant relation reached through an intermediate table.

    ``first_key`` lives on the through table and points at the owner's
    ``local_key``; ``second_key`` lives on the related table and points
    at the through table's ``second_local_key``.
    """

    through: Union[str, Type[Any]]
    first_key: str
    second_key: str
    local_key: str
    second_local_key: str

    @property
    def through_table(self) -> str:
        if isinstance(self.through, str):
            return self.through
        return self.through.get_table()


@dataclass(frozen=True, kw_only=True)
class HasManyThrough(_Through):
    kind = RelationKind.HAS_MANY_THROUGH


@dataclass(frozen=True, kw_only=True)
class HasOneThrough(_Through):
    kind = RelationKind.HAS_ONE_THROUGH


# ── Declaration helpers ─────────────────────────────────────────────────────


def relation(func: Callable[..., RelationDescriptor]) -> Callable[..., RelationDescriptor]:
    """
    Mark an entity method as a relation accessor.

    The returned descriptor is stamped with the method name, which is
    also the key the loaded value is cached under.
    """

    @functools.wraps(func)
    def accessor(self, *args, **kwargs):
        descriptor = func(self, *args, **kwargs)
        if not isinstance(descriptor, RelationDescriptor):
            raise InvalidRelationFault(
                entity=type(self).__name__,
                relation=func.__name__,
                got=type(descriptor).__name__,
            )
        if not descriptor.name:
            descriptor = replace(descriptor, name=func.__name__)
        return descriptor

    setattr(accessor, RELATION_MARKER, True)
    return accessor


def _resolve_related(owner: Any, related: Union[str, Type[Any]]) -> Type[Any]:
    """Accept the related entity class or a registered Model class name."""
    if not isinstance(related, str):
        return related
    from .base import ModelRegistry

    resolved = ModelRegistry.get(related)
    if resolved is None:
        raise InvalidRelationFault(entity=type(owner).__name__, relation=related, got="unregistered class name")
    return resolved


def _owner_ref(owner: Any) -> weakref.ref:
    return weakref.ref(owner)


def has_one(
    owner: Any,
    related: Union[str, Type[Any]],
    foreign_key: Optional[str] = None,
    local_key: Optional[str] = None,
    **options: Any,
) -> HasOne:
    related = _resolve_related(owner, related)
    return HasOne(
        related=related,
        owner_ref=_owner_ref(owner),
        foreign_key=foreign_key or foreign_key_for(owner.get_table()),
        local_key=local_key or owner.get_primary_key(),
        **options,
    )


def has_many(
    owner: Any,
    related: Union[str, Type[Any]],
    foreign_key: Optional[str] = None,
    local_key: Optional[str] = None,
    **options: Any,
) -> HasMany:
    related = _resolve_related(owner, related)
    return HasMany(
        related=related,
        owner_ref=_owner_ref(owner),
        foreign_key=foreign_key or foreign_key_for(owner.get_table()),
        local_key=local_key or owner.get_primary_key(),
        **options,
    )


def belongs_to(
    owner: Any,
    related: Union[str, Type[Any]],
    foreign_key: Optional[str] = None,
    owner_key: Optional[str] = None,
    **options: Any,
) -> BelongsTo:
    related = _resolve_related(owner, related)
    return BelongsTo(
        related=related,
        owner_ref=_owner_ref(owner),
        foreign_key=foreign_key or foreign_key_for(related.get_table()),
        owner_key=owner_key or related.get_primary_key(),
        **options,
    )


def belongs_to_many(
    owner: Any,
    related: Union[str, Type[Any]],
    table: Optional[str] = None,
    foreign_pivot_key: Optional[str] = None,
    related_pivot_key: Optional[str] = None,
    parent_key: Optional[str] = None,
    related_key: Optional[str] = None,
    append: Sequence[str] = (),
    **options: Any,
) -> BelongsToMany:
    related = _resolve_related(owner, related)
    return BelongsToMany(
        related=related,
        owner_ref=_owner_ref(owner),
        table=table or pivot_table_for(owner.get_table(), related.get_table()),
        foreign_pivot_key=foreign_pivot_key or foreign_key_for(owner.get_table()),
        related_pivot_key=related_pivot_key or foreign_key_for(related.get_table()),
        parent_key=parent_key or owner.get_primary_key(),
        related_key=related_key or related.get_primary_key(),
        append=tuple(append),
        **options,
    )


def _through_options(
    owner: Any,
    through: Union[str, Type[Any]],
    first_key: Optional[str],
    second_key: Optional[str],
    local_key: Optional[str],
    second_local_key: Optional[str],
) -> Dict[str, Any]:
    through_table = through if isinstance(through, str) else through.get_table()
    if second_local_key is None:
        second_local_key = "id" if isinstance(through, str) else through.get_primary_key()
    return {
        "through": through,
        "first_key": first_key or foreign_key_for(owner.get_table()),
        "second_key": second_key or foreign_key_for(through_table),
        "local_key": local_key or owner.get_primary_key(),
        "second_local_key": second_local_key,
    }


def has_many_through(
    owner: Any,
    related: Union[str, Type[Any]],
    through: Union[str, Type[Any]],
    first_key: Optional[str] = None,
    second_key: Optional[str] = None,
    local_key: Optional[str] = None,
    second_local_key: Optional[str] = None,
    append: Sequence[str] = (),
    **options: Any,
) -> HasManyThrough:
    related = _resolve_related(owner, related)
    return HasManyThrough(
        related=related,
        owner_ref=_owner_ref(owner),
        append=tuple(append),
        **_through_options(owner, through, first_key, second_key, local_key, second_local_key),
        **options,
    )


def has_one_through(
    owner: Any,
    related: Union[str, Type[Any]],
    through: Union[str, Type[Any]],
    first_key: Optional[str] = None,
    second_key: Optional[str] = None,
    local_key: Optional[str] = None,
    second_local_key: Optional[str] = None,
    append: Sequence[str] = (),
    **options: Any,
) -> HasOneThrough:
    related = _resolve_related(owner, related)
    return HasOneThrough(
        related=related,
        owner_ref=_owner_ref(owner),
        append=tuple(append),
        **_through_options(owner, through, first_key, second_key, local_key, second_local_key),
        **options,
    )
