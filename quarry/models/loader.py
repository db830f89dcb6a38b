"""
Quarry Relation Engine — batched eager loading.

Loading a relation for N parent entities issues exactly one query:
the distinct parent keys are collected, the related rows are fetched
with a single ``IN`` filter, and each parent receives its matches from
an in-memory index. Keys are compared by their string form, so an
integer foreign key matches a string primary key of the same value.

Lookups accepted by ``eager_load``:
    "comments"                  one relation
    "comments.author"           nested, loaded level by level
    "comments:id,body"          column subset (join keys are kept)
    Prefetch("comments", fn)    constraint callback on the relation query
    {"comments": fn}            same, mapping form
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
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
    TYPE_CHECKING,
)

from ..faults.domains import (
    InvalidRelationFault,
    LazyLoadingDisabledFault,
    UndefinedRelationFault,
)
from .relations import RELATION_MARKER, RelationDescriptor, RelationKind
from .state import FetchMode

if TYPE_CHECKING:
    from .query import QueryBuilder

__all__ = ["RelationEngine", "Prefetch", "distinct_keys"]

logger = logging.getLogger("quarry.relations")

Constraint = Callable[["QueryBuilder"], Any]


class Prefetch:
    """
    Eager-load lookup with a constraint callback.

    Usage:
        posts = Post.query().prefetch_related(
            Prefetch("comments", lambda q: q.where("approved", 1).latest())
        ).all()

    ``to_attr`` caches the result under another name, so a constrained
    load does not shadow the plain relation.
    """

    __slots__ = ("lookup", "constraints", "to_attr")

    def __init__(
        self,
        lookup: str,
        constraints: Optional[Constraint] = None,
        to_attr: Optional[str] = None,
    ):
        self.lookup = lookup
        self.constraints = constraints
        self.to_attr = to_attr

    def __repr__(self) -> str:
        return f"Prefetch({self.lookup!r})"


@dataclass
class _LoadPlan:
    name: str
    cache_as: str
    columns: Tuple[str, ...] = ()
    constraints: List[Constraint] = field(default_factory=list)
    nested: List[Any] = field(default_factory=list)


def distinct_keys(entities: Iterable[Any], column: str) -> List[Any]:
    """Distinct non-empty values of ``column`` in first-seen order."""
    values = (entity.get(column) for entity in entities)
    return list(dict.fromkeys(value for value in values if value is not None and value != ""))


def _index_rows(rows: Iterable[Tuple[Any, Any]]) -> Dict[str, List[Any]]:
    index: Dict[str, List[Any]] = {}
    for key, entity in rows:
        index.setdefault(str(key), []).append(entity)
    return index


class RelationEngine:
    """
    Resolves relation descriptors and loads them in batches.

    The engine is stateless; every entity point of contact goes through
    the entity protocol (``get``, ``relations``, ``get_table``,
    ``get_primary_key``, ``load_attributes``, ``query``).
    """

    # kind -> (attribute holding the parent-side key, planner method)
    _PLANS = {
        RelationKind.HAS_ONE: ("local_key", "_plan_has"),
        RelationKind.HAS_MANY: ("local_key", "_plan_has"),
        RelationKind.BELONGS_TO: ("foreign_key", "_plan_belongs_to"),
        RelationKind.BELONGS_TO_MANY: ("parent_key", "_plan_belongs_to_many"),
        RelationKind.HAS_MANY_THROUGH: ("local_key", "_plan_through"),
        RelationKind.HAS_ONE_THROUGH: ("local_key", "_plan_through"),
    }

    _SUBQUERIES = {
        RelationKind.HAS_ONE: "_subquery_has",
        RelationKind.HAS_MANY: "_subquery_has",
        RelationKind.BELONGS_TO: "_subquery_belongs_to",
        RelationKind.BELONGS_TO_MANY: "_subquery_belongs_to_many",
        RelationKind.HAS_MANY_THROUGH: "_subquery_through",
        RelationKind.HAS_ONE_THROUGH: "_subquery_through",
    }

    # ── Descriptor resolution ────────────────────────────────────────

    def describe(self, entity: Any, name: str) -> RelationDescriptor:
        """
        Return the descriptor behind relation accessor ``name``.

        Raises:
            UndefinedRelationFault: no ``@relation`` accessor with that name
            InvalidRelationFault: the accessor returned something unusable
        """
        entity_name = type(entity).__name__
        accessor = getattr(type(entity), name, None)
        if accessor is None or not getattr(accessor, RELATION_MARKER, False):
            raise UndefinedRelationFault(entity=entity_name, relation=name)

        descriptor = getattr(entity, name)()
        if getattr(descriptor, "kind", None) not in self._PLANS:
            raise InvalidRelationFault(
                entity=entity_name,
                relation=name,
                got=type(descriptor).__name__,
            )
        return descriptor

    def describe_class(self, entity_cls: type, name: str) -> RelationDescriptor:
        """Descriptor lookup without an instance (blank entity)."""
        return self.describe(entity_cls(), name)

    # ── Access ───────────────────────────────────────────────────────

    def resolve(self, entity: Any, name: str) -> Any:
        """
        Cached value of relation ``name``, loading it on first access.

        Raises:
            LazyLoadingDisabledFault: the relation is not loaded and is
                declared with ``lazy=False``
        """
        if entity.relations.is_loaded(name):
            return entity.relations.get(name)

        descriptor = self.describe(entity, name)
        if not descriptor.lazy:
            raise LazyLoadingDisabledFault(entity=type(entity).__name__, relation=name)

        logger.debug(f"Lazy loading {type(entity).__name__}.{name}")
        self.load([entity], name, descriptor=descriptor)
        return entity.relations.get(name)

    # ── Eager loading ────────────────────────────────────────────────

    def eager_load(self, entities: Sequence[Any], lookups: Iterable[Any]) -> Sequence[Any]:
        """Load every lookup for ``entities``; nested lookups level by level."""
        entities = [entity for entity in entities if entity is not None]
        if not entities:
            return entities

        for plan in self._parse(lookups).values():
            self.load(
                entities,
                plan.name,
                constraints=plan.constraints,
                columns=plan.columns,
                cache_as=plan.cache_as,
            )
            if plan.nested:
                children = self._children(entities, plan.cache_as)
                if children:
                    self.eager_load(children, plan.nested)
        return entities

    def load(
        self,
        parents: Sequence[Any],
        name: str,
        *,
        constraints: Sequence[Constraint] = (),
        columns: Sequence[str] = (),
        cache_as: Optional[str] = None,
        descriptor: Optional[RelationDescriptor] = None,
    ) -> None:
        """
        Load relation ``name`` for all ``parents`` with a single query
        and cache the result on each parent.
        """
        if not parents:
            return
        descriptor = descriptor or self.describe(parents[0], name)
        cache_as = cache_as or name
        parent_attr, planner = self._PLANS[descriptor.kind]
        parent_key = getattr(descriptor, parent_attr)

        keys = distinct_keys(parents, parent_key)
        if not keys:
            for parent in parents:
                parent.relations.set(cache_as, descriptor.default())
            logger.debug(f"Relation '{name}': no parent keys, skipped query")
            return

        query, match_key = getattr(self, planner)(descriptor, keys, tuple(columns))
        if descriptor.scope is not None:
            descriptor.scope(query)
        for constraint in constraints:
            constraint(query)

        rows = query.fetch(FetchMode.DICT).all()
        related = descriptor.related
        index = _index_rows((row.get(match_key), related.load_attributes(row)) for row in rows)

        for parent in parents:
            key = parent.get(parent_key)
            matches = index.get(str(key), []) if key is not None and key != "" else []
            if descriptor.is_to_one:
                parent.relations.set(cache_as, matches[0] if matches else None)
            else:
                parent.relations.set(cache_as, list(matches))

        logger.debug(
            f"Loaded relation '{name}' ({descriptor.kind.value}) for "
            f"{len(parents)} parent(s): {len(rows)} row(s)"
        )

    # ── Per-kind query plans ─────────────────────────────────────────

    @staticmethod
    def _with_keys(columns: Sequence[str], *keys: str, prefix: str = "") -> List[str]:
        selected = [f"{prefix}{column}" for column in columns]
        for key in keys:
            if f"{prefix}{key}" not in selected:
                selected.append(f"{prefix}{key}")
        return selected

    def _plan_has(self, descriptor, keys, columns) -> Tuple["QueryBuilder", str]:
        query = descriptor.related.query()
        if columns:
            query.select(*self._with_keys(columns, descriptor.foreign_key))
        return query.where_in(descriptor.foreign_key, keys), descriptor.foreign_key

    def _plan_belongs_to(self, descriptor, keys, columns) -> Tuple["QueryBuilder", str]:
        query = descriptor.related.query()
        if columns:
            query.select(*self._with_keys(columns, descriptor.owner_key))
        return query.where_in(descriptor.owner_key, keys), descriptor.owner_key

    def _plan_belongs_to_many(self, descriptor, keys, columns) -> Tuple["QueryBuilder", str]:
        related_table = descriptor.related.get_table()
        pivot_columns = [
            f"p.{descriptor.foreign_pivot_key}",
            f"p.{descriptor.related_pivot_key}",
            *(f"p.{column}" for column in descriptor.append),
        ]
        selected = (
            self._with_keys(columns, descriptor.related_key, prefix="r.") if columns else ["r.*"]
        )
        query = (
            descriptor.related.query()
            .from_(related_table, "r")
            .select(*selected, *dict.fromkeys(pivot_columns))
            .join(
                f"{descriptor.table} as p",
                f"p.{descriptor.related_pivot_key}",
                "=",
                f"r.{descriptor.related_key}",
            )
            .where_in(f"p.{descriptor.foreign_pivot_key}", keys)
        )
        return query, descriptor.foreign_pivot_key

    def _plan_through(self, descriptor, keys, columns) -> Tuple["QueryBuilder", str]:
        related_table = descriptor.related.get_table()
        through_columns = [f"t.{descriptor.first_key}", *(f"t.{column}" for column in descriptor.append)]
        selected = (
            self._with_keys(columns, descriptor.second_key, prefix="r.") if columns else ["r.*"]
        )
        query = (
            descriptor.related.query()
            .from_(related_table, "r")
            .select(*selected, *dict.fromkeys(through_columns))
            .join(
                f"{descriptor.through_table} as t",
                f"t.{descriptor.second_local_key}",
                "=",
                f"r.{descriptor.second_key}",
            )
            .where_in(f"t.{descriptor.first_key}", keys)
        )
        return query, descriptor.first_key

    # ── Correlated subqueries (has / with_count) ─────────────────────

    def relation_subquery(
        self,
        parent: "QueryBuilder",
        name: str,
        function: str = "count",
        column: str = "*",
        callback: Optional[Constraint] = None,
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Correlated subquery over relation ``name`` of the parent builder's
        entity, selecting ``function(column)`` over the related rows.

        Bind names in the returned SQL never collide with names already
        used by ``parent``.

        Returns:
            (sql, bindings)
        """
        descriptor = self.describe_class(parent.entity, name)
        query = descriptor.related.query().reserving(parent.reserved_names)

        related_table = descriptor.related.get_table()
        alias = None
        if related_table == parent.entity.get_table():
            alias = f"{name}_related"
        query.from_(related_table, alias)

        outer = parent.qualifier
        inner = alias or query.prefixed(related_table)
        getattr(self, self._SUBQUERIES[descriptor.kind])(query, descriptor, outer, inner)

        if descriptor.scope is not None:
            descriptor.scope(query)
        if callback is not None:
            callback(query)

        if column == "*":
            target = "*"
        else:
            target = query.grammar.wrap(column if "." in column else f"{inner}.{column}")
        query.select_raw(f"{function.upper()}({target})")
        return query.to_sql_with_bindings()

    @staticmethod
    def _correlate(query: "QueryBuilder", left: str, right: str) -> None:
        query.where_raw(f"{query.grammar.wrap(left)} = {query.grammar.wrap(right)}")

    def _subquery_has(self, query, descriptor, outer, inner) -> None:
        self._correlate(query, f"{inner}.{descriptor.foreign_key}", f"{outer}.{descriptor.local_key}")

    def _subquery_belongs_to(self, query, descriptor, outer, inner) -> None:
        self._correlate(query, f"{inner}.{descriptor.owner_key}", f"{outer}.{descriptor.foreign_key}")

    def _subquery_belongs_to_many(self, query, descriptor, outer, inner) -> None:
        pivot = query.prefixed(descriptor.table)
        query.join(descriptor.table, f"{pivot}.{descriptor.related_pivot_key}", "=", f"{inner}.{descriptor.related_key}")
        self._correlate(query, f"{pivot}.{descriptor.foreign_pivot_key}", f"{outer}.{descriptor.parent_key}")

    def _subquery_through(self, query, descriptor, outer, inner) -> None:
        through = query.prefixed(descriptor.through_table)
        query.join(descriptor.through_table, f"{through}.{descriptor.second_local_key}", "=", f"{inner}.{descriptor.second_key}")
        self._correlate(query, f"{through}.{descriptor.first_key}", f"{outer}.{descriptor.local_key}")

    # ── Lookup parsing ───────────────────────────────────────────────

    def _parse(self, lookups: Iterable[Any]) -> Dict[str, _LoadPlan]:
        plans: Dict[str, _LoadPlan] = {}

        def plan_for(head: str, cache_as: Optional[str] = None) -> _LoadPlan:
            name, _, column_list = head.partition(":")
            name = name.strip()
            key = cache_as or name
            plan = plans.get(key)
            if plan is None:
                plan = plans[key] = _LoadPlan(name=name, cache_as=key)
            if column_list:
                plan.columns = tuple(c.strip() for c in column_list.split(",") if c.strip())
            return plan

        for lookup in lookups:
            if isinstance(lookup, Prefetch):
                head, _, rest = lookup.lookup.partition(".")
                if rest:
                    plan_for(head).nested.append(Prefetch(rest, lookup.constraints, lookup.to_attr))
                else:
                    plan = plan_for(head, lookup.to_attr)
                    if lookup.constraints is not None:
                        plan.constraints.append(lookup.constraints)
            elif isinstance(lookup, Mapping):
                for path, constraint in lookup.items():
                    self._parse_into(plan_for, path, constraint)
            elif isinstance(lookup, str):
                self._parse_into(plan_for, lookup, None)
            else:
                raise InvalidRelationFault(entity="<lookup>", relation=repr(lookup), got=type(lookup).__name__)
        return plans

    @staticmethod
    def _parse_into(plan_for, path: str, constraint: Optional[Constraint]) -> None:
        head, _, rest = path.partition(".")
        plan = plan_for(head)
        if rest:
            plan.nested.append({rest: constraint} if constraint is not None else rest)
        elif constraint is not None:
            plan.constraints.append(constraint)

    @staticmethod
    def _children(entities: Sequence[Any], name: str) -> List[Any]:
        seen: Dict[int, Any] = {}
        for entity in entities:
            value = entity.relations.get(name)
            for child in value if isinstance(value, list) else [value]:
                if child is not None:
                    seen.setdefault(id(child), child)
        return list(seen.values())
