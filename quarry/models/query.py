"""
Quarry Query Builder — fluent, parameterized SQL for mysql, sqlite and pgsql.

A builder carries two immutable state values: a WhereState (the WHERE
fragment and its bindings) and a QuerySpec (everything else). Chain
methods replace them and return the same builder; terminal methods
(first, all, count, paginate, insert, update, delete, to_sql ...) take
a snapshot, run, and swap fresh defaults back in so the builder can be
reused for the next independent query.

Every value is bound under a unique ``:name`` placeholder. Repeating a
column auto-suffixes the name (``id``, ``id1``, ``id2``); IN-lists bind
one placeholder per element (``age_0``, ``age_1``).

Usage:
    posts = (
        QueryBuilder(db, "posts")
        .where("published", 1)
        .where(lambda q: q.where("views", ">", 100).or_where("featured", 1))
        .order_by("created_at", "desc")
        .limit(10)
        .all()
    )

    QueryBuilder(db, "users").where({"active": 1, "age": [20, 30]}).to_sql()
    # SELECT * FROM "users" WHERE "active" = :active AND "age" IN (:age_0, :age_1)

Builder state is not reset when execution raises; call ``reset()``
before reusing a builder after a failure.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import replace
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
    TYPE_CHECKING,
)

from ..db.engine import QuarryDatabase, get_database
from ..faults.domains import (
    InvalidWhereClauseFault,
    QueryConstructionFault,
    RecordNotFoundFault,
)
from ..schema.grammar import Grammar
from .paginator import Paginator, page_offset
from .state import FetchMode, QuerySpec, WhereState, placeholder_base

if TYPE_CHECKING:
    from ..db.backends.base import Statement

__all__ = ["QueryBuilder", "JoinClause"]

logger = logging.getLogger("quarry.query")

_UNSET = object()

OPERATORS = frozenset({
    "=", "!=", "<>", "<", ">", "<=", ">=",
    "LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE",
    "IN", "NOT IN", "BETWEEN", "NOT BETWEEN",
    "IS", "IS NOT",
})

JOIN_TYPES = frozenset({
    "INNER", "LEFT", "RIGHT", "CROSS",
    "LEFT OUTER", "RIGHT OUTER", "FULL OUTER",
})

_COMPARISONS = frozenset({"=", "!=", "<>", "<", ">", "<=", ">="})

# Plain identifiers (optionally dotted, optionally aliased) get quoted;
# anything else is treated as a raw SQL expression.
_IDENTIFIER_RE = re.compile(r"^[\w.]+(\.\*)?(\s+as\s+\w+)?$|^\*$", re.IGNORECASE)
_CONDITION_RE = re.compile(r"^\s*([\w.]+)\s*(=|!=|<>|<=|>=|<|>)\s*([\w.]+)\s*$")

# Upper bound used when an OFFSET is given without a LIMIT.
_NO_LIMIT = {"mysql": "18446744073709551615", "sqlite": "-1"}


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


class JoinClause:
    """
    ON-condition collector handed to ``join(table, callback)``.

    Usage:
        qb.left_join("comments", lambda j: j.on("comments.post_id", "=", "posts.id")
                                             .or_on("comments.legacy_id", "=", "posts.id"))
    """

    __slots__ = ("_builder", "_parts")

    def __init__(self, builder: "QueryBuilder"):
        self._builder = builder
        self._parts: List[str] = []

    def on(self, first: str, operator: str = "=", second: Optional[str] = None, connector: str = "AND") -> "JoinClause":
        if second is None:
            operator, second = "=", operator
        condition = f"{self._builder._column(first)} {operator} {self._builder._column(second)}"
        self._parts.append(f" {connector} {condition}" if self._parts else condition)
        return self

    def or_on(self, first: str, operator: str = "=", second: Optional[str] = None) -> "JoinClause":
        return self.on(first, operator, second, connector="OR")

    @property
    def sql(self) -> str:
        return "".join(self._parts)


class QueryBuilder:
    """
    Fluent SELECT / INSERT / UPDATE / DELETE builder.

    Args:
        db: Connection; the configured default database when omitted
        table: Base table (unprefixed)
        entity: Entity class rows are hydrated into; enables ``find``,
            ``prefetch_related``, ``has`` and ``with_count``
        prefix: Table prefix; the connection's prefix when omitted
    """

    __slots__ = ("db", "entity", "_table", "_prefix", "_grammar", "_where", "_spec", "_row_count")

    def __init__(
        self,
        db: Optional[QuarryDatabase] = None,
        table: Optional[str] = None,
        *,
        entity: Optional[Type[Any]] = None,
        prefix: Optional[str] = None,
    ):
        self.db = db if db is not None else get_database()
        self.entity = entity
        self._table = table or (entity.get_table() if entity is not None else None)
        self._prefix = self.db.prefix if prefix is None else prefix
        self._grammar: Optional[Grammar] = None
        self._where = WhereState()
        self._spec = QuerySpec()
        self._row_count = 0

    # ── Identity ─────────────────────────────────────────────────────

    @property
    def grammar(self) -> Grammar:
        if self._grammar is None:
            self._grammar = Grammar(self.db.get_driver())
        return self._grammar

    @property
    def row_count(self) -> int:
        """Rows affected by the last insert, update or delete."""
        return self._row_count

    @property
    def reserved_names(self):
        return self._where.reserved

    @property
    def qualifier(self) -> str:
        """Name other statements use to refer to this query's base table."""
        return self._spec.alias or self.prefixed(self._spec.source or self._require_table("select"))

    def prefixed(self, table: str) -> str:
        return f"{self._prefix}{table}"

    def table(self, name: str) -> "QueryBuilder":
        self._table = name
        return self

    def prefix(self, prefix: str) -> "QueryBuilder":
        self._prefix = prefix
        return self

    def new_query(self, table: Optional[str] = None, entity: Optional[Type[Any]] = None) -> "QueryBuilder":
        """Fresh builder on the same connection and prefix."""
        return QueryBuilder(self.db, table, entity=entity, prefix=self._prefix)

    def reserving(self, names: Iterable[str]) -> "QueryBuilder":
        """Treat ``names`` as taken so bindings of this builder can be merged into another statement."""
        self._where = replace(self._where, reserved=self._where.reserved | frozenset(names))
        return self

    def reset(self) -> "QueryBuilder":
        self._where = WhereState()
        self._spec = QuerySpec()
        return self

    @contextmanager
    def _consume(self) -> Iterator[Tuple[WhereState, QuerySpec]]:
        """Snapshot the state for one terminal call; reset on normal exit."""
        where, spec = self._where, self._spec
        yield where, spec
        self.reset()

    def _require_table(self, operation: str) -> str:
        if not self._table:
            raise QueryConstructionFault(operation, "no table set; pass one to QueryBuilder() or call table()")
        return self._table

    def _require_entity(self, operation: str) -> Type[Any]:
        if self.entity is None:
            raise QueryConstructionFault(operation, "builder is not bound to an entity class")
        return self.entity

    def _column(self, column: str) -> str:
        column = column.strip()
        if _IDENTIFIER_RE.match(column):
            return self.grammar.wrap(column)
        return column

    def _wrapped_table(self, table: str) -> str:
        return self.grammar.wrap_table(table, self._prefix)

    # ── Source ───────────────────────────────────────────────────────

    def from_(self, table: str, alias: Optional[str] = None) -> "QueryBuilder":
        self._spec = replace(self._spec, source=table, alias=alias)
        return self

    def alias(self, name: str) -> "QueryBuilder":
        self._spec = replace(self._spec, alias=name)
        return self

    # ── Where ────────────────────────────────────────────────────────

    def where(
        self,
        column: Any = None,
        operator: Any = _UNSET,
        value: Any = _UNSET,
        *,
        connector: str = "AND",
        negate: bool = False,
    ) -> "QueryBuilder":
        """
        Add a WHERE condition.

        Forms:
            where("age", 18)                 equality
            where("age", ">", 18)            operator
            where({"active": 1, "id": [1, 2]})  conjunctive map; lists become IN
            where("age > 18")                raw fragment
            where(lambda q: ...)             parenthesized group

        Raises:
            InvalidWhereClauseFault: unknown operator or unusable argument
        """
        if column is None:
            return self
        if callable(column):
            return self._where_group(column, connector, negate)
        if isinstance(column, Mapping):
            return self._where_map(column, connector, negate)
        if not isinstance(column, str):
            raise InvalidWhereClauseFault(f"unsupported where() argument of type {type(column).__name__}")
        if operator is _UNSET:
            return self.where_raw(column, connector=connector, negate=negate)
        if value is _UNSET:
            operator, value = "=", operator
        return self._where_basic(column, operator, value, connector, negate)

    def or_where(self, column: Any = None, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.where(column, operator, value, connector="OR")

    def where_not(self, column: Any = None, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.where(column, operator, value, negate=True)

    def or_where_not(self, column: Any = None, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.where(column, operator, value, connector="OR", negate=True)

    def where_raw(
        self,
        sql: str,
        bindings: Optional[Mapping[str, Any]] = None,
        *,
        connector: str = "AND",
        negate: bool = False,
    ) -> "QueryBuilder":
        """
        Add a raw fragment with its own named bindings.

        Raises:
            InvalidWhereClauseFault: a binding name is already used in the statement
        """
        if not sql or not sql.strip():
            return self
        state = self._where.merge_bindings(bindings or {})
        self._where = state.append(connector, f"NOT ({sql})" if negate else sql)
        return self

    def or_where_raw(self, sql: str, bindings: Optional[Mapping[str, Any]] = None) -> "QueryBuilder":
        return self.where_raw(sql, bindings, connector="OR")

    def where_null(self, column: str, *, connector: str = "AND", negate: bool = False) -> "QueryBuilder":
        keyword = "IS NOT NULL" if negate else "IS NULL"
        self._where = self._where.append(connector, f"{self._column(column)} {keyword}")
        return self

    def where_not_null(self, column: str) -> "QueryBuilder":
        return self.where_null(column, negate=True)

    def or_where_null(self, column: str) -> "QueryBuilder":
        return self.where_null(column, connector="OR")

    def or_where_not_null(self, column: str) -> "QueryBuilder":
        return self.where_null(column, connector="OR", negate=True)

    def where_in(
        self,
        column: str,
        values: Iterable[Any],
        *,
        connector: str = "AND",
        negate: bool = False,
    ) -> "QueryBuilder":
        fragment, state = self._in_fragment(self._where, column, list(values), negate)
        self._where = state.append(connector, fragment)
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.where_in(column, values, negate=True)

    def or_where_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.where_in(column, values, connector="OR")

    def or_where_not_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.where_in(column, values, connector="OR", negate=True)

    def where_between(
        self,
        column: str,
        values: Sequence[Any],
        *,
        connector: str = "AND",
        negate: bool = False,
    ) -> "QueryBuilder":
        values = list(values)
        if len(values) != 2:
            raise InvalidWhereClauseFault(f"between on '{column}' needs exactly two values, got {len(values)}")
        base = placeholder_base(column)
        low, state = self._where.bind(base, values[0])
        high, state = state.bind(base, values[1])
        keyword = "NOT BETWEEN" if negate else "BETWEEN"
        self._where = state.append(connector, f"{self._column(column)} {keyword} :{low} AND :{high}")
        return self

    def where_not_between(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        return self.where_between(column, values, negate=True)

    def or_where_between(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        return self.where_between(column, values, connector="OR")

    def or_where_not_between(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        return self.where_between(column, values, connector="OR", negate=True)

    def where_like(self, column: str, pattern: str) -> "QueryBuilder":
        return self.where(column, "LIKE", pattern)

    def where_not_like(self, column: str, pattern: str) -> "QueryBuilder":
        return self.where(column, "NOT LIKE", pattern)

    def or_where_like(self, column: str, pattern: str) -> "QueryBuilder":
        return self.or_where(column, "LIKE", pattern)

    def or_where_not_like(self, column: str, pattern: str) -> "QueryBuilder":
        return self.or_where(column, "NOT LIKE", pattern)

    def _where_basic(self, column: str, operator: Any, value: Any, connector: str, negate: bool) -> "QueryBuilder":
        if not isinstance(operator, str) or operator.strip().upper() not in OPERATORS:
            raise InvalidWhereClauseFault(f"unsupported operator {operator!r} on '{column}'")
        op = " ".join(operator.upper().split())

        if op in ("IN", "NOT IN"):
            if not _is_sequence(value):
                raise InvalidWhereClauseFault(f"{op} on '{column}' needs a list of values")
            return self.where_in(column, value, connector=connector, negate=negate != (op == "NOT IN"))
        if op in ("BETWEEN", "NOT BETWEEN"):
            return self.where_between(column, value, connector=connector, negate=negate != (op == "NOT BETWEEN"))

        if value is None:
            if op in ("=", "IS"):
                return self.where_null(column, connector=connector, negate=negate)
            if op in ("!=", "<>", "IS NOT"):
                return self.where_null(column, connector=connector, negate=not negate)
            raise InvalidWhereClauseFault(f"operator {op} cannot compare '{column}' with NULL")

        name, state = self._where.bind(placeholder_base(column), value)
        clause = f"{self._column(column)} {op} :{name}"
        self._where = state.append(connector, f"NOT ({clause})" if negate else clause)
        return self

    def _where_map(self, conditions: Mapping[str, Any], connector: str, negate: bool) -> "QueryBuilder":
        state = self._where
        parts: List[str] = []
        for column, value in conditions.items():
            if value is None:
                parts.append(f"{self._column(column)} IS {'NOT ' if negate else ''}NULL")
            elif _is_sequence(value):
                fragment, state = self._in_fragment(state, column, list(value), negate)
                parts.append(fragment)
            else:
                name, state = state.bind(placeholder_base(column), value)
                parts.append(f"{self._column(column)} {'!=' if negate else '='} :{name}")
        if not parts:
            return self
        self._where = state.append(connector, " AND ".join(parts))
        return self

    def _in_fragment(self, state: WhereState, column: str, values: List[Any], negate: bool) -> Tuple[str, WhereState]:
        if not values:
            return ("1 = 1" if negate else "1 = 0"), state
        base, state = state.reserve(placeholder_base(column))
        names = []
        for index, value in enumerate(values):
            name, state = state.bind(f"{base}_{index}", value)
            names.append(f":{name}")
        keyword = "NOT IN" if negate else "IN"
        return f"{self._column(column)} {keyword} ({', '.join(names)})", state

    def _where_group(self, callback: Callable[["QueryBuilder"], Any], connector: str, negate: bool) -> "QueryBuilder":
        before = self._where
        self._where = before.open_group(connector, negate)
        callback(self)
        self._where = self._where.close_group(before)
        return self

    # ── Select ───────────────────────────────────────────────────────

    def select(self, *columns: Union[str, Sequence[str]]) -> "QueryBuilder":
        """
        Set the select list. Each argument is a column, a list of
        columns, or a raw expression such as ``COUNT(*) AS total``.
        """
        compiled: List[str] = []
        for column in columns:
            items = column if _is_sequence(column) else [column]
            compiled.extend(self._column(item) for item in items)
        self._spec = replace(self._spec, select=tuple(compiled))
        return self

    def add_select(self, *columns: str) -> "QueryBuilder":
        existing = self._spec.select
        self.select(*columns)
        self._spec = replace(self._spec, select=existing + self._spec.select)
        return self

    def select_raw(self, expression: str, bindings: Optional[Mapping[str, Any]] = None) -> "QueryBuilder":
        """Append a raw select expression; its bindings join the statement's."""
        if bindings:
            self._where = self._where.merge_bindings(bindings)
        self._spec = replace(self._spec, select=self._spec.select + (expression,))
        return self

    def distinct(self, value: bool = True) -> "QueryBuilder":
        self._spec = replace(self._spec, distinct=value)
        return self

    # ── Joins ────────────────────────────────────────────────────────

    def join(
        self,
        table: str,
        first: Any = None,
        operator: Optional[str] = None,
        second: Optional[str] = None,
        type_: str = "INNER",
    ) -> "QueryBuilder":
        """
        Add a JOIN.

        Forms:
            join("users", "users.id", "=", "posts.user_id")
            join("users", "users.id", "posts.user_id")      operator defaults to =
            join("users", "users.id = posts.user_id")       condition string
            join("users", lambda j: j.on(...).or_on(...))   condition callback
        """
        kind = " ".join(type_.upper().split())
        if kind not in JOIN_TYPES:
            raise QueryConstructionFault("join", f"unsupported join type '{type_}'")

        if callable(first):
            clause = JoinClause(self)
            first(clause)
            condition = clause.sql
        elif first is not None and operator is None:
            match = _CONDITION_RE.match(first)
            if match:
                left, op, right = match.groups()
                condition = f"{self._column(left)} {op} {self._column(right)}"
            else:
                condition = first
        elif first is not None and second is None:
            condition = f"{self._column(first)} = {self._column(operator)}"
        elif first is not None:
            if operator not in _COMPARISONS:
                raise QueryConstructionFault("join", f"unsupported join operator '{operator}'")
            condition = f"{self._column(first)} {operator} {self._column(second)}"
        else:
            condition = ""

        if not condition and kind != "CROSS":
            raise QueryConstructionFault("join", f"{kind} JOIN on '{table}' needs a condition")

        sql = f" {kind} JOIN {self._wrapped_table(table)}"
        if condition:
            sql += f" ON {condition}"
        self._spec = replace(self._spec, joins=self._spec.joins + (sql,))
        return self

    def inner_join(self, table: str, first: Any = None, operator: Optional[str] = None, second: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "INNER")

    def left_join(self, table: str, first: Any = None, operator: Optional[str] = None, second: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "LEFT")

    def right_join(self, table: str, first: Any = None, operator: Optional[str] = None, second: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "RIGHT")

    def full_outer_join(self, table: str, first: Any = None, operator: Optional[str] = None, second: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "FULL OUTER")

    def left_outer_join(self, table: str, first: Any = None, operator: Optional[str] = None, second: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "LEFT OUTER")

    def right_outer_join(self, table: str, first: Any = None, operator: Optional[str] = None, second: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "RIGHT OUTER")

    def cross_join(self, table: str) -> "QueryBuilder":
        return self.join(table, type_="CROSS")

    # ── Ordering / grouping / paging ─────────────────────────────────

    def order_by(self, column: str, direction: str = "ASC") -> "QueryBuilder":
        direction = direction.upper()
        if direction not in ("ASC", "DESC"):
            raise QueryConstructionFault("order_by", f"direction must be ASC or DESC, got '{direction}'")
        clause = f"{self._column(column)} {direction}"
        self._spec = replace(self._spec, order=self._spec.order + (clause,))
        return self

    def order_asc(self, column: str = "id") -> "QueryBuilder":
        return self.order_by(column, "ASC")

    def order_desc(self, column: str = "id") -> "QueryBuilder":
        return self.order_by(column, "DESC")

    def latest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "DESC")

    def oldest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "ASC")

    def group_by(self, *columns: str) -> "QueryBuilder":
        self._spec = replace(self._spec, group=self._spec.group + tuple(self._column(c) for c in columns))
        return self

    def having(self, column: str, operator: Any = _UNSET, value: Any = _UNSET, bindings: Optional[Mapping[str, Any]] = None) -> "QueryBuilder":
        """
        Add a HAVING condition: a raw expression with optional bindings,
        or a ``(column, operator, value)`` comparison.
        """
        if operator is _UNSET:
            if bindings:
                self._where = self._where.merge_bindings(bindings)
            clause = column
        else:
            if value is _UNSET:
                operator, value = "=", operator
            if operator not in _COMPARISONS:
                raise InvalidWhereClauseFault(f"unsupported HAVING operator {operator!r}")
            name, self._where = self._where.bind(placeholder_base(column), value)
            clause = f"{self._column(column)} {operator} :{name}"
        self._spec = replace(self._spec, having=self._spec.having + (clause,))
        return self

    def limit(self, count: int) -> "QueryBuilder":
        if not isinstance(count, int) or count < 0:
            raise QueryConstructionFault("limit", f"limit must be a non-negative integer, got {count!r}")
        self._spec = replace(self._spec, limit=count)
        return self

    def take(self, count: int) -> "QueryBuilder":
        return self.limit(count)

    def offset(self, count: int) -> "QueryBuilder":
        if not isinstance(count, int) or count < 0:
            raise QueryConstructionFault("offset", f"offset must be a non-negative integer, got {count!r}")
        self._spec = replace(self._spec, offset=count)
        return self

    def skip(self, count: int) -> "QueryBuilder":
        return self.offset(count)

    # ── Result shaping ───────────────────────────────────────────────

    def fetch(self, mode: Union[FetchMode, str]) -> "QueryBuilder":
        self._spec = replace(self._spec, fetch=FetchMode(mode))
        return self

    def add_mapper(self, mapper: Callable[[list], list]) -> "QueryBuilder":
        """Register a callable applied to the fetched result list (once, in order)."""
        self._spec = replace(self._spec, mappers=self._spec.mappers + (mapper,))
        return self

    def prefetch_related(self, *lookups: Any) -> "QueryBuilder":
        """
        Eager load relations on the fetched entities, one query per relation.

        Usage:
            Post.query().prefetch_related("author", "comments.author",
                                          Prefetch("tags", lambda q: q.order_by("name"))).all()
        """
        self._require_entity("prefetch_related")
        self._spec = replace(self._spec, prefetch=self._spec.prefetch + lookups)
        return self

    # ── Compilation ──────────────────────────────────────────────────

    def _from_sql(self, spec: QuerySpec) -> str:
        sql = self._wrapped_table(spec.source or self._require_table("select"))
        if spec.alias:
            sql += f" AS {self.grammar.wrap(spec.alias)}"
        return sql

    def _compile_select(
        self,
        where: WhereState,
        spec: QuerySpec,
        *,
        columns: Optional[str] = None,
        calc_found_rows: bool = False,
        paged: bool = True,
    ) -> str:
        head = "SELECT "
        if spec.distinct:
            head += "DISTINCT "
        if calc_found_rows:
            head += "SQL_CALC_FOUND_ROWS "
        selected = columns or (", ".join(spec.select) if spec.select else "*")

        sql = f"{head}{selected} FROM {self._from_sql(spec)}{''.join(spec.joins)}{where.compile()}"
        if spec.group:
            sql += " GROUP BY " + ", ".join(spec.group)
        if spec.having:
            sql += " HAVING " + " AND ".join(spec.having)
        if paged:
            if spec.order:
                sql += " ORDER BY " + ", ".join(spec.order)
            sql += self._compile_limit(spec)
        return sql

    def _compile_limit(self, spec: QuerySpec) -> str:
        sql = ""
        if spec.limit is not None:
            sql += f" LIMIT {int(spec.limit)}"
        elif spec.offset:
            no_limit = _NO_LIMIT.get(self.grammar.driver)
            if no_limit:
                sql += f" LIMIT {no_limit}"
        if spec.offset:
            sql += f" OFFSET {int(spec.offset)}"
        return sql

    def to_sql(self) -> str:
        """Compile the current SELECT without executing it (resets the builder)."""
        with self._consume() as (where, spec):
            return self._compile_select(where, spec)

    def to_sql_with_bindings(self) -> Tuple[str, Dict[str, Any]]:
        with self._consume() as (where, spec):
            return self._compile_select(where, spec), dict(where.bindings)

    # ── Execution ────────────────────────────────────────────────────

    def _execute(self, sql: str, bindings: Mapping[str, Any], operation: str) -> "Statement":
        statement = self.db.prepare(sql, {"table": self._table or "<none>", "operation": operation})
        for name, value in bindings.items():
            statement.bind_value(name, value)
        logger.debug(f"{operation}: {sql}")
        statement.execute()
        return statement

    def _hydrate(self, rows: List[Dict[str, Any]], spec: QuerySpec) -> List[Any]:
        mode = spec.fetch or (FetchMode.ENTITY if self.entity is not None else FetchMode.DICT)
        if mode is FetchMode.ENTITY:
            entity = self._require_entity("fetch")
            results: List[Any] = [entity.load_attributes(row) for row in rows]
            if spec.prefetch and results:
                from .loader import RelationEngine

                RelationEngine().eager_load(results, spec.prefetch)
        elif mode is FetchMode.COLUMN:
            results = [next(iter(row.values()), None) for row in rows]
        else:
            results = rows

        if spec.prefetch and mode is not FetchMode.ENTITY:
            raise QueryConstructionFault("prefetch_related", "eager loading needs entity fetch mode")

        for mapper in spec.mappers:
            results = mapper(results)
        return results

    def _select_rows(self, where: WhereState, spec: QuerySpec, operation: str) -> List[Any]:
        statement = self._execute(self._compile_select(where, spec), where.bindings, operation)
        return self._hydrate(statement.fetch_all(), spec)

    # ── Terminal reads ───────────────────────────────────────────────

    def all(self) -> List[Any]:
        with self._consume() as (where, spec):
            return self._select_rows(where, spec, "select")

    def get(self) -> List[Any]:
        return self.all()

    def first(self) -> Optional[Any]:
        with self._consume() as (where, spec):
            results = self._select_rows(where, replace(spec, limit=1), "first")
            return results[0] if results else None

    def last(self) -> Optional[Any]:
        """Last row: the current ordering reversed, or primary key descending."""
        with self._consume() as (where, spec):
            if spec.order:
                order = tuple(
                    clause[:-4] + " DESC" if clause.endswith(" ASC") else clause[:-5] + " ASC"
                    for clause in spec.order
                )
            else:
                key = self.entity.get_primary_key() if self.entity is not None else "id"
                order = (f"{self._column(key)} DESC",)
            results = self._select_rows(where, replace(spec, order=order, limit=1), "last")
            return results[0] if results else None

    def _count(self, where: WhereState, spec: QuerySpec, column: str = "*") -> int:
        target = "*" if column == "*" else self._column(column)
        if spec.group or spec.distinct:
            inner = self._compile_select(where, replace(spec, order=(), limit=None, offset=None))
            sql = f"SELECT COUNT({target}) AS aggregate FROM ({inner}) AS {self.grammar.wrap('aggregate_table')}"
        else:
            sql = self._compile_select(where, spec, columns=f"COUNT({target}) AS aggregate", paged=False)
        value = self._execute(sql, where.bindings, "count").fetch_column()
        return int(value or 0)

    def count(self, column: str = "*") -> int:
        with self._consume() as (where, spec):
            return self._count(where, spec, column)

    def exists(self) -> bool:
        with self._consume() as (where, spec):
            sql = self._compile_select(where, replace(spec, order=(), limit=1, offset=None), columns="1")
            return self._execute(sql, where.bindings, "exists").fetch_one() is not None

    def doesnt_exist(self) -> bool:
        return not self.exists()

    def _aggregate(self, function: str, column: str) -> Any:
        with self._consume() as (where, spec):
            sql = self._compile_select(
                where,
                spec,
                columns=f"{function}({self._column(column)}) AS aggregate",
                paged=False,
            )
            return self._execute(sql, where.bindings, function.lower()).fetch_column()

    def max(self, column: str) -> Any:
        return self._aggregate("MAX", column)

    def min(self, column: str) -> Any:
        return self._aggregate("MIN", column)

    def sum(self, column: str) -> Any:
        return self._aggregate("SUM", column) or 0

    def avg(self, column: str) -> Any:
        return self._aggregate("AVG", column)

    def pluck(self, column: str, key: Optional[str] = None) -> Union[List[Any], Dict[Any, Any]]:
        """Values of one column, or a ``{key: value}`` dict when ``key`` is given."""
        with self._consume() as (where, spec):
            columns = [self._column(column)] + ([self._column(key)] if key else [])
            spec = replace(spec, select=tuple(columns), fetch=FetchMode.DICT, mappers=(), prefetch=())
            rows = self._execute(self._compile_select(where, spec), where.bindings, "pluck").fetch_all()
            value_name = column.rsplit(".", 1)[-1]
            if key is None:
                return [row.get(value_name) for row in rows]
            key_name = key.rsplit(".", 1)[-1]
            return {row.get(key_name): row.get(value_name) for row in rows}

    def paginate(self, per_page: int = 15, page: int = 1) -> Paginator:
        """
        One page of results plus the total row count.

        MySQL reads the total with ``FOUND_ROWS()`` after a
        ``SQL_CALC_FOUND_ROWS`` select; other dialects run a COUNT query.
        """
        if per_page < 1:
            raise QueryConstructionFault("paginate", f"per_page must be positive, got {per_page}")
        with self._consume() as (where, spec):
            page_spec = replace(spec, limit=per_page, offset=page_offset(per_page, page))
            use_found_rows = self.grammar.is_mysql()
            sql = self._compile_select(where, page_spec, calc_found_rows=use_found_rows)
            rows = self._execute(sql, where.bindings, "paginate").fetch_all()
            if use_found_rows:
                total = self._execute("SELECT FOUND_ROWS()", {}, "paginate").fetch_column()
            else:
                total = self._count(where, spec)
            items = self._hydrate(rows, spec)
        return Paginator(items, total, per_page, page)

    # ── Entity helpers ───────────────────────────────────────────────

    def find(self, key: Any) -> Optional[Any]:
        entity = self._require_entity("find")
        return self.where(entity.get_primary_key(), key).first()

    def find_or_fail(self, key: Any) -> Any:
        result = self.find(key)
        if result is None:
            raise RecordNotFoundFault(table=self._table or "<none>", key=key)
        return result

    def destroy(self, *keys: Any) -> int:
        """Delete rows by primary key; returns the number deleted."""
        entity = self._require_entity("destroy")
        flat: List[Any] = []
        for key in keys:
            flat.extend(key if _is_sequence(key) else [key])
        if not flat:
            return 0
        self.where_in(entity.get_primary_key(), flat).delete()
        return self._row_count

    # ── Relation filters and aggregates ──────────────────────────────

    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        connector: str = "AND",
        callback: Optional[Callable[["QueryBuilder"], Any]] = None,
    ) -> "QueryBuilder":
        """
        Keep rows whose ``relation`` has ``operator count`` related rows,
        compiled as a correlated COUNT(*) subquery.
        """
        from .loader import RelationEngine

        self._require_entity("has")
        if operator not in _COMPARISONS:
            raise InvalidWhereClauseFault(f"unsupported has() operator {operator!r}")
        sql, bindings = RelationEngine().relation_subquery(self, relation, callback=callback)
        state = self._where.merge_bindings(bindings)
        name, state = state.bind(f"{placeholder_base(relation)}_count", count)
        self._where = state.append(connector, f"({sql}) {operator} :{name}")
        return self

    def or_has(self, relation: str, operator: str = ">=", count: int = 1) -> "QueryBuilder":
        return self.has(relation, operator, count, "OR")

    def doesnt_have(self, relation: str, connector: str = "AND", callback: Optional[Callable] = None) -> "QueryBuilder":
        return self.has(relation, "<", 1, connector, callback)

    def or_doesnt_have(self, relation: str) -> "QueryBuilder":
        return self.doesnt_have(relation, "OR")

    def where_has(self, relation: str, callback: Optional[Callable] = None, operator: str = ">=", count: int = 1) -> "QueryBuilder":
        return self.has(relation, operator, count, "AND", callback)

    def or_where_has(self, relation: str, callback: Optional[Callable] = None, operator: str = ">=", count: int = 1) -> "QueryBuilder":
        return self.has(relation, operator, count, "OR", callback)

    def where_doesnt_have(self, relation: str, callback: Optional[Callable] = None) -> "QueryBuilder":
        return self.doesnt_have(relation, "AND", callback)

    def or_where_doesnt_have(self, relation: str, callback: Optional[Callable] = None) -> "QueryBuilder":
        return self.doesnt_have(relation, "OR", callback)

    def where_relation(self, relation: str, column: str, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.where_has(relation, lambda q: q.where(column, operator, value))

    def or_where_relation(self, relation: str, column: str, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.or_where_has(relation, lambda q: q.where(column, operator, value))

    def _with_aggregate(self, relation: str, function: str, column: str, callback: Optional[Callable]) -> "QueryBuilder":
        from .loader import RelationEngine

        self._require_entity(f"with_{function}")
        sql, bindings = RelationEngine().relation_subquery(self, relation, function, column, callback)
        if not self._spec.select:
            self._spec = replace(self._spec, select=(f"{self.grammar.wrap(self.qualifier)}.*",))
        return self.select_raw(f"({sql}) AS {self.grammar.wrap(f'{relation}_{function}')}", bindings)

    def with_count(self, *relations: Union[str, Mapping[str, Callable]]) -> "QueryBuilder":
        """
        Add ``<relation>_count`` columns.

        Usage:
            Post.query().with_count("comments", {"tags": lambda q: q.where("featured", 1)})
        """
        for item in relations:
            callbacks = item.items() if isinstance(item, Mapping) else [(item, None)]
            for relation, callback in callbacks:
                self._with_aggregate(relation, "count", "*", callback)
        return self

    def with_sum(self, relation: str, column: str, callback: Optional[Callable] = None) -> "QueryBuilder":
        return self._with_aggregate(relation, "sum", column, callback)

    def with_avg(self, relation: str, column: str, callback: Optional[Callable] = None) -> "QueryBuilder":
        return self._with_aggregate(relation, "avg", column, callback)

    def with_min(self, relation: str, column: str, callback: Optional[Callable] = None) -> "QueryBuilder":
        return self._with_aggregate(relation, "min", column, callback)

    def with_max(self, relation: str, column: str, callback: Optional[Callable] = None) -> "QueryBuilder":
        return self._with_aggregate(relation, "max", column, callback)

    # ── Writes ───────────────────────────────────────────────────────

    @staticmethod
    def _normalize_rows(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, Mapping):
            rows = [dict(data)]
        elif _is_sequence(data) and all(isinstance(row, Mapping) for row in data):
            rows = [dict(row) for row in data]
        else:
            raise QueryConstructionFault("insert", "expected a mapping or a list of mappings")
        rows = [row for row in rows if row]
        if rows:
            columns = set(rows[0])
            for index, row in enumerate(rows[1:], start=1):
                if set(row) != columns:
                    raise QueryConstructionFault(
                        "insert",
                        f"row {index} has columns {sorted(row)}, expected {sorted(columns)}",
                    )
        return rows

    def insert(
        self,
        data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        *,
        ignore: bool = False,
        replace: bool = False,
        conflict: Sequence[str] = (),
        update: Optional[Union[Sequence[str], Mapping[str, str]]] = None,
        returning: Optional[Sequence[str]] = None,
    ) -> Any:
        """
        Insert one record or a batch in a single statement.

        Returns:
            Rows from RETURNING on pgsql when ``returning`` is given,
            otherwise the last inserted id (0 when nothing was inserted)
        """
        with self._consume():
            rows = self._normalize_rows(data)
            if not rows:
                logger.debug("insert: no rows given, nothing to do")
                return 0
            sql, bindings = self._compile_insert(rows, ignore, replace, conflict, update, returning)
            statement = self._execute(sql, bindings, "insert")
        self._row_count = statement.row_count
        if returning and self.grammar.is_pgsql():
            return statement.fetch_all()
        return statement.last_insert_id or 0

    def _compile_insert(
        self,
        rows: List[Dict[str, Any]],
        ignore: bool,
        replace_rows: bool,
        conflict: Sequence[str],
        update: Optional[Union[Sequence[str], Mapping[str, str]]],
        returning: Optional[Sequence[str]],
    ) -> Tuple[str, Dict[str, Any]]:
        columns = list(rows[0])
        state = WhereState()
        values = []
        for index, row in enumerate(rows):
            names = []
            for column in columns:
                name, state = state.bind(f"{placeholder_base(column)}_{index}", row[column])
                names.append(f":{name}")
            values.append(f"({', '.join(names)})")

        table = self._wrapped_table(self._require_table("insert"))
        verb = self.grammar.compile_insert_verb(ignore=ignore, replace=replace_rows)
        sql = f"{verb} {table} ({self.grammar.columnize(columns)}) VALUES {', '.join(values)}"
        sql += self.grammar.compile_conflict(columns, conflict, update, ignore)
        sql += self.grammar.compile_returning(returning or ())
        return sql, dict(state.bindings)

    def insert_or_ignore(self, data: Any) -> Any:
        return self.insert(data, ignore=True)

    def upsert(
        self,
        data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        conflict: Sequence[str] = ("id",),
        update: Optional[Union[Sequence[str], Mapping[str, str]]] = None,
    ) -> int:
        """
        Insert rows, updating ``update`` columns (default: every column not
        in ``conflict``) when ``conflict`` already exists.

        Returns:
            Rows affected as reported by the driver
        """
        rows = self._normalize_rows(data)
        if not rows:
            self.reset()
            return 0
        if update is None:
            update = [column for column in rows[0] if column not in conflict]
        self.insert(rows, conflict=conflict, update=update)
        return self._row_count

    def update(self, data: Mapping[str, Any], where: Any = None) -> bool:
        """
        Update rows matching the WHERE clause.

        Returns False without issuing SQL when no WHERE condition was
        given.
        """
        if where is not None:
            self.where(where)
        with self._consume() as (state, spec):
            if state.is_empty:
                logger.debug("update: refusing to run without a WHERE clause")
                return False
            if not data:
                raise QueryConstructionFault("update", "no values to update")
            assignments = []
            for column, value in data.items():
                name, state = state.bind(placeholder_base(column), value)
                assignments.append(f"{self._column(column)} = :{name}")
            table = self._wrapped_table(spec.source or self._require_table("update"))
            sql = f"UPDATE {table} SET {', '.join(assignments)}{state.compile()}"
            statement = self._execute(sql, state.bindings, "update")
        self._row_count = statement.row_count
        return self._row_count > 0

    def update_or_insert(self, attributes: Mapping[str, Any], values: Optional[Mapping[str, Any]] = None) -> bool:
        """Update the rows matching ``attributes``, or insert ``attributes + values``."""
        values = dict(values or {})
        if self.where(dict(attributes)).exists():
            if not values:
                return True
            return self.update(values, dict(attributes))
        self.insert({**attributes, **values})
        return True

    def delete(self, where: Any = None) -> bool:
        """
        Delete rows matching the WHERE clause.

        Returns False without issuing SQL when no WHERE condition was
        given.
        """
        if where is not None:
            self.where(where)
        with self._consume() as (state, spec):
            if state.is_empty:
                logger.debug("delete: refusing to run without a WHERE clause")
                return False
            table = self._wrapped_table(spec.source or self._require_table("delete"))
            statement = self._execute(f"DELETE FROM {table}{state.compile()}", state.bindings, "delete")
        self._row_count = statement.row_count
        return self._row_count > 0

    def __repr__(self) -> str:
        return f"QueryBuilder(table={self._table!r}, entity={getattr(self.entity, '__name__', None)})"
