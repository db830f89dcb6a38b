"""
Quarry Models — query builder, entities and relations.

Provides:
- QueryBuilder: fluent parameterized SELECT/INSERT/UPDATE/DELETE
- WhereState / QuerySpec: the builder's immutable state values
- Model: ready-made entity with attribute access and persistence
- Relation descriptors (has_one ... has_one_through) and RelationEngine
- Paginator for paginate() results
"""

from .state import FetchMode, WhereState, QuerySpec
from .paginator import Paginator
from .entity import Entity, RelationCache
from .query import QueryBuilder, JoinClause
from .relations import (
    RelationKind,
    RelationDescriptor,
    HasOne,
    HasMany,
    BelongsTo,
    BelongsToMany,
    HasManyThrough,
    HasOneThrough,
    relation,
    has_one,
    has_many,
    belongs_to,
    belongs_to_many,
    has_many_through,
    has_one_through,
)
from .loader import RelationEngine, Prefetch
from .base import Model, ModelRegistry

__all__ = [
    "FetchMode",
    "WhereState",
    "QuerySpec",
    "Paginator",
    "Entity",
    "RelationCache",
    "QueryBuilder",
    "JoinClause",
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
    "RelationEngine",
    "Prefetch",
    "Model",
    "ModelRegistry",
]
