"""
Quarry - multi-dialect schema, query and relation layer for MySQL, SQLite and PostgreSQL

Complete integration of:
- Schema: Blueprint DDL compiled per dialect by a Grammar
- Query: Fluent parameterized QueryBuilder with pagination and upserts
- Relations: Six relation kinds resolved by a batched RelationEngine
- Faults: Structured error handling with fault domains
- Config: Layered YAML/JSON/.env/environment settings
"""

__version__ = "0.1.0"

# ============================================================================
# Configuration & Connection
# ============================================================================

from .config import ConfigLoader, DatabaseConfig
from .db import (
    QuarryDatabase,
    Statement,
    ParamType,
    get_database,
    configure_database,
    set_database,
)

# ============================================================================
# Schema
# ============================================================================

from .schema import (
    Wrapper,
    Grammar,
    Blueprint,
    ColumnDefinition,
    ForeignKeyConstraint,
    Schema,
)

# ============================================================================
# Query Builder & Relations
# ============================================================================

from .models import (
    QueryBuilder,
    FetchMode,
    Paginator,
    Model,
    Entity,
    RelationCache,
    RelationEngine,
    RelationKind,
    Prefetch,
    relation,
    has_one,
    has_many,
    belongs_to,
    belongs_to_many,
    has_many_through,
    has_one_through,
)

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
    FaultDomain,
    Severity,
    ConfigInvalidFault,
    UnsupportedDriverFault,
    InvalidBlueprintArgumentFault,
    InvalidForeignKeyFault,
    DriverCapabilityFault,
    InvalidWhereClauseFault,
    QueryConstructionFault,
    QueryFault,
    RecordNotFoundFault,
    UndefinedRelationFault,
    InvalidRelationFault,
    LazyLoadingDisabledFault,
    DetachedRelationFault,
    DatabaseConnectionFault,
)

__all__ = [
    "__version__",
    # Configuration & connection
    "ConfigLoader",
    "DatabaseConfig",
    "QuarryDatabase",
    "Statement",
    "ParamType",
    "get_database",
    "configure_database",
    "set_database",
    # Schema
    "Wrapper",
    "Grammar",
    "Blueprint",
    "ColumnDefinition",
    "ForeignKeyConstraint",
    "Schema",
    # Query & relations
    "QueryBuilder",
    "FetchMode",
    "Paginator",
    "Model",
    "Entity",
    "RelationCache",
    "RelationEngine",
    "RelationKind",
    "Prefetch",
    "relation",
    "has_one",
    "has_many",
    "belongs_to",
    "belongs_to_many",
    "has_many_through",
    "has_one_through",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigInvalidFault",
    "UnsupportedDriverFault",
    "InvalidBlueprintArgumentFault",
    "InvalidForeignKeyFault",
    "DriverCapabilityFault",
    "InvalidWhereClauseFault",
    "QueryConstructionFault",
    "QueryFault",
    "RecordNotFoundFault",
    "UndefinedRelationFault",
    "InvalidRelationFault",
    "LazyLoadingDisabledFault",
    "DetachedRelationFault",
    "DatabaseConnectionFault",
]
