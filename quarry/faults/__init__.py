"""
QuarryFaults - Structured fault signals.

Every failure in quarry is raised as a typed Fault carrying a stable code,
a domain, a severity and metadata, so callers can branch on the kind of
failure instead of parsing messages.
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    UnsupportedDriverFault,
    InvalidBlueprintArgumentFault,
    InvalidForeignKeyFault,
    SchemaFault,
    DriverCapabilityFault,
    QueryBuilderFault,
    InvalidWhereClauseFault,
    QueryConstructionFault,
    QueryFault,
    RecordNotFoundFault,
    RelationFault,
    UndefinedRelationFault,
    InvalidRelationFault,
    LazyLoadingDisabledFault,
    DetachedRelationFault,
    DatabaseConnectionFault,
)

__all__ = [
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",

    # Config
    "ConfigFault",
    "ConfigInvalidFault",
    "UnsupportedDriverFault",
    "InvalidBlueprintArgumentFault",
    "InvalidForeignKeyFault",

    # Schema
    "SchemaFault",
    "DriverCapabilityFault",

    # Query
    "QueryBuilderFault",
    "InvalidWhereClauseFault",
    "QueryConstructionFault",
    "QueryFault",
    "RecordNotFoundFault",

    # Relation
    "RelationFault",
    "UndefinedRelationFault",
    "InvalidRelationFault",
    "LazyLoadingDisabledFault",
    "DetachedRelationFault",

    # Database
    "DatabaseConnectionFault",
]
