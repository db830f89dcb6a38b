"""
QuarryFaults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults (unsupported driver, bad blueprint arguments, bad settings)
- SCHEMA faults (DDL the active driver cannot express)
- QUERY faults (malformed where clauses, failed statements)
- RELATION faults (undefined/invalid relations, disabled lazy loading)
- DATABASE faults (connection failures)
"""

from typing import Any, Optional, Sequence
from .core import Fault, FaultDomain, Severity


def _meta(extra: dict[str, Any], kwargs: dict[str, Any]) -> dict[str, Any]:
    return {**extra, **kwargs.get("metadata", {})}


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Invalid configuration for '{key}': {reason}",
            metadata=_meta({"key": key, "reason": reason}, kwargs),
        )


class UnsupportedDriverFault(ConfigFault):
    """Dialect is not one of mysql, sqlite, pgsql."""

    def __init__(self, driver: str, **kwargs):
        super().__init__(
            code="UNSUPPORTED_DRIVER",
            message=(
                f"Unsupported database driver '{driver}'. "
                "Supported drivers: mysql, sqlite, pgsql."
            ),
            metadata=_meta({"driver": driver}, kwargs),
        )


class InvalidBlueprintArgumentFault(ConfigFault):
    """A blueprint column or index was declared with unusable arguments."""

    def __init__(self, column: str, reason: str, **kwargs):
        super().__init__(
            code="INVALID_BLUEPRINT_ARGUMENT",
            message=f"Invalid definition for column '{column}': {reason}",
            metadata=_meta({"column": column, "reason": reason}, kwargs),
        )


class InvalidForeignKeyFault(ConfigFault):
    """Foreign key constraint is missing its referenced table or columns."""

    def __init__(self, columns: Sequence[str], reason: str, **kwargs):
        super().__init__(
            code="INVALID_FOREIGN_KEY",
            message=f"Invalid foreign key on ({', '.join(columns)}): {reason}",
            metadata=_meta({"columns": list(columns), "reason": reason}, kwargs),
        )


# ============================================================================
# SCHEMA Faults
# ============================================================================

class SchemaFault(Fault):
    """Base class for DDL faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.SCHEMA,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class DriverCapabilityFault(SchemaFault):
    """The active driver cannot express the requested DDL operation."""

    def __init__(self, driver: str, operation: str, **kwargs):
        super().__init__(
            code="DRIVER_CAPABILITY",
            message=f"{driver} does not support {operation}",
            metadata=_meta({"driver": driver, "operation": operation}, kwargs),
        )


# ============================================================================
# QUERY Faults
# ============================================================================

class QueryBuilderFault(Fault):
    """Base class for query builder faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.QUERY,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class InvalidWhereClauseFault(QueryBuilderFault):
    """A where() call received a shape it cannot compile."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(
            code="INVALID_WHERE_CLAUSE",
            message=f"Malformed where clause: {reason}",
            metadata=_meta({"reason": reason}, kwargs),
        )


class QueryConstructionFault(QueryBuilderFault):
    """Any other builder call that cannot produce a valid statement."""

    def __init__(self, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_CONSTRUCTION",
            message=f"Cannot build {operation}: {reason}",
            metadata=_meta({"operation": operation, "reason": reason}, kwargs),
        )


class QueryFault(QueryBuilderFault):
    """Statement preparation or execution failed."""

    def __init__(self, table: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_FAILED",
            message=f"Query on '{table}' ({operation}) failed: {reason}",
            metadata=_meta({"table": table, "operation": operation, "reason": reason}, kwargs),
        )


class RecordNotFoundFault(QueryBuilderFault):
    """find_or_fail() matched nothing."""

    def __init__(self, table: str, key: Any, **kwargs):
        super().__init__(
            code="RECORD_NOT_FOUND",
            message=f"No record in '{table}' matches key {key!r}",
            severity=Severity.WARN,
            metadata=_meta({"table": table, "key": key}, kwargs),
        )


# ============================================================================
# RELATION Faults
# ============================================================================

class RelationFault(Fault):
    """Base class for relation faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.RELATION,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class UndefinedRelationFault(RelationFault):
    """No relation accessor with that name exists on the entity."""

    def __init__(self, entity: str, relation: str, **kwargs):
        super().__init__(
            code="UNDEFINED_RELATION",
            message=f"Undefined relation '{relation}' on {entity}",
            metadata=_meta({"entity": entity, "relation": relation}, kwargs),
        )


class InvalidRelationFault(RelationFault):
    """The relation accessor returned something that is not a descriptor."""

    def __init__(self, entity: str, relation: str, got: str, **kwargs):
        super().__init__(
            code="INVALID_RELATION",
            message=f"Relation '{relation}' on {entity} returned {got}, not a relation descriptor",
            metadata=_meta({"entity": entity, "relation": relation, "got": got}, kwargs),
        )


class LazyLoadingDisabledFault(RelationFault):
    """A non-lazy relation was read before it was eager loaded."""

    def __init__(self, entity: str, relation: str, **kwargs):
        super().__init__(
            code="LAZY_LOADING_DISABLED",
            message=(
                f"Lazy loading is disabled for relation '{relation}' on {entity}; "
                "eager load it with prefetch_related() or load()"
            ),
            metadata=_meta({"entity": entity, "relation": relation}, kwargs),
        )


class DetachedRelationFault(RelationFault):
    """A relation helper needs its owning entity (or its key) and has none."""

    def __init__(self, entity: str, relation: str, reason: str, **kwargs):
        super().__init__(
            code="DETACHED_RELATION",
            message=f"Relation {relation!r} on {entity} cannot be used: {reason}",
            metadata=_meta({"entity": entity, "relation": relation, "reason": reason}, kwargs),
        )


# ============================================================================
# DATABASE Faults
# ============================================================================

class DatabaseConnectionFault(Fault):
    """Database connection failed."""

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            code="DB_CONNECTION_FAILED",
            message=f"Database connection failed ({url}): {reason}",
            domain=FaultDomain.DATABASE,
            severity=Severity.FATAL,
            retryable=False,
            metadata=_meta({"url": url, "reason": reason}, kwargs),
        )
