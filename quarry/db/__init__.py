"""
Quarry Database — synchronous connection layer.

Provides:
- QuarryDatabase: connection manager exposing prepare/exec/get_driver/last_insert_id
- SQLite driver (default), Postgres/MySQL adapters
- Statement objects with typed parameter binding
- Module-level default database accessors
"""

from .engine import (
    QuarryDatabase,
    get_database,
    configure_database,
    set_database,
)

from .backends import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
    ParamType,
    Statement,
)

from ..faults.domains import (
    DatabaseConnectionFault,
    QueryFault,
)

__all__ = [
    "QuarryDatabase",
    "get_database",
    "configure_database",
    "set_database",
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ColumnInfo",
    "ParamType",
    "Statement",
    "DatabaseConnectionFault",
    "QueryFault",
]
