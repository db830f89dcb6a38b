"""
Quarry DB backends.

Each adapter wraps one DB-API driver; drivers other than sqlite3 are
imported lazily so a missing optional extra only fails on connect.
"""

from .base import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
    ParamType,
    Statement,
)

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ColumnInfo",
    "ParamType",
    "Statement",
]
