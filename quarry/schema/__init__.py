"""
Quarry Schema — multi-dialect DDL.

Provides:
- Wrapper: identifier quoting per dialect
- Grammar: column types, modifiers, keys, indexes and ALTER statements
- Blueprint / ColumnDefinition / ForeignKeyConstraint: fluent table definitions
- Schema: runs blueprints against a QuarryDatabase
"""

from .wrapper import Wrapper, SUPPORTED_DRIVERS, IDENTIFIER_LIMITS
from .grammar import Grammar, SUPPORTED_TYPES, FALLBACK_TYPE, FOREIGN_KEY_ACTIONS
from .column import ColumnDefinition, IndexDefinition, DropDefinition
from .foreign_key import ForeignKeyConstraint
from .blueprint import Blueprint
from .schema import Schema

__all__ = [
    "Wrapper",
    "SUPPORTED_DRIVERS",
    "IDENTIFIER_LIMITS",
    "Grammar",
    "SUPPORTED_TYPES",
    "FALLBACK_TYPE",
    "FOREIGN_KEY_ACTIONS",
    "ColumnDefinition",
    "IndexDefinition",
    "DropDefinition",
    "ForeignKeyConstraint",
    "Blueprint",
    "Schema",
]
