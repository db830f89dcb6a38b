"""
Utilities for Quarry.
"""

from .inflect import snake, plural, singular, before_last

__all__ = ["snake", "plural", "singular", "before_last"]
