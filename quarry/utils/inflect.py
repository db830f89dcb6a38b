"""
Naming utilities for Quarry.

Small rule-based helpers used to derive default table names, foreign
keys and pivot tables. They cover regular English nouns plus a short
irregular list; anything else should be named explicitly.
"""

import re

_IRREGULAR = {
    "person": "people",
    "man": "men",
    "woman": "women",
    "child": "children",
    "mouse": "mice",
    "goose": "geese",
    "ox": "oxen",
}
_IRREGULAR_SINGULAR = {v: k for k, v in _IRREGULAR.items()}
_UNCOUNTABLE = {"data", "equipment", "information", "media", "news", "series", "species", "metadata"}

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake(name: str) -> str:
    """
    Convert CamelCase to snake_case.

    Example:
        snake("BlogPost") -> "blog_post"
    """
    return _CAMEL_RE.sub("_", name).replace("-", "_").lower()


def before_last(value: str, search: str) -> str:
    """Return everything before the last occurrence of ``search``."""
    if not search or search not in value:
        return value
    return value[: value.rindex(search)]


def plural(word: str) -> str:
    """
    Pluralize the last segment of a snake_case word.

    Example:
        plural("category") -> "categories"
        plural("blog_post") -> "blog_posts"
    """
    head, sep, last = word.rpartition("_")
    return f"{head}{sep}{_plural(last)}"


def singular(word: str) -> str:
    """
    Singularize the last segment of a snake_case word.

    Example:
        singular("categories") -> "category"
        singular("post_tags") -> "post_tag"
    """
    head, sep, last = word.rpartition("_")
    return f"{head}{sep}{_singular(last)}"


def _plural(word: str) -> str:
    lower = word.lower()
    if not word or lower in _UNCOUNTABLE or lower in _IRREGULAR_SINGULAR:
        return word
    if lower in _IRREGULAR:
        return _IRREGULAR[lower]
    if re.search(r"[^aeiou]y$", lower):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        return word + "es"
    return word + "s"


def _singular(word: str) -> str:
    lower = word.lower()
    if not word or lower in _UNCOUNTABLE or lower in _IRREGULAR:
        return word
    if lower in _IRREGULAR_SINGULAR:
        return _IRREGULAR_SINGULAR[lower]
    if lower.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", lower):
        return word[:-2]
    if re.search(r"(status|bus|alias|virus|campus)es$", lower):
        return word[:-2]
    if lower.endswith("s") and not lower.endswith("ss"):
        return word[:-1]
    return word
