"""
Quarry Model — a ready-made entity.

Attributes live in a plain dict behind an explicit accessor API
(``get`` / ``set`` / ``has`` / ``fill``); resolved relations live in a
separate RelationCache. Relation accessors are methods marked with
``@relation``.

Usage:
    class User(Model):
        @relation
        def posts(self):
            return has_many(self, "Post")

    class Post(Model):
        @relation
        def author(self):
            return belongs_to(self, User)

    user = User.create({"name": "Alice"})
    user.posts().create({"title": "Hello"})
    posts = Post.query().prefetch_related("author").all()
    posts[0].related("author").get("name")   # "Alice", no extra query
"""

from __future__ import annotations

import datetime
import decimal
import uuid
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Type

from ..db.engine import QuarryDatabase, get_database
from ..faults.domains import QueryConstructionFault, RecordNotFoundFault
from ..utils.inflect import plural, snake
from .entity import RelationCache
from .loader import RelationEngine
from .query import QueryBuilder

__all__ = ["Model", "ModelRegistry"]


class ModelRegistry:
    """
    Registry of Model subclasses by class name.

    Relation helpers accept a class name string for the related entity so
    that models can refer to classes declared further down a module.
    """

    _models: Dict[str, Type["Model"]] = {}
    _db: Optional[QuarryDatabase] = None

    @classmethod
    def register(cls, model_cls: Type["Model"]) -> None:
        cls._models[model_cls.__name__] = model_cls

    @classmethod
    def get(cls, name: str) -> Optional[Type["Model"]]:
        return cls._models.get(name)

    @classmethod
    def all_models(cls) -> Dict[str, Type["Model"]]:
        return dict(cls._models)

    @classmethod
    def set_database(cls, db: Optional[QuarryDatabase]) -> None:
        """Database used by every model without its own ``database``."""
        cls._db = db

    @classmethod
    def get_database(cls) -> Optional[QuarryDatabase]:
        return cls._db

    @classmethod
    def reset(cls) -> None:
        cls._models.clear()
        cls._db = None


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, Model):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    return value


class Model:
    """
    Base entity class.

    Class attributes:
        table: Table name; defaults to the pluralized snake_case class name
        primary_key: Primary key column (default ``id``)
        database: Connection for this model; falls back to the registry's,
            then to the configured default database
    """

    table: ClassVar[str] = ""
    primary_key: ClassVar[str] = "id"
    database: ClassVar[Optional[QuarryDatabase]] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if not cls.__dict__.get("table"):
            cls.table = plural(snake(cls.__name__))
        ModelRegistry.register(cls)

    def __init__(self, attributes: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        """Create an in-memory instance (not persisted)."""
        self._attributes: Dict[str, Any] = {}
        self._original: Dict[str, Any] = {}
        self._exists = False
        self.relations = RelationCache()
        self.fill({**(attributes or {}), **kwargs})

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} pk={self.get(self.primary_key, '?')}>"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, self.__class__):
            return False
        key = self.get(self.primary_key)
        return key is not None and key == other.get(other.primary_key)

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, self.get(self.primary_key)))

    # ── Entity capability set ────────────────────────────────────────

    @classmethod
    def get_table(cls) -> str:
        return cls.table

    @classmethod
    def get_primary_key(cls) -> str:
        return cls.primary_key

    @classmethod
    def get_database(cls) -> QuarryDatabase:
        return cls.database or ModelRegistry.get_database() or get_database()

    @classmethod
    def load_attributes(cls, row: Mapping[str, Any]) -> "Model":
        """Build an instance from a fetched row, marked as persisted."""
        instance = cls()
        instance._attributes = dict(row)
        instance._sync_original()
        instance._exists = True
        return instance

    @classmethod
    def query(cls) -> QueryBuilder:
        return QueryBuilder(cls.get_database(), entity=cls)

    # ── Attributes ───────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        return self._attributes.get(key, default)

    def set(self, key: str, value: Any) -> "Model":
        self._attributes[key] = value
        return self

    def has(self, key: str) -> bool:
        return key in self._attributes

    def fill(self, attributes: Mapping[str, Any]) -> "Model":
        self._attributes.update(attributes)
        return self

    @property
    def attributes(self) -> Dict[str, Any]:
        return dict(self._attributes)

    @property
    def exists(self) -> bool:
        """Whether this instance was loaded from or saved to the database."""
        return self._exists

    def get_dirty(self) -> Dict[str, Any]:
        """Attributes changed since the instance was loaded or saved."""
        return {
            key: value
            for key, value in self._attributes.items()
            if key not in self._original or self._original[key] != value
        }

    def is_dirty(self) -> bool:
        return bool(self.get_dirty())

    def _sync_original(self) -> None:
        self._original = dict(self._attributes)

    def to_dict(self, *, exclude: Optional[Iterable[str]] = None, relations: bool = True) -> Dict[str, Any]:
        """Attributes (and loaded relations) as plain values."""
        exclude = set(exclude or [])
        result = {
            key: _serialize(value)
            for key, value in self._attributes.items()
            if key not in exclude
        }
        if relations:
            for name, value in self.relations.items():
                if name not in exclude:
                    result[name] = _serialize(value)
        return result

    # ── Relations ────────────────────────────────────────────────────

    def related(self, name: str) -> Any:
        """
        Value of relation ``name``: cached when loaded, otherwise loaded
        now unless the relation is declared ``lazy=False``.
        """
        return RelationEngine().resolve(self, name)

    def load(self, *lookups: Any) -> "Model":
        """(Re)load relations for this instance, nested paths included."""
        RelationEngine().eager_load([self], lookups)
        return self

    def load_missing(self, *lookups: str) -> "Model":
        missing = [
            lookup for lookup in lookups
            if not self.relations.is_loaded(lookup.split(".", 1)[0].split(":", 1)[0])
        ]
        if missing:
            self.load(*missing)
        return self

    def relation_loaded(self, name: str) -> bool:
        return self.relations.is_loaded(name)

    def set_relation(self, name: str, value: Any) -> "Model":
        self.relations.set(name, value)
        return self

    def forget_relation(self, name: Optional[str] = None) -> "Model":
        self.relations.forget(name)
        return self

    # ── Persistence ──────────────────────────────────────────────────

    @classmethod
    def find(cls, key: Any) -> Optional["Model"]:
        return cls.query().find(key)

    @classmethod
    def find_or_fail(cls, key: Any) -> "Model":
        return cls.query().find_or_fail(key)

    @classmethod
    def all(cls) -> List["Model"]:
        return cls.query().all()

    @classmethod
    def create(cls, attributes: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "Model":
        """
        Create and persist a new record.

        Usage:
            user = User.create({"name": "Alice", "email": "alice@test.com"})
        """
        instance = cls(attributes, **kwargs)
        instance.save()
        return instance

    def save(self) -> "Model":
        """Insert a new record, or update the changed columns of an existing one."""
        key_name = self.get_primary_key()
        if self._exists:
            changes = {k: v for k, v in self.get_dirty().items() if k != key_name}
            if changes:
                self.query().where(key_name, self.get(key_name)).update(changes)
        else:
            if not self._attributes:
                raise QueryConstructionFault("save", f"{type(self).__name__} has no attributes to insert")
            new_id = self.query().insert(self._attributes)
            if self.get(key_name) is None and new_id:
                self.set(key_name, new_id)
            self._exists = True
        self._sync_original()
        return self

    def remove(self) -> bool:
        """Delete this record; returns whether a row was deleted."""
        key_name = self.get_primary_key()
        key = self.get(key_name)
        if key is None:
            raise QueryConstructionFault("remove", f"cannot delete an unsaved {type(self).__name__}")
        deleted = self.query().delete({key_name: key})
        self._exists = False
        return deleted

    def refresh(self) -> "Model":
        """Reload attributes from the database and drop cached relations."""
        key_name = self.get_primary_key()
        fresh = self.query().fetch("dict").where(key_name, self.get(key_name)).first()
        if fresh is None:
            raise RecordNotFoundFault(table=self.get_table(), key=self.get(key_name))
        self._attributes = dict(fresh)
        self._sync_original()
        self.relations.forget()
        return self
