"""
Model base class and the metaclass that turns field declarations into
table metadata.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from ..utils import camel_to_snake
from .fields import Field, ModelConfigurationError, UUIDField
from .relations import (
    ForeignKey,
    ManyToManyField,
    Reference,
    Relation,
    RelationshipError,
    RelationshipNotLoaded,
    Resolvable,
    relation_registry,
)


@dataclass
class ModelOptions:
    """
    The ``_meta`` attached to every model class. ``fields`` holds scalar
    columns in declaration order; navigations and link fields live apart
    in ``relations`` and ``many_to_many``.
    """

    model: Type["Model"]
    table_name: str
    indexes: List[Tuple[str, ...]] = field(default_factory=list)
    fields: Dict[str, Field] = field(default_factory=dict)
    relations: Dict[str, Relation] = field(default_factory=dict)
    many_to_many: List[ManyToManyField] = field(default_factory=list)
    primary_key: Optional[Field] = None

    def _error(self, message: str) -> ModelConfigurationError:
        return ModelConfigurationError(f"{self.model.__name__}: {message}")

    def add_field(self, field_obj: Field) -> None:
        name = field_obj.require_name()
        if name in self.fields:
            raise self._error(f"field '{name}' is declared twice")
        if field_obj.primary_key:
            if self.primary_key not in (None, field_obj):
                raise self._error("a model may declare only one primary key")
            self.primary_key = field_obj
        self.fields[name] = field_obj

    def add_relation(self, relation: Relation) -> None:
        if relation.name in self.fields or relation.name in self.relations:
            raise self._error(f"relation '{relation.name}' clashes with an existing attribute")
        self.relations[relation.name] = relation

    def get_field(self, name: str) -> Field:
        if name not in self.fields:
            raise KeyError(f"{self.model.__name__} has no field '{name}'")
        return self.fields[name]

    def get_fields(self) -> Iterable[Field]:
        return self.fields.values()

    def get_relation(self, name: str) -> Relation:
        relation = self.relations.get(name)
        if relation is None:
            raise RelationshipError(f"{self.model.__name__} has no relation '{name}'")
        return relation

    def pk_column(self) -> str:
        if self.primary_key is None:
            raise self._error("no primary key is defined")
        return self.primary_key.column_name()


TModel = TypeVar("TModel", bound="Model")


def _declared_indexes(meta: Any) -> List[Tuple[str, ...]]:
    entries = getattr(meta, "indexes", ()) if meta is not None else ()
    return [(entry,) if isinstance(entry, str) else tuple(entry) for entry in entries]


class ModelMeta(type):
    """
    Collects declared fields, supplies a UUID ``id`` identity when none is
    declared, and registers the class with the relation registry.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "ModelMeta":
        if not any(isinstance(base, ModelMeta) for base in bases):
            return super().__new__(mcls, name, bases, attrs)

        declared = {
            key: attrs.pop(key) for key, value in list(attrs.items()) if isinstance(value, Field)
        }
        cls = super().__new__(mcls, name, bases, attrs)
        meta = getattr(cls, "Meta", None)
        options = ModelOptions(
            model=cls,
            table_name=getattr(meta, "table", None) or camel_to_snake(name),
            indexes=_declared_indexes(meta),
        )
        cls._meta = options

        if not any(field_obj.primary_key for field_obj in declared.values()):
            if "id" in declared:
                raise options._error("a field named 'id' must be the primary key")
            identity = UUIDField(primary_key=True, default=uuid.uuid4)
            identity.creation_counter = -1
            declared["id"] = identity

        for attr_name, field_obj in sorted(declared.items(), key=lambda item: item[1].creation_counter):
            field_obj.contribute_to_class(cls, attr_name)
            # Link fields own no column on this table.
            if not isinstance(field_obj, ManyToManyField):
                options.add_field(field_obj)
            if isinstance(field_obj, (ForeignKey, ManyToManyField)):
                relation_registry.register_field(cls, field_obj)

        unknown = [name for index in options.indexes for name in index if name not in options.fields]
        if unknown:
            raise options._error(f"index references unknown field(s) {', '.join(unknown)}")

        relation_registry.register_model(cls)
        return cls


class Model(metaclass=ModelMeta):
    """
    Base model providing the data container and relationship holders.
    Persistence is supplied by :class:`emberorm.persistence.Session`.
    """

    _meta: ModelOptions

    def __init__(self, **kwargs: Any) -> None:
        self._field_values: Dict[str, Any] = {}
        self._initial_state: Dict[str, Any] = {}
        self._relations: Dict[str, Resolvable] = {}
        self._session = None

        navigations: Dict[str, Any] = {}
        for name in list(kwargs):
            relation = self._meta.relations.get(name)
            if isinstance(relation, Reference):
                navigations[name] = kwargs.pop(name)
                kwargs.setdefault(relation.fk.require_name(), navigations[name])
            elif relation is not None:
                raise RelationshipError(
                    f"Collection '{name}' cannot be assigned through the constructor"
                )

        unknown = set(kwargs) - set(self._meta.fields)
        if unknown:
            raise TypeError(
                f"{type(self).__name__}() got unexpected fields: {', '.join(sorted(unknown))}"
            )

        for field_obj in self._meta.get_fields():
            name = field_obj.require_name()
            if name in kwargs:
                setattr(self, name, kwargs[name])
            elif field_obj.has_default:
                default_value = field_obj.get_default()
                if default_value is not None:
                    setattr(self, name, default_value)

        for name, target in navigations.items():
            if isinstance(target, Model):
                self._resolvable(name).resolve(target)

        # Snapshot used for change detection once the instance is tracked.
        self._initial_state = dict(self._field_values)

    @classmethod
    def _from_db(cls: Type[TModel], values: Mapping[str, Any]) -> TModel:
        """
        Build an instance from storage values keyed by column name, bypassing
        defaults and immutability checks.
        """
        instance = cls.__new__(cls)
        instance._field_values = {}
        instance._relations = {}
        instance._session = None
        for field_obj in cls._meta.get_fields():
            column = field_obj.column_name()
            if column in values:
                instance._field_values[field_obj.require_name()] = field_obj.from_db(values[column])
        instance._initial_state = dict(instance._field_values)
        return instance

    def __repr__(self) -> str:
        field_parts = ", ".join(
            f"{field_obj.name}={self._field_values.get(field_obj.name)!r}"
            for field_obj in self._meta.get_fields()
            if field_obj.name in self._field_values
        )
        return f"<{self.__class__.__name__} {field_parts}>"

    @property
    def pk(self) -> Any:
        primary_key = self._meta.primary_key
        if primary_key is None:
            raise ModelConfigurationError(
                f"Model '{self.__class__.__name__}' does not define a primary key."
            )
        return self._field_values.get(primary_key.require_name())

    def to_dict(self) -> Dict[str, Any]:
        return {name: self._field_values.get(name) for name in self._meta.fields}

    def to_db_values(self, names: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Column name to storage value for ``names`` (all fields by default).
        """
        selected = self._meta.fields if names is None else names
        values: Dict[str, Any] = {}
        for name in selected:
            field_obj = self._meta.get_field(name)
            values[field_obj.column_name()] = field_obj.to_db(self._field_values.get(name))
        return values

    # Change detection ----------------------------------------------------
    def changed_fields(self) -> List[str]:
        return [
            name
            for name in self._meta.fields
            if self._field_values.get(name) != self._initial_state.get(name)
        ]

    def is_dirty(self) -> bool:
        return bool(self.changed_fields())

    def _mark_clean(self) -> None:
        self._initial_state = dict(self._field_values)

    # Relationship holders ------------------------------------------------
    def _resolvable(self, name: str) -> Resolvable:
        holder = self._relations.get(name)
        if holder is None:
            self._meta.get_relation(name)
            holder = Resolvable()
            self._relations[name] = holder
        return holder

    def is_loaded(self, name: str) -> bool:
        return self._resolvable(name).is_resolved

    def _resolve_relation(self, name: str, value: Any) -> None:
        self._resolvable(name).resolve(value)

    def _load_relation(self, name: str) -> None:
        session = self._session
        if session is None:
            raise RelationshipNotLoaded(
                f"Relation '{name}' on {type(self).__name__} is not loaded and the instance "
                "is not bound to a session."
            )
        session._lazy_load(self, name)

    # Validation --------------------------------------------------------
    def full_clean(self) -> None:
        from ..validation import validate_instance

        validate_instance(self)

    def clean(self) -> None:
        """
        Hook for subclasses to implement model-level validation.
        """
        return None
