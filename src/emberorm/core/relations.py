"""
Relationship fields, navigation descriptors and the relation registry.

Navigation properties are plain descriptors over a per-instance
:class:`Resolvable` holder. A holder is either unresolved or resolved to a
value (a related instance, ``None``, or a list). Only the loading engine
resolves holders; reading an unresolved holder asks the instance's session
to load it lazily.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple, Type

from ..utils.naming import foreign_key_column, link_table_name
from .fields import Field, ModelConfigurationError

if TYPE_CHECKING:
    from .model import Model

CASCADE = "CASCADE"
RESTRICT = "RESTRICT"
DELETE_POLICIES = (CASCADE, RESTRICT)


class RelationshipError(RuntimeError):
    pass


class RelationshipNotLoaded(RelationshipError):
    """Raised when an unresolved relationship is read and cannot be lazily loaded."""


_UNRESOLVED = object()


class Resolvable:
    """
    Relationship value holder with two states: unresolved and resolved.
    """

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value: Any = _UNRESOLVED

    @property
    def is_resolved(self) -> bool:
        return self._value is not _UNRESOLVED

    @property
    def value(self) -> Any:
        if self._value is _UNRESOLVED:
            raise RelationshipNotLoaded("Relationship value has not been resolved.")
        return self._value

    def resolve(self, value: Any) -> None:
        self._value = value

    def reset(self) -> None:
        self._value = _UNRESOLVED

    def __repr__(self) -> str:
        if self._value is _UNRESOLVED:
            return "<Resolvable unresolved>"
        return f"<Resolvable resolved={self._value!r}>"


class ForeignKey(Field):
    """
    Owning-parent reference stored as the parent's UUID.

    ``on_delete`` is mandatory: either ``CASCADE`` (the parent owns this
    entity) or ``RESTRICT`` (the parent cannot be deleted while this entity
    references it). The value is immutable once assigned.
    """

    relation_type = "many-to-one"

    def __init__(
        self,
        to: Type | str,
        *,
        on_delete: str | None = None,
        navigation: Optional[str] = None,
        related_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        if on_delete not in DELETE_POLICIES:
            raise ModelConfigurationError(
                f"ForeignKey to {to!r} must declare on_delete=CASCADE or on_delete=RESTRICT, "
                f"got {on_delete!r}"
            )
        kwargs.setdefault("nullable", False)
        kwargs.setdefault("db_type", "TEXT")
        kwargs["immutable"] = True
        super().__init__(**kwargs)
        self.to = to
        self.on_delete = on_delete
        self.navigation = navigation
        self.related_name = related_name
        self.remote_model: Optional[Type["Model"]] = to if isinstance(to, type) else None

    @property
    def owned(self) -> bool:
        return self.on_delete == CASCADE

    def __set__(self, instance, value):
        if hasattr(value, "pk"):
            value = value.pk
        super().__set__(instance, value)

    def to_python(self, value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (TypeError, ValueError, AttributeError) as exc:
            from ..validation.errors import ValidationError

            raise ValidationError({self.require_name(): [f"Invalid identity {value!r}."]}) from exc

    def to_db(self, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)

    def contribute_to_class(self, model: Type["Model"], name: str) -> None:
        super().contribute_to_class(model, name)
        if self.navigation:
            reference = Reference(self)
            setattr(model, self.navigation, reference)
            model._meta.add_relation(reference)

    def resolve_model(self, model: Type["Model"]) -> None:
        self.remote_model = model

    def reverse_name(self) -> str:
        return self.related_name or f"{self.require_model().__name__.lower()}_set"

    def require_model(self) -> Type["Model"]:
        if self.model is None:
            raise ModelConfigurationError("ForeignKey is not bound to a model.")
        return self.model


class ManyToManyField(Field):
    """
    Shared association stored in a link table. Deleting either side removes
    link rows only; the far side is never deleted.
    """

    relation_type = "many-to-many"

    def __init__(
        self,
        to: Type | str,
        *,
        related_name: Optional[str] = None,
        through: Optional[str] = None,
    ) -> None:
        super().__init__(nullable=True)
        self.to = to
        self.related_name = related_name
        self.through = through
        self.remote_model: Optional[Type["Model"]] = to if isinstance(to, type) else None

    def contribute_to_class(self, model: Type["Model"], name: str) -> None:
        self.name = name
        self.model = model
        collection = ManyToManyCollection(self, name, side="left")
        setattr(model, name, collection)
        model._meta.add_relation(collection)
        model._meta.many_to_many.append(self)

    def resolve_model(self, model: Type["Model"]) -> None:
        self.remote_model = model

    def _remote(self) -> Type["Model"]:
        if self.remote_model is None:
            raise ModelConfigurationError(f"Many-to-many target {self.to!r} is not resolved.")
        return self.remote_model

    def through_table(self) -> str:
        if self.through:
            return self.through
        return link_table_name(self.model._meta.table_name, self._remote()._meta.table_name)

    def left_column(self) -> str:
        return foreign_key_column(self.model._meta.table_name)

    def right_column(self) -> str:
        remote_table = self._remote()._meta.table_name
        if remote_table == self.model._meta.table_name:
            return foreign_key_column(f"to_{remote_table}")
        return foreign_key_column(remote_table)


class Relation:
    """
    Base navigation descriptor.
    """

    kind = ""

    def __init__(self, name: str) -> None:
        self.name = name

    @property
    def model(self) -> Type["Model"]:
        raise NotImplementedError

    @property
    def target(self) -> Type["Model"]:
        raise NotImplementedError

    @property
    def many(self) -> bool:
        return self.kind != "reference"

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        holder = instance._resolvable(self.name)
        if not holder.is_resolved:
            instance._load_relation(self.name)
        return holder.value

    def __set__(self, instance, value) -> None:
        raise AttributeError(
            f"Relationship '{self.name}' on {type(instance).__name__} is managed by the "
            "loading engine; use the aggregate's methods to change it."
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model.__name__}.{self.name} -> {self.target.__name__}>"


class Reference(Relation):
    """
    Forward navigation from a dependent to the entity its foreign key names.
    """

    kind = "reference"

    def __init__(self, fk: ForeignKey) -> None:
        super().__init__(fk.navigation or fk.require_name())
        self.fk = fk

    @property
    def model(self) -> Type["Model"]:
        return self.fk.require_model()

    @property
    def target(self) -> Type["Model"]:
        if self.fk.remote_model is None:
            raise ModelConfigurationError(f"Relation target {self.fk.to!r} is not resolved.")
        return self.fk.remote_model


class Collection(Relation):
    """
    Reverse navigation from a parent to every dependent referencing it.
    """

    kind = "collection"

    def __init__(self, fk: ForeignKey) -> None:
        super().__init__(fk.reverse_name())
        self.fk = fk

    @property
    def owned(self) -> bool:
        return self.fk.owned

    @property
    def model(self) -> Type["Model"]:
        if self.fk.remote_model is None:
            raise ModelConfigurationError(f"Relation target {self.fk.to!r} is not resolved.")
        return self.fk.remote_model

    @property
    def target(self) -> Type["Model"]:
        return self.fk.require_model()


class ManyToManyCollection(Relation):
    """
    Navigation over a link table; ``side`` says which link column holds the
    owner's identity.
    """

    kind = "many_to_many"

    def __init__(self, field: ManyToManyField, name: str, *, side: str) -> None:
        super().__init__(name)
        self.field = field
        self.side = side

    @property
    def model(self) -> Type["Model"]:
        return self.field.model if self.side == "left" else self.field._remote()

    @property
    def target(self) -> Type["Model"]:
        return self.field._remote() if self.side == "left" else self.field.model

    @property
    def through_table(self) -> str:
        return self.field.through_table()

    @property
    def owner_column(self) -> str:
        return self.field.left_column() if self.side == "left" else self.field.right_column()

    @property
    def target_column(self) -> str:
        return self.field.right_column() if self.side == "left" else self.field.left_column()


class RelationRegistry:
    def __init__(self) -> None:
        self.models: Dict[str, Type["Model"]] = {}
        self.foreign_keys: List[ForeignKey] = []
        self.pending_fields: List[Tuple[Type["Model"], Field]] = []

    def register_model(self, model: Type["Model"]) -> None:
        label = self._label(model)
        self.models[label] = model
        self._resolve_pending()

    def register_field(self, model: Type["Model"], field: Field) -> None:
        if isinstance(field, ForeignKey):
            self.foreign_keys.append(field)
        target = self._resolve_target(field.to)
        if target is None:
            self.pending_fields.append((model, field))
            return
        field.resolve_model(target)
        self._attach_reverse_accessor(model, field)

    def dependents(self, model: Type["Model"]) -> List[ForeignKey]:
        """
        Foreign keys on other models that reference ``model``.
        """
        return [fk for fk in self.foreign_keys if fk.remote_model is model]

    def many_to_many_for(self, model: Type["Model"]) -> List[ManyToManyCollection]:
        return [
            relation
            for relation in model._meta.relations.values()
            if isinstance(relation, ManyToManyCollection)
        ]

    def dependency_order(self, models: Iterable[Type["Model"]]) -> List[Type["Model"]]:
        """
        Order models so that referenced (parent) models come before dependents.
        """
        remaining = list(dict.fromkeys(models))
        ordered: List[Type["Model"]] = []
        while remaining:
            progressed = False
            for model in list(remaining):
                parents = {
                    field.remote_model
                    for field in model._meta.get_fields()
                    if isinstance(field, ForeignKey) and field.remote_model is not model
                }
                if not any(parent in remaining for parent in parents):
                    ordered.append(model)
                    remaining.remove(model)
                    progressed = True
            if not progressed:
                # Cyclic references: keep declaration order for the rest.
                ordered.extend(remaining)
                break
        return ordered

    def _resolve_pending(self) -> None:
        unresolved = []
        for model, field in self.pending_fields:
            target = self._resolve_target(field.to)
            if target is None:
                unresolved.append((model, field))
                continue
            field.resolve_model(target)
            self._attach_reverse_accessor(model, field)
        self.pending_fields = unresolved

    def _resolve_target(self, target: Type | str) -> Optional[Type["Model"]]:
        if isinstance(target, type):
            return target
        label = target.split(".")[-1]
        return self.models.get(label)

    def _label(self, model: Type["Model"]) -> str:
        return model.__name__

    def _attach_reverse_accessor(self, model: Type["Model"], field: Field) -> None:
        remote = field.remote_model
        if remote is None:
            return
        if isinstance(field, ManyToManyField):
            if not field.related_name:
                return
            relation: Relation = ManyToManyCollection(field, field.related_name, side="right")
        elif isinstance(field, ForeignKey):
            relation = Collection(field)
        else:
            return
        if relation.name in remote._meta.relations:
            raise ModelConfigurationError(
                f"Reverse relation '{relation.name}' clashes on model '{remote.__name__}'"
            )
        setattr(remote, relation.name, relation)
        remote._meta.add_relation(relation)


relation_registry = RelationRegistry()
