"""
Field definitions and descriptors for EmberORM models.
"""

from __future__ import annotations

import itertools
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, cast

from ..validation.errors import ValidationError

if TYPE_CHECKING:
    from .model import Model


class FieldError(Exception):
    """Internal exception for field configuration issues."""


class ModelConfigurationError(Exception):
    """Raised when a model class or relationship is misconfigured."""


class Field:
    """
    Scalar column descriptor. Values live in the owning instance's
    ``_field_values`` so the tracker can diff them against a snapshot.

    An ``immutable`` field accepts its first non-null value and rejects any
    later change; identities and foreign keys are immutable.
    """

    _counter = itertools.count()

    def __init__(
        self,
        *,
        primary_key: bool = False,
        unique: bool = False,
        nullable: bool = True,
        default: Any = None,
        immutable: bool = False,
        db_type: Optional[str] = None,
        db_column: Optional[str] = None,
        validators: Optional[Iterable[Callable[[Any], None]]] = None,
    ) -> None:
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.default = default
        self.immutable = immutable or primary_key
        self.db_type = db_type
        self.db_column = db_column
        self.validators = list(validators or [])

        self.model: type["Model"] | None = None
        self.name: str | None = None
        self.creation_counter = next(Field._counter)

    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        model_instance = cast("Model", instance)
        return model_instance._field_values.get(self.require_name())

    def __set__(self, instance: object, value: Any) -> None:
        values = cast("Model", instance)._field_values
        name = self.require_name()
        new = None if value is None else self.to_python(value)
        if new is None and not self.nullable:
            raise ValidationError({name: ["This field cannot be null."]})
        current = values.get(name)
        if self.immutable and current is not None and current != new:
            raise AttributeError(
                f"Field '{name}' on {type(instance).__name__} is immutable once assigned"
            )
        values[name] = new

    def contribute_to_class(self, model: type["Model"], name: str) -> None:
        self.model = model
        self.name = name
        setattr(model, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise FieldError("Field name is not set.")
        return self.name

    def column_name(self) -> str:
        return self.db_column or self.require_name()

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def get_default(self) -> Any:
        return self.default() if callable(self.default) else self.default

    # Conversions: Python value <-> storage value
    def to_python(self, value: Any) -> Any:
        return value

    def to_db(self, value: Any) -> Any:
        return value

    def from_db(self, value: Any) -> Any:
        if value is None:
            return None
        return self.to_python(value)


class UUIDField(Field):
    """
    UUID identity column stored as canonical text.
    """

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)

    def to_python(self, value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (TypeError, ValueError, AttributeError) as exc:
            raise ValidationError({self.require_name(): [f"Invalid UUID value {value!r}."]}) from exc

    def to_db(self, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)


class IntegerField(Field):
    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "INTEGER")
        super().__init__(**kwargs)

    def to_python(self, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError({self.require_name(): [f"Invalid integer value {value!r}."]}) from exc


class StringField(Field):
    """
    Text column. ``blank=False`` rejects empty or whitespace-only values
    during validation.
    """

    def __init__(self, *, max_length: int | None = 255, blank: bool = True, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)
        self.max_length = max_length
        self.blank = blank

    def to_python(self, value: Any) -> str:
        result = str(value)
        if self.max_length and len(result) > self.max_length:
            field_name = self.require_name()
            raise ValidationError(
                {field_name: [f"Ensure this value has at most {self.max_length} characters."]}
            )
        return result


class DateTimeField(Field):
    """
    Timezone-aware datetime stored as ISO-8601 text.
    """

    def __init__(self, *, auto_now_add: bool = False, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)
        self.auto_now_add = auto_now_add

    def get_default(self) -> Any:
        if self.auto_now_add:
            return datetime.now(timezone.utc)
        return super().get_default()

    @property
    def has_default(self) -> bool:
        return self.auto_now_add or super().has_default

    def to_python(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError as exc:
                raise ValidationError(
                    {self.require_name(): [f"Invalid ISO datetime {value!r}."]}
                ) from exc
        raise ValidationError(
            {self.require_name(): [f"Expected datetime, received {value!r}."]}
        )

    def to_db(self, value: Any) -> str | None:
        if value is None:
            return None
        return value.isoformat()
