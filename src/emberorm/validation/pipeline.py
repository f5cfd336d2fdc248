"""
Entity validation run by factories and before every write batch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .errors import ErrorCollector, ValidationError
from .validators import NonEmptyIdentityValidator, NotBlankValidator

if TYPE_CHECKING:
    from ..core.fields import Field
    from ..core.model import Model

_not_blank = NotBlankValidator()
_non_empty_identity = NonEmptyIdentityValidator()


def collect_errors(instance: "Model", prefix: str | None = None) -> ErrorCollector:
    """
    Run field checks and the model's ``clean()`` hook, gathering every
    message instead of stopping at the first.
    """
    collector = ErrorCollector(prefix)
    for field in instance._meta.get_fields():
        name = field.require_name()
        with collector.capture(name):
            check_field(field, instance._field_values.get(name))
    with collector.capture():
        instance.clean()
    return collector


def validate_instance(instance: "Model") -> None:
    collect_errors(instance).raise_if_any()


def require_text(name: str, value: Any) -> None:
    """
    Guard for factory arguments that are not fields yet, such as comment
    text handed to an aggregate method before the child exists.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError({name: ["This field cannot be blank."]})


def check_field(field: "Field", value: Any) -> None:
    name = field.require_name()
    if value is None:
        if not field.nullable and not field.primary_key:
            raise ValidationError({name: ["This field cannot be null."]})
        return
    checks = []
    if getattr(field, "blank", True) is False:
        checks.append(_not_blank)
    if field.primary_key or getattr(field, "remote_model", None) is not None:
        checks.append(_non_empty_identity)
    checks.extend(field.validators)
    for check in checks:
        try:
            check(value)
        except ValueError as exc:
            raise ValidationError({name: [str(exc)]}) from exc
