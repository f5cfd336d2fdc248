"""
Validation errors and the collector that aggregates them.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping

NON_FIELD_ERRORS = "__all__"


class ValidationError(ValueError):
    """
    Field name to messages. Raised by entity factories, by the pre-write
    validation pass and by identity-map conflicts; never reaches storage.
    """

    def __init__(self, errors: Mapping[str, List[str]] | str) -> None:
        if isinstance(errors, str):
            errors = {NON_FIELD_ERRORS: [errors]}
        self.errors: Dict[str, List[str]] = {key: list(messages) for key, messages in errors.items()}
        super().__init__(
            "; ".join(
                f"{'non-field' if key == NON_FIELD_ERRORS else key}: {'; '.join(messages)}"
                for key, messages in self.errors.items()
            )
        )


class ErrorCollector:
    """
    Accumulates messages from several checks so they surface as one
    :class:`ValidationError`.
    """

    def __init__(self, prefix: str | None = None) -> None:
        self.prefix = prefix
        self.errors: Dict[str, List[str]] = {}

    def add(self, key: str, message: str) -> None:
        if self.prefix:
            key = f"{self.prefix}.{key}"
        self.errors.setdefault(key, []).append(message)

    def merge(self, error: ValidationError) -> None:
        for key, messages in error.errors.items():
            for message in messages:
                self.add(key, message)

    @contextmanager
    def capture(self, key: str = NON_FIELD_ERRORS) -> Iterator[None]:
        """
        Record a ``ValidationError`` (or plain ``ValueError`` under ``key``)
        raised inside the block instead of propagating it.
        """
        try:
            yield
        except ValidationError as exc:
            self.merge(exc)
        except ValueError as exc:
            self.add(key, str(exc))

    def absorb(self, other: "ErrorCollector") -> None:
        for key, messages in other.errors.items():
            self.errors.setdefault(key, []).extend(messages)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)
