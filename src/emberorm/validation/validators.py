"""
Built-in validator helpers.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol


class Validator(Protocol):
    def __call__(self, value: Any) -> None: ...


class NotBlankValidator:
    """
    Rejects empty and whitespace-only text.
    """

    def __init__(self, message: str | None = None) -> None:
        self.message = message or "This field cannot be blank."

    def __call__(self, value: Any) -> None:
        if value is None:
            return
        if isinstance(value, str) and not value.strip():
            raise ValueError(self.message)


class NonEmptyIdentityValidator:
    """
    Rejects the nil UUID used as an "empty" foreign identity.
    """

    def __init__(self, message: str | None = None) -> None:
        self.message = message or "Identity cannot be empty."

    def __call__(self, value: Any) -> None:
        if value is None:
            return
        if isinstance(value, uuid.UUID) and value.int == 0:
            raise ValueError(self.message)
