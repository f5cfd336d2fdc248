"""
Masking of secrets before statement parameters or connection options reach a
log record.

Keys are matched on their alphanumeric skeleton, so ``api-key``, ``API_KEY``
and ``apikey`` are treated alike. Free-text values are only masked when they
carry a credential marker such as ``Bearer``.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

REDACTED_VALUE = "***"

_KEY_MARKERS = frozenset({"password", "passwd", "pwd", "secret", "token", "apikey", "accesskey"})
_VALUE_MARKERS = frozenset({"password", "passwd", "secret", "token", "bearer", "authorization"})


def _skeleton(text: str) -> str:
    return "".join(ch for ch in text.lower() if ch.isalnum())


def is_sensitive_key(key: str) -> bool:
    skeleton = _skeleton(key)
    return any(marker in skeleton for marker in _KEY_MARKERS)


def is_sensitive_value(value: str) -> bool:
    lowered = value.lower()
    return any(marker in lowered for marker in _VALUE_MARKERS)


def redact_options(options: Mapping[str, str]) -> dict[str, str]:
    """
    Connection options (DSN query parameters) with secret-named keys masked.
    """
    return {
        key: REDACTED_VALUE if is_sensitive_key(key) else value for key, value in options.items()
    }


def redact_value(value: Any, *, key: str | None = None) -> Any:
    if key is not None and is_sensitive_key(key):
        return REDACTED_VALUE
    if isinstance(value, Mapping):
        return {name: redact_value(item, key=str(name)) for name, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(item) for item in value)
    if isinstance(value, str) and is_sensitive_value(value):
        return REDACTED_VALUE
    return value


def redact_params(params: Iterable[Any]) -> list[Any]:
    """Statement parameters as they may appear in a log record."""
    return [redact_value(value) for value in params]
