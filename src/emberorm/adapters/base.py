"""
Storage backend protocol, error taxonomy, and connection configuration.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol, Sequence
from urllib.parse import parse_qs, urlencode, urlparse

from ..dialects.base import Dialect
from ..utils.cancellation import CancellationToken
from ..utils.redaction import redact_options

DSN_ENV_VAR = "EMBERORM_DSN"


class StorageError(RuntimeError):
    """Base error for backend failures, timeouts, and cancellations."""


class AdapterConfigurationError(StorageError):
    """Raised when configuration or required dependencies are invalid."""


class AdapterConnectionError(StorageError):
    """Raised when establishing or using a connection fails."""


class AdapterExecutionError(StorageError):
    """Raised when statement execution fails."""


class AdapterTransactionError(StorageError):
    """Raised when transaction operations fail."""


class OperationCancelled(StorageError):
    """Raised when a round trip is cancelled or exceeds its deadline."""


class ConstraintViolation(Exception):
    """
    Raised at commit time when a restrict delete policy or a storage
    integrity constraint (such as a unique column) is violated.
    """


@dataclass(frozen=True)
class Statement:
    """
    A single write statement in a unit-of-work batch.
    """

    sql: str
    params: tuple[Any, ...] = ()
    description: str = ""


def _flag(value: str) -> bool:
    word = value.strip().lower()
    if word in ("1", "true", "yes", "on"):
        return True
    if word in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)


# DSN query keys promoted to ConnectionConfig attributes; others stay in ``options``.
_DSN_SETTINGS: dict[str, Callable[[str], Any]] = {
    "timeout": float,
    "isolation_level": str,
    "slow_query_ms": int,
    "lazy_loading": _flag,
    "n_plus_one_threshold": int,
}


def _split_settings(query: dict[str, str]) -> tuple[dict[str, Any], dict[str, str]]:
    settings: dict[str, Any] = {}
    options: dict[str, str] = {}
    for key, raw in query.items():
        convert = _DSN_SETTINGS.get(key)
        if convert is None:
            options[key] = raw
            continue
        try:
            settings[key] = convert(raw)
        except ValueError:
            raise AdapterConfigurationError(f"Invalid value for '{key}': {raw!r}") from None
    return settings, options


@dataclass
class ConnectionConfig:
    """
    Normalized connection and session configuration.
    """

    url: str
    timeout: float | None = None
    isolation_level: str | None = None
    slow_query_ms: int | None = None
    lazy_loading: bool = True
    n_plus_one_threshold: int = 5
    options: dict[str, str] = field(default_factory=dict)
    source: str | None = None

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config by parsing the DSN string and its query parameters.

        ``sqlite:///blog.db?timeout=2&lazy_loading=false&slow_query_ms=50``
        """

        parsed = urlparse(dsn)
        if not parsed.scheme:
            raise AdapterConfigurationError(f"DSN {dsn!r} is missing a scheme")
        query = {key: values[0] for key, values in parse_qs(parsed.query).items()}

        settings, options = _split_settings(query)
        options.update(kwargs.pop("options", None) or {})
        settings.update(kwargs)
        # An explicit None falls back to the field default.
        for key in ("lazy_loading", "n_plus_one_threshold"):
            if settings.get(key, False) is None:
                del settings[key]
        return cls(url=dsn.split("?", 1)[0], options=options, **settings)

    @classmethod
    def from_env(cls, env_var: str = DSN_ENV_VAR, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config from an environment variable containing a DSN.
        """

        value = os.getenv(env_var)
        if not value:
            raise AdapterConfigurationError(f"Environment variable {env_var} is not set")
        return cls.from_dsn(value, source=env_var, **kwargs)

    def redacted_dsn(self) -> str:
        if not self.options:
            return self.url
        return f"{self.url}?{urlencode(redact_options(self.options))}"

    def descriptive_label(self) -> str:
        redacted = self.redacted_dsn()
        if self.source:
            return f"{self.source} ({redacted})"
        return redacted


class DatabaseAdapter(Protocol):
    """
    Storage backend interface consumed by the session and unit of work.
    """

    dialect: Dialect

    def connect(self, config: ConnectionConfig) -> Any:
        """
        Establish a connection handle using the supplied configuration.
        """

    def close(self) -> None:
        """
        Close underlying resources. Implementations should be idempotent.
        """

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """
        Execute a raw statement returning a cursor-like object (DDL, diagnostics).
        """

    def execute_read(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """
        Run a query description and return its rows as mappings.
        """

    def execute_write(
        self, batch: Sequence[Statement], *, cancel: CancellationToken | None = None
    ) -> int:
        """
        Apply a batch of inserts, updates and deletes; returns affected rows.
        """

    def begin(self) -> None:
        """
        Start a transaction.
        """

    def commit(self) -> None:
        """
        Commit the current transaction.
        """

    def rollback(self) -> None:
        """
        Roll back the current transaction.
        """


@contextmanager
def transaction(adapter: DatabaseAdapter) -> Iterator[DatabaseAdapter]:
    """
    Scoped transaction: commits on a clean exit, rolls back on every other path.
    """

    adapter.begin()
    try:
        yield adapter
    except BaseException:
        adapter.rollback()
        raise
    else:
        adapter.commit()
