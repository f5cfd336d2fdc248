"""Structured logging helpers for EmberORM."""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from time import perf_counter
from typing import Any, Iterable, Optional

ROOT_LOGGER = "emberorm"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"

_correlation_id: ContextVar[Optional[str]] = ContextVar("emberorm_correlation_id", default=None)


def set_correlation_id(value: Optional[str] = None) -> str:
    """Bind ``value`` (or a fresh UUID) to the current context."""
    cid = value or uuid.uuid4().hex
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str:
    return _correlation_id.get() or set_correlation_id()


class CorrelationIdFilter(logging.Filter):
    """Stamps ``record.correlation_id`` so the format string can use it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger(ROOT_LOGGER)
    if any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters):
        return
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class Timer:
    """
    Context manager logging the elapsed time of a block: WARNING at or above
    ``threshold_ms``, DEBUG below it. ``elapsed_ms`` stays readable after
    exit so callers can forward the measurement to the performance tracker.
    """

    def __init__(
        self,
        name: str,
        logger: logging.Logger,
        *,
        sql: str | None = None,
        params: Iterable[Any] | None = None,
        threshold_ms: int = 100,
    ) -> None:
        self.name = name
        self.logger = logger
        self.threshold_ms = threshold_ms
        self.context = {"sql": sql, "params": params}
        self.elapsed_ms = 0.0
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (perf_counter() - self._started) * 1000
        slow = self.elapsed_ms >= self.threshold_ms
        self.logger.log(
            logging.WARNING if slow else logging.DEBUG,
            "%s took %.2fms",
            self.name,
            self.elapsed_ms,
            extra={**self.context, "elapsed_ms": self.elapsed_ms},
        )


def time_call(
    name: str,
    logger: logging.Logger,
    *,
    sql: str | None = None,
    params: Iterable[Any] | None = None,
    threshold_ms: int = 100,
) -> Timer:
    return Timer(name, logger, sql=sql, params=params, threshold_ms=threshold_ms)
