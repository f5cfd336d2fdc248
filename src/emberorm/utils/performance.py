"""
Round-trip accounting and N+1 query detection.

A session owns one ``PerformanceTracker``. Every statement or write batch
that reaches the backend is recorded once; statements are grouped by their
whitespace-normalized SQL. A statement that keeps coming back with
different parameters is the signature of a lazy loop, and is reported the
first time it crosses the threshold.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from threading import RLock
from typing import Deque, Dict, List, Sequence, Set

SLOW_QUERY_ENV_VAR = "EMBERORM_SLOW_QUERY_MS"
DEFAULT_SLOW_QUERY_MS = 200


def resolve_slow_query_ms(value: int | None = None, *, default: int = DEFAULT_SLOW_QUERY_MS) -> int:
    """Explicit value wins, then ``EMBERORM_SLOW_QUERY_MS``, then ``default``."""
    if value is not None:
        return int(value)
    raw = os.getenv(SLOW_QUERY_ENV_VAR, "").strip()
    if not raw:
        return default
    if not raw.lstrip("-").isdigit():
        raise ValueError(f"{SLOW_QUERY_ENV_VAR} must be an integer, received {raw!r}")
    return int(raw)


@dataclass(frozen=True)
class RoundTrip:
    sql: str
    params: tuple
    rows: int
    elapsed_ms: float


@dataclass
class StatementStats:
    sql: str
    count: int = 0
    rows: int = 0
    total_ms: float = 0.0
    param_sets: Set[str] = field(default_factory=set)
    samples: List[str] = field(default_factory=list)

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def as_dict(self) -> Dict[str, object]:
        return {
            "sql": self.sql,
            "count": self.count,
            "rows": self.rows,
            "total_ms": self.total_ms,
            "average_ms": self.average_ms,
            "distinct_params": len(self.param_sets),
        }


def normalize_sql(sql: str) -> str:
    return " ".join(sql.split())


def params_key(params: Sequence[object]) -> str:
    """Hashable text key for one parameter set; empty for no parameters."""
    if not params:
        return ""
    parts = []
    for value in params:
        if isinstance(value, dict):
            value = sorted(value.items())
        if isinstance(value, list):
            value = tuple(value)
        parts.append(repr(value))
    return "(" + ", ".join(parts) + ")"


class PerformanceTracker:
    """
    Tracks storage round trips and warns about potential N+1 patterns.

    ``history`` holds the most recent ``history_size`` round trips so tests
    and diagnostics can inspect row volumes per statement.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        n_plus_one_threshold: int = 5,
        sample_size: int = 5,
        history_size: int = 100,
    ) -> None:
        self.logger = logger
        self.n_plus_one_threshold = n_plus_one_threshold
        self.sample_size = sample_size
        self.history: Deque[RoundTrip] = deque(maxlen=history_size)
        self.round_trips = 0
        self.rows_read = 0
        self._statements: Dict[str, StatementStats] = {}
        self._flagged: Set[str] = set()
        self._lock = RLock()

    def record(
        self, sql: str, params: Sequence[object], elapsed_ms: float, *, rows: int = 0
    ) -> None:
        text = normalize_sql(sql)
        key = params_key(params)
        with self._lock:
            self.round_trips += 1
            self.rows_read += rows
            self.history.append(RoundTrip(text, tuple(params), rows, elapsed_ms))
            stats = self._statements.get(text)
            if stats is None:
                stats = self._statements[text] = StatementStats(text)
            stats.count += 1
            stats.rows += rows
            stats.total_ms += elapsed_ms
            if key and key not in stats.param_sets:
                stats.param_sets.add(key)
                if len(stats.samples) < self.sample_size:
                    stats.samples.append(key)
            flag = (
                text not in self._flagged
                and stats.count >= self.n_plus_one_threshold
                and len(stats.param_sets) > 1
            )
            if flag:
                self._flagged.add(text)
        if flag:
            self._warn(stats)

    def summary(self) -> List[Dict[str, object]]:
        with self._lock:
            return [stats.as_dict() for stats in self._statements.values()]

    @property
    def last(self) -> RoundTrip | None:
        with self._lock:
            return self.history[-1] if self.history else None

    def reset(self) -> None:
        with self._lock:
            self._statements.clear()
            self._flagged.clear()
            self.history.clear()
            self.round_trips = 0
            self.rows_read = 0

    def _warn(self, stats: StatementStats) -> None:
        shown = stats.sql if len(stats.sql) <= 80 else stats.sql[:77] + "..."
        self.logger.warning(
            "Potential N+1 detected for SQL '%s' (%s executions, %s distinct params)",
            shown,
            stats.count,
            len(stats.param_sets),
            extra={"sql": stats.sql, "count": stats.count, "distinct_params": len(stats.param_sets)},
        )
