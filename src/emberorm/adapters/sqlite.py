"""
SQLite storage backend built on the standard library sqlite3 module.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from ..dialects.sqlite import SQLiteDialect
from ..utils import get_logger, redact_params, resolve_slow_query_ms, time_call
from ..utils.cancellation import CancellationToken
from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    ConstraintViolation,
    DatabaseAdapter,
    OperationCancelled,
    Statement,
    StorageError,
)

_PROGRESS_INTERVAL = 1000


@dataclass(slots=True)
class SQLiteConnectionState:
    connection: sqlite3.Connection
    path: str


class SQLiteAdapter(DatabaseAdapter):
    """
    Adapter wrapping sqlite3 with explicit transaction control.

    The connection runs with ``isolation_level=None`` so that BEGIN, COMMIT
    and ROLLBACK are issued by the adapter only; statements executed outside
    a transaction autocommit.
    """

    def __init__(self) -> None:
        self.dialect = SQLiteDialect()
        self.slow_query_ms = resolve_slow_query_ms()
        self._state: SQLiteConnectionState | None = None
        self._begin_sql = "BEGIN"
        self.logger = get_logger("adapters.sqlite")

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        path = self._normalize_path(config.url)
        timeout = config.timeout if config.timeout is not None else 5.0
        self.slow_query_ms = resolve_slow_query_ms(config.slow_query_ms)
        begin_sql = self._begin_statement(config.isolation_level)

        try:
            connection = sqlite3.connect(
                path,
                isolation_level=None,
                timeout=timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise AdapterConnectionError(
                f"Unable to open SQLite database {config.descriptive_label()}: {exc}"
            ) from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        self._begin_sql = begin_sql

        self._state = SQLiteConnectionState(connection, path)
        self.logger.debug("Connected to %s", config.descriptive_label())
        return connection

    def close(self) -> None:
        if self._state:
            self._state.connection.close()
            self._state = None

    @property
    def in_transaction(self) -> bool:
        return bool(self._state and self._state.connection.in_transaction)

    def _ensure_connection(self) -> sqlite3.Connection:
        if not self._state:
            raise AdapterConnectionError("SQLiteAdapter is not connected.")
        return self._state.connection

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        connection = self._ensure_connection()
        cursor = connection.cursor()
        params = tuple(params or ())
        with self._translate_errors(sql):
            with time_call("sqlite.execute", self.logger, threshold_ms=self.slow_query_ms):
                cursor.execute(sql, params)
        self.logger.debug("SQL executed", extra={"sql": sql, "params": redact_params(params)})
        return cursor

    def execute_read(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        connection = self._ensure_connection()
        params = tuple(params or ())
        if cancel is not None:
            cancel.raise_if_cancelled("read")
        with self._cancellable(connection, cancel), self._translate_errors(sql, cancel):
            with time_call(
                "sqlite.execute_read",
                self.logger,
                sql=sql,
                params=redact_params(params),
                threshold_ms=self.slow_query_ms,
            ):
                cursor = connection.execute(sql, params)
                rows = cursor.fetchall()
        return [dict(row) for row in rows]

    def execute_write(
        self, batch: Sequence[Statement], *, cancel: CancellationToken | None = None
    ) -> int:
        connection = self._ensure_connection()
        if cancel is not None:
            cancel.raise_if_cancelled("write batch")
        affected = 0
        with self._cancellable(connection, cancel):
            for statement in batch:
                with self._translate_errors(statement.sql, cancel):
                    with time_call(
                        "sqlite.execute_write",
                        self.logger,
                        sql=statement.sql,
                        params=redact_params(statement.params),
                        threshold_ms=self.slow_query_ms,
                    ):
                        cursor = connection.execute(statement.sql, statement.params)
                if cursor.rowcount > 0:
                    affected += cursor.rowcount
        return affected

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        connection = self._ensure_connection()
        try:
            connection.execute(self._begin_sql)
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"BEGIN failed: {exc}") from exc

    def commit(self) -> None:
        connection = self._ensure_connection()
        try:
            connection.execute("COMMIT")
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"COMMIT failed: {exc}") from exc

    def rollback(self) -> None:
        connection = self._ensure_connection()
        if not connection.in_transaction:
            return
        try:
            connection.execute("ROLLBACK")
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"ROLLBACK failed: {exc}") from exc

    # ------------------------------------------------------------------ #
    @contextmanager
    def _cancellable(
        self, connection: sqlite3.Connection, cancel: CancellationToken | None
    ) -> Iterator[None]:
        if cancel is None:
            yield
            return
        connection.set_progress_handler(lambda: 1 if cancel.cancelled else 0, _PROGRESS_INTERVAL)
        try:
            yield
        finally:
            connection.set_progress_handler(None, 0)

    @contextmanager
    def _translate_errors(self, sql: str, cancel: CancellationToken | None = None) -> Iterator[None]:
        try:
            yield
        except StorageError:
            raise
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc
        except sqlite3.OperationalError as exc:
            if cancel is not None and cancel.cancelled:
                raise OperationCancelled(f"Statement {cancel.reason()}: {sql}") from exc
            raise AdapterExecutionError(f"{exc} (sql: {sql})") from exc
        except sqlite3.Error as exc:
            raise AdapterExecutionError(f"{exc} (sql: {sql})") from exc

    @staticmethod
    def _begin_statement(isolation_level: str | None) -> str:
        if not isolation_level:
            return "BEGIN"
        mode = isolation_level.strip().upper()
        if mode not in {"DEFERRED", "IMMEDIATE", "EXCLUSIVE"}:
            raise AdapterConfigurationError(
                f"SQLite isolation_level must be deferred, immediate or exclusive, got {isolation_level!r}"
            )
        return f"BEGIN {mode}"

    @staticmethod
    def _normalize_path(url: str) -> str:
        if url in ("sqlite:///:memory:", "sqlite://", ":memory:"):
            return ":memory:"
        prefix = "sqlite:///"
        if url.startswith(prefix):
            return url[len(prefix) :]
        return url
