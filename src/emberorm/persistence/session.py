"""
Session management coordinating adapters, change tracking, loading and the
unit of work.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Type

from ..adapters.base import AdapterConnectionError, ConnectionConfig, DatabaseAdapter, Statement
from ..core.model import Model
from ..core.relations import RelationshipNotLoaded
from ..dialects.base import Dialect
from ..dialects.sqlite import SQLiteDialect
from ..query.loading import load_relation
from ..query.queryset import QuerySet
from ..utils import PerformanceTracker, get_logger, redact_params, resolve_slow_query_ms, time_call
from ..utils.cancellation import CancellationToken
from .delete_resolver import DeletePlan, DeleteResolver
from .identity_map import IdentityMap
from .tracker import ChangeTracker, EntityState
from .transaction import TransactionManager
from .unit_of_work import UnitOfWork


class Session:
    """
    One unit of work against one storage connection.

    A session is single-threaded: its identity map and change tracker must
    not be mutated concurrently. Independent sessions may run in parallel.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        connection_config: Optional[ConnectionConfig] = None,
        dsn: Optional[str] = None,
        lazy_loading: Optional[bool] = None,
        n_plus_one_threshold: Optional[int] = None,
    ) -> None:
        if connection_config is None:
            connection_config = (
                ConnectionConfig.from_dsn(dsn) if dsn else ConnectionConfig(url="sqlite:///:memory:")
            )
        self.adapter = adapter
        self.dialect: Dialect = getattr(adapter, "dialect", None) or SQLiteDialect()
        self.connection_config = connection_config
        self.lazy_loading = connection_config.lazy_loading if lazy_loading is None else lazy_loading
        self.slow_query_ms = resolve_slow_query_ms(connection_config.slow_query_ms)
        self.logger = get_logger("persistence.session")
        self.performance = PerformanceTracker(
            get_logger("performance"),
            n_plus_one_threshold=(
                connection_config.n_plus_one_threshold
                if n_plus_one_threshold is None
                else n_plus_one_threshold
            ),
        )

        self.identity_map = IdentityMap()
        self.tracker = ChangeTracker(self.identity_map, owner=self)
        self.unit_of_work = UnitOfWork(self.dialect)
        self.delete_resolver = DeleteResolver(self)
        self.transaction_manager = TransactionManager(adapter, self.dialect)
        self._closed = False
        self.adapter.connect(self.connection_config)

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Leaving the block never saves; pending changes are discarded.
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        if self.transaction_manager.active:
            self.adapter.rollback()
        self.tracker.clear()
        self.adapter.close()
        self._closed = True
        self.logger.debug("Session closed")

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Tracking
    # ------------------------------------------------------------------ #
    def add(self, instance: Model) -> Model:
        """
        Stage ``instance`` (and untracked members of its resolved
        collections) for insert. Re-adding a deleted entity undoes the delete.
        """
        self.tracker.track_added(instance)
        return instance

    def attach(self, instance: Model) -> Model:
        """
        Track ``instance`` as already persisted and unchanged.
        """
        self.tracker.track_unchanged(instance)
        return instance

    def delete(self, instance: Model) -> None:
        """
        Stage ``instance`` for removal. Policies are evaluated by ``save()``.
        """
        self.tracker.mark_deleted(instance)

    def clear(self) -> None:
        """
        Forget every tracked entity; storage is untouched.
        """
        self.tracker.clear()

    def state_of(self, instance: Model) -> EntityState:
        return self.tracker.state_of(instance)

    # ------------------------------------------------------------------ #
    # Querying and loading
    # ------------------------------------------------------------------ #
    def query(self, model: Type[Model]) -> QuerySet:
        return QuerySet(model, self)

    def get(
        self, model: Type[Model], pk: Any, *, cancel: CancellationToken | None = None
    ) -> Optional[Model]:
        """
        Identity-map lookup first, then a single storage read.
        """
        pk_field = model._meta.primary_key
        pk = pk_field.to_python(pk)
        cached = self.identity_map.get(model, pk)
        if cached is not None:
            return cached
        return self.query(model).filter(pk=pk).first_or_default(cancel=cancel)

    def load(
        self, instance: Model, relation: str, *, cancel: CancellationToken | None = None
    ) -> Any:
        """
        Explicitly load one relation with exactly one round trip.
        """
        self._ensure_open()
        load_relation(
            self, [instance], relation, tracking=self.tracker.is_tracked(instance), cancel=cancel
        )
        return instance._resolvable(relation).value

    # ------------------------------------------------------------------ #
    # Commit
    # ------------------------------------------------------------------ #
    def save(self, *, cancel: CancellationToken | None = None) -> int:
        """
        Commit every staged change atomically and return affected rows.

        On any failure the backend transaction is rolled back and the change
        tracker is left exactly as it was before the call.
        """
        self._ensure_open()
        changes = self.tracker.compute_changes()
        if changes.is_empty:
            if changes.dropped:
                self.tracker.accept(changes)
            return 0

        self.transaction_manager.begin()
        try:
            plan = (
                self.delete_resolver.resolve(changes.deletes, cancel=cancel)
                if changes.deletes
                else DeletePlan()
            )
            batch = self.unit_of_work.build(changes, plan)
            affected = self._write(batch, cancel=cancel)
        except BaseException:
            self.transaction_manager.rollback()
            self.logger.debug("Save rolled back", exc_info=True)
            raise
        else:
            self.transaction_manager.commit()

        removed = plan.cascaded() + [(type(instance), instance.pk) for instance in plan.dropped]
        self.tracker.accept(changes, removed=removed)
        summary = changes.summary()
        summary["cascaded"] = len(plan) - len(changes.deletes)
        self.logger.info(
            "Saved changes %s (%s rows affected)", summary, affected, extra={"changes": summary}
        )
        return affected

    @contextmanager
    def transaction(self) -> Iterator["Session"]:
        """
        Group several saves into one backend transaction. Nested scopes use
        savepoints; a rolled-back scope restores the tracker as it was when
        the scope began.
        """
        self._ensure_open()
        snapshot = self.tracker.snapshot()
        self.transaction_manager.begin()
        try:
            yield self
        except BaseException:
            self.transaction_manager.rollback()
            self.tracker.restore(snapshot)
            raise
        else:
            self.transaction_manager.commit()

    # ------------------------------------------------------------------ #
    # Execution helpers
    # ------------------------------------------------------------------ #
    def execute(self, sql: str, params: Iterable[Any] | None = None):
        """
        Raw statement escape hatch (DDL, diagnostics). Bypasses tracking.
        """
        self._ensure_open()
        param_list = list(params or [])
        with time_call(
            "session.execute",
            self.logger,
            sql=sql,
            params=redact_params(param_list),
            threshold_ms=self.slow_query_ms,
        ) as timer:
            cursor = self.adapter.execute(sql, param_list)
        self.performance.record(sql, param_list, timer.elapsed_ms)
        return cursor

    def execute_read(
        self,
        sql: str,
        params: Iterable[Any] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> List[Dict[str, Any]]:
        self._ensure_open()
        param_list = list(params or [])
        with time_call(
            "session.execute_read",
            self.logger,
            sql=sql,
            params=redact_params(param_list),
            threshold_ms=self.slow_query_ms,
        ) as timer:
            rows = self.adapter.execute_read(sql, param_list, cancel=cancel)
        self.performance.record(sql, param_list, timer.elapsed_ms, rows=len(rows))
        return rows

    def _write(self, batch: List[Statement], *, cancel: CancellationToken | None) -> int:
        if not batch:
            return 0
        with time_call(
            "session.write_batch", self.logger, threshold_ms=self.slow_query_ms
        ) as timer:
            affected = self.adapter.execute_write(batch, cancel=cancel)
        self.performance.record(f"WRITE BATCH ({len(batch)} statements)", (), timer.elapsed_ms)
        return affected

    def query_stats(self) -> List[Dict[str, object]]:
        return self.performance.summary()

    @property
    def round_trips(self) -> int:
        return self.performance.round_trips

    # ------------------------------------------------------------------ #
    # Hooks used by the loading engine
    # ------------------------------------------------------------------ #
    def _materialize(self, model: Type[Model], values: Dict[str, Any]) -> Model:
        pk_field = model._meta.primary_key
        pk = pk_field.from_db(values[pk_field.column_name()])
        existing = self.identity_map.get(model, pk)
        if existing is not None:
            return existing
        instance = model._from_db(values)
        self.tracker.track_unchanged(instance)
        return instance

    def _lazy_load(self, instance: Model, name: str) -> None:
        if self._closed:
            raise RelationshipNotLoaded(
                f"Relation '{name}' is not loaded and the session is closed."
            )
        if not self.lazy_loading:
            raise RelationshipNotLoaded(
                f"Relation '{name}' on {type(instance).__name__} is not loaded and lazy loading "
                "is disabled; use include() or Session.load()."
            )
        self.logger.debug("Lazy loading %s.%s", type(instance).__name__, name)
        load_relation(self, [instance], name, tracking=self.tracker.is_tracked(instance))

    def _relation_resolved(self, instance: Model, name: str, items: List[Model]) -> None:
        self.tracker.capture_collection(instance, name, items)

    def _ensure_open(self) -> None:
        if self._closed:
            raise AdapterConnectionError("Session is closed.")
