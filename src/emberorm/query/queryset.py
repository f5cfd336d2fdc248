"""
QuerySet implementation providing a chainable, deferred query API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

from ..utils.cancellation import CancellationToken
from .aggregates import Aggregate
from .compiler import QueryState, SQLCompiler, build_include_tree
from .expressions import Q
from .loading import load_split, materialize_rows

if TYPE_CHECKING:
    from ..core.model import Model
    from ..persistence.session import Session


class NotFound(LookupError):
    """Raised when a single-result operator matched zero rows."""


class MultipleResults(LookupError):
    """Raised when ``single()`` matched more than one row."""


class QuerySet:
    """
    Immutable query description bound to a session.

    Every composition call returns a new QuerySet; storage is only touched by
    the materializing calls (``list``, iteration, ``first``,
    ``first_or_default``, ``single``, ``count``, ``exists``, ``aggregate``).
    """

    def __init__(self, model: type["Model"], session: "Session", state: QueryState | None = None) -> None:
        self.model = model
        self.session = session
        self._state = state or QueryState(model)

    def __repr__(self) -> str:
        return f"<QuerySet {self.model.__name__}: {self.to_sql()[0]}>"

    @property
    def state(self) -> QueryState:
        return self._state

    # ------------------------------------------------------------------ #
    # Composition
    # ------------------------------------------------------------------ #
    def filter(self, *conditions: Q, **lookups: Any) -> "QuerySet":
        q = self._combine(conditions, lookups)
        if q.is_empty():
            return self
        return self._clone(where=self._state.where + (q,))

    def exclude(self, *conditions: Q, **lookups: Any) -> "QuerySet":
        q = self._combine(conditions, lookups)
        if q.is_empty():
            return self
        return self._clone(where=self._state.where + (~q,))

    def order_by(self, *keys: str) -> "QuerySet":
        """
        Replace the sort keys. ``order_by("a").order_by("b")`` sorts
        by ``b`` only; use :meth:`then_by` to add a secondary key.
        """
        return self._clone(ordering=tuple(keys))

    def then_by(self, *keys: str) -> "QuerySet":
        if not self._state.ordering:
            raise ValueError("then_by() requires a primary sort key; call order_by() first")
        return self._clone(ordering=self._state.ordering + tuple(keys))

    def skip(self, count: int) -> "QuerySet":
        if count < 0:
            raise ValueError("skip() requires a non-negative count")
        return self._clone(offset=count)

    def take(self, count: int) -> "QuerySet":
        if count < 0:
            raise ValueError("take() requires a non-negative count")
        return self._clone(limit=count)

    def include(self, *paths: str) -> "QuerySet":
        if not paths:
            raise ValueError("include() requires at least one relationship path")
        build_include_tree(self.model, paths)
        combined = tuple(dict.fromkeys(self._state.includes + paths))
        return self._clone(includes=combined)

    def split(self) -> "QuerySet":
        return self._clone(split=True)

    def as_no_tracking(self) -> "QuerySet":
        return self._clone(tracking=False)

    def values(self, *paths: str) -> "QuerySet":
        if not paths:
            paths = tuple(self.model._meta.fields)
        return self._clone(values=tuple(paths))

    def distinct(self) -> "QuerySet":
        return self._clone(distinct=True)

    def annotate(self, **aggregates: Aggregate) -> "QuerySet":
        for name, aggregate in aggregates.items():
            if not isinstance(aggregate, Aggregate):
                raise TypeError(f"annotate() argument '{name}' is not an aggregate")
            if self._state.values and name in self._state.values:
                raise ValueError(f"Annotation '{name}' conflicts with a selected value")
        return self._clone(annotations=self._state.annotations + tuple(aggregates.items()))

    def having(self, **lookups: Any) -> "QuerySet":
        if not self._state.annotations:
            raise ValueError("having() requires annotate()")
        return self._clone(having=self._state.having + tuple(sorted(lookups.items())))

    def to_sql(self) -> Tuple[str, List[Any]]:
        compiled = self._compiler().compile()
        return compiled.sql, list(compiled.params)

    # ------------------------------------------------------------------ #
    # Materialization
    # ------------------------------------------------------------------ #
    def list(self, *, cancel: CancellationToken | None = None) -> List[Any]:
        self._check_pagination()
        return self._fetch(self._state, cancel=cancel)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.list())

    def first(self, *, cancel: CancellationToken | None = None) -> Any:
        self._check_pagination()
        results = self._fetch(self._limited(1), cancel=cancel)
        if not results:
            raise NotFound(f"No {self.model.__name__} matches the query")
        return results[0]

    def first_or_default(self, default: Any = None, *, cancel: CancellationToken | None = None) -> Any:
        self._check_pagination()
        results = self._fetch(self._limited(1), cancel=cancel)
        return results[0] if results else default

    def single(self, *, cancel: CancellationToken | None = None) -> Any:
        self._check_pagination()
        results = self._fetch(self._limited(2), cancel=cancel)
        if not results:
            raise NotFound(f"No {self.model.__name__} matches the query")
        if len(results) > 1:
            raise MultipleResults(f"More than one {self.model.__name__} matches the query")
        return results[0]

    def count(self, *, cancel: CancellationToken | None = None) -> int:
        self._check_pagination()
        compiled = self._compiler().compile_count()
        rows = self.session.execute_read(compiled.sql, compiled.params, cancel=cancel)
        return int(rows[0]["count"]) if rows else 0

    def exists(self, *, cancel: CancellationToken | None = None) -> bool:
        self._check_pagination()
        compiled = self._compiler().compile_exists()
        rows = self.session.execute_read(compiled.sql, compiled.params, cancel=cancel)
        return bool(rows)

    def aggregate(self, *, cancel: CancellationToken | None = None, **aggregates: Aggregate) -> Dict[str, Any]:
        compiled = self._compiler().compile_aggregate(aggregates)
        rows = self.session.execute_read(compiled.sql, compiled.params, cancel=cancel)
        row = rows[0] if rows else {}
        return {name: convert(row.get(name)) for name, convert in compiled.converters.items()}

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _fetch(self, state: QueryState, *, cancel: CancellationToken | None) -> List[Any]:
        compiled = SQLCompiler(state, self.session.dialect).compile()
        rows = self.session.execute_read(compiled.sql, compiled.params, cancel=cancel)
        if state.projected:
            return [
                {name: convert(row.get(name)) for name, convert in compiled.converters.items()}
                for row in rows
            ]
        instances = materialize_rows(
            self.session, self.model, rows, compiled.tree, tracking=state.tracking
        )
        if state.includes and state.split and instances:
            tree = build_include_tree(self.model, state.includes)
            load_split(self.session, instances, tree, tracking=state.tracking, cancel=cancel)
        return instances

    def _limited(self, count: int) -> QueryState:
        limit = self._state.limit
        return self._state.evolve(limit=count if limit is None else min(limit, count))

    def _check_pagination(self) -> None:
        if self._state.paginated and not self._state.ordering:
            raise ValueError(
                "skip()/take() require an explicit sort key; call order_by() before materializing"
            )

    def _compiler(self) -> SQLCompiler:
        return SQLCompiler(self._state, self.session.dialect)

    def _clone(self, **changes: Any) -> "QuerySet":
        return QuerySet(self.model, self.session, self._state.evolve(**changes))

    @staticmethod
    def _combine(conditions: Tuple[Q, ...], lookups: Dict[str, Any]) -> Q:
        q = Q(**lookups)
        for condition in conditions:
            if not isinstance(condition, Q):
                raise TypeError(f"filter() positional arguments must be Q objects, got {condition!r}")
            q = q & condition
        return q
