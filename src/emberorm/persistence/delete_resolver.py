"""
Cascade and restrict resolution for pending deletes.

Expansion walks the ownership graph breadth first: each level issues one
storage read per dependent relation (plus a scan of tracked in-memory
dependents) and a visited set keyed by ``(model, pk)`` guarantees
termination on cyclic graphs. Restrict policies are checked once the final
deletion set is known.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type

from ..adapters.base import ConstraintViolation
from ..core.model import Model
from ..core.relations import CASCADE, RESTRICT, ForeignKey, relation_registry
from ..utils import get_logger
from ..utils.cancellation import CancellationToken
from .tracker import EntityState

if TYPE_CHECKING:
    from .session import Session

EntityKey = Tuple[Type[Model], Any]

_CHUNK_SIZE = 500


@dataclass
class DeletePlan:
    """
    Final deletion set grouped by model, in discovery order.
    """

    keys: "OrderedDict[EntityKey, Optional[Model]]" = field(default_factory=OrderedDict)
    dropped: List[Model] = field(default_factory=list)
    reads: int = 0

    def add(self, model: Type[Model], pk: Any, instance: Optional[Model] = None) -> bool:
        key = (model, pk)
        if key in self.keys:
            return False
        self.keys[key] = instance
        return True

    def __contains__(self, key: EntityKey) -> bool:
        return key in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def by_model(self) -> Dict[Type[Model], List[Any]]:
        grouped: Dict[Type[Model], List[Any]] = OrderedDict()
        for model, pk in self.keys:
            grouped.setdefault(model, []).append(pk)
        return grouped

    def cascaded(self) -> List[EntityKey]:
        return list(self.keys)


class DeleteResolver:
    def __init__(self, session: "Session") -> None:
        self.session = session
        self.registry = relation_registry
        self.logger = get_logger("persistence.delete_resolver")

    def resolve(
        self, roots: Sequence[Model], *, cancel: CancellationToken | None = None
    ) -> DeletePlan:
        plan = DeletePlan()
        frontier: Dict[Type[Model], Set[Any]] = OrderedDict()
        for instance in roots:
            if plan.add(type(instance), instance.pk, instance):
                frontier.setdefault(type(instance), set()).add(instance.pk)

        depth = 0
        while frontier:
            next_frontier: Dict[Type[Model], Set[Any]] = OrderedDict()
            for model, pks in frontier.items():
                for fk in self.registry.dependents(model):
                    if fk.on_delete != CASCADE:
                        continue
                    dependent = fk.require_model()
                    for pk, instance in self._dependents_of(fk, pks, plan, cancel=cancel):
                        if instance is not None and self._state(instance) is EntityState.ADDED:
                            if instance not in plan.dropped:
                                plan.dropped.append(instance)
                            continue
                        if plan.add(dependent, pk, instance):
                            next_frontier.setdefault(dependent, set()).add(pk)
            frontier = next_frontier
            depth += 1

        self._check_restrict(plan, cancel=cancel)
        self.logger.debug(
            "Resolved %s deletions (%s cascaded, depth=%s, reads=%s)",
            len(plan),
            len(plan) - len(roots),
            depth,
            plan.reads,
        )
        return plan

    # ------------------------------------------------------------------ #
    def _check_restrict(self, plan: DeletePlan, *, cancel: CancellationToken | None) -> None:
        for model, pks in plan.by_model().items():
            for fk in self.registry.dependents(model):
                if fk.on_delete != RESTRICT:
                    continue
                dependent = fk.require_model()
                for pk, instance in self._dependents_of(fk, set(pks), plan, cancel=cancel):
                    if (dependent, pk) in plan:
                        continue
                    if instance is not None and instance in plan.dropped:
                        continue
                    raise ConstraintViolation(
                        f"Cannot delete {model.__name__}: {dependent.__name__} {pk} references it "
                        f"through '{fk.require_name()}' (on_delete={RESTRICT})"
                    )

    def _dependents_of(
        self,
        fk: ForeignKey,
        parent_pks: Iterable[Any],
        plan: DeletePlan,
        *,
        cancel: CancellationToken | None,
    ) -> List[Tuple[Any, Optional[Model]]]:
        """
        Stored and tracked dependents referencing any of ``parent_pks``
        through ``fk``, as ``(pk, tracked instance or None)`` pairs.
        """
        dependent = fk.require_model()
        parent_pks = set(parent_pks)
        found: "OrderedDict[Any, Optional[Model]]" = OrderedDict()

        for pk in self._stored_dependents(fk, sorted(parent_pks, key=str), plan, cancel=cancel):
            tracked = self.session.tracker.get(dependent, pk)
            found[pk] = tracked

        fk_name = fk.require_name()
        for instance in self.session.tracker.instances():
            if type(instance) is dependent and instance._field_values.get(fk_name) in parent_pks:
                found[instance.pk] = instance
        return list(found.items())

    def _stored_dependents(
        self,
        fk: ForeignKey,
        parent_pks: List[Any],
        plan: DeletePlan,
        *,
        cancel: CancellationToken | None,
    ) -> List[Any]:
        if not parent_pks:
            return []
        dependent = fk.require_model()
        dialect = self.session.dialect
        pk_field = dependent._meta.primary_key
        pk_column = dependent._meta.pk_column()
        results: List[Any] = []
        for start in range(0, len(parent_pks), _CHUNK_SIZE):
            chunk = parent_pks[start : start + _CHUNK_SIZE]
            sql = (
                f"SELECT {dialect.quote_identifier(pk_column)} "
                f"FROM {dialect.format_table(dependent._meta.table_name)} "
                f"WHERE {dialect.quote_identifier(fk.column_name())} IN ({dialect.placeholders(len(chunk))})"
            )
            params = tuple(fk.to_db(pk) for pk in chunk)
            rows = self.session.execute_read(sql, params, cancel=cancel)
            plan.reads += 1
            results.extend(pk_field.from_db(row[pk_column]) for row in rows)
        return results

    def _state(self, instance: Model) -> EntityState:
        return self.session.tracker.state_of(instance)
