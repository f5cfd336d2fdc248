"""
Change tracking for session-bound entities.

The tracker keeps one entry per (model, identity). Scalar modifications are
derived from a snapshot diff, so ``MODIFIED`` is never stored: an unchanged
entity whose fields drift from its snapshot reports ``MODIFIED`` and reverts
to ``UNCHANGED`` when the values are restored.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple, Type

from ..core.model import Model
from ..core.relations import Collection, ForeignKey, ManyToManyCollection
from ..validation import ValidationError
from .identity_map import IdentityMap

EntityKey = Tuple[Type[Model], Any]
CollectionKey = Tuple[Type[Model], Any, str]


class EntityState(Enum):
    DETACHED = "detached"
    ADDED = "added"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class EntityEntry:
    instance: Model
    state: EntityState
    persisted: bool
    previous: Optional[EntityState] = None


@dataclass(frozen=True)
class LinkRow:
    """
    One row of a many-to-many link table.
    """

    table: str
    owner_column: str
    owner_pk: Any
    target_column: str
    target_pk: Any


@dataclass
class ChangeSet:
    inserts: List[Model] = field(default_factory=list)
    updates: List[Tuple[Model, List[str]]] = field(default_factory=list)
    deletes: List[Model] = field(default_factory=list)
    link_inserts: List[LinkRow] = field(default_factory=list)
    link_deletes: List[LinkRow] = field(default_factory=list)
    discovered: List[Model] = field(default_factory=list)
    orphans: List[Model] = field(default_factory=list)
    dropped: List[Model] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.inserts or self.updates or self.deletes or self.link_inserts or self.link_deletes
        )

    def summary(self) -> Dict[str, int]:
        return {
            "inserts": len(self.inserts),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
            "link_inserts": len(self.link_inserts),
            "link_deletes": len(self.link_deletes),
        }


@dataclass
class TrackerSnapshot:
    entries: List[EntityEntry]
    field_state: Dict[int, Tuple[Dict[str, Any], Dict[str, Any]]]
    collections: Dict[CollectionKey, FrozenSet[Any]]
    resolved_lists: List[Tuple[list, list]]


def _key(instance: Model) -> EntityKey:
    return (type(instance), instance.pk)


class ChangeTracker:
    """
    Records entity states for one session and computes the pending change set.
    """

    def __init__(self, identity_map: IdentityMap, owner: Any = None) -> None:
        self.identity_map = identity_map
        self.owner = owner
        self._entries: Dict[EntityKey, EntityEntry] = {}
        self._collections: Dict[CollectionKey, FrozenSet[Any]] = {}

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def track_added(self, instance: Model) -> None:
        """
        Stage ``instance`` together with every untracked member of its
        resolved collections. Identity conflicts are checked for the whole
        graph before anything is registered, so a rejected graph leaves the
        tracker untouched.
        """
        entry = self._entry_for(instance)
        if entry is not None:
            if entry.state is EntityState.DELETED:
                entry.state = entry.previous or EntityState.UNCHANGED
                entry.previous = None
            return
        graph = self._untracked_graph(instance)
        for item in graph:
            self.identity_map.register(item)
            self._entries[_key(item)] = EntityEntry(item, EntityState.ADDED, persisted=False)
            self._bind(item)
            for relation, _ in self._resolved_collections(item):
                self._collections[self._collection_key(item, relation.name)] = frozenset()
        for item in graph:
            self._link_pending(item)

    def track_unchanged(self, instance: Model) -> None:
        """
        Track an instance known to match storage (attach or materialization).
        """
        entry = self._entry_for(instance)
        if entry is not None:
            return
        self.identity_map.register(instance)
        instance._mark_clean()
        self._entries[_key(instance)] = EntityEntry(instance, EntityState.UNCHANGED, persisted=True)
        self._bind(instance)
        for relation, items in self._resolved_collections(instance):
            self.capture_collection(instance, relation.name, items)

    def mark_deleted(self, instance: Model) -> None:
        entry = self._entry_for(instance)
        if entry is None:
            self.identity_map.register(instance)
            self._entries[_key(instance)] = EntityEntry(
                instance, EntityState.DELETED, persisted=True, previous=EntityState.UNCHANGED
            )
            self._bind(instance)
            return
        if entry.state is not EntityState.DELETED:
            entry.previous = entry.state
            entry.state = EntityState.DELETED

    def forget(self, instance: Model) -> None:
        entry = self._entries.get(_key(instance))
        if entry is None or entry.instance is not instance:
            return
        del self._entries[_key(instance)]
        self.identity_map.remove(instance)
        for key in [key for key in self._collections if key[:2] == _key(instance)]:
            del self._collections[key]
        self._unbind(instance)

    def clear(self) -> None:
        for entry in self._entries.values():
            self._unbind(entry.instance)
        self._entries.clear()
        self._collections.clear()
        self.identity_map.clear()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def state_of(self, instance: Model) -> EntityState:
        entry = self._entry_for(instance)
        if entry is None:
            return EntityState.DETACHED
        if entry.state is EntityState.UNCHANGED and instance.is_dirty():
            return EntityState.MODIFIED
        return entry.state

    def is_tracked(self, instance: Model) -> bool:
        return self._entry_for(instance) is not None

    def get(self, model: Type[Model], pk: Any) -> Optional[Model]:
        entry = self._entries.get((model, pk))
        return entry.instance if entry is not None else None

    def instances(self) -> List[Model]:
        return [entry.instance for entry in self._entries.values()]

    def entries(self) -> Iterator[EntityEntry]:
        return iter(list(self._entries.values()))

    def added_dependents(self, model: Type[Model], column_field: str, parent_pk: Any) -> List[Model]:
        """
        Tracked, not yet persisted instances of ``model`` whose ``column_field``
        references ``parent_pk``.
        """
        return [
            entry.instance
            for entry in self._entries.values()
            if type(entry.instance) is model
            and entry.state is EntityState.ADDED
            and entry.instance._field_values.get(column_field) == parent_pk
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def capture_collection(self, instance: Model, name: str, items: Iterable[Model]) -> None:
        entry = self._entry_for(instance)
        if entry is None or not entry.persisted:
            return
        self._collections[self._collection_key(instance, name)] = frozenset(
            item.pk for item in items
        )

    # ------------------------------------------------------------------ #
    # Change detection
    # ------------------------------------------------------------------ #
    def compute_changes(self) -> ChangeSet:
        """
        Compute pending inserts, updates, deletes and link changes without
        mutating any tracked state.
        """
        changes = ChangeSet()
        discovered: Dict[EntityKey, Model] = {}
        orphan_keys: Set[EntityKey] = set()

        pending = [
            entry.instance
            for entry in self._entries.values()
            if entry.state is not EntityState.DELETED
        ]
        while pending:
            owner = pending.pop(0)
            owner_key = _key(owner)
            owner_new = owner_key in discovered
            for relation, items in self._resolved_collections(owner):
                if isinstance(relation, ManyToManyCollection) and relation.side != "left":
                    continue
                for item in items:
                    item_key = _key(item)
                    if item_key in discovered or self._entry_for(item) is not None:
                        continue
                    discovered[item_key] = item
                    pending.append(item)
                if owner_new:
                    previous: FrozenSet[Any] = frozenset()
                else:
                    previous = self._collections.get(
                        self._collection_key(owner, relation.name), frozenset()
                    )
                current = [item.pk for item in items]
                if isinstance(relation, ManyToManyCollection):
                    self._diff_links(changes, relation, owner.pk, previous, current)
                elif isinstance(relation, Collection) and relation.owned:
                    for child_pk in previous - set(current):
                        child = self.get(relation.target, child_pk)
                        if child is None:
                            continue
                        if self.state_of(child) is EntityState.DELETED:
                            continue
                        orphan_keys.add((relation.target, child_pk))
                        if self._entries[(relation.target, child_pk)].persisted:
                            changes.orphans.append(child)
                        else:
                            changes.dropped.append(child)

        for entry in self._entries.values():
            instance = entry.instance
            if _key(instance) in orphan_keys:
                continue
            if entry.state is EntityState.ADDED:
                changes.inserts.append(instance)
            elif entry.state is EntityState.DELETED:
                if entry.persisted:
                    changes.deletes.append(instance)
                else:
                    changes.dropped.append(instance)
            else:
                changed = instance.changed_fields()
                if changed:
                    changes.updates.append((instance, changed))
        changes.discovered = list(discovered.values())
        changes.inserts.extend(changes.discovered)
        changes.deletes.extend(changes.orphans)
        return changes

    def accept(self, changes: ChangeSet, removed: Iterable[EntityKey] = ()) -> None:
        """
        Apply post-commit transitions: inserted and updated entities become
        unchanged, deleted ones (including cascaded keys) stop being tracked.
        """
        for instance in changes.discovered:
            if self._entry_for(instance) is None:
                self.identity_map.register(instance)
                self._entries[_key(instance)] = EntityEntry(
                    instance, EntityState.ADDED, persisted=False
                )
                self._bind(instance)
        for instance in changes.inserts:
            entry = self._entry_for(instance)
            if entry is not None:
                entry.state = EntityState.UNCHANGED
                entry.persisted = True
            instance._mark_clean()
        for instance, _ in changes.updates:
            instance._mark_clean()

        removed_keys: Set[EntityKey] = set(removed)
        for instance in [*changes.deletes, *changes.dropped]:
            removed_keys.add(_key(instance))
        for key in removed_keys:
            entry = self._entries.get(key)
            if entry is not None:
                self.forget(entry.instance)

        for entry in self._entries.values():
            for relation, items in self._resolved_collections(entry.instance):
                if removed_keys:
                    items[:] = [item for item in items if _key(item) not in removed_keys]
                self.capture_collection(entry.instance, relation.name, items)

    # ------------------------------------------------------------------ #
    # Rollback support
    # ------------------------------------------------------------------ #
    def snapshot(self) -> TrackerSnapshot:
        entries = [replace(entry) for entry in self._entries.values()]
        field_state = {
            id(entry.instance): (
                dict(entry.instance._field_values),
                dict(entry.instance._initial_state),
            )
            for entry in entries
        }
        resolved_lists = [
            (items, list(items))
            for entry in entries
            for _, items in self._resolved_collections(entry.instance)
        ]
        return TrackerSnapshot(entries, field_state, dict(self._collections), resolved_lists)

    def restore(self, snapshot: TrackerSnapshot) -> None:
        for entry in self._entries.values():
            self._unbind(entry.instance)
        self._entries.clear()
        self.identity_map.clear()
        for entry in snapshot.entries:
            values, initial = snapshot.field_state[id(entry.instance)]
            entry.instance._field_values = dict(values)
            entry.instance._initial_state = dict(initial)
            self.identity_map.register(entry.instance)
            self._entries[_key(entry.instance)] = replace(entry)
            self._bind(entry.instance)
        for items, saved in snapshot.resolved_lists:
            items[:] = saved
        self._collections = dict(snapshot.collections)

    # ------------------------------------------------------------------ #
    def _entry_for(self, instance: Model) -> Optional[EntityEntry]:
        entry = self._entries.get(_key(instance))
        if entry is None or entry.instance is not instance:
            return None
        return entry

    def _untracked_graph(self, root: Model) -> List[Model]:
        graph: Dict[EntityKey, Model] = {}
        pending = [root]
        while pending:
            item = pending.pop(0)
            key = _key(item)
            if graph.get(key) is item:
                continue
            name = type(item).__name__
            if item.pk is None:
                raise ValidationError(f"Cannot register {name} without an identity.")
            current = graph.get(key) or self.identity_map.get(type(item), item.pk)
            if current is not None and current is not item:
                raise ValidationError(
                    f"Another {name} instance with identity {item.pk} is already tracked."
                )
            graph[key] = item
            for _, items in self._resolved_collections(item):
                pending.extend(member for member in items if self._entry_for(member) is None)
        return list(graph.values())

    def _link_pending(self, instance: Model) -> None:
        """
        Keep resolved reverse collections in step with staged dependents in
        both directions: the new entity joins its tracked parents, and a new
        parent picks up dependents staged before it.
        """
        for fk in instance._meta.get_fields():
            if not isinstance(fk, ForeignKey) or fk.remote_model is None:
                continue
            parent = self.get(fk.remote_model, instance._field_values.get(fk.require_name()))
            holder = parent._relations.get(fk.reverse_name()) if parent is not None else None
            if holder is not None and holder.is_resolved:
                if all(member is not instance for member in holder.value):
                    holder.value.append(instance)
        for relation, items in self._resolved_collections(instance):
            if not isinstance(relation, Collection):
                continue
            for dependent in self.added_dependents(
                relation.target, relation.fk.require_name(), instance.pk
            ):
                if all(member is not dependent for member in items):
                    items.append(dependent)

    @staticmethod
    def _collection_key(instance: Model, name: str) -> CollectionKey:
        return (type(instance), instance.pk, name)

    @staticmethod
    def _resolved_collections(instance: Model) -> List[Tuple[Any, list]]:
        resolved = []
        for name, holder in instance._relations.items():
            if not holder.is_resolved:
                continue
            relation = instance._meta.relations[name]
            if relation.many:
                resolved.append((relation, holder.value))
        return resolved

    @staticmethod
    def _diff_links(
        changes: ChangeSet,
        relation: ManyToManyCollection,
        owner_pk: Any,
        previous: FrozenSet[Any],
        current: List[Any],
    ) -> None:
        def row(target_pk: Any) -> LinkRow:
            return LinkRow(
                relation.through_table,
                relation.owner_column,
                owner_pk,
                relation.target_column,
                target_pk,
            )

        seen: Set[Any] = set()
        for target_pk in current:
            if target_pk in previous or target_pk in seen:
                continue
            seen.add(target_pk)
            changes.link_inserts.append(row(target_pk))
        for target_pk in previous - set(current):
            changes.link_deletes.append(row(target_pk))

    def _bind(self, instance: Model) -> None:
        if self.owner is not None:
            instance._session = self.owner

    def _unbind(self, instance: Model) -> None:
        if self.owner is not None and instance._session is self.owner:
            instance._session = None
