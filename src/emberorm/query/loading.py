"""
Relationship loading engine.

Four strategies produce the same entity graph:

* combined eager loading collapses joined rows by identity (``materialize_rows``),
* split eager loading issues one round trip per include node (``load_split``),
* explicit loading (``Session.load``) and lazy loading both go through
  ``load_relation``, which resolves one relation for many parents in exactly
  one round trip.

This module is the only writer of resolved relationship holders.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.model import Model
from ..core.relations import Collection, ManyToManyCollection, Reference, Relation
from ..utils import get_logger
from ..utils.cancellation import CancellationToken
from .compiler import ROOT, IncludeNode, column_list, extract

if TYPE_CHECKING:
    from ..persistence.session import Session

logger = get_logger("query.loading")

_OWNER_KEY = "__owner"


class Materializer:
    """
    Turns column mappings into instances for one query result.

    Tracked results go through the session (identity map and change tracker);
    untracked results still resolve identity within the result itself.
    """

    def __init__(self, session: "Session", *, tracking: bool = True) -> None:
        self.session = session
        self.tracking = tracking
        self._local: Dict[Tuple[type, Any], Model] = {}

    def __call__(self, model: type, values: Dict[str, Any]) -> Optional[Model]:
        pk_column = model._meta.pk_column()
        if values.get(pk_column) is None:
            return None
        if self.tracking:
            return self.session._materialize(model, values)
        pk = model._meta.primary_key.from_db(values[pk_column])
        key = (model, pk)
        instance = self._local.get(key)
        if instance is None:
            instance = model._from_db(values)
            self._local[key] = instance
        return instance


def materialize_rows(
    session: "Session",
    model: type,
    rows: Sequence[Dict[str, Any]],
    tree: "OrderedDict[str, IncludeNode]",
    *,
    tracking: bool = True,
) -> List[Model]:
    """
    Build root instances from (possibly joined) rows and stitch included
    relations onto them. Duplicated rows collapse by identity.
    """
    materializer = Materializer(session, tracking=tracking)
    roots: "OrderedDict[int, Model]" = OrderedDict()
    references: Dict[Tuple[int, str], Optional[Model]] = {}
    collections: Dict[Tuple[int, str], "OrderedDict[Any, Model]"] = {}
    parents: Dict[int, Model] = {}

    for row in rows:
        root = materializer(model, extract(row, ROOT, model))
        if root is None:
            continue
        roots.setdefault(id(root), root)
        _stitch_row(row, root, tree, materializer, references, collections, parents)

    _visit_tree_parents(roots.values(), tree, references, collections, parents)
    for (owner_id, name), value in references.items():
        _resolve(session, parents[owner_id], name, value, tracking=tracking)
    for (owner_id, name), items in collections.items():
        owner = parents[owner_id]
        relation = owner._meta.get_relation(name)
        value = _collection_value(session, owner, relation, items.values(), tracking)
        _resolve(session, owner, name, value, tracking=tracking)
    return list(roots.values())


def _stitch_row(
    row: Dict[str, Any],
    parent: Model,
    tree: "OrderedDict[str, IncludeNode]",
    materializer: Materializer,
    references: Dict[Tuple[int, str], Optional[Model]],
    collections: Dict[Tuple[int, str], "OrderedDict[Any, Model]"],
    parents: Dict[int, Model],
) -> None:
    for node in tree.values():
        key = (id(parent), node.name)
        parents[id(parent)] = parent
        child = materializer(node.target, extract(row, node.alias, node.target))
        if isinstance(node.relation, Reference):
            references[key] = child
        else:
            bucket = collections.setdefault(key, OrderedDict())
            if child is not None:
                bucket.setdefault(child.pk, child)
        if child is not None and node.children:
            _stitch_row(row, child, node.children, materializer, references, collections, parents)


def _visit_tree_parents(
    instances: Iterable[Model],
    tree: "OrderedDict[str, IncludeNode]",
    references: Dict[Tuple[int, str], Optional[Model]],
    collections: Dict[Tuple[int, str], "OrderedDict[Any, Model]"],
    parents: Dict[int, Model],
) -> None:
    """
    Ensure every (parent, include) pair is resolved, even when no row
    produced a value for it.
    """
    for instance in instances:
        parents[id(instance)] = instance
        for node in tree.values():
            key = (id(instance), node.name)
            if isinstance(node.relation, Reference):
                references.setdefault(key, None)
                children = [references[key]] if references[key] is not None else []
            else:
                children = list(collections.setdefault(key, OrderedDict()).values())
            if node.children:
                _visit_tree_parents(children, node.children, references, collections, parents)


def load_split(
    session: "Session",
    instances: Sequence[Model],
    tree: "OrderedDict[str, IncludeNode]",
    *,
    tracking: bool = True,
    cancel: CancellationToken | None = None,
) -> None:
    """
    Resolve each include node with one additional round trip.
    """
    for node in tree.values():
        load_relation(session, instances, node.name, tracking=tracking, cancel=cancel)
        if not node.children:
            continue
        children: "OrderedDict[int, Model]" = OrderedDict()
        for instance in instances:
            value = instance._resolvable(node.name).value
            for child in (value if isinstance(value, list) else [value]):
                if child is not None:
                    children.setdefault(id(child), child)
        if children:
            load_split(session, list(children.values()), node.children, tracking=tracking, cancel=cancel)


def load_relation(
    session: "Session",
    instances: Sequence[Model],
    name: str,
    *,
    tracking: bool = True,
    cancel: CancellationToken | None = None,
) -> None:
    """
    Resolve relation ``name`` on every instance in exactly one round trip.
    """
    if not instances:
        return
    model = type(instances[0])
    relation = model._meta.get_relation(name)
    materializer = Materializer(session, tracking=tracking)
    dialect = session.dialect
    target = relation.target
    target_table = f"{dialect.format_table(target._meta.table_name)} AS {dialect.quote_identifier(ROOT)}"
    columns = column_list(dialect, target, ROOT)
    target_pk = dialect.qualify(ROOT, target._meta.pk_column())

    if isinstance(relation, Reference):
        fk = relation.fk
        fk_name = fk.require_name()
        keys = list(
            dict.fromkeys(
                instance._field_values[fk_name]
                for instance in instances
                if instance._field_values.get(fk_name) is not None
            )
        )
        found: Dict[Any, Model] = {}
        if keys:
            sql = (
                f"SELECT {', '.join(columns)} FROM {target_table} "
                f"WHERE {target_pk} IN ({dialect.placeholders(len(keys))})"
            )
            rows = session.execute_read(sql, [fk.to_db(key) for key in keys], cancel=cancel)
            for row in rows:
                child = materializer(target, extract(row, ROOT, target))
                if child is not None:
                    found[child.pk] = child
        for instance in instances:
            _resolve(
                session,
                instance,
                name,
                found.get(instance._field_values.get(fk_name)),
                tracking=tracking,
                force=True,
            )
        return

    pk_field = model._meta.primary_key
    owner_pks = list(dict.fromkeys(instance.pk for instance in instances))
    params = [pk_field.to_db(pk) for pk in owner_pks]
    if isinstance(relation, Collection):
        owner_expr = dialect.qualify(ROOT, relation.fk.column_name())
        sql = (
            f"SELECT {owner_expr} AS {dialect.quote_identifier(_OWNER_KEY)}, {', '.join(columns)} "
            f"FROM {target_table} WHERE {owner_expr} IN ({dialect.placeholders(len(params))}) "
            f"ORDER BY {target_pk} ASC"
        )
    elif isinstance(relation, ManyToManyCollection):
        link_alias = dialect.quote_identifier("l1")
        owner_expr = dialect.qualify("l1", relation.owner_column)
        sql = (
            f"SELECT {owner_expr} AS {dialect.quote_identifier(_OWNER_KEY)}, {', '.join(columns)} "
            f"FROM {target_table} JOIN {dialect.format_table(relation.through_table)} AS {link_alias} "
            f"ON {dialect.qualify('l1', relation.target_column)} = {target_pk} "
            f"WHERE {owner_expr} IN ({dialect.placeholders(len(params))}) "
            f"ORDER BY {target_pk} ASC"
        )
    else:
        raise TypeError(f"Unsupported relation {relation!r}")

    rows = session.execute_read(sql, params, cancel=cancel)
    buckets: Dict[Any, "OrderedDict[Any, Model]"] = {pk: OrderedDict() for pk in owner_pks}
    for row in rows:
        owner_pk = pk_field.from_db(row[_OWNER_KEY])
        child = materializer(target, extract(row, ROOT, target))
        if child is not None and owner_pk in buckets:
            buckets[owner_pk].setdefault(child.pk, child)
    for instance in instances:
        items = _collection_value(session, instance, relation, buckets[instance.pk].values(), tracking)
        _resolve(session, instance, name, items, tracking=tracking, force=True)
    logger.debug("Loaded %s.%s for %s instance(s)", model.__name__, name, len(instances))


def _collection_value(
    session: "Session",
    owner: Model,
    relation: Relation,
    items: Iterable[Model],
    tracking: bool,
) -> List[Model]:
    collected: "OrderedDict[Any, Model]" = OrderedDict((item.pk, item) for item in items)
    if tracking and isinstance(relation, Collection) and session.tracker.is_tracked(owner):
        for pending in session.tracker.added_dependents(
            relation.target, relation.fk.require_name(), owner.pk
        ):
            collected.setdefault(pending.pk, pending)
    return sorted(collected.values(), key=lambda item: item.pk)


def _resolve(
    session: "Session",
    instance: Model,
    name: str,
    value: Any,
    *,
    tracking: bool,
    force: bool = False,
) -> None:
    holder = instance._resolvable(name)
    if holder.is_resolved and not force and tracking:
        # The identity map wins: an already resolved relation may carry
        # pending in-memory changes.
        return
    holder.resolve(value)
    if tracking and isinstance(value, list):
        session._relation_resolved(instance, name, value)
