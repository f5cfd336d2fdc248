"""
SQL compilation translating query state into SQL strings and parameters.

Every entity column is selected as ``"<alias>__<column>"`` so that rows of
combined joins can be split back into one mapping per table alias. The root
table is always aliased ``t0``; forward-reference joins used by filters,
ordering and projections are ``j1``, ``j2``...; eager-load joins are ``i1``,
``i2``... with ``l<n>`` for many-to-many link tables.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.fields import Field
from ..core.relations import Collection, ManyToManyCollection, Reference, Relation, RelationshipError
from ..dialects.base import Dialect
from .aggregates import Aggregate
from .expressions import Q, split_lookup

if TYPE_CHECKING:
    from ..core.model import Model

ROOT = "t0"


@dataclass(frozen=True)
class QueryState:
    """
    Immutable description of a query; every QuerySet call produces a new one.
    """

    model: type
    where: Tuple[Q, ...] = ()
    ordering: Tuple[str, ...] = ()
    offset: Optional[int] = None
    limit: Optional[int] = None
    includes: Tuple[str, ...] = ()
    split: bool = False
    tracking: bool = True
    values: Optional[Tuple[str, ...]] = None
    distinct: bool = False
    annotations: Tuple[Tuple[str, Aggregate], ...] = ()
    having: Tuple[Tuple[str, Any], ...] = ()

    @property
    def paginated(self) -> bool:
        return self.offset is not None or self.limit is not None

    @property
    def projected(self) -> bool:
        return self.values is not None or bool(self.annotations)

    def evolve(self, **changes: Any) -> "QueryState":
        return replace(self, **changes)


@dataclass
class IncludeNode:
    name: str
    relation: Relation
    alias: str = ""
    link_alias: str = ""
    children: "OrderedDict[str, IncludeNode]" = field(default_factory=OrderedDict)

    @property
    def target(self) -> type:
        return self.relation.target


@dataclass
class CompiledQuery:
    sql: str
    params: List[Any]
    tree: "OrderedDict[str, IncludeNode]" = field(default_factory=OrderedDict)
    converters: Dict[str, Callable[[Any], Any]] = field(default_factory=dict)

    def __iter__(self):
        # Allows ``sql, params = compiled``.
        yield self.sql
        yield self.params


def build_include_tree(model: type, paths: Sequence[str]) -> "OrderedDict[str, IncludeNode]":
    tree: "OrderedDict[str, IncludeNode]" = OrderedDict()
    for path in paths:
        level = tree
        current = model
        for segment in path.split("__"):
            node = level.get(segment)
            if node is None:
                try:
                    relation = current._meta.get_relation(segment)
                except RelationshipError as exc:
                    raise ValueError(f"Cannot include '{path}': {exc}") from exc
                node = IncludeNode(segment, relation)
                level[segment] = node
            current = node.target
            level = node.children
    return tree


def column_list(dialect: Dialect, model: type, alias: str) -> List[str]:
    return [
        f"{dialect.qualify(alias, field_obj.column_name())} AS "
        f"{dialect.quote_identifier(f'{alias}__{field_obj.column_name()}')}"
        for field_obj in model._meta.get_fields()
    ]


def extract(row: Dict[str, Any], alias: str, model: type) -> Dict[str, Any]:
    """
    Column values for ``alias`` from a combined row, keyed by column name.
    """
    prefix = f"{alias}__"
    return {
        field_obj.column_name(): row.get(prefix + field_obj.column_name())
        for field_obj in model._meta.get_fields()
    }


def db_value(field_obj: Field, value: Any) -> Any:
    if value is not None and hasattr(value, "_meta") and hasattr(value, "pk"):
        value = value.pk
    if value is None:
        return None
    return field_obj.to_db(field_obj.to_python(value))


class SQLCompiler:
    """
    Compile query state into SQL statements and parameters.
    """

    def __init__(self, state: QueryState, dialect: Dialect) -> None:
        self.state = state
        self.model: type["Model"] = state.model
        self.dialect = dialect
        self._joins: "OrderedDict[Tuple[str, ...], Tuple[str, str]]" = OrderedDict()
        self._include_counter = 0
        self._subquery_counter = 0

    # ------------------------------------------------------------------ #
    # Public entry points
    # ------------------------------------------------------------------ #
    def compile(self) -> CompiledQuery:
        state = self.state
        if state.projected:
            return self._compile_values()
        tree: "OrderedDict[str, IncludeNode]" = OrderedDict()
        if state.includes and not state.split:
            tree = build_include_tree(self.model, state.includes)
        if tree and state.paginated:
            return self._compile_paginated_graph(tree)

        ordering = self._ordering_terms()
        where_sql, params = self._where_clause()
        include_joins, include_columns, include_order = self._include_joins(tree, self.model, ROOT)

        select = "SELECT DISTINCT" if state.distinct else "SELECT"
        columns = column_list(self.dialect, self.model, ROOT) + include_columns
        parts = [f"{select} {', '.join(columns)}", self._from_clause(), *self._join_sql()]
        parts.extend(include_joins)
        if where_sql:
            parts.append(f"WHERE {where_sql}")
        order_terms = [self._order_sql(expr, desc) for expr, desc in ordering]
        if tree:
            order_terms.append(self.dialect.qualify(ROOT, self.model._meta.pk_column()))
            order_terms.extend(include_order)
        if order_terms:
            parts.append(f"ORDER BY {', '.join(order_terms)}")
        limit = self.dialect.limit_clause(state.limit, state.offset)
        if limit:
            parts.append(limit)
        return CompiledQuery(" ".join(parts), params, tree)

    def compile_count(self) -> CompiledQuery:
        inner = self._inner_for_wrapping()
        sql = f'SELECT COUNT(*) AS "count" FROM ({inner.sql}) AS "sub"'
        return CompiledQuery(sql, inner.params)

    def compile_exists(self) -> CompiledQuery:
        state = self.state
        if state.paginated or state.projected or state.distinct:
            inner = self._inner_for_wrapping()
            return CompiledQuery(
                f'SELECT 1 AS "present" FROM ({inner.sql}) AS "sub" LIMIT 1', inner.params
            )
        where_sql, params = self._where_clause()
        parts = ['SELECT 1 AS "present"', self._from_clause(), *self._join_sql()]
        if where_sql:
            parts.append(f"WHERE {where_sql}")
        parts.append("LIMIT 1")
        return CompiledQuery(" ".join(parts), params)

    def compile_aggregate(self, aggregates: Dict[str, Aggregate]) -> CompiledQuery:
        state = self.state
        if state.paginated or state.projected or state.distinct:
            raise ValueError("aggregate() cannot be combined with skip/take, values() or distinct()")
        if not aggregates:
            raise ValueError("aggregate() requires at least one aggregate expression")
        columns = []
        converters: Dict[str, Callable[[Any], Any]] = {}
        for name, aggregate in aggregates.items():
            expression, converter = self._aggregate_sql(aggregate)
            columns.append(f"{expression} AS {self.dialect.quote_identifier(name)}")
            converters[name] = converter
        where_sql, params = self._where_clause()
        parts = [f"SELECT {', '.join(columns)}", self._from_clause(), *self._join_sql()]
        if where_sql:
            parts.append(f"WHERE {where_sql}")
        return CompiledQuery(" ".join(parts), params, converters=converters)

    # ------------------------------------------------------------------ #
    # Statement shapes
    # ------------------------------------------------------------------ #
    def _compile_paginated_graph(self, tree: "OrderedDict[str, IncludeNode]") -> CompiledQuery:
        """
        Paginate root rows in a subquery so joined collections are not cut
        by LIMIT. Sort keys are exported as ``__o<n>`` columns for the outer
        ORDER BY.
        """
        state = self.state
        ordering = self._ordering_terms()
        where_sql, params = self._where_clause()
        exported = [
            f"{expr} AS {self.dialect.quote_identifier(f'__o{index}')}"
            for index, (expr, _) in enumerate(ordering)
        ]
        inner = [
            f"SELECT {', '.join([f'{self.dialect.quote_identifier(ROOT)}.*', *exported])}",
            self._from_clause(),
            *self._join_sql(),
        ]
        if where_sql:
            inner.append(f"WHERE {where_sql}")
        if ordering:
            inner.append(f"ORDER BY {', '.join(self._order_sql(e, d) for e, d in ordering)}")
        inner.append(self.dialect.limit_clause(state.limit, state.offset))

        include_joins, include_columns, include_order = self._include_joins(tree, self.model, ROOT)
        columns = column_list(self.dialect, self.model, ROOT) + include_columns
        order_terms = [
            self._order_sql(self.dialect.qualify(ROOT, f"__o{index}"), desc)
            for index, (_, desc) in enumerate(ordering)
        ]
        order_terms.append(self.dialect.qualify(ROOT, self.model._meta.pk_column()))
        order_terms.extend(include_order)
        parts = [
            f"SELECT {', '.join(columns)}",
            f"FROM ({' '.join(inner)}) AS {self.dialect.quote_identifier(ROOT)}",
            *include_joins,
            f"ORDER BY {', '.join(order_terms)}",
        ]
        return CompiledQuery(" ".join(parts), params, tree)

    def _compile_values(self) -> CompiledQuery:
        state = self.state
        if state.includes:
            raise ValueError("include() cannot be combined with values() or annotate()")
        if state.annotations and state.values is None:
            raise ValueError("annotate() requires values() to define the grouping")
        columns: List[str] = []
        group_by: List[str] = []
        converters: Dict[str, Callable[[Any], Any]] = {}
        for path in state.values or ():
            expression, field_obj = self._resolve(path.split("__"))
            columns.append(f"{expression} AS {self.dialect.quote_identifier(path)}")
            group_by.append(expression)
            converters[path] = field_obj.from_db
        annotations = dict(state.annotations)
        annotation_sql: Dict[str, str] = {}
        for name, aggregate in annotations.items():
            expression, converter = self._aggregate_sql(aggregate)
            annotation_sql[name] = expression
            columns.append(f"{expression} AS {self.dialect.quote_identifier(name)}")
            converters[name] = converter

        ordering = self._ordering_terms(annotation_sql)
        where_sql, params = self._where_clause()
        select = "SELECT DISTINCT" if state.distinct else "SELECT"
        parts = [f"{select} {', '.join(columns)}", self._from_clause(), *self._join_sql()]
        if where_sql:
            parts.append(f"WHERE {where_sql}")
        if annotations and group_by:
            parts.append(f"GROUP BY {', '.join(group_by)}")
        if state.having:
            having_parts = []
            for expression, value in state.having:
                segments, op = split_lookup(expression)
                if len(segments) != 1 or segments[0] not in annotation_sql:
                    raise ValueError(f"having() refers to unknown annotation '{expression}'")
                sql, having_params = self._render_lookup(annotation_sql[segments[0]], op, value, None)
                having_parts.append(sql)
                params.extend(having_params)
            parts.append(f"HAVING {' AND '.join(having_parts)}")
        if ordering:
            parts.append(f"ORDER BY {', '.join(self._order_sql(e, d) for e, d in ordering)}")
        limit = self.dialect.limit_clause(state.limit, state.offset)
        if limit:
            parts.append(limit)
        return CompiledQuery(" ".join(parts), params, converters=converters)

    def _inner_for_wrapping(self) -> CompiledQuery:
        state = self.state.evolve(includes=())
        if not state.paginated:
            state = state.evolve(ordering=())
        return SQLCompiler(state, self.dialect).compile()

    # ------------------------------------------------------------------ #
    # Clauses
    # ------------------------------------------------------------------ #
    def _from_clause(self) -> str:
        table = self.dialect.format_table(self.model._meta.table_name)
        return f"FROM {table} AS {self.dialect.quote_identifier(ROOT)}"

    def _join_sql(self) -> List[str]:
        return [sql for _, sql in self._joins.values()]

    def _where_clause(self) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        for q in self.state.where:
            sql, q_params = self._compile_q(q)
            if sql:
                parts.append(sql if len(self.state.where) == 1 else f"({sql})")
                params.extend(q_params)
        return " AND ".join(parts), params

    def _ordering_terms(
        self, annotations: Optional[Dict[str, str]] = None
    ) -> List[Tuple[str, bool]]:
        terms = []
        for key in self.state.ordering:
            descending = key.startswith("-")
            name = key[1:] if descending else key
            if annotations and name in annotations:
                terms.append((self.dialect.quote_identifier(name), descending))
                continue
            expression, _ = self._resolve(name.split("__"))
            terms.append((expression, descending))
        return terms

    @staticmethod
    def _order_sql(expression: str, descending: bool) -> str:
        return f"{expression} DESC" if descending else f"{expression} ASC"

    def _include_joins(
        self, tree: "OrderedDict[str, IncludeNode]", parent: type, parent_alias: str
    ) -> Tuple[List[str], List[str], List[str]]:
        joins: List[str] = []
        columns: List[str] = []
        order: List[str] = []
        dialect = self.dialect
        for node in tree.values():
            self._include_counter += 1
            node.alias = f"i{self._include_counter}"
            relation = node.relation
            target = relation.target
            table = f"{dialect.format_table(target._meta.table_name)} AS {dialect.quote_identifier(node.alias)}"
            if isinstance(relation, Reference):
                joins.append(
                    f"LEFT JOIN {table} ON {dialect.qualify(node.alias, target._meta.pk_column())} = "
                    f"{dialect.qualify(parent_alias, relation.fk.column_name())}"
                )
            elif isinstance(relation, Collection):
                joins.append(
                    f"LEFT JOIN {table} ON {dialect.qualify(node.alias, relation.fk.column_name())} = "
                    f"{dialect.qualify(parent_alias, parent._meta.pk_column())}"
                )
            elif isinstance(relation, ManyToManyCollection):
                node.link_alias = f"l{self._include_counter}"
                link = (
                    f"{dialect.format_table(relation.through_table)} AS "
                    f"{dialect.quote_identifier(node.link_alias)}"
                )
                joins.append(
                    f"LEFT JOIN {link} ON {dialect.qualify(node.link_alias, relation.owner_column)} = "
                    f"{dialect.qualify(parent_alias, parent._meta.pk_column())}"
                )
                joins.append(
                    f"LEFT JOIN {table} ON {dialect.qualify(node.alias, target._meta.pk_column())} = "
                    f"{dialect.qualify(node.link_alias, relation.target_column)}"
                )
            columns.extend(column_list(dialect, target, node.alias))
            order.append(dialect.qualify(node.alias, target._meta.pk_column()))
            child_joins, child_columns, child_order = self._include_joins(
                node.children, target, node.alias
            )
            joins.extend(child_joins)
            columns.extend(child_columns)
            order.extend(child_order)
        return joins, columns, order

    # ------------------------------------------------------------------ #
    # Paths and lookups
    # ------------------------------------------------------------------ #
    def _walk(self, segments: Sequence[str]) -> Tuple[type, str]:
        """
        Join every forward reference in ``segments`` and return the model
        and alias the walk ends on.
        """
        model = self.model
        alias = ROOT
        path: Tuple[str, ...] = ()
        for segment in segments:
            relation = model._meta.relations.get(segment)
            if not isinstance(relation, Reference):
                raise ValueError(
                    f"'{segment}' is not a forward reference on {model.__name__}; "
                    "only forward references can be traversed in lookups"
                )
            path += (segment,)
            alias = self._join(path, relation, alias)
            model = relation.target
        return model, alias

    def _resolve(self, segments: Sequence[str]) -> Tuple[str, Field]:
        """
        Resolve ``["author", "name"]`` to a qualified column, joining every
        forward reference along the way.
        """
        model, alias = self._walk(segments[:-1])
        name = segments[-1]
        if name == "pk":
            field_obj = model._meta.primary_key
        elif name in model._meta.fields:
            field_obj = model._meta.fields[name]
        elif isinstance(model._meta.relations.get(name), Reference):
            field_obj = model._meta.relations[name].fk
        else:
            raise ValueError(f"Unknown field '{name}' on model '{model.__name__}'")
        return self.dialect.qualify(alias, field_obj.column_name()), field_obj

    def _collection_size(self, segments: Sequence[str]) -> Optional[str]:
        """
        Correlated ``COUNT(*)`` over the collection ``segments`` ends on, or
        None when the path names a column. A parent without members counts 0.
        """
        model, alias = self._walk(segments[:-1])
        relation = model._meta.relations.get(segments[-1])
        if isinstance(relation, Collection):
            table, column = relation.target._meta.table_name, relation.fk.column_name()
        elif isinstance(relation, ManyToManyCollection):
            table, column = relation.through_table, relation.owner_column
        else:
            return None
        self._subquery_counter += 1
        sub = f"s{self._subquery_counter}"
        dialect = self.dialect
        return (
            f"(SELECT COUNT(*) FROM {dialect.format_table(table)} AS {dialect.quote_identifier(sub)} "
            f"WHERE {dialect.qualify(sub, column)} = {dialect.qualify(alias, model._meta.pk_column())})"
        )

    def _join(self, path: Tuple[str, ...], relation: Reference, parent_alias: str) -> str:
        existing = self._joins.get(path)
        if existing is not None:
            return existing[0]
        alias = f"j{len(self._joins) + 1}"
        target = relation.target
        sql = (
            f"LEFT JOIN {self.dialect.format_table(target._meta.table_name)} AS "
            f"{self.dialect.quote_identifier(alias)} ON "
            f"{self.dialect.qualify(alias, target._meta.pk_column())} = "
            f"{self.dialect.qualify(parent_alias, relation.fk.column_name())}"
        )
        self._joins[path] = (alias, sql)
        return alias

    def _compile_q(self, q: Q) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        for child in q.children:
            if isinstance(child, Q):
                child_sql, child_params = self._compile_q(child)
                if child_sql:
                    parts.append(f"({child_sql})")
                    params.extend(child_params)
            else:
                expression, value = child
                segments, op = split_lookup(expression)
                column, field_obj = self._resolve(segments)
                sql, lookup_params = self._render_lookup(column, op, value, field_obj)
                parts.append(sql)
                params.extend(lookup_params)

        if not parts:
            return "", []
        sql = f" {q.connector} ".join(parts)
        if q.negated:
            sql = f"NOT ({sql})"
        return sql, params

    def _render_lookup(
        self, column: str, op: str, value: Any, field_obj: Optional[Field]
    ) -> Tuple[str, List[Any]]:
        placeholder = self.dialect.parameter_placeholder()

        def convert(raw: Any) -> Any:
            return db_value(field_obj, raw) if field_obj is not None else raw

        if op == "isnull":
            return (f"{column} IS NULL" if value else f"{column} IS NOT NULL"), []
        if op == "exact" and value is None:
            return f"{column} IS NULL", []
        if op == "in":
            items = [convert(item) for item in value]
            if not items:
                return "0 = 1", []
            return f"{column} IN ({self.dialect.placeholders(len(items))})", items
        if op in ("contains", "icontains", "startswith", "iexact"):
            text = str(value)
            if op == "contains":
                return f"INSTR({column}, {placeholder}) > 0", [text]
            if op == "icontains":
                return f"INSTR(LOWER({column}), LOWER({placeholder})) > 0", [text]
            if op == "startswith":
                return f"SUBSTR({column}, 1, {placeholder}) = {placeholder}", [len(text), text]
            return f"LOWER({column}) = LOWER({placeholder})", [text]
        operators = {"exact": "=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}
        if op not in operators:
            raise ValueError(f"Unsupported lookup '{op}'")
        return f"{column} {operators[op]} {placeholder}", [convert(value)]

    def _aggregate_sql(self, aggregate: Aggregate) -> Tuple[str, Callable[[Any], Any]]:
        if aggregate.is_star:
            return aggregate.as_sql("*"), aggregate.convert
        segments = aggregate.path.split("__")
        size = self._collection_size(segments)
        if size is not None:
            if aggregate.distinct:
                raise ValueError(f"distinct=True cannot be applied to collection '{aggregate.path}'")
            # Counting a collection totals its members across the rows.
            if aggregate.function == "COUNT":
                return f"COALESCE(SUM({size}), 0)", aggregate.convert
            return aggregate.as_sql(size), aggregate.convert
        expression, field_obj = self._resolve(segments)
        if aggregate.function in ("MIN", "MAX"):
            return aggregate.as_sql(expression), field_obj.from_db
        return aggregate.as_sql(expression), aggregate.convert
