"""
Unit of Work translating a change set into one ordered write batch.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Set, Tuple, Type

from ..adapters.base import Statement
from ..core.model import Model
from ..core.relations import relation_registry
from ..dialects.base import Dialect
from ..validation import ErrorCollector, collect_errors
from .delete_resolver import DeletePlan
from .tracker import ChangeSet, LinkRow


class UnitOfWork:
    """
    Orders writes so that storage constraints hold at every statement:
    link deletes, entity deletes (children first), inserts (parents first),
    updates (changed columns only), link inserts.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    def build(self, changes: ChangeSet, plan: Optional[DeletePlan] = None) -> List[Statement]:
        plan = plan or DeletePlan()
        dropped = {id(instance) for instance in plan.dropped}
        inserts = [instance for instance in changes.inserts if id(instance) not in dropped]

        self.validate([*inserts, *(instance for instance, _ in changes.updates)])

        statements: List[Statement] = []
        deleted_models = plan.by_model()
        statements.extend(self._link_deletes(changes.link_deletes))
        statements.extend(self._link_cleanup(deleted_models))
        statements.extend(self._entity_deletes(deleted_models))
        statements.extend(self._inserts(inserts))
        statements.extend(self._updates(changes.updates, plan))
        statements.extend(self._link_inserts(changes.link_inserts, plan, dropped_keys=self._keys(plan.dropped)))
        return statements

    def validate(self, instances: Iterable[Model]) -> None:
        errors = ErrorCollector()
        for instance in instances:
            errors.absorb(collect_errors(instance, prefix=type(instance).__name__))
        errors.raise_if_any()

    # ------------------------------------------------------------------ #
    def _inserts(self, instances: List[Model]) -> List[Statement]:
        grouped: Dict[Type[Model], List[Model]] = OrderedDict()
        for instance in instances:
            grouped.setdefault(type(instance), []).append(instance)

        statements = []
        for model in relation_registry.dependency_order(grouped):
            table = self.dialect.format_table(model._meta.table_name)
            for instance in grouped[model]:
                values = instance.to_db_values()
                columns = ", ".join(self.dialect.quote_identifier(column) for column in values)
                sql = (
                    f"INSERT INTO {table} ({columns}) "
                    f"VALUES ({self.dialect.placeholders(len(values))})"
                )
                statements.append(
                    Statement(sql, tuple(values.values()), f"insert {model.__name__} {instance.pk}")
                )
        return statements

    def _updates(
        self, updates: List[Tuple[Model, List[str]]], plan: DeletePlan
    ) -> List[Statement]:
        statements = []
        for instance, changed in updates:
            model = type(instance)
            if (model, instance.pk) in plan:
                continue
            values = instance.to_db_values(changed)
            assignments = ", ".join(
                f"{self.dialect.quote_identifier(column)} = {self.dialect.parameter_placeholder()}"
                for column in values
            )
            pk_column = self.dialect.quote_identifier(model._meta.pk_column())
            sql = (
                f"UPDATE {self.dialect.format_table(model._meta.table_name)} SET {assignments} "
                f"WHERE {pk_column} = {self.dialect.parameter_placeholder()}"
            )
            params = (*values.values(), model._meta.primary_key.to_db(instance.pk))
            statements.append(Statement(sql, params, f"update {model.__name__} {instance.pk}"))
        return statements

    def _entity_deletes(self, deleted: Dict[Type[Model], List]) -> List[Statement]:
        statements = []
        for model in reversed(relation_registry.dependency_order(deleted)):
            pk_field = model._meta.primary_key
            pk_column = self.dialect.quote_identifier(model._meta.pk_column())
            table = self.dialect.format_table(model._meta.table_name)
            for pk in deleted[model]:
                statements.append(
                    Statement(
                        f"DELETE FROM {table} WHERE {pk_column} = {self.dialect.parameter_placeholder()}",
                        (pk_field.to_db(pk),),
                        f"delete {model.__name__} {pk}",
                    )
                )
        return statements

    def _link_cleanup(self, deleted: Dict[Type[Model], List]) -> List[Statement]:
        statements = []
        for model, pks in deleted.items():
            pk_field = model._meta.primary_key
            for relation in relation_registry.many_to_many_for(model):
                table = self.dialect.format_table(relation.through_table)
                column = self.dialect.quote_identifier(relation.owner_column)
                statements.append(
                    Statement(
                        f"DELETE FROM {table} WHERE {column} IN ({self.dialect.placeholders(len(pks))})",
                        tuple(pk_field.to_db(pk) for pk in pks),
                        f"unlink {model.__name__} via {relation.through_table}",
                    )
                )
        return statements

    def _link_deletes(self, rows: List[LinkRow]) -> List[Statement]:
        statements = []
        for row in rows:
            table = self.dialect.format_table(row.table)
            owner = self.dialect.quote_identifier(row.owner_column)
            target = self.dialect.quote_identifier(row.target_column)
            placeholder = self.dialect.parameter_placeholder()
            statements.append(
                Statement(
                    f"DELETE FROM {table} WHERE {owner} = {placeholder} AND {target} = {placeholder}",
                    (str(row.owner_pk), str(row.target_pk)),
                    f"unlink {row.table}",
                )
            )
        return statements

    def _link_inserts(
        self, rows: List[LinkRow], plan: DeletePlan, *, dropped_keys: Set
    ) -> List[Statement]:
        deleted_pks = {pk for _, pk in plan.keys} | {pk for _, pk in dropped_keys}
        statements = []
        for row in rows:
            if row.owner_pk in deleted_pks or row.target_pk in deleted_pks:
                continue
            table = self.dialect.format_table(row.table)
            columns = (
                f"{self.dialect.quote_identifier(row.owner_column)}, "
                f"{self.dialect.quote_identifier(row.target_column)}"
            )
            statements.append(
                Statement(
                    f"INSERT INTO {table} ({columns}) VALUES ({self.dialect.placeholders(2)})",
                    (str(row.owner_pk), str(row.target_pk)),
                    f"link {row.table}",
                )
            )
        return statements

    @staticmethod
    def _keys(instances: Iterable[Model]) -> Set:
        return {(type(instance), instance.pk) for instance in instances}
