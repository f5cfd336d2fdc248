"""
DDL generation from model metadata.

Tables come out in foreign-key dependency order so a fresh database can be
created statement by statement. Every statement is ``IF NOT EXISTS`` and
creating the same schema twice is harmless.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Iterator, List

from ..core.fields import Field
from ..core.model import Model
from ..core.relations import ForeignKey, ManyToManyField, relation_registry
from ..dialects.base import Dialect
from ..utils import get_logger

if TYPE_CHECKING:
    from ..persistence.session import Session


def sql_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


class SchemaBuilder:
    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, model: type[Model]) -> str:
        body = [self._column_sql(field) for field in model._meta.get_fields()]
        body.extend(self._foreign_keys(model))
        return self._create(model._meta.table_name, body)

    def create_many_to_many_sql(self, model: type[Model]) -> list[str]:
        """
        Link tables for the many-to-many fields declared on ``model``.
        Link rows cascade away with either side.
        """
        return [self._link_table_sql(model, field) for field in model._meta.many_to_many]

    def create_index_sql(self, model: type[Model]) -> list[str]:
        meta = model._meta
        quote = self.dialect.quote_identifier
        statements = []
        for names in meta.indexes:
            columns = [meta.get_field(name).column_name() for name in names]
            index = quote("_".join(["ix", meta.table_name, *columns]))
            target = self.dialect.format_table(meta.table_name)
            statements.append(
                f"CREATE INDEX IF NOT EXISTS {index} ON {target} ({', '.join(map(quote, columns))})"
            )
        return statements

    def drop_table_sql(self, model: type[Model]) -> str:
        table = self.dialect.format_table(model._meta.table_name)
        self.logger.warning("DROP TABLE generated for %s; existing rows will be lost.", table)
        return f"DROP TABLE IF EXISTS {table}"

    def statements_for(self, models: Iterable[type[Model]]) -> List[str]:
        """
        Full DDL for ``models``: tables in dependency order, then indexes,
        then link tables.
        """
        ordered = relation_registry.dependency_order(models)
        tables = [self.create_table_sql(model) for model in ordered]
        indexes = [sql for model in ordered for sql in self.create_index_sql(model)]
        links = [sql for model in ordered for sql in self.create_many_to_many_sql(model)]
        return tables + indexes + links

    def _create(self, table: str, body: List[str]) -> str:
        return f"CREATE TABLE IF NOT EXISTS {self.dialect.format_table(table)} ({', '.join(body)})"

    def _column_sql(self, field: Field) -> str:
        if not field.db_type:
            raise ValueError(f"Field '{field.name}' has no db_type; cannot generate a column.")
        sql = self.dialect.render_column_definition(
            field.column_name(), field.db_type, nullable=field.nullable and not field.primary_key
        )
        if field.primary_key:
            sql += " PRIMARY KEY"
        elif field.unique:
            sql += " UNIQUE"
        # Callable defaults are applied in Python when the instance is built.
        if field.default is not None and not callable(field.default):
            sql += f" DEFAULT {sql_literal(field.default)}"
        return sql

    def _foreign_keys(self, model: type[Model]) -> Iterator[str]:
        for field in model._meta.get_fields():
            if not isinstance(field, ForeignKey):
                continue
            target = field.remote_model
            if target is None:
                raise ValueError(
                    f"Foreign key '{model.__name__}.{field.name}' targets an unresolved model"
                )
            yield self.dialect.render_foreign_key(
                field.column_name(),
                target._meta.table_name,
                target._meta.pk_column(),
                on_delete=field.on_delete,
            )

    def _link_table_sql(self, model: type[Model], field: ManyToManyField) -> str:
        target = field.remote_model
        if target is None:
            raise ValueError(
                f"Many-to-many field '{model.__name__}.{field.name}' targets an unresolved model"
            )
        render = self.dialect.render_column_definition
        fk = self.dialect.render_foreign_key
        left, right = field.left_column(), field.right_column()
        pair = ", ".join(map(self.dialect.quote_identifier, (left, right)))
        body = [
            render(left, "TEXT", nullable=False),
            render(right, "TEXT", nullable=False),
            fk(left, model._meta.table_name, model._meta.pk_column(), on_delete="CASCADE"),
            fk(right, target._meta.table_name, target._meta.pk_column(), on_delete="CASCADE"),
            f"UNIQUE ({pair})",
        ]
        return self._create(field.through_table(), body)


def create_schema(session: "Session", models: Iterable[type[Model]]) -> List[str]:
    """
    Create tables, indexes and link tables for ``models`` through the
    session's raw execution path. Returns the executed statements.
    """
    builder = SchemaBuilder(session.dialect)
    statements = builder.statements_for(models)
    for sql in statements:
        session.execute(sql)
    builder.logger.info("Created schema for %s statement(s)", len(statements))
    return statements
