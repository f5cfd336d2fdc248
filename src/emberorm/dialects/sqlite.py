"""
SQLite rendering: double-quoted identifiers and ``?`` markers.
"""

from __future__ import annotations

from .base import Dialect, DialectCapabilities


class SQLiteDialect:
    name = "sqlite"
    param_style = "qmark"
    capabilities = DialectCapabilities(supports_savepoints=True)

    def quote_identifier(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def format_table(self, table_name: str) -> str:
        return self.quote_identifier(table_name)

    def qualify(self, alias: str, column: str) -> str:
        return self.quote_identifier(alias) + "." + self.quote_identifier(column)

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        if limit is None and offset is None:
            return ""
        # SQLite has no bare OFFSET; -1 means "no limit".
        clause = f"LIMIT {-1 if limit is None else int(limit)}"
        if offset is not None:
            clause += f" OFFSET {int(offset)}"
        return clause

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" * count)

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        definition = f"{self.quote_identifier(column)} {column_type}"
        return definition if nullable else definition + " NOT NULL"

    def render_foreign_key(
        self, column: str, remote_table: str, remote_column: str, *, on_delete: str
    ) -> str:
        target = f"{self.format_table(remote_table)} ({self.quote_identifier(remote_column)})"
        return f"FOREIGN KEY ({self.quote_identifier(column)}) REFERENCES {target} ON DELETE {on_delete}"


def get_sqlite_dialect() -> Dialect:
    return SQLiteDialect()
