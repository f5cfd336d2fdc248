"""
The rendering contract the compiler, schema builder and unit of work share.

Everything backend specific about SQL text goes through a ``Dialect``:
identifier quoting, parameter markers, pagination and DDL fragments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DialectCapabilities:
    # Nested transaction scopes are emulated with SAVEPOINT.
    supports_savepoints: bool = True


class Dialect(Protocol):
    name: str
    param_style: str
    capabilities: DialectCapabilities

    def quote_identifier(self, identifier: str) -> str: ...

    def format_table(self, table_name: str) -> str: ...

    def qualify(self, alias: str, column: str) -> str:
        """Render ``alias.column`` with both parts quoted."""
        ...

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        """Empty string when neither bound is given."""
        ...

    def parameter_placeholder(self, position: int | None = None) -> str: ...

    def placeholders(self, count: int) -> str: ...

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str: ...

    def render_foreign_key(
        self, column: str, remote_table: str, remote_column: str, *, on_delete: str
    ) -> str: ...
