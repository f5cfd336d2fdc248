"""
Naming conventions for tables, link tables and foreign-key columns.
"""

import re


_FIRST_CAP_RE = re.compile("(.)([A-Z][a-z]+)")
_ALL_CAP_RE = re.compile("([a-z0-9])([A-Z])")


def camel_to_snake(name: str) -> str:
    """
    Convert ``CamelCase`` model names to ``snake_case`` table names.
    """
    step1 = _FIRST_CAP_RE.sub(r"\1_\2", name)
    return _ALL_CAP_RE.sub(r"\1_\2", step1).lower()


def foreign_key_column(table_name: str) -> str:
    return f"{table_name}_id"


def link_table_name(left_table: str, right_table: str) -> str:
    """
    Default many-to-many link table: ``article`` + ``tag`` -> ``article_tag``.
    """
    return f"{left_table}_{right_table}"
