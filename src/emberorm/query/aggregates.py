"""
Aggregate expressions for ``annotate()`` and ``aggregate()``.
"""

from __future__ import annotations

from typing import Any


class Aggregate:
    function = ""
    allow_star = False

    def __init__(self, path: str = "*", *, distinct: bool = False) -> None:
        if path == "*" and not self.allow_star:
            raise ValueError(f"{type(self).__name__}() requires a field path")
        if path == "*" and distinct:
            raise ValueError("distinct=True requires a field path")
        self.path = path
        self.distinct = distinct

    @property
    def is_star(self) -> bool:
        return self.path == "*"

    def as_sql(self, expression: str) -> str:
        distinct = "DISTINCT " if self.distinct else ""
        return f"{self.function}({distinct}{expression})"

    def convert(self, value: Any) -> Any:
        return value

    def __repr__(self) -> str:
        suffix = ", distinct=True" if self.distinct else ""
        return f"{type(self).__name__}({self.path!r}{suffix})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Aggregate):
            return NotImplemented
        return type(self) is type(other) and (self.path, self.distinct) == (
            other.path,
            other.distinct,
        )

    def __hash__(self) -> int:
        return hash((type(self), self.path, self.distinct))


class Count(Aggregate):
    function = "COUNT"
    allow_star = True

    def convert(self, value: Any) -> int:
        return int(value or 0)


class Sum(Aggregate):
    function = "SUM"


class Avg(Aggregate):
    function = "AVG"

    def convert(self, value: Any) -> Any:
        return None if value is None else float(value)


class Min(Aggregate):
    function = "MIN"


class Max(Aggregate):
    function = "MAX"
