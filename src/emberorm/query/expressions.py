"""
Expression tree primitives for query construction.
"""

from __future__ import annotations

from typing import Any, List, Tuple

AND = "AND"
OR = "OR"

LOOKUPS = frozenset(
    {
        "exact",
        "iexact",
        "contains",
        "icontains",
        "startswith",
        "gt",
        "gte",
        "lt",
        "lte",
        "in",
        "isnull",
    }
)


def split_lookup(expression: str) -> Tuple[List[str], str]:
    """
    Split ``author__name__startswith`` into (["author", "name"], "startswith").
    A path without a recognised operator suffix is an ``exact`` lookup.
    """
    segments = expression.split("__")
    if len(segments) > 1 and segments[-1] in LOOKUPS:
        return segments[:-1], segments[-1]
    return segments, "exact"


class Q:
    """
    Boolean condition tree in the style of Django's ``Q`` objects.

    Keyword lookups within one ``Q`` are joined with AND. ``&``, ``|`` and
    ``~`` return new trees and never mutate an operand.
    """

    def __init__(self, *children: Any, **lookups: Any) -> None:
        self.children: List[Any] = [*children, *sorted(lookups.items())]
        self.connector = AND
        self.negated = False

    @classmethod
    def _node(cls, children: List[Any], connector: str, negated: bool) -> "Q":
        node = cls(*children)
        node.connector = connector
        node.negated = negated
        return node

    def is_empty(self) -> bool:
        return not self.children

    def __and__(self, other: "Q") -> "Q":
        return self._join(other, AND)

    def __or__(self, other: "Q") -> "Q":
        return self._join(other, OR)

    def __invert__(self) -> "Q":
        return self._node(self.children, self.connector, not self.negated)

    def _join(self, other: "Q", connector: str) -> "Q":
        if not isinstance(other, Q):
            raise TypeError(f"Cannot combine Q with {type(other).__name__}")
        # An empty side contributes nothing.
        if other.is_empty() or self.is_empty():
            kept = self if other.is_empty() else other
            return self._node(kept.children, kept.connector, kept.negated)
        return self._node([self, other], connector, False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Q):
            return NotImplemented
        return (self.connector, self.negated, self.children) == (
            other.connector,
            other.negated,
            other.children,
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<Q {'NOT ' if self.negated else ''}{self.connector}: {self.children!r}>"
