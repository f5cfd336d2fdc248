"""
Query construction, compilation and relationship loading.
"""

from .aggregates import Aggregate, Avg, Count, Max, Min, Sum
from .compiler import QueryState, SQLCompiler
from .expressions import Q
from .loading import load_relation
from .queryset import MultipleResults, NotFound, QuerySet

__all__ = [
    "Aggregate",
    "Avg",
    "Count",
    "Max",
    "Min",
    "MultipleResults",
    "NotFound",
    "Q",
    "QuerySet",
    "QueryState",
    "SQLCompiler",
    "Sum",
    "load_relation",
]
