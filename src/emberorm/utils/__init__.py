"""
Utility helpers shared across EmberORM packages.
"""

from .cancellation import CancellationToken
from .logging import configure_logging, get_logger, time_call
from .naming import camel_to_snake, foreign_key_column, link_table_name
from .performance import PerformanceTracker, resolve_slow_query_ms
from .redaction import redact_params

__all__ = [
    "CancellationToken",
    "PerformanceTracker",
    "camel_to_snake",
    "configure_logging",
    "foreign_key_column",
    "get_logger",
    "link_table_name",
    "redact_params",
    "resolve_slow_query_ms",
    "time_call",
]
