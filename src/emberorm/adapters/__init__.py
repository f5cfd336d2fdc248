"""
Storage backend interfaces and implementations.
"""

from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    ConstraintViolation,
    DatabaseAdapter,
    OperationCancelled,
    Statement,
    StorageError,
    transaction,
)
from .sqlite import SQLiteAdapter

__all__ = [
    "ConnectionConfig",
    "DatabaseAdapter",
    "Statement",
    "StorageError",
    "ConstraintViolation",
    "OperationCancelled",
    "AdapterConfigurationError",
    "AdapterConnectionError",
    "AdapterExecutionError",
    "AdapterTransactionError",
    "SQLiteAdapter",
    "transaction",
]
