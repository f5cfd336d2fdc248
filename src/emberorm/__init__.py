"""
EmberORM public package initialization.

Sessions track entities, compose deferred queries, load relationships with
several strategies and commit staged changes atomically.
"""

from .core.fields import (  # noqa: F401
    DateTimeField,
    IntegerField,
    StringField,
    UUIDField,
)
from .core.model import Model, ModelConfigurationError  # noqa: F401
from .core.relations import (  # noqa: F401
    CASCADE,
    RESTRICT,
    ForeignKey,
    ManyToManyField,
    RelationshipError,
    RelationshipNotLoaded,
)
from .adapters import (  # noqa: F401
    ConnectionConfig,
    ConstraintViolation,
    OperationCancelled,
    SQLiteAdapter,
    StorageError,
)
from .persistence import EntityState, Session, TransactionError  # noqa: F401
from .query import Avg, Count, Max, Min, MultipleResults, NotFound, Q, QuerySet, Sum  # noqa: F401
from .schema import SchemaBuilder, create_schema  # noqa: F401
from .utils import CancellationToken, configure_logging  # noqa: F401
from .validation import ValidationError  # noqa: F401

__all__ = [
    "Model",
    "UUIDField",
    "IntegerField",
    "StringField",
    "DateTimeField",
    "ForeignKey",
    "ManyToManyField",
    "CASCADE",
    "RESTRICT",
    "ModelConfigurationError",
    "RelationshipError",
    "RelationshipNotLoaded",
    "ConnectionConfig",
    "SQLiteAdapter",
    "StorageError",
    "ConstraintViolation",
    "OperationCancelled",
    "Session",
    "EntityState",
    "TransactionError",
    "QuerySet",
    "Q",
    "Count",
    "Sum",
    "Avg",
    "Min",
    "Max",
    "NotFound",
    "MultipleResults",
    "SchemaBuilder",
    "create_schema",
    "CancellationToken",
    "configure_logging",
    "ValidationError",
]
