"""
Core building blocks for EmberORM models and metadata handling.
"""

from .fields import (
    DateTimeField,
    Field,
    FieldError,
    IntegerField,
    ModelConfigurationError,
    StringField,
    UUIDField,
)
from .model import Model, ModelMeta, ModelOptions
from .relations import (
    CASCADE,
    RESTRICT,
    Collection,
    ForeignKey,
    ManyToManyCollection,
    ManyToManyField,
    Reference,
    Relation,
    RelationshipError,
    RelationshipNotLoaded,
    Resolvable,
    relation_registry,
)

__all__ = [
    "CASCADE",
    "RESTRICT",
    "Collection",
    "DateTimeField",
    "Field",
    "FieldError",
    "ForeignKey",
    "IntegerField",
    "ManyToManyCollection",
    "ManyToManyField",
    "Model",
    "ModelConfigurationError",
    "ModelMeta",
    "ModelOptions",
    "Reference",
    "Relation",
    "RelationshipError",
    "RelationshipNotLoaded",
    "Resolvable",
    "StringField",
    "UUIDField",
    "relation_registry",
]
