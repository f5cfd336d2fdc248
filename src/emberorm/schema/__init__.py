"""
Schema generation utilities.
"""

from .builder import SchemaBuilder, create_schema

__all__ = ["SchemaBuilder", "create_schema"]
