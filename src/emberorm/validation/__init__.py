"""
Validation utilities exposed at the package level.
"""

from .errors import NON_FIELD_ERRORS, ErrorCollector, ValidationError
from .pipeline import check_field, collect_errors, require_text, validate_instance
from .validators import NonEmptyIdentityValidator, NotBlankValidator

__all__ = [
    "NON_FIELD_ERRORS",
    "ErrorCollector",
    "ValidationError",
    "check_field",
    "collect_errors",
    "validate_instance",
    "require_text",
    "NonEmptyIdentityValidator",
    "NotBlankValidator",
]
