# ============================================================================
# MODULE CONTEXT - FEATURE SERVER EXCEPTIONS
# ============================================================================
# STATUS: Standalone Module - Error taxonomy for the table feature server
# PURPOSE: Typed errors mapped one-to-one onto HTTP error responses
# EXPORTS: FeatureServerError, ConfigurationError, DatabaseError,
#          QueryValidationError, NotFoundError, DistinctNotSupportedError
# DEPENDENCIES: none
# PATTERNS: Exception hierarchy carrying HTTP status
# ============================================================================

"""
Feature Server Exceptions

Every error raised by the catalog, query builder, repository or service is a
FeatureServerError. Triggers translate them into `{"error": "..."}` responses
using the status code carried by the class, and log them under `error_type`.
"""


class FeatureServerError(Exception):
    """Base class for all feature server errors."""

    status_code = 500
    error_type = "InternalServerError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(FeatureServerError):
    """Configuration or mapping file is missing, unreadable or malformed."""

    error_type = "ConfigurationError"


class DatabaseError(FeatureServerError):
    """Connection, query execution or cursor failure."""

    error_type = "DatabaseError"


class QueryValidationError(FeatureServerError):
    """Malformed CQL predicate or co-indexed parameter lists of different size."""

    status_code = 400
    error_type = "BadRequest"


class NotFoundError(FeatureServerError):
    """Unknown table or property."""

    status_code = 404
    error_type = "NotFound"


class DistinctNotSupportedError(FeatureServerError):
    """Distinct values requested for a property type that does not support it."""

    status_code = 412
    error_type = "PreconditionFailed"
