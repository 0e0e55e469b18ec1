# ============================================================================
# MODULE CONTEXT - TABLE FEATURE SERVER MODULE
# ============================================================================
# STATUS: Standalone Module - Read-only REST table feature server
# PURPOSE: Serve PostgreSQL/PostGIS tables as JSON or CSV features
# EXPORTS: FeatureServerService, FeatureServerConfig, get_table_triggers, error types
# PYDANTIC_MODELS: TableQueryParameters, TableListResponse, DistinctValuesResponse
# DEPENDENCIES: psycopg, pydantic, pygeofilter, azure-functions
# SOURCE: Environment variables or XML mapping file for table rules
# PATTERNS: Service Layer, Repository Pattern, Standalone Module
# ENTRY_POINTS: from feature_server import get_table_triggers
# ============================================================================

"""
Table Feature Server

Serves the tables of one PostgreSQL schema, selected by include/exclude glob
rules, over three read-only endpoints.

Architecture:
    feature_server/
    ├── config.py      # Environment and XML mapping configuration
    ├── exceptions.py  # Error taxonomy with HTTP status codes
    ├── models.py      # Descriptors, records, Pydantic request/response models
    ├── catalog.py     # Include/exclude policy, catalog snapshots
    ├── cql.py         # ECQL to parameterized SQL
    ├── query.py       # Query plans (bbox, CQL, sort, projection, paging)
    ├── repository.py  # Introspection, scroll-cursor reads, distinct values
    ├── projector.py   # Row to FeatureRecord
    ├── output.py      # JSON and CSV rendering
    ├── service.py     # Business logic layer
    └── triggers.py    # Azure Functions HTTP handlers

Integration:
    from feature_server import get_table_triggers

    for trigger in get_table_triggers():
        app.route(
            route=trigger['route'],
            methods=trigger['methods'],
            auth_level=func.AuthLevel.ANONYMOUS
        )(trigger['handler'])
"""

from .config import FeatureServerConfig, get_feature_server_config
from .exceptions import (
    FeatureServerError,
    ConfigurationError,
    DatabaseError,
    QueryValidationError,
    NotFoundError,
    DistinctNotSupportedError
)
from .service import FeatureServerService, get_feature_server_service
from .triggers import get_table_triggers

__version__ = "1.0.0"
__all__ = [
    "FeatureServerConfig",
    "FeatureServerService",
    "get_feature_server_config",
    "get_feature_server_service",
    "get_table_triggers",
    "FeatureServerError",
    "ConfigurationError",
    "DatabaseError",
    "QueryValidationError",
    "NotFoundError",
    "DistinctNotSupportedError"
]
