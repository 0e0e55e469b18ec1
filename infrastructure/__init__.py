# ============================================================================
# MODULE CONTEXT - INFRASTRUCTURE MODULE
# ============================================================================
# STATUS: Core Infrastructure - Database access
# PURPOSE: Shared PostgreSQL connection handling
# EXPORTS: PostgreSQLRepository, release_connection
# DEPENDENCIES: psycopg, config
# ============================================================================

"""
Infrastructure Module

PostgreSQL connection management shared by the feature server repository and
the health checks.
"""

from .postgresql import PostgreSQLRepository, release_connection

__version__ = "1.0.0"
__all__ = [
    "PostgreSQLRepository",
    "release_connection"
]
