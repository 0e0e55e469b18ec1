# ============================================================================
# MODULE CONTEXT - HEALTH CHECK MODULE
# ============================================================================
# STATUS: Core Infrastructure - Health Monitoring
# PURPOSE: Health checks for load balancer probes and operations
# EXPORTS: get_public_health, get_detailed_health, get_app_identity, HealthStatus
# DEPENDENCIES: infrastructure.postgresql, feature_server, config, util_logger
# PATTERNS: Two-tier health checks (public/detailed)
# ============================================================================

"""
Health Check Module

1. Public Health (/health):
   - Status and timestamp only
   - Always returns 200 (status in body indicates health)

2. Detailed Health (/health/detailed):
   - Database connectivity with latency
   - Table catalog state (servable tables, failed configuration)
   - Returns 503 if unhealthy

Usage:
    from health import get_public_health, get_detailed_health

    result = get_public_health()
    # {"status": "healthy", "timestamp": "2025-11-24T12:00:00Z"}
"""

import time
import uuid
from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional, Dict, Any

from config import get_app_config
from infrastructure.postgresql import PostgreSQLRepository
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.HEALTH, "HealthService")

APP_NAME = "table-feature-server"
APP_DESCRIPTION = "Read-only REST feature server for PostgreSQL tables"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"      # Non-critical components failing
    UNHEALTHY = "unhealthy"    # Critical components failing


@dataclass
class CheckResult:
    """Result of a single health check."""
    status: str              # "pass" or "fail"
    latency_ms: float
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message
        }
        if self.details:
            result["details"] = self.details
        return result


def get_app_identity() -> Dict[str, str]:
    return {"name": APP_NAME, "description": APP_DESCRIPTION}


# ============================================================================
# Health Check Functions
# ============================================================================

def check_database_connectivity(repository: Optional[PostgreSQLRepository] = None) -> CheckResult:
    """
    Run SELECT 1 on a fresh connection.

    Critical check - failure means UNHEALTHY.
    """
    start_time = time.perf_counter()

    try:
        repository = repository or PostgreSQLRepository()
        ok = repository.ping()
        latency_ms = (time.perf_counter() - start_time) * 1000

        if not ok:
            return CheckResult(status="fail", latency_ms=latency_ms,
                               message="PostgreSQL returned an unexpected result")

        config = get_app_config()
        return CheckResult(
            status="pass",
            latency_ms=latency_ms,
            message="PostgreSQL connection successful",
            details={
                "host": config.postgis_host,
                "database": config.postgis_database,
                "auth_mode": "managed_identity" if config.use_managed_identity else "password"
            }
        )

    except Exception as e:
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.error(f"Database connectivity check failed: {e}")
        return CheckResult(
            status="fail",
            latency_ms=latency_ms,
            message=f"Database connection failed: {type(e).__name__}",
            details={"error": str(e)}
        )


def check_table_catalog(service=None) -> CheckResult:
    """
    Build (or reuse) the catalog snapshot and report servable tables.

    Critical check - a failed configuration means UNHEALTHY. Zero servable
    tables passes with a warning message.
    """
    start_time = time.perf_counter()

    try:
        if service is None:
            from feature_server import get_feature_server_service
            service = get_feature_server_service()

        snapshot = service.catalog.snapshot()
        latency_ms = (time.perf_counter() - start_time) * 1000
        count = len(snapshot.table_names)

        return CheckResult(
            status="pass",
            latency_ms=latency_ms,
            message=f"{count} servable tables" if count else "No table matches the include rules",
            details={
                "schema": snapshot.schema,
                "catalog_version": snapshot.version,
                "table_count": count,
                "sample_tables": list(snapshot.table_names[:5])
            }
        )

    except Exception as e:
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.error(f"Table catalog check failed: {e}")
        return CheckResult(
            status="fail",
            latency_ms=latency_ms,
            message=f"Table catalog unavailable: {type(e).__name__}",
            details={"error": str(e)}
        )


# ============================================================================
# Main Entry Points
# ============================================================================

def get_public_health() -> Dict[str, Any]:
    """Status and timestamp only; no internal details."""
    start_time = time.perf_counter()

    db_result = check_database_connectivity()
    status = HealthStatus.HEALTHY if db_result.status == "pass" else HealthStatus.UNHEALTHY

    logger.info("Public health check completed", extra={
        'custom_dimensions': {
            'status': status.value,
            'duration_ms': round((time.perf_counter() - start_time) * 1000, 2),
            'check_type': 'public'
        }
    })

    return {
        "status": status.value,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


def get_detailed_health(service=None, repository: Optional[PostgreSQLRepository] = None) -> Dict[str, Any]:
    """
    Full health metrics for probes and operations dashboards.

    Block this endpoint from public access.
    """
    start_time = time.perf_counter()
    request_id = str(uuid.uuid4())[:8]

    checks = {}
    critical_failures = []

    db_result = check_database_connectivity(repository)
    checks["database"] = db_result.to_dict()
    if db_result.status == "fail":
        critical_failures.append("database")

    catalog_result = check_table_catalog(service)
    checks["table_catalog"] = catalog_result.to_dict()
    if catalog_result.status == "fail":
        critical_failures.append("table_catalog")

    status = HealthStatus.UNHEALTHY if critical_failures else HealthStatus.HEALTHY
    total_duration = (time.perf_counter() - start_time) * 1000

    logger.info("Detailed health check completed", extra={
        'custom_dimensions': {
            'status': status.value,
            'duration_ms': round(total_duration, 2),
            'check_type': 'detailed',
            'request_id': request_id,
            'critical_failures': critical_failures,
            'database_latency_ms': db_result.latency_ms
        }
    })

    return {
        "status": status.value,
        "app": APP_NAME,
        "description": APP_DESCRIPTION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "checks": checks,
        "total_duration_ms": round(total_duration, 2)
    }
