# ============================================================================
# MODULE CONTEXT - AZURE FUNCTIONS ENTRY POINT
# ============================================================================
# STATUS: Core Infrastructure - Function App Entry Point
# PURPOSE: Main entry point for Azure Functions runtime with the table feature server
# EXPORTS: app (FunctionApp instance)
# DEPENDENCIES: azure-functions, feature_server, health
# ============================================================================

"""
Azure Functions Entry Point

Registers the table feature server and health check endpoints. host.json sets
an empty route prefix so the routes are served as written:

    - GET /rest/tables
    - GET /rest/tables/{table_name}
    - GET /rest/tables/{table_name}/{property_name}
    - GET /health
    - GET /health/detailed

Deployment:
    - Local: func start
    - Azure: func azure functionapp publish <app-name> --python --build remote
"""

import json
import logging

import azure.functions as func

from feature_server import get_table_triggers
from health import get_app_identity, get_detailed_health, get_public_health, HealthStatus

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Azure Function App
app = func.FunctionApp()

# ============================================================================
# Table Feature Server - 3 Endpoints
# ============================================================================

table_triggers = get_table_triggers()


@app.route(route="rest/tables", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def rest_tables(req: func.HttpRequest) -> func.HttpResponse:
    return table_triggers[0]['handler'](req)


@app.route(route="rest/tables/{table_name}", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def rest_table_rows(req: func.HttpRequest) -> func.HttpResponse:
    return table_triggers[1]['handler'](req)


@app.route(route="rest/tables/{table_name}/{property_name}", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def rest_property_values(req: func.HttpRequest) -> func.HttpResponse:
    return table_triggers[2]['handler'](req)


# ============================================================================
# Health Check Endpoints - 2 Endpoints (Public + Detailed)
# ============================================================================

@app.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """
    Public health check - always 200, status in body.
    """
    return func.HttpResponse(
        json.dumps(get_public_health(), default=str),
        mimetype="application/json",
        status_code=200,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
    )


@app.route(route="health/detailed", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_detailed(req: func.HttpRequest) -> func.HttpResponse:
    """
    Detailed health check - 503 if unhealthy, 200 otherwise.

    Block this endpoint from external access.
    """
    result = get_detailed_health()
    status_code = 503 if result["status"] == HealthStatus.UNHEALTHY.value else 200

    return func.HttpResponse(
        json.dumps(result, default=str, indent=2),
        mimetype="application/json",
        status_code=status_code,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
    )


# ============================================================================
# Application Startup
# ============================================================================

_app_identity = get_app_identity()

logger.info("=" * 60)
logger.info(f"{_app_identity['name']} - {_app_identity['description']}")
logger.info("=" * 60)
logger.info("Available endpoints:")
logger.info("  - GET /rest/tables - Servable tables")
logger.info("  - GET /rest/tables/{table} - Table rows (JSON or CSV)")
logger.info("  - GET /rest/tables/{table}/{property} - Distinct property values")
logger.info("  - GET /health - Public health check (minimal)")
logger.info("  - GET /health/detailed - Detailed health")
logger.info("=" * 60)
