# ============================================================================
# MODULE CONTEXT - FEATURE SERVER TRIGGERS
# ============================================================================
# STATUS: Standalone HTTP Triggers - Table feature server endpoints
# PURPOSE: Azure Functions HTTP triggers for the /rest/tables endpoints
# EXPORTS: get_table_triggers (returns list of trigger configurations)
# INTERFACES: Azure Functions HttpRequest/HttpResponse
# PYDANTIC_MODELS: TableQueryParameters (for validation)
# DEPENDENCIES: azure.functions, pydantic, typing, json, util_logger
# SOURCE: HTTP requests from clients (browsers, GIS clients, curl)
# VALIDATION: Query parameter parsing and Pydantic validation
# PATTERNS: Trigger Pattern, Factory Pattern (get_table_triggers)
# ENTRY_POINTS: Function App route registration via get_table_triggers()
# ============================================================================

"""
Table Feature Server HTTP Triggers - Azure Functions Handlers

Endpoints:
- GET /rest/tables - Servable tables and their columns
- GET /rest/tables/{table_name} - Rows (JSON, or CSV with Accept: text/csv)
- GET /rest/tables/{table_name}/{property_name} - Distinct property values

Errors are returned as {"error": "..."} with the status carried by the
FeatureServerError subclass: 400 validation, 404 unknown table or property,
412 distinct values not supported, 500 configuration or database failure.

Integration:
    In function_app.py:

    from feature_server import get_table_triggers

    for trigger in get_table_triggers():
        app.route(
            route=trigger['route'],
            methods=trigger['methods'],
            auth_level=func.AuthLevel.ANONYMOUS
        )(trigger['handler'])
"""

import json
from typing import Any, Dict, List, Optional

import azure.functions as func
from pydantic import ValidationError

from util_logger import LoggerFactory, ComponentType

from .exceptions import FeatureServerError
from .models import TableQueryParameters
from .output import (
    CSV_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    distinct_values_csv,
    distinct_values_json,
    download_filename,
    iter_csv,
    iter_json,
    resolve_separator,
    to_json
)
from .service import FeatureServerService, get_feature_server_service

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "TableTriggers")


# ============================================================================
# TRIGGER REGISTRY FUNCTION
# ============================================================================

def get_table_triggers(service: Optional[FeatureServerService] = None) -> List[Dict[str, Any]]:
    """
    Get list of table trigger configurations for function_app.py.

    Args:
        service: Service shared by all triggers (process singleton if omitted)

    Returns:
        List of dicts with keys route, methods and handler
    """
    return [
        {
            'route': 'rest/tables',
            'methods': ['GET'],
            'handler': TablesTrigger(service).handle
        },
        {
            'route': 'rest/tables/{table_name}',
            'methods': ['GET'],
            'handler': TableRowsTrigger(service).handle
        },
        {
            'route': 'rest/tables/{table_name}/{property_name}',
            'methods': ['GET'],
            'handler': PropertyValuesTrigger(service).handle
        }
    ]


# ============================================================================
# BASE TRIGGER CLASS
# ============================================================================

class BaseTableTrigger:
    """
    Base class for table triggers.

    Subclasses implement `_handle`; `handle` maps every failure to a JSON
    error response and logs it.
    """

    def __init__(self, service: Optional[FeatureServerService] = None):
        self._service = service

    @property
    def service(self) -> FeatureServerService:
        # Resolved lazily so importing function_app does not touch configuration
        if self._service is None:
            self._service = get_feature_server_service()
        return self._service

    def handle(self, req: func.HttpRequest) -> func.HttpResponse:
        try:
            return self._handle(req)
        except ValidationError as e:
            messages = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            logger.warning(f"Invalid request parameters for {req.url}: {messages}")
            return self._error_response(f"Invalid parameters: {messages}", 400)
        except FeatureServerError as e:
            dimensions = {'error_type': e.error_type, 'status_code': e.status_code, 'url': req.url}
            log = logger.error if e.status_code >= 500 else logger.warning
            log(f"{e.error_type} on {req.url}: {e.message}", extra={'custom_dimensions': dimensions})
            return self._error_response(e.message, e.status_code)
        except Exception as e:
            logger.error(f"Unexpected error on {req.url}: {e}", exc_info=True)
            return self._error_response(f"Internal server error: {e}", 500)

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        raise NotImplementedError

    @staticmethod
    def _wants_csv(req: func.HttpRequest) -> bool:
        return CSV_CONTENT_TYPE in (req.headers.get("Accept") or "").lower()

    def _json_response(self, data: Any, status_code: int = 200) -> func.HttpResponse:
        if hasattr(data, 'model_dump'):
            data = data.model_dump(mode='json', by_alias=True)
        return func.HttpResponse(
            body=to_json(data),
            status_code=status_code,
            mimetype=JSON_CONTENT_TYPE
        )

    def _body_response(self, body: str, mimetype: str,
                       filename: Optional[str] = None) -> func.HttpResponse:
        headers = {}
        if filename:
            headers["Content-Disposition"] = f"attachment; filename={filename}"
        return func.HttpResponse(
            body=body,
            status_code=200,
            mimetype=mimetype,
            charset="utf-8",
            headers=headers
        )

    def _error_response(self, message: str, status_code: int) -> func.HttpResponse:
        return func.HttpResponse(
            body=json.dumps({"error": message}),
            status_code=status_code,
            mimetype=JSON_CONTENT_TYPE
        )


# ============================================================================
# ENDPOINT TRIGGERS
# ============================================================================

class TablesTrigger(BaseTableTrigger):
    """
    Table listing.

    Endpoint: GET /rest/tables
    """

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        tables = self.service.list_tables()
        logger.info(f"Table list requested ({tables.total} tables)")
        return self._json_response(tables)


class TableRowsTrigger(BaseTableTrigger):
    """
    Rows of one table.

    Endpoint: GET /rest/tables/{table_name}

    Query Parameters:
    - bbox: minx,miny,maxx,maxy (ignored when invalid)
    - cql: ECQL predicate
    - start, limit: pagination
    - sortColumns, sortDirections: ";"-separated, co-indexed
    - visibleColumns: ";"-separated property allowlist
    - separator: CSV separator (first character)
    - asdownload: "true" for an attachment
    """

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        table_name = req.route_params.get('table_name')
        params = TableQueryParameters.model_validate(dict(req.params))
        as_csv = self._wants_csv(req)

        plan, result = self.service.read_table(table_name, params)
        with result:
            if as_csv:
                separator = resolve_separator(params.separator, self.service.config.default_separator)
                body = "".join(iter_csv(plan.columns, result, separator))
            else:
                body = "".join(iter_json(result.total_count, result))

        logger.info(
            f"Rows of '{table_name}' served as {'CSV' if as_csv else 'JSON'} "
            f"({result.total_count} matching)"
        )

        fmt = "csv" if as_csv else "json"
        filename = download_filename(table_name, fmt) if params.as_download else None
        return self._body_response(body, CSV_CONTENT_TYPE if as_csv else JSON_CONTENT_TYPE, filename)


class PropertyValuesTrigger(BaseTableTrigger):
    """
    Distinct values of one property.

    Endpoint: GET /rest/tables/{table_name}/{property_name}

    Query Parameters:
    - separator: CSV separator (first character)
    """

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        table_name = req.route_params.get('table_name')
        property_name = req.route_params.get('property_name')

        response = self.service.distinct_values(table_name, property_name)

        if self._wants_csv(req):
            separator = resolve_separator(req.params.get('separator'), self.service.config.default_separator)
            return self._body_response(distinct_values_csv(response.distinct_values, separator), CSV_CONTENT_TYPE)

        return self._body_response(
            distinct_values_json(response.table, response.property, response.distinct_values),
            JSON_CONTENT_TYPE
        )
