# ============================================================================
# MODULE CONTEXT - FEATURE SERVER SERVICE
# ============================================================================
# STATUS: Standalone Service - Table feature server business logic
# PURPOSE: Orchestrates catalog, query builder, repository for the REST triggers
# EXPORTS: FeatureServerService, get_feature_server_service, reset_feature_server_service
# PYDANTIC_MODELS: TableListResponse, TableInfo, DistinctValuesResponse
# DEPENDENCIES: typing, logging, util_logger
# SOURCE: TableCatalog + TableRepository
# PATTERNS: Service Layer, Facade Pattern, Process-wide singleton
# ENTRY_POINTS: service = get_feature_server_service(); plan, result = service.read_table(...)
# ============================================================================

"""
Feature Server Service - Business Logic Layer

Sits between the HTTP triggers and the data layer:
- resolves table names through the catalog snapshot
- turns request parameters into a QueryPlan
- opens reads and distinct-value lookups on the repository

Output formatting stays in the triggers and output module.
"""

from typing import Any, List, Optional, Tuple

from util_logger import LoggerFactory, ComponentType

from .catalog import TableCatalog
from .config import FeatureServerConfig, get_feature_server_config
from .exceptions import DistinctNotSupportedError, NotFoundError
from .models import (
    DISTINCT_TYPES,
    DistinctValuesResponse,
    TableDescriptor,
    TableInfo,
    TableListResponse,
    TableQueryParameters
)
from .query import QueryPlan, build_plan
from .repository import ReadResult, TableRepository

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "FeatureServerService")


class FeatureServerService:
    """
    Business logic service for the table feature server.

    The catalog is shared by every request of the process; construct the
    service once (see get_feature_server_service).
    """

    def __init__(
        self,
        config: Optional[FeatureServerConfig] = None,
        repository: Optional[TableRepository] = None,
        catalog: Optional[TableCatalog] = None
    ):
        """
        Args:
            config: Feature server configuration (uses singleton if not provided)
            repository: Data access (built from config if not provided)
            catalog: Table catalog (built over the repository if not provided)
        """
        self.config = config or get_feature_server_config()
        self.repository = repository or TableRepository(self.config)
        self.catalog = catalog or TableCatalog(self.repository, self.config)
        logger.info("FeatureServerService initialized")

    # ========================================================================
    # CATALOG
    # ========================================================================

    def list_tables(self) -> TableListResponse:
        """All servable tables with their columns."""
        descriptors = self.catalog.snapshot().descriptors()
        items = [TableInfo.model_validate(d.to_dict()) for d in descriptors]
        return TableListResponse(items=items, total=len(items))

    def describe_table(self, name: str) -> TableDescriptor:
        """
        Raises:
            NotFoundError: If the table is not servable
            ConfigurationError: If the catalog is in a failed state
        """
        return self.catalog.get(name)

    def reconfigure(self) -> int:
        """Rebuild the catalog; returns the number of servable tables."""
        snapshot = self.catalog.reconfigure()
        return len(snapshot.table_names)

    # ========================================================================
    # READS
    # ========================================================================

    def read_table(self, name: str, params: TableQueryParameters) -> Tuple[QueryPlan, ReadResult]:
        """
        Plan and open a read over one table.

        Returns:
            (plan, open ReadResult); the caller must exhaust or close the result

        Raises:
            NotFoundError: Unknown table
            QueryValidationError: Invalid CQL or mismatched co-indexed lists
            DatabaseError: Database failure while counting or opening the cursor
        """
        table = self.describe_table(name)
        plan = build_plan(table, params, self.config.srid)
        logger.debug(
            f"Plan for '{name}': columns={list(plan.columns)} "
            f"sort={[(k.column, k.ascending) for k in plan.sort_keys]} "
            f"start={plan.start} limit={plan.limit}"
        )
        return plan, self.repository.open_reader(plan)

    def distinct_values(self, name: str, property_name: str) -> DistinctValuesResponse:
        """
        Distinct non-null values of one property.

        Raises:
            NotFoundError: Unknown table or property
            DistinctNotSupportedError: Property type is not string, integer,
                byte or boolean
        """
        table = self.describe_table(name)
        column_type = table.column_type(property_name)
        if column_type is None:
            raise NotFoundError(f"Table {name} does not have property {property_name}")
        if column_type not in DISTINCT_TYPES:
            raise DistinctNotSupportedError(
                f"Distinct values not supported for property {property_name} of type {column_type}"
            )

        values: List[Any] = self.repository.distinct_values(table, property_name)
        logger.info(f"{len(values)} distinct values for {name}.{property_name}")
        return DistinctValuesResponse(table=name, property=property_name, distinct_values=values)


# Process-wide service (and with it the catalog snapshot)
_service: Optional[FeatureServerService] = None


def get_feature_server_service() -> FeatureServerService:
    global _service
    if _service is None:
        _service = FeatureServerService()
    return _service


def reset_feature_server_service() -> None:
    global _service
    _service = None
