# ============================================================================
# MODULE CONTEXT - FEATURE SERVER MODELS
# ============================================================================
# STATUS: Standalone Models - Table descriptors, feature records, API models
# PURPOSE: Immutable table metadata plus request/response models
# EXPORTS: PropertyDescriptor, TableDescriptor, SortKey, FeatureRecord,
#          TableQueryParameters, TableInfo, TableListResponse, DistinctValuesResponse
# INTERFACES: Frozen dataclasses (internal), Pydantic BaseModel (HTTP boundary)
# DEPENDENCIES: pydantic, dataclasses, typing
# PATTERNS: Data Transfer Objects (DTOs), Value Objects
# ============================================================================

"""
Feature Server Models

TableDescriptor and FeatureRecord are plain frozen dataclasses: they are built
once by schema introspection (or once per row) and never mutated. Pydantic
models validate request parameters and shape JSON responses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Semantic types that support a distinct-values listing
DISTINCT_TYPES = frozenset({"string", "integer", "byte", "boolean"})


@dataclass(frozen=True)
class PropertyDescriptor:
    """A named, typed column of a served table."""
    name: str
    type: str


@dataclass(frozen=True)
class TableDescriptor:
    """
    Resolved description of a servable table.

    The identifier and geometry columns are kept apart from the ordinary
    properties; `properties` never contains either of them.
    """
    name: str
    schema: str
    properties: Tuple[PropertyDescriptor, ...] = ()
    id_column: Optional[PropertyDescriptor] = None
    geometry_column: Optional[PropertyDescriptor] = None

    @property
    def property_names(self) -> List[str]:
        return [p.name for p in self.properties]

    @property
    def id_name(self) -> Optional[str]:
        return self.id_column.name if self.id_column else None

    @property
    def geometry_name(self) -> Optional[str]:
        return self.geometry_column.name if self.geometry_column else None

    def column_type(self, name: str) -> Optional[str]:
        """Semantic type of any column (id, geometry or property), None if unknown."""
        for column in self.all_columns():
            if column.name == name:
                return column.type
        return None

    def has_column(self, name: str) -> bool:
        return self.column_type(name) is not None

    def all_columns(self) -> List[PropertyDescriptor]:
        """Id first, then geometry, then properties."""
        columns = []
        if self.id_column:
            columns.append(self.id_column)
        if self.geometry_column:
            columns.append(self.geometry_column)
        columns.extend(self.properties)
        return columns

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "idColumn": self.id_name,
            "geometryColumn": self.geometry_name,
            "properties": [{"name": c.name, "type": c.type} for c in self.all_columns()]
        }


@dataclass(frozen=True)
class SortKey:
    """One ORDER BY term."""
    column: str
    ascending: bool = True


@dataclass(frozen=True)
class FeatureRecord:
    """One row rendered as a generic feature."""
    id: Any = None
    geometry: Optional[Mapping[str, Any]] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "geometry": self.geometry,
            "properties": dict(self.properties)
        }


class TableQueryParameters(BaseModel):
    """
    Query parameters of the table rows endpoint.

    List-valued parameters stay as the raw ";"-separated strings; they are
    resolved against the table descriptor by the query builder.
    """
    model_config = ConfigDict(populate_by_name=True)

    bbox: Optional[str] = Field(
        default=None,
        description="Bounding box minx,miny,maxx,maxy in the configured SRID"
    )
    cql: Optional[str] = Field(
        default=None,
        description="ECQL predicate over the table's columns"
    )
    start: Optional[int] = Field(
        default=None,
        ge=0,
        description="Offset of the first row to return"
    )
    limit: Optional[int] = Field(
        default=None,
        gt=0,
        description="Maximum number of rows to return"
    )
    sort_columns: Optional[str] = Field(
        default=None,
        alias="sortColumns",
        description="';'-separated sort columns"
    )
    sort_directions: Optional[str] = Field(
        default=None,
        alias="sortDirections",
        description="';'-separated directions, co-indexed with sortColumns"
    )
    visible_columns: Optional[str] = Field(
        default=None,
        alias="visibleColumns",
        description="';'-separated property allowlist"
    )
    separator: Optional[str] = Field(
        default=None,
        description="CSV separator; only the first character is used"
    )
    asdownload: Optional[str] = Field(
        default=None,
        description="'true' to return the body as an attachment"
    )

    @field_validator("bbox", "cql", "sort_columns", "sort_directions", "visible_columns")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Empty query string values count as absent."""
        if v is None or v.strip() == "":
            return None
        return v

    @field_validator("separator")
    @classmethod
    def empty_separator_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Only an empty separator is absent; whitespace is a valid separator."""
        return v or None

    @property
    def as_download(self) -> bool:
        return bool(self.asdownload) and self.asdownload.lower() == "true"


class PropertyInfo(BaseModel):
    name: str
    type: str


class TableInfo(BaseModel):
    """A servable table in the /rest/tables listing."""
    name: str
    idColumn: Optional[str] = None
    geometryColumn: Optional[str] = None
    properties: List[PropertyInfo]


class TableListResponse(BaseModel):
    items: List[TableInfo]
    total: int


class DistinctValuesResponse(BaseModel):
    """Distinct, non-null values of a single property."""
    model_config = ConfigDict(populate_by_name=True)

    table: str
    property: str
    distinct_values: List[Any] = Field(alias="distinct-values")
