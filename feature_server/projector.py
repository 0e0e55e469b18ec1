# ============================================================================
# MODULE CONTEXT - RESULT PROJECTOR
# ============================================================================
# STATUS: Standalone Module - Row to feature mapping
# PURPOSE: Map scroll cursor rows onto FeatureRecord objects
# EXPORTS: decode_geometry, project_row, csv_header
# DEPENDENCIES: json, typing
# SOURCE: dict_row rows from TableRepository.open_reader
# PATTERNS: Pure functions
# ENTRY_POINTS: record = project_row(row, table, plan.columns)
# ============================================================================

"""
Result Projector

Maps raw rows from the scroll cursor onto FeatureRecord objects. Pure functions:
no database access, no configuration.
"""

import json
from typing import Any, List, Mapping, Sequence

from .models import FeatureRecord, TableDescriptor


def decode_geometry(value: Any) -> Any:
    """ST_AsGeoJSON text to a GeoJSON mapping; None stays None."""
    if value is None or isinstance(value, Mapping):
        return value
    return json.loads(value)


def project_row(row: Mapping[str, Any], table: TableDescriptor, columns: Sequence[str]) -> FeatureRecord:
    """
    Build one feature from a result row.

    Args:
        row: Row from a dict_row cursor
        table: Descriptor of the table being read
        columns: Resolved visible properties, in emission order

    Returns:
        FeatureRecord with properties in `columns` order
    """
    return FeatureRecord(
        id=row.get(table.id_name) if table.id_name else None,
        geometry=decode_geometry(row.get(table.geometry_name)) if table.geometry_name else None,
        properties={column: row.get(column) for column in columns}
    )


def csv_header(columns: Sequence[str]) -> List[str]:
    # Same resolved names, same order as project_row's properties
    return list(columns)
