# ============================================================================
# MODULE CONTEXT - OUTPUT FORMATS
# ============================================================================
# STATUS: Standalone Module - Response body rendering
# PURPOSE: JSON and CSV bodies for rows and distinct values
# EXPORTS: iter_json, iter_csv, distinct_values_json, distinct_values_csv,
#          resolve_separator, download_filename, format_csv_value, to_json
# DEPENDENCIES: json, datetime, decimal, uuid, typing
# SOURCE: FeatureRecord iterators (ReadResult) and distinct value lists
# PATTERNS: Chunked text generators
# ENTRY_POINTS: body = "".join(iter_csv(plan.columns, result, separator))
# ============================================================================

"""
Feature Server Output Helpers.

Renders read results and distinct values as JSON or CSV:
- Row bodies are produced as iterators of text chunks that follow the scroll
  cursor; the trigger joins them into the single HttpResponse body.
- CSV carries the visible properties only, one line per feature.
"""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, Iterator, List, Optional, Sequence
from uuid import UUID

from .models import FeatureRecord
from .projector import csv_header

JSON_CONTENT_TYPE = "application/json"
CSV_CONTENT_TYPE = "text/csv"

# Download file extensions per format
DOWNLOAD_EXTENSIONS = {
    "json": "js",
    "csv": "csv",
}


def _json_default(value: Any) -> Any:
    """Fallback for values json cannot encode natively."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def resolve_separator(separator: Optional[str], default: str = "|") -> str:
    """First character of the requested separator, else the default."""
    if separator:
        return separator[0]
    return default


def download_filename(table_name: str, fmt: str) -> str:
    return f"{table_name}.{DOWNLOAD_EXTENSIONS[fmt]}"


# ============================================================================
# JSON
# ============================================================================

def iter_json(total: int, features: Iterable[FeatureRecord]) -> Iterator[str]:
    """
    Yield `{"total": n, "items": [...]}` in chunks, one feature per chunk.
    """
    yield f'{{"total": {int(total)}, "items": ['
    first = True
    for feature in features:
        chunk = to_json(feature.to_dict())
        yield chunk if first else "," + chunk
        first = False
    yield "]}"


# ============================================================================
# CSV
# ============================================================================

def format_csv_value(value: Any) -> str:
    """Natural string form of a value; None is empty, booleans lowercase."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def iter_csv(columns: Sequence[str], features: Iterable[FeatureRecord], separator: str) -> Iterator[str]:
    """
    Yield the header line, then one line per feature, each ending in "\\n".

    Values are not quoted; the separator should not occur in the data.
    """
    header = csv_header(columns)
    yield separator.join(header) + "\n"
    for feature in features:
        yield separator.join(format_csv_value(feature.properties.get(c)) for c in header) + "\n"


# ============================================================================
# DISTINCT VALUES
# ============================================================================

def distinct_values_json(table: str, property_name: str, values: List[Any]) -> str:
    return to_json({"table": table, "property": property_name, "distinct-values": values})


def distinct_values_csv(values: List[Any], separator: str) -> str:
    # Single line; empty body when there are no values
    return separator.join(format_csv_value(v) for v in values)
