# ============================================================================
# MODULE CONTEXT - QUERY BUILDER
# ============================================================================
# STATUS: Standalone Module - Table read plans
# PURPOSE: Turn request parameters into a validated, not yet executed query plan
# EXPORTS: QueryPlan, build_plan, parse_bbox, split_co_indexed,
#          resolve_sort_keys, resolve_visible_columns
# DEPENDENCIES: psycopg.sql, typing, math, logging
# SOURCE: TableQueryParameters + TableDescriptor
# VALIDATION: CQL syntax, co-indexed list sizes
# PATTERNS: Query Builder, SQL Composition
# ENTRY_POINTS: plan = build_plan(table, params, srid=31370)
# ============================================================================

"""
Query Builder

Each step is optional and the filters are ANDed:

1. Bounding box - only with a geometry column and a parsable bbox; anything
   else skips the filter silently.
2. CQL predicate - a bad expression fails the request.
3. Sort keys - unknown and geometry columns are dropped one by one; the two
   ";"-lists must have the same length.
4. Projection - requested visible columns intersected with the properties.
5. Pagination - optional offset and limit.

The plan renders two statements: a COUNT(*) over the filter only, and the
paged, sorted select.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from psycopg import sql

from .cql import translate_cql
from .exceptions import QueryValidationError
from .models import SortKey, TableDescriptor, TableQueryParameters

logger = logging.getLogger(__name__)

LIST_SEPARATOR = ";"

BBox = Tuple[float, float, float, float]


@dataclass(frozen=True)
class QueryPlan:
    """Combined filter, sort order, projection and pagination for one table."""
    table: TableDescriptor
    columns: Tuple[str, ...]
    sort_keys: Tuple[SortKey, ...] = ()
    where: Optional[sql.Composable] = None
    params: Tuple[Any, ...] = ()
    start: Optional[int] = None
    limit: Optional[int] = None

    def _from_clause(self) -> sql.Composed:
        return sql.SQL("FROM {schema}.{table}").format(
            schema=sql.Identifier(self.table.schema),
            table=sql.Identifier(self.table.name)
        )

    def _where_clause(self) -> sql.Composable:
        if self.where is None:
            return sql.SQL("")
        return sql.SQL("WHERE {}").format(self.where)

    def count_query(self) -> Tuple[sql.Composed, Tuple[Any, ...]]:
        """COUNT(*) over the filter, ignoring sort and pagination."""
        query = sql.SQL("SELECT COUNT(*) AS count {from_clause} {where_clause}").format(
            from_clause=self._from_clause(),
            where_clause=self._where_clause()
        )
        return query, self.params

    def select_query(self) -> Tuple[sql.Composed, Tuple[Any, ...]]:
        """Filtered, sorted and paged select of id, geometry and projected columns."""
        select_list = []
        if self.table.id_name:
            select_list.append(sql.Identifier(self.table.id_name))
        if self.table.geometry_name:
            select_list.append(
                sql.SQL("ST_AsGeoJSON({geom}) AS {geom}").format(
                    geom=sql.Identifier(self.table.geometry_name)
                )
            )
        select_list.extend(sql.Identifier(c) for c in self.columns)
        if not select_list:
            # A table with no projected columns still yields one record per row
            select_list.append(sql.SQL("1 AS {}").format(sql.Identifier("__row")))

        parts = [
            sql.SQL("SELECT {columns}").format(columns=sql.SQL(", ").join(select_list)),
            self._from_clause(),
            self._where_clause()
        ]

        if self.sort_keys:
            parts.append(sql.SQL("ORDER BY ") + sql.SQL(", ").join(
                sql.SQL("{col} {dir}").format(
                    col=sql.Identifier(key.column),
                    dir=sql.SQL("ASC" if key.ascending else "DESC")
                )
                for key in self.sort_keys
            ))

        params = list(self.params)
        if self.limit is not None:
            parts.append(sql.SQL("LIMIT %s"))
            params.append(self.limit)
        if self.start:
            parts.append(sql.SQL("OFFSET %s"))
            params.append(self.start)

        return sql.SQL(" ").join(parts), tuple(params)


# ============================================================================
# PARAMETER PARSING
# ============================================================================

def parse_bbox(bbox: Optional[str]) -> Optional[BBox]:
    """
    Parse "minx,miny,maxx,maxy" into a tuple.

    An "SRID=n;" prefix is accepted and ignored: envelopes always use the
    configured SRID.

    Returns:
        (minx, miny, maxx, maxy) or None if the string is not a valid rectangle
    """
    if not bbox:
        return None

    text = bbox.strip()
    if text.upper().startswith("SRID=") and ";" in text:
        text = text.split(";", 1)[1]

    try:
        coords = [float(part) for part in text.split(",")]
    except ValueError:
        return None

    if len(coords) != 4 or not all(math.isfinite(c) for c in coords):
        return None

    minx, miny, maxx, maxy = coords
    if minx > maxx or miny > maxy:
        return None

    return minx, miny, maxx, maxy


def split_co_indexed(primary: Optional[str], *secondary: Optional[str]) -> List[Tuple[str, ...]]:
    """
    Split ";"-separated lists that are indexed together.

    Absent secondary lists are skipped; present ones must have exactly as
    many entries as the primary list.

    Returns:
        One tuple per primary entry: (primary_item, *secondary_items)

    Raises:
        QueryValidationError: If the list sizes differ
    """
    if primary is None:
        return []

    columns = [c.strip() for c in primary.split(LIST_SEPARATOR)]
    co_indexed = []
    for data in secondary:
        if data is None:
            continue
        items = [d.strip() for d in data.split(LIST_SEPARATOR)]
        if len(items) != len(columns):
            raise QueryValidationError(
                f"Not all input lists have the same size ({len(columns)} columns, {len(items)} values)"
            )
        co_indexed.append(items)

    return [tuple([column] + [items[i] for items in co_indexed]) for i, column in enumerate(columns)]


def resolve_sort_keys(
    table: TableDescriptor,
    sort_columns: Optional[str],
    sort_directions: Optional[str]
) -> List[SortKey]:
    """
    Resolve requested sort columns against the table.

    Unknown and geometry columns are dropped individually. The identifier is
    appended as the last key when present so that equal values page stably.
    """
    keys: List[SortKey] = []
    seen = set()

    for entry in split_co_indexed(sort_columns, sort_directions):
        column = entry[0]
        if column == table.geometry_name or not table.has_column(column) or column in seen:
            logger.debug(f"Sort column '{column}' ignored for table '{table.name}'")
            continue
        ascending = sort_directions is None or entry[1].lower() == "asc"
        keys.append(SortKey(column=column, ascending=ascending))
        seen.add(column)

    if table.id_name and table.id_name not in seen:
        keys.append(SortKey(column=table.id_name, ascending=True))

    return keys


def resolve_visible_columns(table: TableDescriptor, visible_columns: Optional[str]) -> List[str]:
    """
    Property names emitted for each row, in emission order.

    Without an allowlist every property is visible in catalog order. With one,
    the requested order is kept and unknown names (including the id and the
    geometry column) are dropped.
    """
    known = table.property_names
    if visible_columns is None:
        return known

    resolved = []
    for (column,) in split_co_indexed(visible_columns):
        if column in known and column not in resolved:
            resolved.append(column)
    return resolved


def _bbox_filter(table: TableDescriptor, srid: int) -> sql.Composed:
    return sql.SQL("{geom} && ST_MakeEnvelope(%s, %s, %s, %s, {srid})").format(
        geom=sql.Identifier(table.geometry_name),
        srid=sql.Literal(srid)
    )


# ============================================================================
# PLAN
# ============================================================================

def build_plan(table: TableDescriptor, params: TableQueryParameters, srid: int) -> QueryPlan:
    """
    Build the read plan for one table.

    Args:
        table: Resolved table descriptor
        params: Validated request parameters
        srid: SRID of bounding box envelopes

    Returns:
        QueryPlan (not executed)

    Raises:
        QueryValidationError: Invalid CQL or mismatched co-indexed lists
    """
    conditions: List[sql.Composable] = []
    condition_params: List[Any] = []

    # Bounding box (silently skipped when unusable)
    bbox = None
    if params.bbox and table.geometry_name:
        bbox = parse_bbox(params.bbox)
        if bbox is None:
            logger.debug(f"Ignoring invalid bbox '{params.bbox}' for table '{table.name}'")
        else:
            conditions.append(_bbox_filter(table, srid))
            condition_params.extend(bbox)

    # CQL predicate (hard error when invalid)
    if params.cql:
        cql_filter = translate_cql(params.cql, table, srid)
        conditions.append(cql_filter.clause)
        condition_params.extend(cql_filter.params)

    sort_keys = resolve_sort_keys(table, params.sort_columns, params.sort_directions)
    columns = resolve_visible_columns(table, params.visible_columns)

    where = sql.SQL(" AND ").join(conditions) if conditions else None

    return QueryPlan(
        table=table,
        columns=tuple(columns),
        sort_keys=tuple(sort_keys),
        where=where,
        params=tuple(condition_params),
        start=params.start,
        limit=params.limit
    )
