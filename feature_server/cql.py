# ============================================================================
# MODULE CONTEXT - CQL TRANSLATION
# ============================================================================
# STATUS: Standalone Module - ECQL predicate to PostGIS WHERE fragment
# PURPOSE: Parse ECQL with pygeofilter and compose a parameterized psycopg filter
# EXPORTS: translate_cql, CQLFilter
# DEPENDENCIES: pygeofilter, psycopg.sql
# SOURCE: `cql` query parameter of the table rows endpoint
# VALIDATION: Attributes checked against the table descriptor
# PATTERNS: AST Evaluator, SQL Composition
# ============================================================================

"""
CQL Translation

The predicate is parsed into a pygeofilter AST and evaluated into psycopg.sql
objects. Attribute names become sql.Identifier after being checked against the
table; every literal becomes a %s placeholder with its value appended to the
parameter list, in the same order the placeholders appear in the output.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, List

from psycopg import sql
from pygeofilter import ast, values
from pygeofilter.backends.evaluator import Evaluator, handle
from pygeofilter.parsers.ecql import parse as parse_ecql

from .exceptions import QueryValidationError
from .models import TableDescriptor

logger = logging.getLogger(__name__)

COMPARISON_OPERATORS = {
    ast.Equal: "=",
    ast.NotEqual: "<>",
    ast.LessThan: "<",
    ast.LessEqual: "<=",
    ast.GreaterThan: ">",
    ast.GreaterEqual: ">=",
}

SPATIAL_FUNCTIONS = {
    "INTERSECTS": "ST_Intersects",
    "DISJOINT": "ST_Disjoint",
    "CONTAINS": "ST_Contains",
    "WITHIN": "ST_Within",
    "TOUCHES": "ST_Touches",
    "CROSSES": "ST_Crosses",
    "OVERLAPS": "ST_Overlaps",
    "EQUALS": "ST_Equals",
}

ARITHMETIC_OPERATORS = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mul: "*",
    ast.Div: "/",
}


@dataclass(frozen=True)
class CQLFilter:
    """A composed WHERE fragment and its positional parameters."""
    clause: sql.Composable
    params: tuple


class PostGISFilterEvaluator(Evaluator):
    """Evaluates a pygeofilter AST into psycopg.sql fragments."""

    def __init__(self, table: TableDescriptor, srid: int):
        self.table = table
        self.srid = srid
        self.params: List[Any] = []

    def _placeholder(self, value: Any) -> sql.Composable:
        self.params.append(value)
        return sql.Placeholder()

    @handle(ast.Not)
    def not_(self, node, sub):
        return sql.SQL("NOT ({})").format(sub)

    @handle(ast.And, ast.Or)
    def combination(self, node, lhs, rhs):
        op = "AND" if isinstance(node, ast.And) else "OR"
        return sql.SQL("({} " + op + " {})").format(lhs, rhs)

    @handle(ast.Comparison, subclasses=True)
    def comparison(self, node, lhs, rhs):
        op = COMPARISON_OPERATORS.get(type(node))
        if op is None:
            raise QueryValidationError(f"Unsupported comparison: {type(node).__name__}")
        return sql.SQL("({} " + op + " {})").format(lhs, rhs)

    @handle(ast.Between)
    def between(self, node, lhs, low, high):
        negation = "NOT " if node.not_ else ""
        return sql.SQL("({} " + negation + "BETWEEN {} AND {})").format(lhs, low, high)

    @handle(ast.Like)
    def like(self, node, lhs):
        # Translate the ECQL wildcards into SQL ones
        pattern = node.pattern
        if node.wildcard != "%":
            pattern = pattern.replace("%", "\\%").replace(node.wildcard, "%")
        if node.singlechar != "_":
            pattern = pattern.replace("_", "\\_").replace(node.singlechar, "_")
        operator = "ILIKE" if node.nocase else "LIKE"
        negation = "NOT " if node.not_ else ""
        return sql.SQL("({} " + negation + operator + " {})").format(lhs, self._placeholder(pattern))

    @handle(ast.In)
    def in_(self, node, lhs, *options):
        negation = "NOT " if node.not_ else ""
        return sql.SQL("({} " + negation + "IN ({}))").format(lhs, sql.SQL(", ").join(options))

    @handle(ast.IsNull)
    def null(self, node, lhs):
        negation = "NOT " if node.not_ else ""
        return sql.SQL("({} IS " + negation + "NULL)").format(lhs)

    @handle(ast.SpatialComparisonPredicate, subclasses=True)
    def spatial_comparison(self, node, lhs, rhs):
        function = SPATIAL_FUNCTIONS.get(node.op.name)
        if function is None:
            raise QueryValidationError(f"Unsupported spatial predicate: {node.op.name}")
        return sql.SQL(function + "({}, {})").format(lhs, rhs)

    @handle(ast.BBox)
    def bbox(self, node, lhs):
        return sql.SQL("({} && ST_MakeEnvelope({}, {}, {}, {}, {}))").format(
            lhs,
            self._placeholder(node.minx),
            self._placeholder(node.miny),
            self._placeholder(node.maxx),
            self._placeholder(node.maxy),
            sql.Literal(self.srid)
        )

    @handle(ast.Arithmetic, subclasses=True)
    def arithmetic(self, node, lhs, rhs):
        op = ARITHMETIC_OPERATORS.get(type(node))
        if op is None:
            raise QueryValidationError(f"Unsupported arithmetic: {type(node).__name__}")
        return sql.SQL("({} " + op + " {})").format(lhs, rhs)

    @handle(ast.Attribute)
    def attribute(self, node):
        if not self.table.has_column(node.name):
            raise QueryValidationError(
                f"Table {self.table.name} does not have property {node.name}"
            )
        return sql.Identifier(node.name)

    @handle(values.Geometry)
    def geometry(self, node):
        return sql.SQL("ST_SetSRID(ST_GeomFromGeoJSON({}), {})").format(
            self._placeholder(json.dumps(node.geometry)),
            sql.Literal(self.srid)
        )

    @handle(values.Envelope)
    def envelope(self, node):
        return sql.SQL("ST_MakeEnvelope({}, {}, {}, {}, {})").format(
            self._placeholder(node.x1),
            self._placeholder(node.y1),
            self._placeholder(node.x2),
            self._placeholder(node.y2),
            sql.Literal(self.srid)
        )

    @handle(str, int, float, bool, datetime, date, time)
    def literal(self, node):
        return self._placeholder(node)


def translate_cql(cql_text: str, table: TableDescriptor, srid: int) -> CQLFilter:
    """
    Translate an ECQL predicate into a WHERE fragment for one table.

    Args:
        cql_text: ECQL expression, e.g. "name LIKE 'A%' AND population > 1000"
        table: Descriptor whose columns the expression may reference
        srid: SRID assigned to geometry literals

    Returns:
        CQLFilter with the composed clause and its parameters

    Raises:
        QueryValidationError: On syntax errors, unknown columns or unsupported
            constructs
    """
    try:
        tree = parse_ecql(cql_text)
    except Exception as e:
        logger.warning(f"Invalid CQL expression '{cql_text}': {e}")
        raise QueryValidationError(f"Invalid CQL expression: {cql_text}") from e

    evaluator = PostGISFilterEvaluator(table, srid)
    try:
        clause = evaluator.evaluate(tree)
    except QueryValidationError:
        raise
    except NotImplementedError as e:
        raise QueryValidationError(f"Unsupported CQL construct in: {cql_text}") from e

    if not isinstance(clause, sql.Composable):
        raise QueryValidationError(f"CQL expression is not a predicate: {cql_text}")

    return CQLFilter(clause=clause, params=tuple(evaluator.params))
