# ============================================================================
# MODULE CONTEXT - TABLE CATALOG
# ============================================================================
# STATUS: Standalone Module - Servable table resolution
# PURPOSE: Include/exclude glob policy and the process-wide table snapshot
# EXPORTS: glob_to_regex, matches_any, resolve_servable, CatalogSnapshot, TableCatalog
# DEPENDENCIES: re, threading, util_logger
# SOURCE: Table names discovered by the repository, rules from configuration
# PATTERNS: Read-Copy-Update snapshot, Fail-closed policy
# ENTRY_POINTS: catalog = TableCatalog(repository, config); catalog.get("ABC_Roads")
# ============================================================================

"""
Table Catalog

Decides which tables are served and keeps their descriptors.

Policy:
- A table is servable iff it matches at least one include rule AND no exclude
  rule. `*` is the only wildcard and matching is case-sensitive.
- No include rule means no table is served.
- A malformed rule set serves nothing rather than everything.

The descriptors live in an immutable CatalogSnapshot. Reconfiguration builds a
complete new snapshot off to the side and swaps the reference under a lock;
readers grab the reference once and keep using it for the whole request.
"""

import re
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from util_logger import LoggerFactory, ComponentType, log_exceptions

from .config import FeatureServerConfig, get_feature_server_config
from .exceptions import ConfigurationError, DatabaseError, NotFoundError
from .models import TableDescriptor

logger = LoggerFactory.create_logger(ComponentType.CATALOG, "TableCatalog")


# ============================================================================
# GLOB MATCHING
# ============================================================================

def glob_to_regex(pattern: str) -> Pattern[str]:
    """
    Compile a `*`-only glob into an anchored regular expression.

    Every character other than `*` is literal, so `?`, `[` and `.` have no
    special meaning.

    Raises:
        ValueError: If the pattern is not a non-blank string
    """
    if not isinstance(pattern, str) or not pattern.strip():
        raise ValueError(f"Invalid table rule: {pattern!r}")
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(body, re.DOTALL)


def _compile_rules(rules: Sequence[str]) -> List[Pattern[str]]:
    return [glob_to_regex(rule) for rule in rules]


def matches_any(name: str, patterns: Iterable[Pattern[str]]) -> bool:
    return any(p.fullmatch(name) for p in patterns)


def resolve_servable(
    all_table_names: Iterable[str],
    include_rules: Sequence[str],
    exclude_rules: Sequence[str]
) -> List[str]:
    """
    Apply the include/exclude policy to the discovered table names.

    Args:
        all_table_names: Table names in discovery order
        include_rules: Globs granting membership
        exclude_rules: Globs revoking membership

    Returns:
        Servable names in discovery order, without duplicates
    """
    if not include_rules:
        return []

    try:
        includes = _compile_rules(include_rules)
        excludes = _compile_rules(exclude_rules or [])
    except ValueError as e:
        logger.warning(f"Malformed table rules, serving no tables: {e}")
        return []

    servable = []
    seen = set()
    for name in all_table_names:
        if name in seen:
            continue
        seen.add(name)
        if matches_any(name, includes) and not matches_any(name, excludes):
            servable.append(name)
    return servable


# ============================================================================
# SNAPSHOT
# ============================================================================

@dataclass(frozen=True)
class CatalogSnapshot:
    """Fully built, immutable view of the servable tables."""
    version: int
    schema: str
    table_names: Tuple[str, ...] = ()
    tables: Mapping[str, TableDescriptor] = field(default_factory=dict)

    def get(self, name: str) -> TableDescriptor:
        try:
            return self.tables[name]
        except KeyError:
            raise NotFoundError(f"Table {name} does not exist")

    def descriptors(self) -> List[TableDescriptor]:
        return [self.tables[name] for name in self.table_names]


class TableCatalog:
    """
    Process-wide holder of the current CatalogSnapshot.

    The first access builds the snapshot. A configuration failure puts the
    catalog in an error state: every access raises ConfigurationError until
    reconfigure() succeeds. A database failure is raised as is and leaves the
    catalog untouched, so the next access retries the build.
    """

    def __init__(self, repository, config: Optional[FeatureServerConfig] = None):
        """
        Args:
            repository: Object providing list_table_names(schema) and
                describe_tables(schema, names)
            config: Feature server configuration (uses singleton if not provided)
        """
        self.repository = repository
        self.config = config or get_feature_server_config()
        self._snapshot: Optional[CatalogSnapshot] = None
        self._error: Optional[str] = None
        self._version = 0
        self._lock = threading.Lock()

    def snapshot(self) -> CatalogSnapshot:
        """Current snapshot; builds it on first use."""
        snapshot, error = self._snapshot, self._error
        if error is not None:
            raise ConfigurationError(f"Configuration invalid: {error}")
        if snapshot is None:
            return self._install(first_use=True)
        return snapshot

    def get(self, name: str) -> TableDescriptor:
        return self.snapshot().get(name)

    def table_names(self) -> List[str]:
        return list(self.snapshot().table_names)

    @property
    def is_invalid(self) -> bool:
        return self._error is not None

    @property
    def error_message(self) -> Optional[str]:
        return self._error

    @log_exceptions(logger=logger)
    def reconfigure(self) -> CatalogSnapshot:
        """
        Rebuild the snapshot from configuration and the live database.

        Returns:
            The newly installed snapshot

        Raises:
            ConfigurationError: If the rules cannot be resolved (catalog enters
                the failed state)
            DatabaseError: If discovery fails (previous state kept)
        """
        return self._install()

    def _install(self, first_use: bool = False) -> CatalogSnapshot:
        with self._lock:
            if first_use:
                # Another request may have built or failed it while we waited
                if self._error is not None:
                    raise ConfigurationError(f"Configuration invalid: {self._error}")
                if self._snapshot is not None:
                    return self._snapshot

            try:
                snapshot = self._build(self._version + 1)
            except ConfigurationError as e:
                self._error = e.message
                raise ConfigurationError(f"Configuration invalid: {e.message}") from e
            except DatabaseError as e:
                logger.warning(f"Table discovery failed, catalog v{self._version} kept: {e.message}")
                raise

            self._version = snapshot.version
            self._snapshot = snapshot
            self._error = None

        logger.info(
            f"Catalog v{snapshot.version} installed: {len(snapshot.table_names)} servable tables "
            f"in schema '{snapshot.schema}'"
        )
        return snapshot

    def _build(self, version: int) -> CatalogSnapshot:
        rules = self.config.resolve_rules()
        discovered = self.repository.list_table_names(rules.db_schema)
        servable = resolve_servable(discovered, rules.include_rules, rules.exclude_rules)
        logger.info(f"{len(servable)} of {len(discovered)} tables pass the include/exclude rules")

        descriptors = self.repository.describe_tables(rules.db_schema, servable) if servable else {}
        names = tuple(name for name in servable if name in descriptors)

        return CatalogSnapshot(
            version=version,
            schema=rules.db_schema,
            table_names=names,
            tables=MappingProxyType({name: descriptors[name] for name in names})
        )
