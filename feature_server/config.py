# ============================================================================
# MODULE CONTEXT - FEATURE SERVER CONFIGURATION
# ============================================================================
# STATUS: Standalone Configuration - Table Feature Server
# PURPOSE: Table mapping rules, spatial reference and read tuning settings
# EXPORTS: FeatureServerConfig, MappingRules, get_feature_server_config,
#          load_mapping_file, reset_feature_server_config
# INTERFACES: Pydantic BaseModel
# PYDANTIC_MODELS: FeatureServerConfig, MappingRules
# DEPENDENCIES: pydantic, os, xml.etree.ElementTree
# SOURCE: Environment variables, optional XML mapping file
# PATTERNS: Settings Pattern, Singleton via cached function
# ENTRY_POINTS: from feature_server.config import get_feature_server_config
# ============================================================================

"""
Feature Server Configuration

Database connection settings live in the application-level config.py. This
module only holds what the feature server itself needs.

Environment Variables:
    Optional:
    - FEATURESERVER_SCHEMA: Schema whose tables are discovered (default: "public")
    - FEATURESERVER_INCLUDE: ";"-separated include globs (default: none)
    - FEATURESERVER_EXCLUDE: ";"-separated exclude globs (default: none)
    - FEATURESERVER_CONFIG: Path to an XML mapping file. When set, its
      Include/Exclude items and Schema replace the three variables above.
    - FEATURESERVER_SRID: SRID of bounding box envelopes (default: 31370)
    - FEATURESERVER_FETCH_SIZE: Rows per server-side cursor batch (default: 1024)
    - FEATURESERVER_QUERY_TIMEOUT: statement_timeout in seconds (default: 30)
    - FEATURESERVER_SEPARATOR: Default CSV separator (default: "|")

Mapping file layout:

    <FeatureServerConfig>
      <Mapping>
        <Tables>
          <Schema>public</Schema>
          <Include><Item>ABC_*</Item></Include>
          <Exclude><Item>ABC_tmp*</Item></Exclude>
        </Tables>
      </Mapping>
    </FeatureServerConfig>
"""

import os
import logging
import xml.etree.ElementTree as ET
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _split_rules(value: Optional[str]) -> List[str]:
    """Split a ";"-separated rule list, dropping blank entries."""
    if not value:
        return []
    return [part.strip() for part in value.split(";") if part.strip()]


class MappingRules(BaseModel):
    """Resolved include/exclude rules and the schema they apply to."""
    db_schema: str = Field(description="Schema whose tables are discovered")
    include_rules: List[str] = Field(default_factory=list)
    exclude_rules: List[str] = Field(default_factory=list)
    source: str = Field(default="environment", description="Where the rules came from")


class FeatureServerConfig(BaseModel):
    """
    Configuration for the table feature server.

    Rules are resolved each time the catalog is (re)built so that an edited
    mapping file is picked up by reconfiguration.
    """

    db_schema: str = Field(
        default_factory=lambda: os.getenv("FEATURESERVER_SCHEMA", "public"),
        description="PostgreSQL schema containing the served tables"
    )
    include_rules: List[str] = Field(
        default_factory=lambda: _split_rules(os.getenv("FEATURESERVER_INCLUDE")),
        description="Glob rules a table name must match to be served"
    )
    exclude_rules: List[str] = Field(
        default_factory=lambda: _split_rules(os.getenv("FEATURESERVER_EXCLUDE")),
        description="Glob rules removing tables from the include set"
    )
    mapping_file: Optional[str] = Field(
        default_factory=lambda: os.getenv("FEATURESERVER_CONFIG") or None,
        description="XML mapping file overriding schema and rules"
    )
    srid: int = Field(
        default_factory=lambda: int(os.getenv("FEATURESERVER_SRID", "31370")),
        ge=0,
        description="SRID used for bounding box envelopes (Belgian Lambert 72 by default)"
    )
    fetch_size: int = Field(
        default_factory=lambda: int(os.getenv("FEATURESERVER_FETCH_SIZE", "1024")),
        ge=1,
        description="Rows fetched per round trip from the server-side cursor"
    )
    query_timeout_seconds: int = Field(
        default_factory=lambda: int(os.getenv("FEATURESERVER_QUERY_TIMEOUT", "30")),
        ge=1,
        le=3600,
        description="statement_timeout applied to every read transaction"
    )
    default_separator: str = Field(
        default_factory=lambda: os.getenv("FEATURESERVER_SEPARATOR", "|"),
        description="CSV separator used when the request does not give one"
    )

    @field_validator("default_separator")
    @classmethod
    def validate_separator(cls, v: str) -> str:
        """The separator is a single character."""
        if len(v) != 1:
            raise ValueError("FEATURESERVER_SEPARATOR must be a single character")
        return v

    def resolve_rules(self) -> MappingRules:
        """
        Resolve the mapping rules in effect.

        Returns:
            MappingRules from the mapping file when configured, otherwise from
            the environment

        Raises:
            ConfigurationError: If the mapping file cannot be read or parsed
        """
        if self.mapping_file:
            rules = load_mapping_file(self.mapping_file, default_schema=self.db_schema)
        else:
            rules = MappingRules(
                db_schema=self.db_schema,
                include_rules=list(self.include_rules),
                exclude_rules=list(self.exclude_rules)
            )

        for rule in rules.include_rules:
            logger.info(f"Include rule added: \"{rule}\"")
        for rule in rules.exclude_rules:
            logger.info(f"Exclude rule added: \"{rule}\"")
        if not rules.include_rules:
            logger.warning("No include rules configured - no table will be served")

        return rules


def load_mapping_file(path: str, default_schema: str = "public") -> MappingRules:
    """
    Parse an XML mapping file.

    Args:
        path: File system path of the mapping file
        default_schema: Schema used when the file has no <Schema> element

    Returns:
        MappingRules read from the file

    Raises:
        ConfigurationError: If the file is missing, unreadable or not valid XML
    """
    try:
        tree = ET.parse(path)
    except FileNotFoundError:
        raise ConfigurationError(f"No such mapping file found: {path}")
    except (OSError, ET.ParseError) as e:
        logger.error(f"Error reading mapping file '{path}': {e}")
        raise ConfigurationError(f"Error parsing the mapping file: {e}") from e

    root = tree.getroot()
    if root.tag != "FeatureServerConfig":
        raise ConfigurationError(
            f"Mapping file root must be <FeatureServerConfig>, found <{root.tag}>"
        )

    tables = root.find("Mapping/Tables")
    if tables is None:
        raise ConfigurationError("Mapping file has no <Mapping><Tables> section")

    include_rules = [(item.text or "").strip() for item in tables.findall("Include/Item")]
    exclude_rules = [(item.text or "").strip() for item in tables.findall("Exclude/Item")]

    schema_node = tables.find("Schema")
    if schema_node is not None and (schema_node.text or "").strip():
        db_schema = schema_node.text.strip()
        logger.info(f"Schema is: {db_schema}")
    else:
        db_schema = default_schema
        logger.info(f"No schema specified, using '{db_schema}'")

    return MappingRules(
        db_schema=db_schema,
        include_rules=include_rules,
        exclude_rules=exclude_rules,
        source=path
    )


# Singleton instance cache
_config_cache: Optional[FeatureServerConfig] = None


def get_feature_server_config() -> FeatureServerConfig:
    """
    Get singleton feature server configuration instance.

    Returns:
        Cached configuration instance

    Raises:
        ConfigurationError: If an environment variable holds an invalid value
    """
    global _config_cache

    if _config_cache is None:
        try:
            _config_cache = FeatureServerConfig()
        except ValueError as e:
            # pydantic ValidationError is a ValueError too
            logger.error(f"Invalid feature server environment: {e}")
            raise ConfigurationError(f"Invalid feature server configuration: {e}") from e

    return _config_cache


def reset_feature_server_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    global _config_cache
    _config_cache = None
