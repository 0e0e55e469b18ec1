# ============================================================================
# MODULE CONTEXT - APPLICATION CONFIGURATION
# ============================================================================
# STATUS: Core Infrastructure - Configuration Management
# PURPOSE: PostgreSQL connection settings with managed identity support
# EXPORTS: AppConfig, get_app_config, get_postgres_connection_string, reset_app_config
# DEPENDENCIES: pydantic-settings, azure-identity
# SOURCE: Environment variables, .env file, Azure managed identity
# PATTERNS: Singleton pattern for config, lazy credential acquisition
# ============================================================================

"""
Application Configuration Module

Authentication Modes:
    1. Password-based (local development):
       - Requires: POSTGIS_HOST, POSTGIS_DATABASE, POSTGIS_USER, POSTGIS_PASSWORD
       - Use when: USE_MANAGED_IDENTITY=false or not set

    2. Managed Identity (Azure production):
       - Requires: System-assigned managed identity with database access
       - Use when: USE_MANAGED_IDENTITY=true

Optional:
    - POSTGIS_PORT (default 5432)
    - POSTGIS_SSLMODE (default "require")
    - POSTGIS_CONNECT_TIMEOUT seconds (default 10)

Feature server settings (schema, table rules, SRID, fetch size) live in
feature_server/config.py.
"""

import logging
from typing import Optional
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

POSTGRES_AAD_SCOPE = "https://ossrdbms-aad.database.windows.net/.default"
SSL_MODES = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}


class AppConfig(BaseSettings):
    """
    Application-wide configuration loaded from environment variables.
    """
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Authentication Mode (declared first so the password validator can see it)
    use_managed_identity: bool = Field(
        default=False,
        description="Use Azure managed identity for authentication"
    )

    # PostgreSQL Connection
    postgis_host: str = Field(..., description="PostgreSQL hostname")
    postgis_port: int = Field(default=5432, description="PostgreSQL port")
    postgis_database: str = Field(..., description="Database name")
    postgis_user: str = Field(..., description="Database username")
    postgis_password: Optional[str] = Field(default=None, description="Database password")
    postgis_sslmode: str = Field(default="require", description="libpq sslmode")
    postgis_connect_timeout: int = Field(default=10, ge=1, description="Connect timeout in seconds")

    @field_validator('postgis_password')
    @classmethod
    def validate_password(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Ensure password is provided when not using managed identity."""
        if not info.data.get('use_managed_identity', False) and not v:
            raise ValueError("POSTGIS_PASSWORD is required when USE_MANAGED_IDENTITY=false")
        return v

    @field_validator('postgis_sslmode')
    @classmethod
    def validate_sslmode(cls, v: str) -> str:
        if v not in SSL_MODES:
            raise ValueError(f"POSTGIS_SSLMODE must be one of {sorted(SSL_MODES)}")
        return v


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """
    Get singleton application configuration instance.

    Raises:
        ValidationError: If required environment variables are missing
    """
    return AppConfig()


def reset_app_config() -> None:
    """Forget the cached configuration (used by tests and reconfiguration)."""
    get_app_config.cache_clear()


# ============================================================================
# PostgreSQL Connection String Generation
# ============================================================================

def get_postgres_connection_string(config: Optional[AppConfig] = None) -> str:
    """
    Build the PostgreSQL connection string for the configured authentication mode.

    Returns:
        str: libpq URI

    Raises:
        ValueError: If managed identity token acquisition fails
    """
    config = config or get_app_config()

    if config.use_managed_identity:
        password = _acquire_managed_identity_token(config)
    else:
        password = config.postgis_password

    return _build_connection_string(config, password)


def _build_connection_string(config: AppConfig, password: str) -> str:
    # URL-encode password to handle special characters (e.g., @ symbols)
    return (
        f"postgresql://{quote_plus(config.postgis_user)}:{quote_plus(password)}"
        f"@{config.postgis_host}:{config.postgis_port}"
        f"/{config.postgis_database}"
        f"?sslmode={config.postgis_sslmode}"
        f"&connect_timeout={config.postgis_connect_timeout}"
        f"&application_name=table-feature-server"
    )


def _acquire_managed_identity_token(config: AppConfig) -> str:
    """
    Acquire an Azure AD token used as the database password.

    Tokens live about an hour; PostgreSQLRepository rebuilds the connection
    string for every connection when managed identity is enabled.
    """
    from azure.identity import DefaultAzureCredential

    logger.info(f"Acquiring managed identity token for {config.postgis_host}")
    try:
        credential = DefaultAzureCredential()
        token = credential.get_token(POSTGRES_AAD_SCOPE)
    except Exception as e:
        logger.error(f"Failed to acquire managed identity token: {e}")
        raise ValueError(
            f"Managed identity authentication failed: {e}. "
            "Ensure system-assigned managed identity is enabled and has database permissions."
        ) from e

    logger.info("Managed identity token acquired")
    return token.token
