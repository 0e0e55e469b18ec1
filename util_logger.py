# ============================================================================
# MODULE CONTEXT - LOGGING
# ============================================================================
# STATUS: Core Infrastructure - Structured logging
# PURPOSE: JSON structured logging for Azure Functions with Application Insights
# EXPORTS: ComponentType, LogLevel, JSONFormatter, LoggerFactory, log_exceptions
# INTERFACES: Enums, factory, JSON formatter, exception decorator
# DEPENDENCIES: enum, typing, datetime, logging, json, traceback (stdlib only)
# SOURCE: Application layers define component types
# PATTERNS: JSON-only output, Azure Functions integration, Exception decorator pattern
# ENTRY_POINTS: LoggerFactory.create_logger(), @log_exceptions decorator
# ============================================================================

"""
Component Logger System

Every layer of the feature server (trigger, service, catalog, repository)
gets its own named logger that writes one JSON object per line to stdout and
propagates to the Functions host so Application Insights can pick up
`customDimensions`.

Set DEBUG_LOGGING=true to lower the default level to DEBUG.
"""

import os
import sys
import json
import logging
import traceback
from enum import Enum
from functools import wraps
from datetime import datetime, timezone
from typing import Optional


# ============================================================================
# COMPONENT TYPES
# ============================================================================

class ComponentType(Enum):
    """Layers of the application that log under their own name."""
    TRIGGER = "trigger"        # HTTP entry points
    SERVICE = "service"        # Request orchestration
    CATALOG = "catalog"        # Table policy and snapshots
    REPOSITORY = "repository"  # Data access layer
    HEALTH = "health"          # Health probes


class LogLevel(Enum):
    """Standard Python log levels as enum for type safety."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        return getattr(logging, self.value)


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    Formats records as single-line JSON for Application Insights.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'custom_dimensions'):
            log_obj['customDimensions'] = record.custom_dimensions

        if record.exc_info:
            log_obj['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        return json.dumps(log_obj, default=str)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

class LoggerFactory:
    """
    Creates component-specific loggers.

    Example:
        logger = LoggerFactory.create_logger(ComponentType.CATALOG, "TableCatalog")
        logger.info("Catalog installed")
    """

    default_level = LogLevel.DEBUG if os.getenv('DEBUG_LOGGING', '').lower() == 'true' else LogLevel.INFO

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        level: Optional[LogLevel] = None
    ) -> logging.Logger:
        """
        Create a logger for a specific component.

        Args:
            component_type: Layer the component belongs to
            name: Component name (e.g., "TableRepository")
            level: Overrides the default level

        Returns:
            Configured Python logger named "<component_type>.<name>"
        """
        log_level = (level or cls.default_level).to_python_level()

        logger = logging.getLogger(f"{component_type.value}.{name}")
        logger.setLevel(log_level)

        # Avoid duplicate handlers when a module is re-imported
        logger.handlers.clear()
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)

        # Propagate to the Functions host for Application Insights
        logger.propagate = True

        dimensions = {
            'component_type': component_type.value,
            'component_name': name
        }

        original_log = logger._log

        def log_with_context(level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1):
            """Inject the component dimensions into every record."""
            extra = dict(extra or {})
            custom_dims = dict(dimensions)
            custom_dims.update(extra.get('custom_dimensions', {}))
            extra['custom_dimensions'] = custom_dims
            original_log(level, msg, args, exc_info=exc_info, extra=extra,
                         stack_info=stack_info, stacklevel=stacklevel)

        logger._log = log_with_context
        return logger


# ============================================================================
# EXCEPTION DECORATOR
# ============================================================================

def log_exceptions(component_type: Optional[ComponentType] = None,
                   component_name: Optional[str] = None,
                   logger: Optional[logging.Logger] = None):
    """
    Log any exception escaping the wrapped function, then re-raise it.

    Usage:
        @log_exceptions(logger=my_logger)
        @log_exceptions(ComponentType.SERVICE, "FeatureServerService")
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if logger:
                    log = logger
                elif component_type and component_name:
                    log = LoggerFactory.create_logger(component_type, component_name)
                else:
                    log = logging.getLogger(func.__module__ or "unknown")

                log.error(
                    f"Exception in {func.__name__}: {e}",
                    exc_info=True,
                    extra={
                        'custom_dimensions': {
                            'function_name': func.__name__,
                            'function_module': func.__module__,
                            'exception_type': type(e).__name__,
                            'exception_message': str(e),
                            'traceback': traceback.format_exc()
                        }
                    }
                )
                raise
        return wrapper
    return decorator
