# ============================================================================
# CLAUDE CONTEXT - LOGGING
# ============================================================================
# STATUS: Core - Shared by every pgstac_client component
# PURPOSE: JSON-only structured logging for the pgstac client
# EXPORTS: ComponentType, LogLevel, LogContext, ComponentConfig, JSONFormatter,
#          LoggerFactory, enable_json_logging, log_exceptions
# INTERFACES: Dataclass models, enums, factory, JSON formatter, exception decorator
# DEPENDENCIES: enum, dataclasses, typing, datetime, logging, json, traceback (stdlib only!)
# SCOPE: Foundation and factory layers for all logging in the package
# PATTERNS: NullHandler by default, opt-in JSON output, Exception decorator pattern
# ENTRY_POINTS: LoggerFactory.create_logger(), enable_json_logging(), @log_exceptions decorator
# ============================================================================

"""
Unified Logger System

Component-specific loggers that emit one JSON object per record, with the
component and pgstac call context attached as ``customDimensions``.

Design Principles:
- Strong typing with dataclasses (stdlib only)
- Enum safety for categories
- Component-specific loggers
- Clean factory pattern
- No external dependencies

Loggers carry only a NullHandler and propagate, so records reach whatever
handlers the application configured, once. Applications without their own
logging setup call enable_json_logging() to print JSON to stdout.

Set DEBUG_LOGGING=true to lower the default level to DEBUG (every pgstac
function call is logged at DEBUG with its duration).
"""

from enum import Enum
from typing import IO, Optional, Dict, Any
from datetime import datetime, timezone
from dataclasses import dataclass
from functools import wraps
import logging
import os
import sys
import json
import traceback


# ============================================================================
# COMPONENT TYPES
# ============================================================================

class ComponentType(Enum):
    """
    Component types of the client.

    Each layer has specific logging needs and levels.
    """
    CLIENT = "client"          # Command layer (one method per pgstac function)
    SESSION = "session"        # Connection/transaction holder
    CONFIG = "config"          # Environment configuration
    HEALTH = "health"          # Health checks


# ============================================================================
# LOG LEVELS - Standard Python levels with enum safety
# ============================================================================

class LogLevel(Enum):
    """
    Standard Python log levels as enum for type safety.
    """
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        """Convert to Python logging level constant."""
        return getattr(logging, self.value)

    @classmethod
    def from_string(cls, level: str) -> 'LogLevel':
        """Create from string, case-insensitive."""
        return cls[level.upper()]


# ============================================================================
# LOG CONTEXT - Correlation and tracking
# ============================================================================

@dataclass
class LogContext:
    """
    Context for log correlation across pgstac calls.
    """
    operation: Optional[str] = None      # Client operation (upsert_item, search, ...)
    collection_id: Optional[str] = None
    item_id: Optional[str] = None
    correlation_id: Optional[str] = None  # Caller-supplied request correlation ID

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            k: v for k, v in {
                'operation': self.operation,
                'collection_id': self.collection_id,
                'item_id': self.item_id,
                'correlation_id': self.correlation_id,
            }.items() if v is not None
        }


# ============================================================================
# COMPONENT CONFIGURATION - Per-component settings
# ============================================================================

@dataclass
class ComponentConfig:
    """
    Configuration for component-specific logging.
    """
    component_type: ComponentType
    log_level: LogLevel = LogLevel.INFO


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs logs in a format log aggregators can parse without regexes.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Python LogRecord to format

        Returns:
            JSON string with structured log data
        """
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
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
# LOGGER FACTORY - Creates component-specific loggers
# ============================================================================

class LoggerFactory:
    """
    Factory for creating component-specific loggers.

    Example:
        logger = LoggerFactory.create_logger(ComponentType.CLIENT, "PgstacClient")
        logger.info("Upserting collection")
    """

    default_level = LogLevel.DEBUG if os.getenv('DEBUG_LOGGING', '').lower() == 'true' else LogLevel.INFO

    DEFAULT_CONFIGS = {
        ComponentType.CLIENT: ComponentConfig(
            component_type=ComponentType.CLIENT,
            log_level=default_level
        ),
        ComponentType.SESSION: ComponentConfig(
            component_type=ComponentType.SESSION,
            log_level=default_level
        ),
        ComponentType.CONFIG: ComponentConfig(
            component_type=ComponentType.CONFIG,
            log_level=default_level
        ),
        ComponentType.HEALTH: ComponentConfig(
            component_type=ComponentType.HEALTH,
            log_level=default_level
        ),
    }

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        context: Optional[LogContext] = None,
        config: Optional[ComponentConfig] = None
    ) -> logging.Logger:
        """
        Create a logger for a specific component.

        Args:
            component_type: Type of component
            name: Component name (e.g., "PgstacClient")
            context: Optional log context for correlation
            config: Optional custom configuration

        Returns:
            Configured Python logger
        """
        if config is None:
            config = cls.DEFAULT_CONFIGS.get(
                component_type,
                ComponentConfig(component_type=component_type)
            )

        # Hierarchical name under the package so callers can silence it in one place
        logger_name = f"pgstac_client.{component_type.value}.{name}"
        logger = logging.getLogger(logger_name)

        if isinstance(config.log_level, str):
            log_level = LogLevel.from_string(config.log_level).to_python_level()
        else:
            log_level = config.log_level.to_python_level()
        logger.setLevel(log_level)

        # Remove existing handlers to avoid duplicates
        logger.handlers.clear()

        # Output is the application's decision (see enable_json_logging)
        logger.addHandler(logging.NullHandler())
        logger.propagate = True

        # Inject component and context as custom dimensions
        original_log = logger._log

        def log_with_context(level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1):
            """Wrapper to inject context as custom dimensions."""
            if extra is None:
                extra = {}

            custom_dims = context.to_dict() if context else {}
            custom_dims['component_type'] = component_type.value
            custom_dims['component_name'] = name

            if 'custom_dimensions' in extra:
                custom_dims.update(extra['custom_dimensions'])

            extra['custom_dimensions'] = custom_dims

            original_log(level, msg, args, exc_info=exc_info, extra=extra,
                         stack_info=stack_info, stacklevel=stacklevel)

        logger._log = log_with_context

        return logger

    @classmethod
    def create_with_context(
        cls,
        component_type: ComponentType,
        name: str,
        operation: Optional[str] = None,
        collection_id: Optional[str] = None,
        item_id: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> logging.Logger:
        """
        Create logger with pgstac call context.

        Args:
            component_type: Type of component
            name: Component name
            operation: Optional client operation name
            collection_id: Optional collection id
            item_id: Optional item id
            correlation_id: Optional caller correlation id

        Returns:
            Configured Python logger with context
        """
        context = LogContext(
            operation=operation,
            collection_id=collection_id,
            item_id=item_id,
            correlation_id=correlation_id
        ) if any([operation, collection_id, item_id, correlation_id]) else None

        return cls.create_logger(
            component_type=component_type,
            name=name,
            context=context
        )


# ============================================================================
# EXCEPTION DECORATOR - Automatic exception logging with context
# ============================================================================

def log_exceptions(component_type: Optional[ComponentType] = None,
                   component_name: Optional[str] = None,
                   logger: Optional[logging.Logger] = None):
    """
    Decorator to automatically log exceptions with full context.

    Can be used in three ways:
    1. With existing logger: @log_exceptions(logger=my_logger)
    2. With component info: @log_exceptions(ComponentType.CONFIG, "Settings")
    3. Simple: @log_exceptions() - uses function module and name

    The exception is always re-raised.

    Example:
        @log_exceptions(ComponentType.CONFIG, "Settings")
        def get_postgres_connection_string():
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if logger:
                log = logger
            elif component_type and component_name:
                log = LoggerFactory.create_logger(component_type, component_name)
            else:
                log = LoggerFactory.create_logger(
                    ComponentType.CLIENT,
                    func.__module__ or "unknown"
                )

            try:
                return func(*args, **kwargs)
            except Exception as e:
                log.error(
                    f"Exception in {func.__name__}",
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
                # Re-raise the exception - don't swallow it
                raise
        return wrapper
    return decorator


# ============================================================================
# OPT-IN OUTPUT
# ============================================================================

PACKAGE_LOGGER = "pgstac_client"

_json_handler: Optional[logging.Handler] = None


def enable_json_logging(stream: Optional[IO[str]] = None,
                        level: Optional[LogLevel] = None) -> logging.Handler:
    """
    Print every pgstac_client record as one JSON line.

    For applications that have no logging setup of their own. Calling it
    again replaces the previous handler rather than adding a second one.

    Args:
        stream: Destination (default: sys.stdout)
        level: Minimum level for the handler (default: DEBUG_LOGGING aware default)

    Returns:
        The attached handler, so callers can remove it
    """
    global _json_handler

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if _json_handler is not None:
        package_logger.removeHandler(_json_handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel((level or LoggerFactory.default_level).to_python_level())
    handler.setFormatter(JSONFormatter())
    package_logger.addHandler(handler)
    _json_handler = handler
    return handler
