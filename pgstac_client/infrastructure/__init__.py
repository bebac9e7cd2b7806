# ============================================================================
# CLAUDE CONTEXT - INFRASTRUCTURE MODULE
# ============================================================================
# STATUS: Core Infrastructure - Database session and error classification
# PURPOSE: Shared infrastructure components for the pgstac command layer
# EXPORTS: PgstacSession, AsyncPgstacSession, connection protocols, connect helpers, classify
# DEPENDENCIES: psycopg, config
# ============================================================================

"""
Infrastructure Module

Provides the pieces the command layer is built on:
- Borrowed-connection sessions with scoped transactions (PgstacSession)
- SQL composition for pgstac function calls
- Classification of driver errors into the typed error taxonomy
"""

from .postgresql import (
    PgstacConnection,
    AsyncPgstacConnection,
    PgstacSession,
    AsyncPgstacSession,
    connect,
    connect_async,
)
from .error_classifier import classify

__all__ = [
    "PgstacConnection",
    "AsyncPgstacConnection",
    "PgstacSession",
    "AsyncPgstacSession",
    "connect",
    "connect_async",
    "classify",
]
