# ============================================================================
# CLAUDE CONTEXT - EXCEPTIONS
# ============================================================================
# STATUS: Core - Typed error taxonomy for every pgstac operation
# PURPOSE: Exception hierarchy distinguishing why a pgstac call failed
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: ErrorKind, PgstacError, NotFoundError, ConflictError, InvalidInputError,
#          TransportError, OperationCancelledError, DecodeError, PartialFailureError,
#          ConfigurationError
# DEPENDENCIES: None (standard library only)
# PATTERNS: Exception hierarchy for error categorization
# ENTRY_POINTS: Raised by PgstacClient / AsyncPgstacClient, built by error_classifier
# ============================================================================

"""
Custom Exception Hierarchy

Every command on PgstacClient either returns its result or raises exactly one
PgstacError subclass. The subclass says WHY the call failed:

1. NotFoundError      - the collection/item does not exist
2. ConflictError      - uniqueness or referential constraint violated
3. InvalidInputError  - payload or query rejected (by the client encoder or the store)
4. TransportError     - connection-level failure (network, protocol, cancellation)
5. DecodeError        - the store answered but the answer could not be interpreted
6. PartialFailureError - bulk write where only some items were written

The original driver/decoder exception is never discarded: it is chained as
__cause__ and also kept on the ``cause`` attribute for diagnostics.

ConfigurationError is separate: it describes a broken environment, not a
failed store call.
"""

from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BatchSummary


class ErrorKind(str, Enum):
    """Tag carried by every PgstacError."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_INPUT = "invalid_input"
    TRANSPORT = "transport"
    CANCELLED = "cancelled"
    DECODE = "decode"
    PARTIAL_FAILURE = "partial_failure"


class PgstacError(Exception):
    """
    Base class for failed pgstac operations.

    Attributes:
        operation: Name of the client operation (e.g. "upsert_item")
        identifiers: Collection/item ids involved, for acting on the error
        message: Human-readable context string
        cause: Underlying exception (also chained as __cause__)
        summary: Per-item outcomes when a bulk write failed, else None
    """

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        identifiers: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        summary: Optional["BatchSummary"] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.identifiers = dict(identifiers or {})
        self.cause = cause
        self.summary = summary

    @property
    def sqlstate(self) -> Optional[str]:
        """SQLSTATE of the underlying database error, if there was one."""
        return getattr(self.cause, "sqlstate", None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        result = {
            'error_kind': self.kind.value,
            'error_type': type(self).__name__,
            'message': self.message,
        }
        if self.operation:
            result['operation'] = self.operation
        if self.identifiers:
            result['identifiers'] = self.identifiers
        if self.cause is not None:
            result['cause_type'] = type(self.cause).__name__
            result['cause_message'] = str(self.cause)
        if self.sqlstate:
            result['sqlstate'] = self.sqlstate
        if self.summary is not None:
            result['failed_indexes'] = [outcome.index for outcome in self.summary.failed]
        return result


class NotFoundError(PgstacError):
    """
    Requested collection or item does not exist.

    Examples:
        - update_collection on an unknown id
        - delete_item on an item that was never written
    """
    kind = ErrorKind.NOT_FOUND


class ConflictError(PgstacError):
    """
    Uniqueness or referential constraint violated.

    Examples:
        - create_collection with an id that already exists
        - upsert_item referencing a collection that does not exist
        - delete_collection blocked by items that still reference it
        - serialization failure / deadlock between concurrent transactions
    """
    kind = ErrorKind.CONFLICT


class InvalidInputError(PgstacError):
    """
    Malformed payload or query, detected by the client encoder or the store.

    Examples:
        - Invalid GeoJSON geometry
        - CQL2 filter the store cannot parse
        - Item that fails model validation
    """
    kind = ErrorKind.INVALID_INPUT


class TransportError(PgstacError):
    """
    Connection-level failure.

    Never retried internally: only the caller knows whether the operation
    was idempotent.
    """
    kind = ErrorKind.TRANSPORT


class OperationCancelledError(TransportError):
    """
    The statement was cancelled (statement_timeout, pg_cancel_backend).

    The connection that ran it should be reset or discarded before reuse.
    """
    kind = ErrorKind.CANCELLED


class DecodeError(PgstacError):
    """
    The store's answer could not be turned into the expected type.

    Examples:
        - get_collection returned JSON that is not a Collection
        - pgstac function missing from the schema (version drift)
    """
    kind = ErrorKind.DECODE


class PartialFailureError(PgstacError):
    """
    Bulk write where some items were written and others were not.

    Not automatically retryable: inspect ``summary`` and resubmit only the
    failed indexes.
    """
    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(self, message: str, summary: "BatchSummary", **kwargs: Any):
        super().__init__(message, summary=summary, **kwargs)


class ConfigurationError(Exception):
    """
    System configuration error.

    Examples:
        - Missing POSTGIS_HOST with no PGSTAC_DSN
        - Managed identity requested without azure-identity installed
    """
    pass
