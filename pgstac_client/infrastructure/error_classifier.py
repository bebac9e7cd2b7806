# ============================================================================
# CLAUDE CONTEXT - ERROR CLASSIFIER
# ============================================================================
# STATUS: Core Infrastructure - Maps raw failures to the typed error taxonomy
# PURPOSE: Turn psycopg / decoding failures into exactly one PgstacError
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: classify, describe
# DEPENDENCIES: psycopg, pydantic, exceptions
# SCOPE: Stateless pure mapping (no I/O, no retries)
# PATTERNS: SQLSTATE class dispatch
# ============================================================================

"""
Error Classifier

``classify(exc, operation, **identifiers)`` returns (never raises) the
PgstacError subclass describing ``exc``. The caller raises it ``from exc``
so the driver error stays inspectable.

psycopg errors carry the server SQLSTATE. pgstac functions use:
- ``INTO STRICT`` in update/delete functions  -> P0002 no_data_found
- unique/foreign keys on collections and item partitions -> 23505 / 23503
- RAISE EXCEPTION for its own checks            -> P0001 raise_exception

P0001 messages name missing things too ("Term % is not found in
queryables.") but they describe a rejected request, not a missing
resource, so P0001 is never NotFound: duplicates are Conflict, the rest
InvalidInput. NotFound comes from P0002 only.

SQLSTATE reference: https://www.postgresql.org/docs/current/errcodes-appendix.html
"""

import json
from typing import Any, Dict, Optional, Type

import psycopg
from pydantic import ValidationError

from ..exceptions import (
    PgstacError,
    NotFoundError,
    ConflictError,
    InvalidInputError,
    TransportError,
    OperationCancelledError,
    DecodeError,
)

# Exact SQLSTATE codes checked before the class prefixes below
_SQLSTATE_CODES: Dict[str, Type[PgstacError]] = {
    "P0002": NotFoundError,            # no_data_found (INTO STRICT)
    "23505": ConflictError,            # unique_violation
    "23503": ConflictError,            # foreign_key_violation
    "23P01": ConflictError,            # exclusion_violation
    "23502": InvalidInputError,        # not_null_violation
    "23514": InvalidInputError,        # check_violation
    "57014": OperationCancelledError,  # query_canceled
    "42883": DecodeError,              # undefined_function (schema drift)
    "42P01": DecodeError,              # undefined_table
    "3F000": DecodeError,              # invalid_schema_name
}

# Two-character SQLSTATE classes
_SQLSTATE_CLASSES: Dict[str, Type[PgstacError]] = {
    "08": TransportError,     # connection_exception
    "53": TransportError,     # insufficient_resources
    "57": TransportError,     # operator_intervention (admin shutdown, crash)
    "58": TransportError,     # system_error
    "40": ConflictError,      # transaction_rollback (serialization, deadlock)
    "23": ConflictError,      # integrity_constraint_violation
    "25": ConflictError,      # invalid_transaction_state (aborted transaction block)
    "22": InvalidInputError,  # data_exception (bad json, bad geometry)
    "42": InvalidInputError,  # syntax_error_or_access_rule_violation
}

_CONFLICT_MARKERS = ("already exists", "duplicate")


def classify(exc: BaseException, operation: str, **identifiers: Any) -> PgstacError:
    """
    Map a raw failure to exactly one typed error.

    Args:
        exc: The exception raised by the driver, the decoder or the encoder
        operation: Client operation name (e.g. "upsert_item")
        **identifiers: Ids involved (collection_id=..., item_id=...);
            None values are dropped

    Returns:
        PgstacError subclass instance with ``cause`` set to ``exc``.
        An exc that is already a PgstacError is returned unchanged.
    """
    if isinstance(exc, PgstacError):
        return exc

    identifiers = {k: v for k, v in identifiers.items() if v is not None}
    error_class = _error_class(exc)
    return error_class(
        describe(operation, identifiers, exc),
        operation=operation,
        identifiers=identifiers,
        cause=exc,
    )


def describe(operation: str, identifiers: Dict[str, Any], exc: BaseException) -> str:
    """Human-readable context string: operation, ids, cause."""
    if identifiers:
        ids = ", ".join(f"{k}={v}" for k, v in identifiers.items())
        return f"{operation} failed ({ids}): {_cause_text(exc)}"
    return f"{operation} failed: {_cause_text(exc)}"


def _error_class(exc: BaseException) -> Type[PgstacError]:
    if isinstance(exc, psycopg.Error):
        return _classify_database_error(exc)

    if isinstance(exc, (ValidationError, json.JSONDecodeError, KeyError, IndexError)):
        return DecodeError

    # TypeError/ValueError reaching here come from decoding the store's answer;
    # encoding failures are turned into InvalidInputError by the command layer
    if isinstance(exc, (TypeError, ValueError)):
        return DecodeError

    # OSError, ConnectionError, TimeoutError and anything unknown
    return TransportError


def _classify_database_error(exc: "psycopg.Error") -> Type[PgstacError]:
    sqlstate: Optional[str] = getattr(exc, "sqlstate", None)

    if not sqlstate:
        # Client-side failures: broken connection, protocol or usage errors
        if isinstance(exc, psycopg.DataError):
            return InvalidInputError
        return TransportError

    if sqlstate == "P0001":
        return _classify_raised_message(str(exc))

    if sqlstate in _SQLSTATE_CODES:
        return _SQLSTATE_CODES[sqlstate]

    return _SQLSTATE_CLASSES.get(sqlstate[:2], TransportError)


def _classify_raised_message(message: str) -> Type[PgstacError]:
    """pgstac RAISE EXCEPTION messages only differ by text."""
    lowered = message.lower()
    if any(marker in lowered for marker in _CONFLICT_MARKERS):
        return ConflictError
    return InvalidInputError


def _cause_text(exc: BaseException) -> str:
    text = str(exc).strip().splitlines()
    return text[0] if text else type(exc).__name__
