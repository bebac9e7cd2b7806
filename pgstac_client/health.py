# ============================================================================
# CLAUDE CONTEXT - HEALTH CHECK MODULE
# ============================================================================
# STATUS: Core - pgstac availability check
# PURPOSE: Report whether the pgstac schema answers, how fast, and which version
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: CheckResult, check_pgstac, is_pgstac_available
# DEPENDENCIES: client, exceptions, util_logger
# PATTERNS: Never-raising check returning a structured result
# ============================================================================

"""
Health Check Module

``check_pgstac(client)`` calls ``get_version()`` and ``all_collections()``
on the caller's client and reports the outcome as a CheckResult. Store
failures become ``status="fail"`` with the error kind in ``details``; they
are never raised, so the check can back a liveness endpoint.

Usage:
    result = check_pgstac(PgstacClient(conn))
    # {"status": "pass", "latency_ms": 3.1, "message": "pgstac 0.8.5 ...", ...}
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .client import PgstacClient
from .exceptions import PgstacError
from .util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.HEALTH, "PgstacHealth")


@dataclass
class CheckResult:
    """Result of a single health check."""
    status: str              # "pass" or "fail"
    latency_ms: float        # Time taken for check
    message: str             # Human-readable status message
    details: Optional[Dict[str, Any]] = None  # Additional details

    @property
    def passed(self) -> bool:
        return self.status == "pass"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {
            "status": self.status,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message
        }
        if self.details:
            result["details"] = self.details
        return result


def check_pgstac(client: PgstacClient) -> CheckResult:
    """
    Check that the pgstac schema answers on the client's connection.

    Args:
        client: Client over the connection to check

    Returns:
        CheckResult with pgstac version and collection count
    """
    start_time = time.perf_counter()

    try:
        version = client.version()
        collection_count = len(client.collections())
    except PgstacError as e:
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.error(f"pgstac health check failed: {e.message}")
        return CheckResult(
            status="fail",
            latency_ms=latency_ms,
            message=f"pgstac unavailable: {type(e).__name__}",
            details={"error": e.message, "error_kind": e.kind.value}
        )

    latency_ms = (time.perf_counter() - start_time) * 1000
    return CheckResult(
        status="pass",
        latency_ms=latency_ms,
        message=f"pgstac {version} with {collection_count} collections",
        details={
            "schema": client.session.schema_name,
            "version": version,
            "collection_count": collection_count
        }
    )


def is_pgstac_available(client: PgstacClient) -> bool:
    """True when check_pgstac() passes."""
    return check_pgstac(client).passed
