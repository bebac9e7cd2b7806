# ============================================================================
# CLAUDE CONTEXT - PGSTAC SESSION
# ============================================================================
# STATUS: Core Infrastructure - Borrowed connection + transaction scope
# PURPOSE: Execute pgstac schema functions on a caller-supplied connection
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: PgstacConnection, AsyncPgstacConnection, PgstacSession,
#          AsyncPgstacSession, connect, connect_async
# DEPENDENCIES: psycopg, config, util_logger
# SCOPE: One outstanding call per connection, no pooling, no reconnects
# PATTERNS: Capability protocol, Context managers, SQL composition
# ============================================================================

"""
pgstac Session - Borrowed Connection Access

A session wraps a connection the CALLER owns: a psycopg Connection, one
borrowed from a psycopg_pool pool, or any object with the same
``execute()``/``commit()``/``rollback()``/``transaction()`` shape. The
session never opens, pools or closes it.

Every pgstac function is invoked the same way:

    SELECT * FROM pgstac.<function>(%s, %s, ...)

built with psycopg.sql composition (schema and function are identifiers,
arguments are bound parameters). The single value of the returned row is
handed back to the command layer, whatever row factory the connection uses.

Commits:
    Outside transaction() each call on a non-autocommit connection (the
    psycopg default) is committed when it succeeds and rolled back when it
    fails, so it is visible to other connections and never leaves the
    connection in an aborted transaction. Autocommit connections are left
    to the driver. Inside transaction() nothing is committed until the block
    exits.

Cancellation:
    A statement cancelled by the server (statement_timeout,
    pg_cancel_backend) or an asyncio task cancelled while a call is in
    flight leaves the session unusable. Later calls raise TransportError
    until the caller has rolled back / checked the connection and calls
    ``reset()``, or discards the connection.

Usage:
    conn = psycopg.connect(dsn)
    session = PgstacSession(conn)
    version = session.call("get_version")

    with session.transaction():
        session.call("upsert_item", [Jsonb(item)])
"""

import asyncio
import time
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator, Mapping, Optional, Protocol, Sequence, runtime_checkable

import psycopg
from psycopg import sql

from ..config import PgstacSettings, get_postgres_connection_string, get_settings
from ..exceptions import TransportError
from ..util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SESSION, "PgstacSession")


# ============================================================================
# CONNECTION CAPABILITIES
# ============================================================================

@runtime_checkable
class PgstacConnection(Protocol):
    """Anything that can run a parameterized statement, commit, roll back and open a transaction."""

    def execute(self, query: Any, params: Optional[Sequence[Any]] = None) -> Any: ...

    def commit(self) -> Any: ...

    def rollback(self) -> Any: ...

    def transaction(self) -> Any: ...


@runtime_checkable
class AsyncPgstacConnection(Protocol):
    """Async counterpart of PgstacConnection (psycopg.AsyncConnection)."""

    async def execute(self, query: Any, params: Optional[Sequence[Any]] = None) -> Any: ...

    async def commit(self) -> Any: ...

    async def rollback(self) -> Any: ...

    def transaction(self) -> Any: ...


# ============================================================================
# SHARED BEHAVIOUR
# ============================================================================

class _SessionBase:
    """Query building, row unpacking and usability tracking."""

    def __init__(self, conn: Any, schema: str = "pgstac"):
        self.conn = conn
        self.schema_name = schema
        self._broken_reason: Optional[str] = None
        self._transaction_depth = 0

    @property
    def is_usable(self) -> bool:
        """False after a cancellation or once the driver reports the connection broken."""
        return self._broken_reason is None and not getattr(self.conn, "broken", False)

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    @property
    def commits_each_call(self) -> bool:
        """
        True when a call must end the implicit transaction psycopg opened for it.

        Outside transaction() a non-autocommit connection keeps every statement
        in an open transaction: nothing is visible to other connections and
        one failure aborts every later statement. Such calls commit on success
        and roll back on failure.
        """
        return not self.in_transaction and not getattr(self.conn, "autocommit", False)

    def reset(self) -> None:
        """Caller has restored the connection; allow calls again."""
        if self._broken_reason:
            logger.info(f"Session reset after: {self._broken_reason}")
        self._broken_reason = None

    def build_call(self, function: str, n_params: int) -> sql.Composed:
        """SELECT * FROM <schema>.<function>(%s, ...)"""
        return sql.SQL("SELECT * FROM {schema}.{function}({params})").format(
            schema=sql.Identifier(self.schema_name),
            function=sql.Identifier(function),
            params=sql.SQL(", ").join([sql.Placeholder()] * n_params),
        )

    def _check_usable(self, function: str) -> None:
        if not self.is_usable:
            reason = self._broken_reason or "connection reported broken by driver"
            raise TransportError(
                f"{function} refused: session is unusable ({reason}); "
                "reset() or discard the connection",
                operation=function,
            )

    def _mark_broken(self, reason: str) -> None:
        logger.warning(f"⚠️ Session marked unusable: {reason}")
        self._broken_reason = reason

    @staticmethod
    def _row_value(row: Any, function: str) -> Any:
        """Single value of a function-call row (tuple rows or dict_row)."""
        if row is None:
            return None
        if isinstance(row, Mapping):
            if function in row:
                return row[function]
            return next(iter(row.values()), None)
        return row[0]

    def _log_call(self, function: str, started: float, outcome: str) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(
            f"{self.schema_name}.{function} {outcome}",
            extra={'custom_dimensions': {
                'function': function,
                'schema': self.schema_name,
                'duration_ms': duration_ms,
                'outcome': outcome,
            }}
        )


# ============================================================================
# SYNC SESSION
# ============================================================================

class PgstacSession(_SessionBase):
    """
    Session over a synchronous connection.

    Not thread-safe by itself: concurrent callers need distinct connections
    (psycopg additionally serialises statements on one connection).
    """

    def call(self, function: str, params: Sequence[Any] = ()) -> Any:
        """
        Invoke one pgstac function and return its value.

        Raises:
            psycopg.Error: Driver/database failures, unclassified
            TransportError: Session unusable after a cancellation
        """
        self._check_usable(function)
        query = self.build_call(function, len(params))
        commit = self.commits_each_call
        started = time.perf_counter()
        try:
            cursor = self.conn.execute(query, list(params))
            row = cursor.fetchone()
            if commit:
                # Deferred constraints are checked here, so this stays inside the try
                self.conn.commit()
        except psycopg.errors.QueryCanceled:
            self._log_call(function, started, "cancelled")
            if commit:
                self._rollback_call(function)
            self._mark_broken(f"{function} cancelled by server")
            raise
        except psycopg.Error:
            self._log_call(function, started, "failed")
            if commit:
                self._rollback_call(function)
            raise
        self._log_call(function, started, "ok")
        return self._row_value(row, function)

    def _rollback_call(self, function: str) -> None:
        try:
            self.conn.rollback()
        except psycopg.Error as e:
            logger.warning(f"⚠️ Rollback after failed {function} also failed: {e}")

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Scoped transaction: commit on success, roll back on any exception.

        Calls outside a transaction leave the connection idle, so the outermost
        block is a real BEGIN/COMMIT on the server. Raise ``psycopg.Rollback``
        (or ``psycopg.Rollback(tx)``) inside the block to abort without an
        error. Nested use creates a savepoint.
        """
        self._check_usable("transaction")
        with self.conn.transaction() as tx:
            self._transaction_depth += 1
            logger.debug(f"Transaction opened (depth {self._transaction_depth})")
            try:
                yield tx
            finally:
                self._transaction_depth -= 1


# ============================================================================
# ASYNC SESSION
# ============================================================================

class AsyncPgstacSession(_SessionBase):
    """
    Session over an asyncio connection.

    Each call is a single suspension point. Task cancellation is not
    swallowed: the session is marked unusable and CancelledError propagates.
    """

    async def call(self, function: str, params: Sequence[Any] = ()) -> Any:
        """Async counterpart of PgstacSession.call()."""
        self._check_usable(function)
        query = self.build_call(function, len(params))
        commit = self.commits_each_call
        started = time.perf_counter()
        try:
            cursor = await self.conn.execute(query, list(params))
            row = await cursor.fetchone()
            if commit:
                await self.conn.commit()
        except asyncio.CancelledError:
            # Connection state is unknown mid-statement: no rollback attempt
            self._log_call(function, started, "cancelled")
            self._mark_broken(f"{function} interrupted by task cancellation")
            raise
        except psycopg.errors.QueryCanceled:
            self._log_call(function, started, "cancelled")
            if commit:
                await self._rollback_call(function)
            self._mark_broken(f"{function} cancelled by server")
            raise
        except psycopg.Error:
            self._log_call(function, started, "failed")
            if commit:
                await self._rollback_call(function)
            raise
        self._log_call(function, started, "ok")
        return self._row_value(row, function)

    async def _rollback_call(self, function: str) -> None:
        try:
            await self.conn.rollback()
        except psycopg.Error as e:
            logger.warning(f"⚠️ Rollback after failed {function} also failed: {e}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """Async scoped transaction (see PgstacSession.transaction)."""
        self._check_usable("transaction")
        async with self.conn.transaction() as tx:
            self._transaction_depth += 1
            logger.debug(f"Transaction opened (depth {self._transaction_depth})")
            try:
                yield tx
            finally:
                self._transaction_depth -= 1


# ============================================================================
# CONNECTION HELPERS (caller owns the result)
# ============================================================================

def _connect_kwargs(settings: PgstacSettings, kwargs: dict) -> dict:
    if settings.pgstac_statement_timeout_ms is not None:
        kwargs.setdefault("options", f"-c statement_timeout={settings.pgstac_statement_timeout_ms}")
    return kwargs


def connect(settings: Optional[PgstacSettings] = None, **kwargs: Any) -> psycopg.Connection:
    """
    Open a psycopg connection from configuration.

    The caller owns the connection and must close it (use it as a context
    manager). Extra keyword arguments go to psycopg.connect().
    """
    settings = settings or get_settings()
    conninfo = get_postgres_connection_string(settings)
    logger.debug("🔗 Opening PostgreSQL connection for pgstac")
    return psycopg.connect(conninfo, **_connect_kwargs(settings, kwargs))


async def connect_async(settings: Optional[PgstacSettings] = None, **kwargs: Any) -> psycopg.AsyncConnection:
    """Async counterpart of connect()."""
    settings = settings or get_settings()
    conninfo = get_postgres_connection_string(settings)
    logger.debug("🔗 Opening async PostgreSQL connection for pgstac")
    return await psycopg.AsyncConnection.connect(conninfo, **_connect_kwargs(settings, kwargs))
