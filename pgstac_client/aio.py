# ============================================================================
# CLAUDE CONTEXT - ASYNC PGSTAC CLIENT
# ============================================================================
# STATUS: Core - asyncio flavour of the command layer
# PURPOSE: Same operations as PgstacClient over psycopg.AsyncConnection
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: AsyncPgstacClient
# DEPENDENCIES: psycopg, client (shared encode/decode), infrastructure
# PATTERNS: Command layer, one await per operation
# ENTRY_POINTS: client = AsyncPgstacClient(aconn); await client.search(query)
# ============================================================================

"""
Async pgstac Client

Mirror of PgstacClient where every operation is a single suspension point on
a psycopg.AsyncConnection. Encoding, decoding and classification are shared
with the sync client, so both surface identical errors.

Cancelling the task awaiting an operation propagates asyncio.CancelledError
unchanged and leaves the session unusable (see AsyncPgstacSession).

Usage:
    async with await psycopg.AsyncConnection.connect(dsn) as aconn:
        client = AsyncPgstacClient(aconn)
        page = await client.search(SearchQuery(collections=["landsat"], limit=10))
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence

import psycopg
from psycopg.types.json import Jsonb

from .client import (
    CollectionLike,
    ItemLike,
    SearchLike,
    _CLASSIFIABLE,
    decode_collection,
    decode_collections,
    decode_item,
    decode_page,
    decode_text,
    encode_batch,
    encode_collection,
    encode_item,
    encode_search,
    log_failure,
    mark_batch_failed,
    next_page_query,
)
from .config import get_schema_name
from .exceptions import InvalidInputError, PartialFailureError, PgstacError
from .infrastructure.error_classifier import classify
from .infrastructure.postgresql import AsyncPgstacSession
from .models import BatchSummary, Collection, Item, Page
from .util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.CLIENT, "AsyncPgstacClient")


class AsyncPgstacClient:
    """
    A pgstac client over a borrowed asyncio connection.

    Args:
        conn: psycopg AsyncConnection or an existing AsyncPgstacSession
        schema: pgstac schema name (defaults to PGSTAC_SCHEMA / "pgstac")
    """

    def __init__(self, conn: Any, schema: Optional[str] = None, _transaction: Any = None):
        if isinstance(conn, AsyncPgstacSession):
            self.session = conn
        else:
            self.session = AsyncPgstacSession(conn, schema or get_schema_name())
        self._transaction = _transaction

    @property
    def conn(self) -> Any:
        return self.session.conn

    async def version(self) -> str:
        return await self._run("version", "get_version", [], decode_text)

    async def setting(self, name: str) -> Optional[str]:
        return await self._run("setting", "get_setting", [name], decode_text, setting=name)

    async def collections(self) -> List[Collection]:
        return await self._run("collections", "all_collections", [], decode_collections)

    async def get_collection(self, collection_id: str) -> Optional[Collection]:
        return await self._run(
            "get_collection", "get_collection", [collection_id],
            decode_collection, collection_id=collection_id
        )

    async def create_collection(self, collection: CollectionLike) -> None:
        payload, collection_id = encode_collection(collection, "create_collection")
        await self._run("create_collection", "create_collection", [payload], collection_id=collection_id)

    async def upsert_collection(self, collection: CollectionLike) -> None:
        payload, collection_id = encode_collection(collection, "upsert_collection")
        await self._run("upsert_collection", "upsert_collection", [payload], collection_id=collection_id)

    async def update_collection(self, collection: CollectionLike) -> None:
        payload, collection_id = encode_collection(collection, "update_collection")
        await self._run("update_collection", "update_collection", [payload], collection_id=collection_id)

    async def delete_collection(self, collection_id: str) -> None:
        """Deletes a collection and, through pgstac's cascade, its items."""
        await self._run("delete_collection", "delete_collection", [collection_id], collection_id=collection_id)

    async def get_item(self, collection_id: str, item_id: str) -> Optional[Item]:
        return await self._run(
            "get_item", "get_item", [item_id, collection_id],
            decode_item, collection_id=collection_id, item_id=item_id
        )

    async def create_item(self, item: ItemLike) -> None:
        payload, ids = encode_item(item, "create_item")
        await self._run("create_item", "create_item", [payload], **ids)

    async def update_item(self, item: ItemLike) -> None:
        payload, ids = encode_item(item, "update_item")
        await self._run("update_item", "update_item", [payload], **ids)

    async def upsert_item(self, item: ItemLike) -> None:
        payload, ids = encode_item(item, "upsert_item")
        await self._run("upsert_item", "upsert_item", [payload], **ids)

    async def delete_item(self, collection_id: str, item_id: str) -> None:
        await self._run(
            "delete_item", "delete_item", [item_id, collection_id],
            collection_id=collection_id, item_id=item_id
        )

    async def create_items(self, items: Sequence[ItemLike]) -> BatchSummary:
        return await self._bulk("create_items", "create_items", items)

    async def upsert_items(self, items: Sequence[ItemLike]) -> BatchSummary:
        return await self._bulk("upsert_items", "upsert_items", items)

    async def search(self, query: SearchLike = None) -> Page:
        payload, _ = encode_search(query)
        return await self._run("search", "search", [payload], decode_page)

    async def search_pages(self, query: SearchLike = None, max_pages: Optional[int] = None) -> AsyncIterator[Page]:
        """Async iterator over result pages, following continuation tokens."""
        _, search_query = encode_search(query)
        seen: set = set()
        count = 0
        while search_query is not None:
            if max_pages is not None and count >= max_pages:
                return
            page = await self.search(search_query)
            count += 1
            yield page
            search_query = next_page_query(search_query, page, seen)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["AsyncPgstacClient"]:
        """Scoped transaction; see PgstacClient.transaction()."""
        try:
            async with self.session.transaction() as tx:
                yield AsyncPgstacClient(self.session, _transaction=tx)
        except psycopg.Error as e:
            error = classify(e, "transaction")
            log_failure(error)
            raise error from e

    def rollback(self) -> None:
        """Abort the transaction this client is bound to (inside transaction() only)."""
        if self._transaction is None:
            raise RuntimeError("rollback() is only available on the client yielded by transaction()")
        logger.info("Transaction rolled back on request")
        raise psycopg.Rollback(self._transaction)

    async def _run(
        self,
        operation: str,
        function: str,
        params: Sequence[Any],
        decode: Optional[Callable[[Any], Any]] = None,
        **identifiers: Any,
    ) -> Any:
        try:
            value = await self.session.call(function, params)
            return decode(value) if decode else None
        except _CLASSIFIABLE as e:
            error = classify(e, operation, **identifiers)
            log_failure(error)
            if error is e:
                raise
            raise error from e

    async def _bulk(self, operation: str, function: str, items: Sequence[ItemLike]) -> BatchSummary:
        payload, summary = encode_batch(items)
        if not summary.outcomes:
            return summary
        if not payload:
            error = InvalidInputError(
                f"{operation} failed: none of the {len(summary)} items could be encoded",
                operation=operation,
                summary=summary,
            )
            log_failure(error)
            raise error

        try:
            await self._run(operation, function, [Jsonb(payload)])
        except PgstacError as e:
            mark_batch_failed(summary, e)
            e.summary = summary
            raise

        if summary.failed:
            error = PartialFailureError(
                f"{operation}: {len(summary.succeeded)} of {len(summary)} items written, "
                f"{len(summary.failed)} rejected before sending",
                summary=summary,
                operation=operation,
            )
            log_failure(error)
            raise error

        logger.info(f"✅ {operation} wrote {len(summary)} items")
        return summary
