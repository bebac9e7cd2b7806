# ============================================================================
# CLAUDE CONTEXT - PGSTAC CLIENT
# ============================================================================
# STATUS: Core - Typed command layer over the pgstac schema functions
# PURPOSE: One method per pgstac function: encode, call, decode, classify
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: PgstacClient
# DEPENDENCIES: psycopg, pydantic, models, infrastructure, util_logger
# SCOPE: Read/write access to collections and items, item search
# PATTERNS: Command layer, single remote call per operation, typed errors
# ENTRY_POINTS: client = PgstacClient(conn); client.upsert_item(item)
# ============================================================================

"""
pgstac Client - Typed Command Layer

Each method maps to exactly one pgstac schema function and one round trip:

    get_collection(id)          -> pgstac.get_collection(text)
    upsert_item(item)           -> pgstac.upsert_item(jsonb)
    search(query)               -> pgstac.search(jsonb)
    ...

Methods return typed values (Collection, Item, Page, BatchSummary) or raise
exactly one PgstacError subclass (see pgstac_client.exceptions). Nothing is
retried: whether a retry is safe depends on the caller (upserts are
idempotent, create_* are not).

The client validates types only. Geometry validity, filter syntax and
referential integrity are checked by pgstac and surfaced through the error
classifier.

Bulk writes:
    pgstac runs create_items/upsert_items as a single statement, so the store
    either writes every item it was sent or none. The client encodes items
    one by one first: items that cannot be encoded are reported as failed in
    the BatchSummary and only the rest are sent. When some items were
    dropped that way a PartialFailureError carries the summary.

Usage:
    with psycopg.connect(dsn) as conn:
        client = PgstacClient(conn)
        client.upsert_collection(Collection.new("landsat", "Landsat scenes"))

        with client.transaction() as tx:
            tx.upsert_item(item_a)
            tx.upsert_item(item_b)
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import psycopg
from psycopg.types.json import Jsonb
from pydantic import ValidationError

from .config import get_schema_name
from .exceptions import (
    DecodeError,
    ErrorKind,
    InvalidInputError,
    PartialFailureError,
    PgstacError,
)
from .infrastructure.error_classifier import classify
from .infrastructure.postgresql import PgstacSession
from .models import BatchSummary, Collection, Item, ItemOutcome, Page, SearchQuery
from .util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.CLIENT, "PgstacClient")

CollectionLike = Union[Collection, Mapping[str, Any]]
ItemLike = Union[Item, Mapping[str, Any]]
SearchLike = Union[SearchQuery, Mapping[str, Any], None]

# Errors the command layer classifies; anything else is a bug and propagates
_CLASSIFIABLE = (psycopg.Error, PgstacError, ValidationError, ValueError, TypeError, KeyError)


# ============================================================================
# ENCODING / DECODING (shared by the sync and async clients)
# ============================================================================

def encode_collection(collection: CollectionLike, operation: str) -> Tuple[Jsonb, str]:
    """Validate and wrap a collection as a jsonb parameter."""
    model = _validate(Collection, collection, operation, collection_id=_field(collection, "id"))
    return Jsonb(model.to_dict()), model.id


def encode_item(item: ItemLike, operation: str) -> Tuple[Jsonb, Dict[str, Any]]:
    """Validate and wrap an item as a jsonb parameter; also return its ids."""
    ids = {"collection_id": _field(item, "collection"), "item_id": _field(item, "id")}
    model = _validate(Item, item, operation, **ids)
    return Jsonb(model.to_dict()), {"collection_id": model.collection, "item_id": model.id}


def encode_batch(items: Iterable[ItemLike]) -> Tuple[List[Dict[str, Any]], BatchSummary]:
    """
    Encode items one by one.

    Returns the payload of the encodable items and a summary in input order
    where unencodable items are already marked failed and the others are
    provisionally marked succeeded.
    """
    payload: List[Dict[str, Any]] = []
    summary = BatchSummary()
    for index, item in enumerate(items):
        item_id = _field(item, "id")
        collection_id = _field(item, "collection")
        try:
            model = item if isinstance(item, Item) else Item.model_validate(item)
            payload.append(model.to_dict())
        except (ValidationError, ValueError, TypeError) as e:
            summary.outcomes.append(ItemOutcome(index, item_id, collection_id, False, str(e)))
            continue
        summary.outcomes.append(ItemOutcome(index, model.id, model.collection, True))
    return payload, summary


def encode_search(query: SearchLike) -> Tuple[Jsonb, SearchQuery]:
    """Validate a search (None means 'everything') and wrap its body as jsonb."""
    if query is None:
        query = SearchQuery()
    elif not isinstance(query, SearchQuery):
        query = _validate(SearchQuery, query, "search")
    return Jsonb(query.to_search_body()), query


def decode_collection(value: Any) -> Optional[Collection]:
    return None if value is None else Collection.model_validate(value)


def decode_collections(value: Any) -> List[Collection]:
    if value is None:
        return []
    return [Collection.model_validate(c) for c in value]


def decode_item(value: Any) -> Optional[Item]:
    return None if value is None else Item.model_validate(value)


def decode_page(value: Any) -> Page:
    return Page.model_validate(value)


def decode_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise TypeError(f"expected text, store returned {type(value).__name__}")


def mark_batch_failed(summary: BatchSummary, error: PgstacError) -> None:
    """A failed bulk call writes nothing: every outcome becomes a failure."""
    for outcome in summary.outcomes:
        if outcome.succeeded:
            outcome.succeeded = False
            outcome.error = error.message


def next_page_query(query: SearchQuery, page: Page, seen: set) -> Optional[SearchQuery]:
    """Query for the page after ``page``, or None when it was the last one."""
    token = page.next_token()
    if token is None:
        return None
    if token in seen:
        raise DecodeError(
            f"search returned continuation token {token!r} twice",
            operation="search_pages",
        )
    seen.add(token)
    return query.with_token(token)


def log_failure(error: PgstacError) -> None:
    level_method = logger.error if error.kind in (ErrorKind.TRANSPORT, ErrorKind.DECODE) else logger.warning
    level_method(f"❌ {error.message}", extra={'custom_dimensions': error.to_dict()})


def _field(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


def _validate(model_class, value: Any, operation: str, **identifiers: Any):
    if isinstance(value, model_class):
        return value
    try:
        return model_class.model_validate(value)
    except ValidationError as e:
        identifiers = {k: v for k, v in identifiers.items() if v is not None}
        raise InvalidInputError(
            f"{operation} failed: invalid {model_class.__name__}: {e}",
            operation=operation,
            identifiers=identifiers,
            cause=e,
        ) from e


# ============================================================================
# SYNC CLIENT
# ============================================================================

class PgstacClient:
    """
    A pgstac client over a borrowed synchronous connection.

    Not every pgstac function is provided; names follow pgstac except where
    noted (``get_item`` takes the collection id first).

    Args:
        conn: psycopg Connection (owned, pooled or a transaction's connection)
            or an existing PgstacSession
        schema: pgstac schema name (defaults to PGSTAC_SCHEMA / "pgstac")
    """

    def __init__(self, conn: Any, schema: Optional[str] = None, _transaction: Any = None):
        if isinstance(conn, PgstacSession):
            self.session = conn
        else:
            self.session = PgstacSession(conn, schema or get_schema_name())
        self._transaction = _transaction

    @property
    def conn(self) -> Any:
        """The borrowed connection."""
        return self.session.conn

    # ------------------------------------------------------------------
    # Store information
    # ------------------------------------------------------------------

    def version(self) -> str:
        """Returns the pgstac version."""
        return self._run("version", "get_version", [], decode_text)

    def setting(self, name: str) -> Optional[str]:
        """Returns the value of a pgstac setting (None when unset)."""
        return self._run("setting", "get_setting", [name], decode_text, setting=name)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def collections(self) -> List[Collection]:
        """Fetches all collections."""
        return self._run("collections", "all_collections", [], decode_collections)

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        """Fetches a collection by id, None when it does not exist."""
        return self._run(
            "get_collection", "get_collection", [collection_id],
            decode_collection, collection_id=collection_id
        )

    def create_collection(self, collection: CollectionLike) -> None:
        """Adds a collection; ConflictError if the id is taken."""
        payload, collection_id = encode_collection(collection, "create_collection")
        self._run("create_collection", "create_collection", [payload], collection_id=collection_id)

    def upsert_collection(self, collection: CollectionLike) -> None:
        """Adds or fully replaces a collection."""
        payload, collection_id = encode_collection(collection, "upsert_collection")
        self._run("upsert_collection", "upsert_collection", [payload], collection_id=collection_id)

    def update_collection(self, collection: CollectionLike) -> None:
        """Replaces an existing collection; NotFoundError if it does not exist."""
        payload, collection_id = encode_collection(collection, "update_collection")
        self._run("update_collection", "update_collection", [payload], collection_id=collection_id)

    def delete_collection(self, collection_id: str) -> None:
        """
        Deletes a collection.

        NotFoundError if it does not exist. pgstac removes the collection's
        items with it (ON DELETE CASCADE); ConflictError only if a store
        without that cascade refuses because items still reference it.
        """
        self._run("delete_collection", "delete_collection", [collection_id], collection_id=collection_id)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, collection_id: str, item_id: str) -> Optional[Item]:
        """Fetches an item, None when it does not exist."""
        return self._run(
            "get_item", "get_item", [item_id, collection_id],
            decode_item, collection_id=collection_id, item_id=item_id
        )

    def create_item(self, item: ItemLike) -> None:
        """Adds an item; ConflictError if it exists or its collection does not."""
        payload, ids = encode_item(item, "create_item")
        self._run("create_item", "create_item", [payload], **ids)

    def update_item(self, item: ItemLike) -> None:
        """Replaces an existing item; NotFoundError if it does not exist."""
        payload, ids = encode_item(item, "update_item")
        self._run("update_item", "update_item", [payload], **ids)

    def upsert_item(self, item: ItemLike) -> None:
        """Adds or replaces an item; ConflictError if its collection does not exist."""
        payload, ids = encode_item(item, "upsert_item")
        self._run("upsert_item", "upsert_item", [payload], **ids)

    def delete_item(self, collection_id: str, item_id: str) -> None:
        """Deletes an item; NotFoundError if it does not exist."""
        self._run(
            "delete_item", "delete_item", [item_id, collection_id],
            collection_id=collection_id, item_id=item_id
        )

    def create_items(self, items: Sequence[ItemLike]) -> BatchSummary:
        """
        Adds items in one call.

        Returns the per-item summary; raises PartialFailureError if some items
        could not be encoded (the rest were written).
        """
        return self._bulk("create_items", "create_items", items)

    def upsert_items(self, items: Sequence[ItemLike]) -> BatchSummary:
        """
        Adds or replaces items in one call.

        Returns the per-item summary; raises PartialFailureError if some items
        could not be encoded (the rest were written). A store rejection fails
        the whole batch: the classified error carries a summary with every
        item marked failed.
        """
        return self._bulk("upsert_items", "upsert_items", items)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: SearchLike = None) -> Page:
        """
        Searches for items.

        Args:
            query: SearchQuery, equivalent mapping, or None for everything

        Returns:
            One page of results; ``page.next_token()`` positions the next call
        """
        payload, _ = encode_search(query)
        return self._run("search", "search", [payload], decode_page)

    def search_pages(self, query: SearchLike = None, max_pages: Optional[int] = None) -> Iterator[Page]:
        """
        Iterates over result pages by following continuation tokens.

        Each page is one search call; stops after the last page or
        ``max_pages`` pages.
        """
        _, search_query = encode_search(query)
        seen: set = set()
        count = 0
        while search_query is not None:
            if max_pages is not None and count >= max_pages:
                return
            page = self.search(search_query)
            count += 1
            yield page
            search_query = next_page_query(search_query, page, seen)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["PgstacClient"]:
        """
        Scoped transaction on this client's connection.

        Yields a client bound to the transaction. The transaction commits when
        the block exits normally and rolls back when it raises or when
        ``rollback()`` is called on the yielded client. No other operation may
        use the connection while the block is open.
        """
        try:
            with self.session.transaction() as tx:
                yield PgstacClient(self.session, _transaction=tx)
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

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        function: str,
        params: Sequence[Any],
        decode: Optional[Callable[[Any], Any]] = None,
        **identifiers: Any,
    ) -> Any:
        """One remote call, decoded, with every failure classified."""
        try:
            value = self.session.call(function, params)
            return decode(value) if decode else None
        except _CLASSIFIABLE as e:
            error = classify(e, operation, **identifiers)
            log_failure(error)
            if error is e:
                raise
            raise error from e

    def _bulk(self, operation: str, function: str, items: Sequence[ItemLike]) -> BatchSummary:
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
            self._run(operation, function, [Jsonb(payload)])
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
