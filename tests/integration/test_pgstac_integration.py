"""
Round trips against a real pgstac schema.

Run with a pgstac database at PGSTAC_TEST_DB:

    pytest -m integration
"""
import contextlib
import uuid

import pytest

from pgstac_client import (
    Collection,
    ConflictError,
    Item,
    NotFoundError,
    PartialFailureError,
    PgstacClient,
    PgstacError,
    SearchQuery,
)

pytestmark = pytest.mark.integration


def savepoint_raises(client, exc_type, operation, *args):
    """Run one failing call in a savepoint so the outer transaction stays usable."""
    with pytest.raises(exc_type) as info:
        with client.transaction() as sp:
            getattr(sp, operation)(*args)
    return info.value


@pytest.fixture
def stored_collection(pgstac, collection):
    pgstac.create_collection(collection)
    return collection


def test_version(pgstac):
    assert pgstac.version()


def test_setting(pgstac):
    assert pgstac.setting("context") == "off"


def test_collections(pgstac):
    assert pgstac.collections() == []
    pgstac.create_collection(Collection.new("an-id", "a description"))
    assert len(pgstac.collections()) == 1


def test_create_collection_duplicate(pgstac):
    collection = Collection.new("an-id", "a description")
    pgstac.create_collection(collection)
    savepoint_raises(pgstac, ConflictError, "create_collection", collection)


def test_upsert_collection(pgstac):
    collection = Collection.new("an-id", "a description")
    pgstac.upsert_collection(collection)
    pgstac.upsert_collection(collection.model_copy(update={"title": "a title"}))
    assert pgstac.get_collection("an-id").title == "a title"


def test_update_collection(pgstac):
    collection = Collection.new("an-id", "a description")
    pgstac.create_collection(collection)
    assert pgstac.get_collection("an-id").title is None
    pgstac.update_collection(collection.model_copy(update={"title": "a title"}))
    assert len(pgstac.collections()) == 1
    assert pgstac.get_collection("an-id").title == "a title"


def test_update_collection_does_not_exist(pgstac):
    savepoint_raises(pgstac, NotFoundError, "update_collection", Collection.new("an-id", "a description"))


def test_collection_not_found(pgstac):
    assert pgstac.get_collection("not-an-id") is None


def test_delete_collection(pgstac):
    pgstac.create_collection(Collection.new("an-id", "a description"))
    assert pgstac.get_collection("an-id") is not None
    pgstac.delete_collection("an-id")
    assert pgstac.get_collection("an-id") is None


def test_delete_collection_does_not_exist(pgstac):
    savepoint_raises(pgstac, NotFoundError, "delete_collection", "not-an-id")


def test_delete_collection_cascades_to_items(pgstac, stored_collection, make_item):
    pgstac.create_items([make_item("an-id"), make_item("other-id")])
    pgstac.delete_collection("collection-id")
    assert pgstac.get_collection("collection-id") is None
    assert pgstac.get_item("collection-id", "an-id") is None
    assert pgstac.search(SearchQuery(ids=["an-id", "other-id"])).features == []


def test_item(pgstac, stored_collection, make_item):
    assert pgstac.get_item("collection-id", "an-id") is None
    item = make_item()
    pgstac.create_item(item)
    stored = pgstac.get_item("collection-id", "an-id")
    assert stored.id == "an-id"
    assert stored.collection == "collection-id"
    assert stored.geometry == item.geometry


def test_item_without_collection(pgstac):
    savepoint_raises(pgstac, ConflictError, "create_item", Item.new("an-id", collection="missing"))


def test_upsert_item_without_collection(pgstac):
    savepoint_raises(pgstac, ConflictError, "upsert_item", Item.new("an-id", collection="missing"))


def test_update_item(pgstac, stored_collection, make_item):
    item = make_item()
    pgstac.create_item(item)
    item.properties["foo"] = "bar"
    pgstac.update_item(item)
    assert pgstac.get_item("collection-id", "an-id").properties["foo"] == "bar"


def test_upsert_item(pgstac, stored_collection, make_item):
    pgstac.upsert_item(make_item())
    pgstac.upsert_item(make_item())


def test_create_items(pgstac, stored_collection, make_item):
    summary = pgstac.create_items([make_item("an-id"), make_item("other-id")])
    assert summary.all_succeeded
    assert pgstac.get_item("collection-id", "an-id") is not None
    assert pgstac.get_item("collection-id", "other-id") is not None


def test_upsert_items(pgstac, stored_collection, make_item):
    items = [make_item("an-id"), make_item("other-id")]
    pgstac.upsert_items(items)
    pgstac.upsert_items(items)


def test_search_everything(pgstac, stored_collection, make_item):
    assert pgstac.search(SearchQuery()).features == []
    pgstac.create_item(make_item())
    assert pgstac.search(SearchQuery()).items()[0].id == "an-id"


def test_search_by_id(pgstac, stored_collection, make_item):
    pgstac.create_item(make_item())
    assert pgstac.search(SearchQuery(ids=["an-id"])).items()[0].id == "an-id"
    assert pgstac.search(SearchQuery(ids=["not-an-id"])).features == []


def test_search_limit(pgstac, stored_collection, make_item):
    pgstac.create_item(make_item("an-id"))
    pgstac.create_item(make_item("another-id"))
    assert len(pgstac.search(SearchQuery(limit=1)).features) == 1


def test_search_pages_are_disjoint(pgstac, stored_collection, make_item):
    pgstac.create_items([make_item(f"item-{n}") for n in range(5)])
    pages = list(pgstac.search_pages(SearchQuery(limit=2)))
    ids = [feature["id"] for page in pages for feature in page.features]
    assert sorted(ids) == [f"item-{n}" for n in range(5)]
    assert len(set(ids)) == 5


@pytest.mark.asyncio
async def test_async_round_trip(apgstac, collection, make_item):
    await apgstac.create_collection(collection)
    await apgstac.upsert_item(make_item())
    assert (await apgstac.get_item("collection-id", "an-id")).id == "an-id"
    page = await apgstac.search(SearchQuery(ids=["an-id"]))
    assert [item.id for item in page.items()] == ["an-id"]


# ============================================================================
# Committed behaviour (no enclosing test transaction)
# ============================================================================

@pytest.fixture
def committed(open_connection):
    """Client over a plain connection plus a unique collection id, removed afterwards."""
    client = PgstacClient(open_connection())
    collection_id = f"committed-{uuid.uuid4().hex[:12]}"
    yield client, collection_id
    with contextlib.suppress(NotFoundError):
        client.delete_collection(collection_id)


def test_transaction_after_plain_call_is_visible_elsewhere(committed, open_connection, make_item):
    client, collection_id = committed
    assert client.get_collection(collection_id) is None
    with client.transaction() as tx:
        tx.create_collection(Collection.new(collection_id, "a description"))
        tx.upsert_item(make_item("an-id", collection=collection_id))

    other = PgstacClient(open_connection())
    assert other.get_collection(collection_id) is not None
    assert other.get_item(collection_id, "an-id") is not None


def test_plain_calls_are_committed(committed, open_connection):
    client, collection_id = committed
    client.create_collection(Collection.new(collection_id, "a description"))
    assert PgstacClient(open_connection()).get_collection(collection_id) is not None


def test_connection_usable_after_failed_call(committed):
    client, collection_id = committed
    client.create_collection(Collection.new(collection_id, "a description"))
    with pytest.raises(ConflictError):
        client.create_collection(Collection.new(collection_id, "a description"))
    assert client.get_collection(collection_id).id == collection_id
    assert client.version()


def test_upsert_items_rejected_by_store_fails_whole_batch(committed, open_connection, make_item):
    """pgstac writes a batch in one statement: one bad item and nothing is written."""
    client, collection_id = committed
    client.create_collection(Collection.new(collection_id, "a description"))
    items = [
        make_item("item-1", collection=collection_id),
        make_item("item-2", collection=collection_id, properties={"datetime": "not-a-datetime"}),
        make_item("item-3", collection=collection_id),
    ]

    with pytest.raises(PgstacError) as info:
        client.upsert_items(items)

    assert not isinstance(info.value, PartialFailureError)
    summary = info.value.summary
    assert len(summary) == 3
    assert summary.succeeded == []
    assert [outcome.index for outcome in summary.failed] == [0, 1, 2]

    other = PgstacClient(open_connection())
    assert other.get_item(collection_id, "item-1") is None
    assert other.get_item(collection_id, "item-3") is None
