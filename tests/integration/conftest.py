"""
Integration fixtures: a real pgstac database at PGSTAC_TEST_DB.

Most tests get a client bound to a transaction that is rolled back when the
test ends, so tests never see each other's writes and the database is left
untouched. Tests of committed behaviour use open_connection and clean up
what they wrote. Tests are skipped when the database cannot be reached.
"""

import psycopg
import pytest
import pytest_asyncio

from pgstac_client import AsyncPgstacClient, PgstacClient
from pgstac_client.config import get_test_connection_string


@pytest.fixture(scope="session")
def test_dsn():
    return get_test_connection_string()


@pytest.fixture
def pgstac(test_dsn):
    """PgstacClient inside a transaction that always rolls back."""
    try:
        conn = psycopg.connect(test_dsn, connect_timeout=5)
    except psycopg.OperationalError as e:
        pytest.skip(f"pgstac test database unavailable: {e}")
    with conn:
        client = PgstacClient(conn)
        with client.transaction() as tx:
            yield tx
            tx.rollback()


@pytest_asyncio.fixture
async def apgstac(test_dsn):
    """AsyncPgstacClient inside a transaction that always rolls back."""
    try:
        aconn = await psycopg.AsyncConnection.connect(test_dsn, connect_timeout=5)
    except psycopg.OperationalError as e:
        pytest.skip(f"pgstac test database unavailable: {e}")
    async with aconn:
        client = AsyncPgstacClient(aconn)
        async with client.transaction() as tx:
            yield tx
            tx.rollback()


@pytest.fixture
def open_connection(test_dsn):
    """Factory fixture: committing connections, closed when the test ends."""
    opened = []

    def _open():
        try:
            conn = psycopg.connect(test_dsn, connect_timeout=5)
        except psycopg.OperationalError as e:
            pytest.skip(f"pgstac test database unavailable: {e}")
        opened.append(conn)
        return conn

    yield _open
    for conn in opened:
        conn.close()
