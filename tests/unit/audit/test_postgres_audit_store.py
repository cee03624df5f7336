"""
Unit tests for PostgresAuditStore with a faked psycopg pool.
"""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock

import psycopg
import pytest

from item_publisher.audit import PostgresAuditStore
from item_publisher.audit.postgres import (
    CREATE_LOG_TABLE,
    CREATE_TRACE_INDEX,
    INSERT_LOG,
    MARK_SENT,
)
from item_publisher.errors import AuditStoreError
from item_publisher.models import RequestSource


def _fake_pool(conn):
    @asynccontextmanager
    async def connection():
        yield conn

    return SimpleNamespace(connection=connection, open=AsyncMock(), close=AsyncMock())


@pytest.fixture
def conn():
    c = AsyncMock()
    c.execute.return_value = SimpleNamespace(rowcount=2)
    return c


@pytest.mark.asyncio
async def test_append_record_inserts_row(conn):
    store = PostgresAuditStore(pool=_fake_pool(conn))

    await store.append_record(
        "sqs_publish_items",
        False,
        7,
        "Failed to publish 3 out of 10 items",
        "trace-1",
        request_source=RequestSource.API_GATEWAY,
    )

    query, params = conn.execute.call_args[0]
    assert query is INSERT_LOG
    assert params["operation"] == "SQS_PUBLISH_ITEMS"
    assert params["success"] is False
    assert params["item_count"] == 7
    assert params["error_message"] == "Failed to publish 3 out of 10 items"
    assert params["trace_id"] == "trace-1"
    assert params["request_source"] == "api_gateway"
    assert params["created_at"].tzinfo is not None


@pytest.mark.asyncio
async def test_mark_sent_updates_unique_skus(conn):
    store = PostgresAuditStore(pool=_fake_pool(conn))

    updated = await store.mark_sent(["B", "A", "B"], trace_id="trace-2")

    assert updated == 2
    query, params = conn.execute.call_args[0]
    assert query is MARK_SENT
    assert params == {"skus": ["A", "B"]}


@pytest.mark.asyncio
async def test_mark_sent_with_no_keys_skips_database(conn):
    store = PostgresAuditStore(pool=_fake_pool(conn))
    assert await store.mark_sent([]) == 0
    conn.execute.assert_not_called()


@pytest.mark.asyncio
async def test_ensure_schema_creates_table_and_index(conn):
    store = PostgresAuditStore(pool=_fake_pool(conn))
    await store.ensure_schema()

    executed = [c.args[0] for c in conn.execute.call_args_list]
    assert executed == [CREATE_LOG_TABLE, CREATE_TRACE_INDEX]


@pytest.mark.asyncio
async def test_operational_error_mapped(conn):
    conn.execute.side_effect = psycopg.OperationalError("connection refused")
    store = PostgresAuditStore(pool=_fake_pool(conn))

    with pytest.raises(AuditStoreError) as exc:
        await store.append_record("SQS_PUBLISH_ITEMS", True, 1)

    assert "audit store unavailable" in str(exc.value)


@pytest.mark.asyncio
async def test_context_manager_opens_and_closes_pool(conn):
    pool = _fake_pool(conn)
    async with PostgresAuditStore(pool=pool) as store:
        assert isinstance(store, PostgresAuditStore)
        pool.open.assert_awaited_once()
    pool.close.assert_awaited_once()


def test_dsn_required_without_pool():
    with pytest.raises(ValueError):
        PostgresAuditStore()
