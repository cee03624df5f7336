from __future__ import annotations

from typing import Any, Iterable, Optional

import psycopg
from psycopg import sql as psql
from psycopg_pool import AsyncConnectionPool
from loguru import logger

from ..errors import map_db_error
from ..models import RequestSource
from ..utils import utc_now

LOG_TABLE = "item_master_logs"
SOURCE_LOG_TABLE = "item_master_source_logs"

CREATE_LOG_TABLE = psql.SQL(
    "CREATE TABLE IF NOT EXISTS {} ("
    "id BIGSERIAL PRIMARY KEY, "
    "operation TEXT NOT NULL, "
    "success BOOLEAN NOT NULL, "
    "error_message TEXT, "
    "item_count INTEGER, "
    "request_source TEXT NOT NULL DEFAULT 'unknown', "
    "trace_id TEXT, "
    "created_at TIMESTAMPTZ NOT NULL DEFAULT now())"
).format(psql.Identifier(LOG_TABLE))

CREATE_TRACE_INDEX = psql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (trace_id)").format(
    psql.Identifier(f"ix_{LOG_TABLE}_trace_id"), psql.Identifier(LOG_TABLE)
)

INSERT_LOG = psql.SQL(
    "INSERT INTO {} (operation, success, error_message, item_count, request_source, trace_id, "
    "created_at) VALUES (%(operation)s, %(success)s, %(error_message)s, %(item_count)s, "
    "%(request_source)s, %(trace_id)s, %(created_at)s)"
).format(psql.Identifier(LOG_TABLE))

# Source rows are written upstream; publishing only flips the delivered flag.
MARK_SENT = psql.SQL(
    "UPDATE {} SET is_sent_to_sqs = TRUE WHERE sku = ANY(%(skus)s) AND is_sent_to_sqs = FALSE"
).format(psql.Identifier(SOURCE_LOG_TABLE))


class PostgresAuditStore:
    """Audit log backed by PostgreSQL via an async psycopg pool.

    Usage:
        async with PostgresAuditStore("postgresql://...") as store:
            await store.ensure_schema()
            await store.append_record("SQS_PUBLISH_ITEMS", True, 25, trace_id="abc")
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        pool_max: int = 5,
        pool: Any = None,
    ):
        if pool is None:
            if not dsn:
                raise ValueError("dsn required")
            pool = AsyncConnectionPool(
                conninfo=dsn,
                max_size=pool_max,
                open=False,
                kwargs={"autocommit": True},
            )
        self._pool = pool

    async def open(self) -> None:
        await self._pool.open()

    async def aclose(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> "PostgresAuditStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ---------- schema ----------

    async def ensure_schema(self) -> None:
        try:
            async with self._pool.connection() as conn:
                await conn.execute(CREATE_LOG_TABLE)
                await conn.execute(CREATE_TRACE_INDEX)
        except psycopg.Error as e:
            raise map_db_error(e) from e
        logger.info(f"Audit schema ensured ({LOG_TABLE})")

    # ---------- writes ----------

    async def append_record(
        self,
        operation: str,
        success: bool,
        item_count: Optional[int] = None,
        error_message: Optional[str] = None,
        trace_id: Optional[str] = None,
        *,
        request_source: RequestSource = RequestSource.UNKNOWN,
    ) -> None:
        params = {
            "operation": operation.upper(),
            "success": success,
            "error_message": error_message,
            "item_count": item_count,
            "request_source": RequestSource(request_source).value,
            "trace_id": trace_id,
            "created_at": utc_now(),
        }
        try:
            async with self._pool.connection() as conn:
                await conn.execute(INSERT_LOG, params)
        except psycopg.Error as e:
            logger.error(
                f"Failed to log processing result: operation={operation} success={success} "
                f"trace_id={trace_id}"
            )
            raise map_db_error(e) from e

    async def mark_sent(self, keys: Iterable[str], trace_id: Optional[str] = None) -> int:
        """Flip is_sent_to_sqs on source rows for delivered SKUs. Returns rows updated."""
        skus = sorted(set(keys))
        if not skus:
            return 0
        try:
            async with self._pool.connection() as conn:
                cur = await conn.execute(MARK_SENT, {"skus": skus})
                updated = cur.rowcount
        except psycopg.Error as e:
            raise map_db_error(e) from e
        logger.info(f"Marked {updated} source rows as sent ({len(skus)} skus, trace_id={trace_id})")
        return updated
