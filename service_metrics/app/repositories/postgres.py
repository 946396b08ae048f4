"""
PostgreSQL metric store.

Durability is delegated to the database, so restore and flush do nothing.
"""

from typing import Optional, Sequence

import asyncpg

from shared.errors import NotFoundError, StorageConnectionError, StorageError
from shared.logging import get_logger
from shared.models import MetricKind, MetricValue, WireMetric

from .base import MetricRepository, MetricValues, prepare_batch

UPSERT_METRIC = """
    INSERT INTO metrics (id, type, delta, gauge) VALUES ($1, $2, $3, $4)
    ON CONFLICT (id, type)
    DO UPDATE SET delta = metrics.delta + excluded.delta, gauge = excluded.gauge
"""


class PostgreSQLRepository(MetricRepository):
    """Metric store backed by a `metrics` table keyed by (id, type)."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("metrics.repository.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self._closed = False

    async def connect(self) -> None:
        """Open the pool and create the table if needed.

        A failure is logged and leaves the store without a connection.
        """
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )
            await self._create_tables()
            self.logger.info("PostgreSQL repository connected")
        except Exception as e:
            self.logger.error("Failed to connect PostgreSQL repository", error=str(e))
            if self.pool is not None:
                await self.pool.close()
            self.pool = None

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id VARCHAR(255) NOT NULL,
                    type VARCHAR(16) NOT NULL,
                    delta BIGINT NOT NULL DEFAULT 0,
                    gauge DOUBLE PRECISION NOT NULL DEFAULT 0,
                    UNIQUE (id, type)
                );
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StorageConnectionError()
        return self.pool

    async def save(self, name: str, value: MetricValue) -> None:
        pool = self._require_pool()
        try:
            await pool.execute(UPSERT_METRIC, name, value.kind.value, value.delta, value.value)
        except Exception as e:
            self.logger.error("Error saving metric", name=name, error=str(e))
            raise StorageError(str(e), details={"id": name}) from e

    async def save_all(self, batch: Sequence[WireMetric]) -> None:
        values = prepare_batch(batch)
        pool = self._require_pool()

        try:
            async with pool.acquire() as conn:
                await self._save_in_transaction(conn, values)
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Error saving metrics batch", size=len(values), error=str(e))
            raise StorageError(f"save all: {e}", details={"size": len(values)}) from e

    async def _save_in_transaction(self, conn, values) -> None:
        tx = conn.transaction()
        await tx.start()
        try:
            stmt = await conn.prepare(UPSERT_METRIC)
            for name, value in values:
                await stmt.fetch(name, value.kind.value, value.delta, value.value)
        except Exception as e:
            try:
                await tx.rollback()
            except Exception as rb_err:
                raise StorageError(
                    f"save all: tx err {e}: roll back err {rb_err}",
                    details={"size": len(values)}
                ) from e
            raise StorageError(f"save all: {e}", details={"size": len(values)}) from e

        try:
            await tx.commit()
        except Exception as e:
            raise StorageError(f"save all: commit: {e}", details={"size": len(values)}) from e

    async def find_by_name(self, name: str) -> MetricValue:
        pool = self._require_pool()
        try:
            row = await pool.fetchrow("SELECT type, delta, gauge FROM metrics WHERE id = $1", name)
        except Exception as e:
            raise StorageError(str(e), details={"id": name}) from e

        if row is None:
            raise NotFoundError(f"metric {name!r} not found", details={"id": name})
        return self._row_to_value(row)

    async def find_all(self) -> MetricValues:
        pool = self._require_pool()
        values: MetricValues = {}
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    async for row in conn.cursor("SELECT id, type, delta, gauge FROM metrics"):
                        values[row["id"]] = self._row_to_value(row)
        except Exception as e:
            raise StorageError(f"find all: {e}") from e
        return values

    async def restore(self) -> None:
        return None

    async def flush(self) -> None:
        return None

    async def ping(self) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except Exception as e:
            raise StorageConnectionError(str(e)) from e

    async def close(self) -> None:
        if self._closed:
            return
        pool = self._require_pool()
        await pool.close()
        self.pool = None
        self._closed = True
        self.logger.info("PostgreSQL repository closed")

    @staticmethod
    def _row_to_value(row) -> MetricValue:
        return MetricValue(
            kind=MetricKind(row["type"]),
            delta=row["delta"],
            value=row["gauge"]
        )
