"""SQL-backed metrics, transition, cooldown and audit collaborators."""

import asyncio
import json
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.scaling.config import RetryPolicy
from src.scaling.errors import ErrorRecorder
from src.scaling.exceptions import TransientStoreError
from src.scaling.models import CooldownFact, TransitionFact, UsageSnapshot
from src.scaling.retry import call_with_retry
from src.sqlstore.database import create_engine, create_session_maker
from src.sqlstore.models import AutoScalerMonitor
from src.sqlstore.queries import (
    FIND_POOL_DATABASES,
    LAST_COMPLETED_OPERATIONS,
    POOLS_IN_TRANSITION,
    WINDOW_USAGE,
    cooldown_from_row,
    snapshot_from_row,
    transition_from_row,
)

logger = logging.getLogger(__name__)


def is_transient_db_error(error: BaseException) -> bool:
    """True for database failures worth retrying."""
    if isinstance(error, (TransientStoreError, OperationalError, PoolTimeoutError)):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, (ConnectionError, asyncio.TimeoutError))


class SqlMetricsProvider:
    """Samples windowed pool utilization from the pool databases."""

    def __init__(
        self,
        master_engine: AsyncEngine,
        pool_database_url: str,
        short_window_seconds: int,
        long_window_seconds: int,
        retry: Optional[RetryPolicy] = None,
        errors: Optional[ErrorRecorder] = None,
    ):
        """Initialize the provider.

        Args:
            master_engine: Engine connected to the server's master database
            pool_database_url: URL template, ``{database}`` is replaced with
                the name of a database inside the pool
            short_window_seconds: Short averaging window
            long_window_seconds: Long averaging window
            retry: Retry budget for each per-pool query
            errors: Error sink for per-pool failures
        """
        self.master_engine = master_engine
        self.pool_database_url = pool_database_url
        self.short_window_seconds = short_window_seconds
        self.long_window_seconds = long_window_seconds
        self.retry = retry or RetryPolicy()
        self.errors = errors or ErrorRecorder()
        self._engines: Dict[str, AsyncEngine] = {}

    is_transient = staticmethod(is_transient_db_error)

    def _engine_for(self, database: str) -> AsyncEngine:
        url = self.pool_database_url.replace("{database}", database)
        if url not in self._engines:
            self._engines[url] = create_engine(url)
        return self._engines[url]

    async def sample(self, pool_ids: List[str]) -> Dict[str, UsageSnapshot]:
        """Sample every pool in ``pool_ids``; unsampled pools are left out."""
        if not pool_ids:
            return {}

        databases = await self._pool_databases(pool_ids)
        snapshots = await asyncio.gather(
            *(self._sample_pool(row["database_name"], row["pool_name"]) for row in databases)
        )
        return {s.pool_id: s for s in snapshots if s is not None}

    async def _pool_databases(self, pool_ids: List[str]) -> List[dict]:
        """One database name per pool, used to read the pool-level usage views."""
        async with self.master_engine.connect() as conn:
            result = await conn.execute(FIND_POOL_DATABASES, {"pools": list(pool_ids)})
            return [dict(row) for row in result.mappings().all()]

    async def _query_usage(self, database: str) -> Optional[dict]:
        async with self._engine_for(database).connect() as conn:
            result = await conn.execute(
                WINDOW_USAGE,
                {
                    "long_window": self.long_window_seconds,
                    "short_window": self.short_window_seconds,
                },
            )
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def _sample_pool(self, database: str, pool_id: str) -> Optional[UsageSnapshot]:
        try:
            row = await call_with_retry(
                self._query_usage, self.retry, is_transient_db_error, database
            )
        except Exception as e:
            await self.errors.record(f"{pool_id}: Error fetching short and long window usage metrics.", e)
            return None

        if row is None or row.get("capacity") is None:
            logger.info(f"{pool_id}: No usage rows in the long window yet")
            return None
        return snapshot_from_row(pool_id, row)

    async def close(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()


class SqlTransitionProvider:
    """Reads in-flight pool mutations from the operation status view."""

    def __init__(self, master_engine: AsyncEngine):
        self.master_engine = master_engine

    is_transient = staticmethod(is_transient_db_error)

    async def list_in_transition(self, pool_ids: List[str]) -> List[TransitionFact]:
        if not pool_ids:
            return []
        async with self.master_engine.connect() as conn:
            result = await conn.execute(POOLS_IN_TRANSITION, {"pools": list(pool_ids)})
            return [transition_from_row(row) for row in result.mappings().all()]

    async def close(self) -> None:
        await self.master_engine.dispose()


class SqlCooldownProvider:
    """Reads how long ago each pool's last mutation completed."""

    def __init__(self, master_engine: AsyncEngine):
        self.master_engine = master_engine

    is_transient = staticmethod(is_transient_db_error)

    async def last_completed_ago(self, pool_ids: List[str]) -> List[CooldownFact]:
        if not pool_ids:
            return []
        async with self.master_engine.connect() as conn:
            result = await conn.execute(LAST_COMPLETED_OPERATIONS, {"pools": list(pool_ids)})
            return [cooldown_from_row(row) for row in result.mappings().all()]

    async def close(self) -> None:
        await self.master_engine.dispose()


class SqlMonitorSink:
    """Appends audit records to the AutoScalerMonitor table.

    Without an engine every append is a no-op.
    """

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self.engine = engine
        self._session_maker = create_session_maker(engine) if engine is not None else None

    async def append(
        self,
        pool_id: str,
        prior_capacity: float,
        target_capacity: float,
        snapshot: UsageSnapshot,
        note: Optional[str] = None,
    ) -> None:
        if self._session_maker is None:
            return

        record = AutoScalerMonitor(
            pool_name=pool_id,
            current_capacity=round(prior_capacity, 2),
            requested_capacity=round(target_capacity, 2),
            usage_info=json.dumps(snapshot.to_dict()),
            notes=note,
        )
        async with self._session_maker() as session:
            session.add(record)
            await session.commit()
        logger.debug(f"Audit record written for {pool_id}: {prior_capacity:g} -> {target_capacity:g}")

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
