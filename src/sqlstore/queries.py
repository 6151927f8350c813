"""T-SQL queries against the server DMVs and their row mappings."""

from typing import Any, Mapping

from sqlalchemy import bindparam, text

from src.scaling.models import (
    ChannelUsage,
    CooldownFact,
    TransitionFact,
    TransitionState,
    UsageSnapshot,
)

# sys.dm_elastic_pool_resource_stats is only visible from inside a pool
# database, so one online database per pool is picked at random.
FIND_POOL_DATABASES = text(
    """
    WITH PoolDatabases AS (
        SELECT
            DatabaseName = d.name,
            ElasticPoolName = dso.elastic_pool_name,
            ROW_NUMBER() OVER (PARTITION BY dso.elastic_pool_name ORDER BY NEWID()) AS rn
        FROM sys.database_service_objectives dso
        JOIN sys.databases d ON d.database_id = dso.database_id
        WHERE dso.elastic_pool_name IN :pools
        AND d.state = 0
    )
    SELECT DatabaseName AS database_name, ElasticPoolName AS pool_name
    FROM PoolDatabases
    WHERE rn = 1
    """
).bindparams(bindparam("pools", expanding=True))

# The short window falls back to the long-window average when it has no rows.
WINDOW_USAGE = text(
    """
    DECLARE @LongWindowStartTime DATETIME = DATEADD(SECOND, -:long_window, GETUTCDATE());
    DECLARE @ShortWindowStartTime DATETIME = DATEADD(SECOND, -:short_window, GETUTCDATE());

    WITH PoolStats AS (
        SELECT
            instance_vcores,
            end_time,
            avg_cpu_percent,
            max_worker_percent,
            avg_instance_cpu_percent,
            avg_data_io_percent
        FROM sys.dm_elastic_pool_resource_stats
        WHERE end_time >= @LongWindowStartTime
    )
    SELECT
        (SELECT TOP 1 CAST(instance_vcores AS FLOAT) FROM PoolStats ORDER BY end_time DESC) AS capacity,
        ISNULL(AVG(CASE WHEN end_time >= @ShortWindowStartTime THEN avg_cpu_percent END), AVG(avg_cpu_percent)) AS short_cpu,
        AVG(avg_cpu_percent) AS long_cpu,
        ISNULL(AVG(CASE WHEN end_time >= @ShortWindowStartTime THEN max_worker_percent END), AVG(max_worker_percent)) AS short_workers,
        AVG(max_worker_percent) AS long_workers,
        ISNULL(AVG(CASE WHEN end_time >= @ShortWindowStartTime THEN avg_instance_cpu_percent END), AVG(avg_instance_cpu_percent)) AS short_instance_cpu,
        AVG(avg_instance_cpu_percent) AS long_instance_cpu,
        ISNULL(AVG(CASE WHEN end_time >= @ShortWindowStartTime THEN avg_data_io_percent END), AVG(avg_data_io_percent)) AS short_data_io,
        AVG(avg_data_io_percent) AS long_data_io
    FROM PoolStats
    """
)

# Latest UPDATE ELASTIC POOL operation per pool that is still running
# (0 = pending, 1 = in progress, 4 = cancel in progress).
POOLS_IN_TRANSITION = text(
    """
    WITH LatestOperations AS (
        SELECT
            major_resource_id AS pool_name,
            state AS state,
            DATEDIFF(SECOND, start_time, last_modify_time) AS elapsed_seconds,
            ROW_NUMBER() OVER (PARTITION BY major_resource_id ORDER BY last_modify_time DESC) AS rn
        FROM sys.dm_operation_status
        WHERE resource_type = 0
        AND operation = 'UPDATE ELASTIC POOL'
        AND state IN (0, 1, 4)
        AND major_resource_id IN :pools
    )
    SELECT pool_name, state, elapsed_seconds
    FROM LatestOperations
    WHERE rn = 1
    """
).bindparams(bindparam("pools", expanding=True))

# Rows in sys.dm_operation_status are kept for roughly 30 minutes.
LAST_COMPLETED_OPERATIONS = text(
    """
    SELECT
        major_resource_id AS pool_name,
        DATEDIFF(SECOND, MAX(last_modify_time), GETUTCDATE()) AS seconds_since
    FROM sys.dm_operation_status
    WHERE resource_type = 0
    AND operation = 'UPDATE ELASTIC POOL'
    AND state = 2
    AND major_resource_id IN :pools
    GROUP BY major_resource_id
    """
).bindparams(bindparam("pools", expanding=True))


def _percent(row: Mapping[str, Any], key: str) -> float:
    value = row.get(key)
    return float(value) if value is not None else 0.0


def snapshot_from_row(pool_id: str, row: Mapping[str, Any]) -> UsageSnapshot:
    """Map a WINDOW_USAGE row to a UsageSnapshot.

    Raises:
        ValueError: If the row has no capacity
    """
    if row.get("capacity") is None:
        raise ValueError(f"{pool_id}: usage row has no capacity")
    return UsageSnapshot(
        pool_id=pool_id,
        current_capacity=float(row["capacity"]),
        primary=ChannelUsage(_percent(row, "short_cpu"), _percent(row, "long_cpu")),
        secondary=ChannelUsage(_percent(row, "short_workers"), _percent(row, "long_workers")),
        tertiary=ChannelUsage(_percent(row, "short_instance_cpu"), _percent(row, "long_instance_cpu")),
        io=ChannelUsage(_percent(row, "short_data_io"), _percent(row, "long_data_io")),
    )


def transition_from_row(row: Mapping[str, Any]) -> TransitionFact:
    return TransitionFact(
        pool_id=str(row["pool_name"]),
        state=TransitionState.parse(row["state"]),
        elapsed_seconds=float(row.get("elapsed_seconds") or 0),
    )


def cooldown_from_row(row: Mapping[str, Any]) -> CooldownFact:
    return CooldownFact(
        pool_id=str(row["pool_name"]),
        seconds_since=float(row["seconds_since"]),
    )
