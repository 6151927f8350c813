"""Pytest configuration and shared fixtures for autoscaler tests."""

import pytest

from src.scaling.config import AutoScalerConfig, ThresholdSet, ChannelThresholds
from src.scaling.models import ChannelUsage, UsageSnapshot


# ---------------------------------------------------------------------------
# Ladder and threshold fixtures
# ---------------------------------------------------------------------------

LADDER_LEVELS = [4, 6, 8, 10, 12, 14, 16, 18, 20, 24, 32, 40, 64, 80, 128]
LADDER_MAXIMUMS = [2, 4, 6, 6, 8, 10, 12, 14, 14, 18, 24, 32, 40, 40, 80]

# Every channel uses Low=20 / High=70 so "high" and "low" usage is easy to build
HIGH_USAGE = 90.0
LOW_USAGE = 5.0
MID_USAGE = 45.0

@pytest.fixture
def thresholds():
    """Same Low/High thresholds on every channel."""
    uniform = ChannelThresholds(low=20, high=70)
    return ThresholdSet(primary=uniform, secondary=uniform, tertiary=uniform, io=uniform)

@pytest.fixture
def config(thresholds):
    """Configuration matching the worked example: floor 6, ceiling 24."""
    return AutoScalerConfig(
        server_name="sql-test",
        pools="pool-a, pool-b, pool-c",
        thresholds=thresholds,
        capacity_levels=LADDER_LEVELS,
        per_unit_maximums=LADDER_MAXIMUMS,
        floor=6,
        ceiling=24,
        cooldown_seconds=600,
        max_expected_mutation_seconds=300,
    )

@pytest.fixture
def make_snapshot():
    """Factory for usage snapshots.

    ``level`` sets both windows of every channel; keyword overrides take a
    ``(short, long)`` tuple per channel name.
    """
    def _make(pool_id="pool-a", capacity=8.0, level=MID_USAGE, **channels):
        values = {name: ChannelUsage(level, level) for name in ("primary", "secondary", "tertiary", "io")}
        for name, (short_avg, long_avg) in channels.items():
            values[name] = ChannelUsage(short_avg, long_avg)
        return UsageSnapshot(pool_id=pool_id, current_capacity=capacity, **values)

    return _make
