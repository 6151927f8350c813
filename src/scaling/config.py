"""Autoscaler configuration model."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml

from src.scaling.exceptions import ConfigurationError
from src.scaling.ladder import CapacityLadder, parse_ladder

# sys.dm_elastic_pool_resource_stats keeps roughly one hour of history
METRICS_RETENTION_SECONDS = 3600

DEFAULT_CAPACITY_LEVELS = (4, 6, 8, 10, 12, 14, 16, 18, 20, 24, 32, 40, 64, 80, 128)
DEFAULT_PER_UNIT_MAXIMUMS = (2, 4, 6, 6, 8, 10, 12, 14, 14, 18, 24, 32, 40, 40, 80)

CHANNELS = ("primary", "secondary", "tertiary", "io")

# Names used for the channels by the metrics store
CHANNEL_ALIASES = {
    "cpu": "primary",
    "avg_cpu": "primary",
    "workers": "secondary",
    "instance_cpu": "tertiary",
    "data_io": "io",
}


@dataclass(frozen=True)
class ChannelThresholds:
    """Low/High percentage thresholds for one utilization channel."""

    low: float
    high: float

    def __post_init__(self) -> None:
        if self.low < 0 or self.high < 0:
            raise ConfigurationError("Thresholds must not be negative")
        if self.low >= self.high:
            raise ConfigurationError("Low thresholds must be less than high thresholds")

    @classmethod
    def from_dict(cls, data: Any) -> "ChannelThresholds":
        if isinstance(data, ChannelThresholds):
            return data
        if not isinstance(data, dict) or "low" not in data or "high" not in data:
            raise ConfigurationError("Each threshold entry needs 'low' and 'high'")
        try:
            low, high = float(data["low"]), float(data["high"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid threshold value: {e}")
        return cls(low=low, high=high)


@dataclass(frozen=True)
class ThresholdSet:
    """Thresholds for the four utilization channels."""

    primary: ChannelThresholds = field(default_factory=lambda: ChannelThresholds(20, 70))
    secondary: ChannelThresholds = field(default_factory=lambda: ChannelThresholds(30, 50))
    tertiary: ChannelThresholds = field(default_factory=lambda: ChannelThresholds(20, 70))
    io: ChannelThresholds = field(default_factory=lambda: ChannelThresholds(20, 70))

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ThresholdSet":
        """Create a ThresholdSet, accepting metrics-store channel names as aliases."""
        if not data:
            return cls()
        values = {}
        for key, value in data.items():
            name = CHANNEL_ALIASES.get(key, key)
            if name not in CHANNELS:
                raise ConfigurationError(f"Unknown utilization channel: {key}")
            values[name] = ChannelThresholds.from_dict(value)
        return cls(**values)

    def channels(self) -> dict[str, ChannelThresholds]:
        return {name: getattr(self, name) for name in CHANNELS}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry budget for external calls."""

    count: int = 3
    interval: float = 2.0

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ConfigurationError("retry count must be >= 0")
        if self.interval < 0:
            raise ConfigurationError("retry interval must be >= 0")


@dataclass(frozen=True)
class PoolConfig:
    """A managed pool and its optional custom floor."""

    pool_id: str
    floor: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.pool_id or not self.pool_id.strip():
            raise ConfigurationError("Pool names must not be empty")


def parse_pools(value: Any) -> Tuple[PoolConfig, ...]:
    """Parse the managed pools.

    Accepts ``"pool1, pool2:8"``, a list of names / ``{"name", "floor"}``
    mappings, or a ``{name: floor}`` mapping.
    """
    if not value:
        return ()

    pools = []
    if isinstance(value, str):
        for entry in value.split(","):
            entry = entry.strip()
            if not entry:
                continue
            name, _, floor = entry.partition(":")
            pools.append(_make_pool(name.strip(), floor.strip() or None))
    elif isinstance(value, dict):
        for name, floor in value.items():
            pools.append(_make_pool(str(name).strip(), floor))
    else:
        for entry in value:
            if isinstance(entry, PoolConfig):
                pools.append(entry)
            elif isinstance(entry, dict):
                pools.append(_make_pool(str(entry.get("name", "")).strip(), entry.get("floor")))
            else:
                pools.append(_make_pool(str(entry).strip(), None))
    return tuple(pools)


def _make_pool(name: str, floor: Any) -> PoolConfig:
    if floor is None:
        return PoolConfig(pool_id=name)
    try:
        return PoolConfig(pool_id=name, floor=float(floor))
    except (TypeError, ValueError):
        raise ConfigurationError(f"Custom floor for pool {name} must be a number")


@dataclass(frozen=True)
class AutoScalerConfig:
    """Validated, immutable autoscaler policy."""

    server_name: str = ""
    pools: Tuple[PoolConfig, ...] = ()
    thresholds: ThresholdSet = field(default_factory=ThresholdSet)
    short_window_seconds: int = 300
    long_window_seconds: int = 900
    capacity_levels: Tuple[float, ...] = DEFAULT_CAPACITY_LEVELS
    per_unit_maximums: Tuple[float, ...] = DEFAULT_PER_UNIT_MAXIMUMS
    floor: float = 4
    ceiling: float = 24
    cooldown_seconds: int = 600
    max_expected_mutation_seconds: int = 600
    dry_run: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll_interval_seconds: int = 15
    ladder: CapacityLadder = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        try:
            object.__setattr__(self, "floor", float(self.floor))
            object.__setattr__(self, "ceiling", float(self.ceiling))
        except (TypeError, ValueError):
            raise ConfigurationError("floor and ceiling must be numbers")
        object.__setattr__(self, "pools", parse_pools(self.pools))
        object.__setattr__(self, "capacity_levels", tuple(parse_ladder(self.capacity_levels)))
        object.__setattr__(self, "per_unit_maximums", tuple(parse_ladder(self.per_unit_maximums)))
        object.__setattr__(
            self, "ladder", CapacityLadder(self.capacity_levels, self.per_unit_maximums)
        )
        self._validate()

    def _validate(self) -> None:
        """Validate autoscaler configuration."""
        if self.short_window_seconds <= 0:
            raise ConfigurationError("short_window_seconds must be positive")
        if self.long_window_seconds <= self.short_window_seconds:
            raise ConfigurationError("long_window_seconds must be greater than short_window_seconds")
        if self.long_window_seconds > METRICS_RETENTION_SECONDS:
            raise ConfigurationError(
                f"long_window_seconds must be <= {METRICS_RETENTION_SECONDS} (metrics retention)"
            )
        if self.floor < 0 or self.ceiling < 0:
            raise ConfigurationError("floor and ceiling must not be negative")
        if self.floor not in self.ladder:
            raise ConfigurationError("floor must be found within capacity_levels")
        if self.ceiling not in self.ladder:
            raise ConfigurationError("ceiling must be found within capacity_levels")
        if self.floor >= self.ceiling:
            raise ConfigurationError("floor must be less than ceiling")
        if self.cooldown_seconds < 0:
            raise ConfigurationError("cooldown_seconds must be >= 0")
        if self.max_expected_mutation_seconds < 0:
            raise ConfigurationError("max_expected_mutation_seconds must be >= 0")
        if self.poll_interval_seconds < 1:
            raise ConfigurationError("poll_interval_seconds must be >= 1")

        seen = set()
        for pool in self.pools:
            key = pool.pool_id.casefold()
            if key in seen:
                raise ConfigurationError(f"Pool {pool.pool_id} is configured more than once")
            seen.add(key)
            if pool.floor is not None and pool.floor not in self.ladder:
                raise ConfigurationError(
                    f"Custom floor {pool.floor:g} for pool {pool.pool_id} is not within capacity_levels"
                )

    @property
    def pool_ids(self) -> list[str]:
        return [pool.pool_id for pool in self.pools]

    def floor_for(self, pool_id: str) -> float:
        """Custom floor for ``pool_id`` (case-insensitive), else the global floor."""
        key = pool_id.casefold()
        for pool in self.pools:
            if pool.pool_id.casefold() == key and pool.floor is not None:
                return pool.floor
        return self.floor

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AutoScalerConfig":
        """Create AutoScalerConfig from dictionary.

        Args:
            data: Dictionary with autoscaler configuration, or None/empty

        Returns:
            AutoScalerConfig instance

        Raises:
            ConfigurationError: If any value is invalid
        """
        if not data:
            return cls()

        known_fields = {
            "server_name",
            "pools",
            "short_window_seconds",
            "long_window_seconds",
            "capacity_levels",
            "per_unit_maximums",
            "floor",
            "ceiling",
            "cooldown_seconds",
            "max_expected_mutation_seconds",
            "dry_run",
            "poll_interval_seconds",
        }
        filtered = {k: v for k, v in data.items() if k in known_fields}
        if "thresholds" in data:
            filtered["thresholds"] = ThresholdSet.from_dict(data["thresholds"])
        try:
            if "retry" in data:
                filtered["retry"] = RetryPolicy(**(data["retry"] or {}))
            return cls(**filtered)
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    def to_dict(self) -> dict:
        """Convert to dictionary.

        Returns:
            Dictionary representation, accepted back by ``from_dict``
        """
        return {
            "server_name": self.server_name,
            "pools": [{"name": p.pool_id, "floor": p.floor} for p in self.pools],
            "thresholds": {
                name: {"low": t.low, "high": t.high}
                for name, t in self.thresholds.channels().items()
            },
            "short_window_seconds": self.short_window_seconds,
            "long_window_seconds": self.long_window_seconds,
            "capacity_levels": list(self.capacity_levels),
            "per_unit_maximums": list(self.per_unit_maximums),
            "floor": self.floor,
            "ceiling": self.ceiling,
            "cooldown_seconds": self.cooldown_seconds,
            "max_expected_mutation_seconds": self.max_expected_mutation_seconds,
            "dry_run": self.dry_run,
            "retry": {"count": self.retry.count, "interval": self.retry.interval},
            "poll_interval_seconds": self.poll_interval_seconds,
        }


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place (recursive)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def load_autoscaler_config(config_path: str = "config.yaml") -> AutoScalerConfig:
    """Load autoscaler configuration from a YAML config file.

    Reads the ``autoscaler`` section. A sibling ``<name>.local.yaml`` file,
    when present, is merged over the main file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated AutoScalerConfig

    Raises:
        ConfigurationError: If the file is missing or any value is invalid
    """
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        full_config = yaml.safe_load(f) or {}

    local = Path(config_path).with_suffix(".local.yaml")
    if local.exists():
        with open(local, "r") as f:
            _deep_merge(full_config, yaml.safe_load(f) or {})

    return AutoScalerConfig.from_dict(full_config.get("autoscaler", {}))
