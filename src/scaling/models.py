"""Data models for the pool autoscaler."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


class ScalingAction(Enum):
    """Scaling intent derived from a usage snapshot."""

    UP = "up"
    DOWN = "down"
    HOLD = "hold"


class TransitionState(Enum):
    """Lifecycle state of a pool mutation as reported by the control plane."""

    PENDING = 0
    IN_PROGRESS = 1
    COMPLETED = 2
    FAILED = 3
    CANCEL_IN_PROGRESS = 4
    CANCELLED = 5

    @property
    def is_active(self) -> bool:
        """True while the mutation is still being applied."""
        return self in _ACTIVE_STATES

    @classmethod
    def parse(cls, value: Union[int, str, "TransitionState"]) -> "TransitionState":
        """Parse a state from its numeric code or any of its textual spellings.

        The operation status view reports ``state`` as a number and
        ``state_desc`` as e.g. ``"IN_PROGRESS"``; both are accepted, as are
        human spellings like ``"In progress"``.

        Raises:
            ValueError: If the value does not name a known state
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.isdigit():
            return cls(int(text))
        key = text.upper().replace(" ", "_").replace("-", "_")
        if key == "CANCELED":
            key = "CANCELLED"
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown transition state: {value!r}")


_ACTIVE_STATES = frozenset(
    {
        TransitionState.PENDING,
        TransitionState.IN_PROGRESS,
        TransitionState.CANCEL_IN_PROGRESS,
    }
)


class MutationResult(Enum):
    """Outcome of submitting a capacity change."""

    ACCEPTED = "accepted"
    CONFLICT = "conflict"


class OutcomeKind(Enum):
    """Tag of a decision engine result."""

    OK = "ok"
    ANOMALOUS_CAPACITY = "anomalous_capacity"


@dataclass(frozen=True)
class ChannelUsage:
    """Short- and long-window averages of one utilization channel (percent)."""

    short_avg: float
    long_avg: float


@dataclass(frozen=True)
class UsageSnapshot:
    """Current capacity and windowed utilization of one pool."""

    pool_id: str
    current_capacity: float
    primary: ChannelUsage
    secondary: ChannelUsage
    tertiary: ChannelUsage
    io: ChannelUsage
    sampled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def channels(self) -> dict[str, ChannelUsage]:
        """Return the four channels keyed by name."""
        return {
            "primary": self.primary,
            "secondary": self.secondary,
            "tertiary": self.tertiary,
            "io": self.io,
        }

    def to_dict(self) -> dict:
        """Convert to a JSON-serialisable dictionary for audit records."""
        data = {
            "pool_id": self.pool_id,
            "current_capacity": self.current_capacity,
            "sampled_at": self.sampled_at.isoformat(),
        }
        for name, usage in self.channels().items():
            data[f"{name}_short_avg"] = usage.short_avg
            data[f"{name}_long_avg"] = usage.long_avg
        return data

    def __str__(self) -> str:
        lines = [f"Usage for {self.pool_id} (capacity {self.current_capacity:g}):"]
        for name, usage in self.channels().items():
            lines.append(f"  {name:<10} short={usage.short_avg:8.2f}%  long={usage.long_avg:8.2f}%")
        return "\n".join(lines)


@dataclass(frozen=True)
class TargetSettings:
    """Capacity a pool should move to, with its per-unit limits."""

    capacity: float
    per_unit_max: float
    per_unit_min: float = 0


@dataclass(frozen=True)
class TargetOutcome:
    """Result of evaluating one pool.

    ``kind`` is ``ANOMALOUS_CAPACITY`` when the current capacity is not on
    the ladder; the target then equals the current capacity.
    """

    kind: OutcomeKind
    action: ScalingAction
    current_capacity: float
    target: Optional[TargetSettings]
    reason: str = ""

    @property
    def target_capacity(self) -> float:
        if self.target is None:
            return self.current_capacity
        return self.target.capacity

    @property
    def requires_change(self) -> bool:
        return self.kind is OutcomeKind.OK and self.target_capacity != self.current_capacity


@dataclass(frozen=True)
class TransitionFact:
    """An observed mutation of a pool and how long it has been in its state."""

    pool_id: str
    state: TransitionState
    elapsed_seconds: float


@dataclass(frozen=True)
class CooldownFact:
    """Seconds since the most recent completed mutation of a pool."""

    pool_id: str
    seconds_since: float


@dataclass
class PoolEvaluation:
    """What happened to one pool during a cycle."""

    pool_id: str
    current_capacity: float
    target_capacity: float
    action: ScalingAction
    status: str  # "hold", "dry_run", "submitted", "deferred", "anomaly", "failed"
    detail: str = ""
