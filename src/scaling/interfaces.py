"""Interfaces of the collaborators the controller talks to."""

from typing import Dict, List, Optional, Protocol, runtime_checkable

from src.scaling.models import (
    CooldownFact,
    MutationResult,
    TargetSettings,
    TransitionFact,
    UsageSnapshot,
)


@runtime_checkable
class MetricsProvider(Protocol):
    async def sample(self, pool_ids: List[str]) -> Optional[Dict[str, UsageSnapshot]]:
        """Current capacity and windowed utilization per pool.

        Pools that could not be sampled are left out of the result.
        """
        ...


@runtime_checkable
class TransitionProvider(Protocol):
    async def list_in_transition(self, pool_ids: List[str]) -> List[TransitionFact]:
        """Latest observed mutation per pool."""
        ...


@runtime_checkable
class CooldownProvider(Protocol):
    async def last_completed_ago(self, pool_ids: List[str]) -> List[CooldownFact]:
        """Seconds since the last completed mutation, for pools that have one."""
        ...


@runtime_checkable
class ResourceControl(Protocol):
    async def probe_permissions(self, pool_ids: List[str]) -> bool:
        ...

    async def mutate(self, pool_id: str, settings: TargetSettings) -> MutationResult:
        """Submit a capacity change without waiting for it to apply."""
        ...


@runtime_checkable
class MonitorSink(Protocol):
    async def append(
        self,
        pool_id: str,
        prior_capacity: float,
        target_capacity: float,
        snapshot: UsageSnapshot,
        note: Optional[str] = None,
    ) -> None:
        ...


class NullMonitorSink:
    """Monitor sink used when no audit store is configured."""

    async def append(
        self,
        pool_id: str,
        prior_capacity: float,
        target_capacity: float,
        snapshot: UsageSnapshot,
        note: Optional[str] = None,
    ) -> None:
        return None
