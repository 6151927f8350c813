"""Scaling controller: one evaluation cycle across the configured pools."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from src.scaling.config import AutoScalerConfig
from src.scaling.eligibility import EligibilityFilter, EligibilityResult
from src.scaling.engine import calculate_target_settings
from src.scaling.errors import ErrorRecorder
from src.scaling.exceptions import (
    MetricsUnavailableError,
    PermissionCheckError,
    TransientStoreError,
)
from src.scaling.interfaces import (
    CooldownProvider,
    MetricsProvider,
    MonitorSink,
    NullMonitorSink,
    ResourceControl,
    TransitionProvider,
)
from src.scaling.models import (
    MutationResult,
    OutcomeKind,
    PoolEvaluation,
    ScalingAction,
    TargetOutcome,
    UsageSnapshot,
)
from src.scaling.retry import call_with_retry

logger = logging.getLogger(__name__)

DEFERRED_NOTE = "Deferred: pool busy with a conflicting operation, will retry next cycle"


def _default_is_transient(error: BaseException) -> bool:
    return isinstance(error, TransientStoreError)


class ScalingController:
    """Runs evaluation cycles for the configured pools.

    Holds no state between cycles apart from ``last_evaluations``, which is
    informational only. Transition and cooldown facts are re-read from the
    collaborators on every cycle.
    """

    def __init__(
        self,
        config: AutoScalerConfig,
        metrics: MetricsProvider,
        transitions: TransitionProvider,
        cooldowns: CooldownProvider,
        resource_control: ResourceControl,
        monitor: Optional[MonitorSink] = None,
        errors: Optional[ErrorRecorder] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the scaling controller.

        Args:
            config: Validated autoscaler configuration
            metrics: Usage sampler
            transitions: Source of in-flight mutations
            cooldowns: Source of last completed mutations
            resource_control: Control plane used to change capacity
            monitor: Audit sink; None disables auditing
            errors: Error sink
            sleep: Awaitable sleep used between retries
        """
        self.config = config
        self.metrics = metrics
        self.transitions = transitions
        self.cooldowns = cooldowns
        self.resource_control = resource_control
        self.monitor = monitor or NullMonitorSink()
        self.errors = errors or ErrorRecorder(server_name=config.server_name)
        self._sleep = sleep
        self.eligibility = EligibilityFilter(
            cooldown_seconds=config.cooldown_seconds,
            max_expected_mutation_seconds=config.max_expected_mutation_seconds,
        )
        self.last_evaluations: List[PoolEvaluation] = []

    def _label(self, pool_id: str) -> str:
        if self.config.server_name:
            return f"{self.config.server_name}.{pool_id}"
        return pool_id

    async def _call(self, collaborator, method: str, *args):
        """Call a collaborator method through the retry wrapper."""
        is_transient = getattr(collaborator, "is_transient", _default_is_transient)
        return await call_with_retry(
            getattr(collaborator, method),
            self.config.retry,
            is_transient,
            *args,
            sleep=self._sleep,
        )

    async def run_cycle(self) -> bool:
        """Run one full evaluation cycle.

        Returns:
            True if at least one pool was evaluated

        Raises:
            PermissionCheckError: If access to any configured pool is not verified
            MetricsUnavailableError: If the usage sample for the batch failed
        """
        self.last_evaluations = []
        server = self.config.server_name
        logger.info("=" * 80)
        logger.info(f"AutoScaler run for server {server}")

        await self.check_permissions()

        eligibility = await self.eligible_pools()
        if eligibility.is_empty:
            logger.info(f"No pools to evaluate this time for server {server}.")
            return False

        snapshots = await self.sample_usage(eligibility.eligible)
        if not snapshots:
            logger.info(f"No usage samples returned for server {server}.")
            return False

        self.last_evaluations = list(
            await asyncio.gather(*(self.evaluate_pool(s) for s in snapshots))
        )
        return True

    async def check_permissions(self) -> None:
        """Verify access to every configured pool; fail closed otherwise."""
        pool_ids = self.config.pool_ids
        try:
            allowed = await self._call(self.resource_control, "probe_permissions", pool_ids)
        except Exception as e:
            await self.errors.record("Error while checking permissions to access the configured pools.", e)
            raise PermissionCheckError() from e

        if not allowed:
            await self.errors.record("Insufficient permissions to access the configured pools.")
            raise PermissionCheckError()

    async def eligible_pools(self) -> EligibilityResult:
        """Read transition and cooldown facts and filter the configured pools."""
        pool_ids = self.config.pool_ids
        if not pool_ids:
            return EligibilityResult()

        try:
            transitions = await self._call(self.transitions, "list_in_transition", pool_ids)
        except Exception as e:
            await self.errors.record(f"{self.config.server_name}: Failed to retrieve pool transition status.", e)
            raise

        try:
            cooldowns = await self._call(self.cooldowns, "last_completed_ago", pool_ids)
        except Exception as e:
            await self.errors.record(f"{self.config.server_name}: Failed to retrieve last completed mutations.", e)
            raise

        for fact in transitions or ():
            logger.info(f"Pool {fact.pool_id} is in state {fact.state.name}")

        result = self.eligibility.pools_to_consider(pool_ids, transitions, cooldowns)

        for fact in result.stuck:
            await self.errors.warn(
                f"Pool {fact.pool_id} has been in transition for {fact.elapsed_seconds:g} seconds. "
                f"This is longer than the configured expected max mutation time of "
                f"{self.config.max_expected_mutation_seconds}."
            )
        if result.in_transition:
            logger.info(f"Skipping pools in transition: {', '.join(result.in_transition)}")
        if result.in_cooldown:
            logger.info(
                f"Skipping recently scaled pools due to cooldown period: {', '.join(result.in_cooldown)}"
            )
        return result

    async def sample_usage(self, pool_ids: List[str]) -> List[UsageSnapshot]:
        """Sample usage for the eligible pools.

        Raises:
            MetricsUnavailableError: If the sample failed or returned None
        """
        server = self.config.server_name
        try:
            samples: Optional[Dict[str, UsageSnapshot]] = await self._call(
                self.metrics, "sample", pool_ids
            )
        except Exception as e:
            await self.errors.record(f"{server}: Error while sampling pool metrics.", e)
            raise MetricsUnavailableError(server) from e

        if samples is None:
            await self.errors.record(f"Unexpected: usage sampling returned nothing for server {server}.")
            raise MetricsUnavailableError(server)

        sampled = {key.casefold() for key in samples}
        missing = [p for p in pool_ids if p.casefold() not in sampled]
        if missing:
            logger.info(f"No usage sample for pools: {', '.join(missing)}")

        return list(samples.values())

    def decide(self, snapshot: UsageSnapshot) -> TargetOutcome:
        """Run the decision engine for one snapshot with the pool's floor."""
        return calculate_target_settings(
            snapshot,
            floor=self.config.floor_for(snapshot.pool_id),
            ceiling=self.config.ceiling,
            ladder=self.config.ladder,
            thresholds=self.config.thresholds,
        )

    async def evaluate_pool(self, snapshot: UsageSnapshot) -> PoolEvaluation:
        """Evaluate and act on one pool; failures never escape."""
        try:
            return await self._evaluate_pool(snapshot)
        except Exception as e:
            await self.errors.record(f"{self._label(snapshot.pool_id)}: Error while evaluating pool.", e)
            return PoolEvaluation(
                pool_id=snapshot.pool_id,
                current_capacity=snapshot.current_capacity,
                target_capacity=snapshot.current_capacity,
                action=ScalingAction.HOLD,
                status="failed",
                detail=str(e),
            )

    async def _evaluate_pool(self, snapshot: UsageSnapshot) -> PoolEvaluation:
        label = self._label(snapshot.pool_id)
        logger.info(f"--=> Evaluating pool {label} <=--")
        logger.info(str(snapshot))

        outcome = self.decide(snapshot)
        current = snapshot.current_capacity
        target = outcome.target_capacity

        def evaluation(status: str, detail: str = "") -> PoolEvaluation:
            return PoolEvaluation(
                pool_id=snapshot.pool_id,
                current_capacity=current,
                target_capacity=target,
                action=outcome.action,
                status=status,
                detail=detail,
            )

        if outcome.kind is OutcomeKind.ANOMALOUS_CAPACITY:
            await self.errors.record(f"{label}: {outcome.reason}")
            return evaluation("anomaly", outcome.reason)

        if outcome.action is ScalingAction.UP and target > current:
            logger.warning(f"EVALUATION RESULT: HIGH threshold crossed for {label} ({outcome.reason}).")
        elif outcome.action is ScalingAction.DOWN and target < current:
            logger.warning(f"EVALUATION RESULT: LOW threshold crossed for {label} ({outcome.reason}).")
        elif outcome.action is ScalingAction.HOLD:
            logger.info(f"EVALUATION RESULT: HOLD for {label}, no change required.")
        else:
            logger.info(f"EVALUATION RESULT: {outcome.action.name} for {label}, {outcome.reason}.")

        if not outcome.requires_change:
            return evaluation("hold", outcome.reason)

        if self.config.dry_run:
            logger.warning(f"DRY RUN ENABLED: Would have scaled {label} from {current:g} to {target:g}")
            return evaluation("dry_run", outcome.reason)

        logger.warning(f"ACTION!: Scaling {label} from {current:g} to {target:g}")
        result = await self._call(
            self.resource_control, "mutate", snapshot.pool_id, outcome.target
        )

        if result is MutationResult.CONFLICT:
            logger.warning(
                f"{label}: Scaling deferred, the pool is busy with a conflicting operation. "
                f"Will retry on next execution cycle."
            )
            await self._audit(snapshot, target, DEFERRED_NOTE)
            return evaluation("deferred", DEFERRED_NOTE)

        logger.warning(f"{label}: Scaling operation submitted.")
        await self._audit(snapshot, target)
        return evaluation("submitted", outcome.reason)

    async def _audit(self, snapshot: UsageSnapshot, target: float, note: Optional[str] = None) -> None:
        try:
            await self.monitor.append(
                snapshot.pool_id,
                snapshot.current_capacity,
                target,
                snapshot,
                note,
            )
        except Exception as e:
            await self.errors.record(f"{self._label(snapshot.pool_id)}: Error while writing the audit record.", e)

    async def close(self) -> None:
        """Release connections held by the collaborators and the error sink."""
        closed = set()
        for collaborator in (
            self.metrics,
            self.transitions,
            self.cooldowns,
            self.resource_control,
            self.monitor,
            self.errors,
        ):
            close = getattr(collaborator, "close", None)
            if close is None or id(collaborator) in closed:
                continue
            closed.add(id(collaborator))
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(collaborator).__name__}: {e}")
