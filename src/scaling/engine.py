"""Decision engine: usage snapshot to target capacity.

Everything in this module is a pure function of its arguments. Nothing here
logs, sleeps or touches a collaborator, so the same inputs always produce
the same outcome.
"""

from src.scaling.config import ThresholdSet
from src.scaling.ladder import CapacityLadder
from src.scaling.models import (
    OutcomeKind,
    ScalingAction,
    TargetOutcome,
    TargetSettings,
    UsageSnapshot,
)

# Per-unit minimum is not configurable.
PER_UNIT_MIN_CAPACITY = 0


def classify(snapshot: UsageSnapshot, thresholds: ThresholdSet) -> ScalingAction:
    """Classify scaling intent with dual-window hysteresis.

    Up when any channel has both windows at or above its High threshold.
    Down only when every channel has both windows at or below its Low
    threshold. Up wins over Down, Down over Hold.

    Args:
        snapshot: Usage of one pool
        thresholds: Low/High thresholds per channel

    Returns:
        The scaling action
    """
    usage = snapshot.channels()
    limits = thresholds.channels()

    scale_up = any(
        usage[name].short_avg >= limits[name].high and usage[name].long_avg >= limits[name].high
        for name in limits
    )
    scale_down = all(
        usage[name].short_avg <= limits[name].low and usage[name].long_avg <= limits[name].low
        for name in limits
    )

    if scale_up:
        return ScalingAction.UP
    if scale_down:
        return ScalingAction.DOWN
    return ScalingAction.HOLD


def step_target(
    current: float,
    action: ScalingAction,
    floor: float,
    ceiling: float,
    ladder: CapacityLadder,
) -> TargetOutcome:
    """Translate an action into a stepped, clamped target capacity.

    Args:
        current: Current capacity of the pool
        action: Scaling action from ``classify``
        floor: Resolved floor (pool override or global floor)
        ceiling: Global ceiling
        ladder: Supported capacity levels

    Returns:
        TargetOutcome; ``ANOMALOUS_CAPACITY`` with the current capacity as
        target when ``current`` is not on the ladder
    """
    index = ladder.index_of(current)
    if index is None:
        return TargetOutcome(
            kind=OutcomeKind.ANOMALOUS_CAPACITY,
            action=action,
            current_capacity=current,
            target=None,
            reason=f"current capacity {current:g} is not on the capacity ladder",
        )

    if action is ScalingAction.UP:
        if current < floor:
            target, reason = floor, f"below floor {floor:g}, raising to floor"
        elif current >= ceiling:
            target, reason = ceiling, f"at or above ceiling {ceiling:g}, keeping at ceiling"
        else:
            target, reason = ladder.next_higher(index), "high threshold crossed"
    elif action is ScalingAction.DOWN:
        if current > ceiling:
            target, reason = ceiling, f"above ceiling {ceiling:g}, lowering to ceiling"
        elif current <= floor:
            target, reason = floor, f"at or below floor {floor:g}, keeping at floor"
        else:
            target, reason = ladder.next_lower(index), "low threshold crossed"
    else:
        target, reason = current, "no change required"

    return TargetOutcome(
        kind=OutcomeKind.OK,
        action=action,
        current_capacity=current,
        target=TargetSettings(
            capacity=target,
            per_unit_max=ladder.per_unit_max_at(target),
            per_unit_min=PER_UNIT_MIN_CAPACITY,
        ),
        reason=reason,
    )


def calculate_target_settings(
    snapshot: UsageSnapshot,
    floor: float,
    ceiling: float,
    ladder: CapacityLadder,
    thresholds: ThresholdSet,
) -> TargetOutcome:
    """Compute the target settings for one pool.

    Args:
        snapshot: Usage of the pool, including its current capacity
        floor: Resolved floor for the pool
        ceiling: Global ceiling
        ladder: Supported capacity levels
        thresholds: Low/High thresholds per channel

    Returns:
        TargetOutcome; the caller issues no change when
        ``outcome.requires_change`` is False
    """
    action = classify(snapshot, thresholds)
    return step_target(snapshot.current_capacity, action, floor, ceiling, ladder)
