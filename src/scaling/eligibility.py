"""Eligibility filter: which pools are safe to evaluate this cycle."""

from dataclasses import dataclass, field
from typing import Iterable, List

from src.scaling.models import CooldownFact, TransitionFact, TransitionState


@dataclass
class EligibilityResult:
    """Pools to evaluate and why the others were left out."""

    eligible: List[str] = field(default_factory=list)
    in_transition: List[str] = field(default_factory=list)
    in_cooldown: List[str] = field(default_factory=list)
    stuck: List[TransitionFact] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.eligible


class EligibilityFilter:
    """Excludes pools that are mid-mutation or were mutated too recently.

    Pool names are compared case-insensitively; the configured spelling is
    kept in the result.
    """

    def __init__(self, cooldown_seconds: float, max_expected_mutation_seconds: float):
        """Initialize the filter.

        Args:
            cooldown_seconds: Quiet period after a completed mutation
            max_expected_mutation_seconds: Longer in-progress mutations are
                reported as stuck
        """
        self.cooldown_seconds = cooldown_seconds
        self.max_expected_mutation_seconds = max_expected_mutation_seconds

    def is_stuck(self, fact: TransitionFact) -> bool:
        return (
            fact.state is TransitionState.IN_PROGRESS
            and fact.elapsed_seconds > self.max_expected_mutation_seconds
        )

    def pools_to_consider(
        self,
        configured: Iterable[str],
        transitions: Iterable[TransitionFact],
        cooldowns: Iterable[CooldownFact],
    ) -> EligibilityResult:
        """Compute configured pools minus in-transition and in-cooldown pools.

        Args:
            configured: Configured pool names
            transitions: Observed mutations (any state)
            cooldowns: Seconds since the last completed mutation, per pool

        Returns:
            EligibilityResult; an empty ``eligible`` list is a normal outcome
        """
        result = EligibilityResult()

        transitioning = set()
        for fact in transitions or ():
            if not fact.state.is_active:
                continue
            transitioning.add(fact.pool_id.casefold())
            if self.is_stuck(fact):
                result.stuck.append(fact)

        cooling = {
            fact.pool_id.casefold()
            for fact in cooldowns or ()
            if fact.seconds_since < self.cooldown_seconds
        }

        for pool_id in configured:
            key = pool_id.casefold()
            if key in transitioning:
                result.in_transition.append(pool_id)
            elif key in cooling:
                result.in_cooldown.append(pool_id)
            else:
                result.eligible.append(pool_id)

        return result
