"""Discrete capacity ladder lookup."""

from typing import Iterable, List, Optional, Sequence, Union

from src.scaling.exceptions import ConfigurationError


def parse_ladder(value: Union[str, Iterable[Union[int, float, str]]]) -> List[float]:
    """Parse a ladder from a comma-separated string or a sequence of numbers.

    Args:
        value: ``"4,6,8"`` or ``[4, 6, 8]``

    Returns:
        List of floats in the given order

    Raises:
        ConfigurationError: If any element is not a number
    """
    if isinstance(value, str):
        items = [p.strip() for p in value.split(",") if p.strip()]
    else:
        items = list(value)

    parsed = []
    for item in items:
        try:
            parsed.append(float(item))
        except (TypeError, ValueError):
            raise ConfigurationError("Capacity list must be a comma-separated list of numbers")
    return parsed


class CapacityLadder:
    """Ordered capacity levels with an index-aligned per-unit maximum."""

    def __init__(self, levels: Sequence[float], per_unit_maximums: Sequence[float]):
        """Initialize the ladder.

        Args:
            levels: Supported capacity levels, strictly ascending
            per_unit_maximums: Per-unit maximum for each level

        Raises:
            ConfigurationError: If the sequences are empty, misaligned,
                negative or not strictly ascending
        """
        self._levels = tuple(float(level) for level in levels)
        self._maximums = tuple(float(m) for m in per_unit_maximums)
        self._validate()

    def _validate(self) -> None:
        if not self._levels:
            raise ConfigurationError("Capacity ladder must not be empty")
        if len(self._levels) != len(self._maximums):
            raise ConfigurationError(
                "Capacity levels and per-unit maximums must have the same number of elements"
            )
        if any(v < 0 for v in self._levels + self._maximums):
            raise ConfigurationError("Capacity ladder values must not be negative")
        for lower, higher in zip(self._levels, self._levels[1:]):
            if higher <= lower:
                raise ConfigurationError("Capacity levels must be strictly ascending")

    @property
    def levels(self) -> tuple:
        return self._levels

    @property
    def per_unit_maximums(self) -> tuple:
        return self._maximums

    def __len__(self) -> int:
        return len(self._levels)

    def __contains__(self, level: float) -> bool:
        return self.index_of(level) is not None

    def __repr__(self) -> str:
        return f"CapacityLadder(levels={list(self._levels)}, per_unit_maximums={list(self._maximums)})"

    def index_of(self, level: float) -> Optional[int]:
        """Return the position of an exact match, or None."""
        try:
            return self._levels.index(float(level))
        except (TypeError, ValueError):
            return None

    def next_higher(self, index: int) -> float:
        """Level one step above ``index``; the top level stays put."""
        return self._levels[min(index + 1, len(self._levels) - 1)]

    def next_lower(self, index: int) -> float:
        """Level one step below ``index``; the bottom level stays put."""
        return self._levels[max(index - 1, 0)]

    def per_unit_max_at(self, level: float) -> float:
        """Per-unit maximum aligned with ``level``.

        Raises:
            KeyError: If ``level`` is not on the ladder
        """
        index = self.index_of(level)
        if index is None:
            raise KeyError(f"Capacity {level} is not on the ladder")
        return self._maximums[index]
