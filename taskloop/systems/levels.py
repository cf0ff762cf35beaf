"""
Level Calculation Module
Derives levels from accumulated experience using cumulative threshold tables.
"""

from typing import Sequence


def level_from_xp(xp: int, thresholds: Sequence[int]) -> int:
    """
    Compute the level reached with `xp` experience.

    Thresholds are the cumulative minimum XP per level, ascending, starting at
    level 1 (e.g. the 5e table [0, 300, 900, 2700, ...]).

    Args:
        xp: Accumulated experience
        thresholds: Ascending cumulative XP table

    Returns:
        int: Number of thresholds <= xp, never less than 1
    """
    level = sum(1 for minimum in thresholds if minimum <= xp)
    return max(1, level)
