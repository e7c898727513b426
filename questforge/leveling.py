"""Experience and leveling rules for QuestForge.

Levels follow a 1.5-power curve: going from level L-1 to L costs
``floor(100 * (L - 1) ** 1.5)`` XP. Low HP reduces XP gains.
"""

import math
from typing import NamedTuple

from questforge.models import Stats

BASE_XP = 100
LEVEL_EXPONENT = 1.5

# XP penalty band: full XP above 50 HP, scaled 40%..100% between 10 and 50 HP
PENALTY_MIN_HP = 10
PENALTY_MAX_HP = 50
PENALTY_MIN_SCALE = 0.4
PENALTY_MAX_SCALE = 1.0


class LevelInfo(NamedTuple):
    level: int
    xp_in_level: int
    xp_to_next_level: int


def xp_required_for_level(level: int) -> int:
    """Calculate the XP needed to advance from ``level - 1`` to ``level``.

    Args:
        level: The target level

    Returns:
        0 for level 1 and below, otherwise floor(BASE_XP * (level - 1) ** 1.5)
    """
    if level <= 1:
        return 0
    return math.floor(BASE_XP * (level - 1) ** LEVEL_EXPONENT)


def calculate_level_info(total_xp: int) -> LevelInfo:
    """Calculate level and in-level progress from total XP.

    Walks up from level 1, subtracting each level's cost while the total
    still covers it. The cost grows with every level, so this stops after
    O(level) steps.

    Args:
        total_xp: Total accumulated experience points

    Returns:
        LevelInfo with the current level, XP earned inside that level and
        the XP that level needs in total before the next level-up

    Example:
        >>> calculate_level_info(0)
        LevelInfo(level=1, xp_in_level=0, xp_to_next_level=100)
    """
    level = 1
    accumulated = 0
    next_cost = xp_required_for_level(level + 1)

    while total_xp >= accumulated + next_cost:
        accumulated += next_cost
        level += 1
        next_cost = xp_required_for_level(level + 1)

    return LevelInfo(level=level, xp_in_level=total_xp - accumulated, xp_to_next_level=next_cost)


def level_progress(total_xp: int) -> float:
    """Fraction (0.0-1.0) of the current level completed, for progress bars."""
    info = calculate_level_info(total_xp)
    if info.xp_to_next_level <= 0:
        return 0.0
    return min(1.0, max(0.0, info.xp_in_level / info.xp_to_next_level))


def did_level_up(old_total_xp: int, new_total_xp: int) -> bool:
    return calculate_level_info(new_total_xp).level > calculate_level_info(old_total_xp).level


def total_xp(stats: Stats) -> int:
    return stats.total


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def get_adjusted_exp(base_exp: int, current_hp: int) -> int:
    """Apply the low-health penalty to an XP gain.

    Args:
        base_exp: XP the action is worth
        current_hp: The player's HP at the time of the action

    Returns:
        ``base_exp`` above 50 HP, exactly 1 below 10 HP, otherwise
        ``base_exp`` scaled linearly from 40% (10 HP) to 100% (50 HP),
        rounded half up and never below 1
    """
    if current_hp > PENALTY_MAX_HP:
        return base_exp
    if current_hp < PENALTY_MIN_HP:
        return 1

    hp_fraction = (current_hp - PENALTY_MIN_HP) / (PENALTY_MAX_HP - PENALTY_MIN_HP)
    scale = PENALTY_MIN_SCALE + hp_fraction * (PENALTY_MAX_SCALE - PENALTY_MIN_SCALE)
    return max(1, _round_half_up(base_exp * scale))
