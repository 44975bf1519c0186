"""Level curve and EXP arithmetic.

Levels 1-5 come from a fixed table; from level 6 on every level costs
1.5x the previous cumulative threshold, rounded half up.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from readquest.progression.schemas import UserProgress

LEVEL_TABLE: dict[int, int] = {1: 0, 2: 100, 3: 250, 4: 500, 5: 1000}
LEVEL_GROWTH_FROM = max(LEVEL_TABLE)

EXP_PER_PAGE = 1
STREAK_BONUS_PER_DAY = 10
REVIEW_EXP = 50


@lru_cache(maxsize=256)
def exp_for_level(level: int) -> int:
    """Cumulative EXP required to reach ``level``."""
    if level <= 1:
        return 0
    if level in LEVEL_TABLE:
        return LEVEL_TABLE[level]

    exp = LEVEL_TABLE[LEVEL_GROWTH_FROM]
    for _ in range(LEVEL_GROWTH_FROM + 1, level + 1):
        # exp * 1.5 rounded half up, in integers
        exp = (3 * exp + 1) // 2
    return exp


def level_from_exp(exp: int) -> int:
    """Largest level whose threshold is <= exp."""
    level = 1
    while exp_for_level(level + 1) <= exp:
        level += 1
    return level


def exp_to_next_level(exp: int, level: int) -> int:
    return max(0, exp_for_level(level + 1) - exp)


def level_progress_percent(exp: int, level: int) -> int:
    """Progress through the current level bracket, 0-100."""
    current = exp_for_level(level)
    bracket = exp_for_level(level + 1) - current
    if bracket == 0:
        return 100

    progress = math.floor((exp - current) / bracket * 100 + 0.5)
    return min(100, max(0, progress))


def exp_from_pages(
    pages_read: int,
    streak_days: int = 0,
    bonus_per_day: int = STREAK_BONUS_PER_DAY,
) -> int:
    """EXP for a reading session: one per page plus the streak bonus."""
    exp = pages_read * EXP_PER_PAGE
    if streak_days > 0:
        exp += streak_days * bonus_per_day
    return exp


def apply_exp(progress: UserProgress, delta: int) -> bool:
    """Add (or remove) EXP and keep the level in sync.

    EXP never goes below zero. Returns True if the level went up.
    """
    old_level = progress.level
    progress.exp = max(0, progress.exp + delta)
    progress.level = level_from_exp(progress.exp)
    return progress.level > old_level


def level_info(exp: int) -> dict:
    """Summary of where ``exp`` sits on the level curve."""
    level = level_from_exp(exp)
    current = exp_for_level(level)
    return {
        "level": level,
        "exp": exp,
        "exp_into_level": exp - current,
        "exp_for_level": exp_for_level(level + 1) - current,
        "exp_to_next_level": exp_to_next_level(exp, level),
        "progress_percent": level_progress_percent(exp, level),
    }
