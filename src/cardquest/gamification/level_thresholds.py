"""Level thresholds and computation.

Level ``n`` starts at ``100 * (n - 1) ** 2`` cumulative XP, so a new user is
level 1 at 0 XP and the curve is a non-decreasing step function.
"""

from __future__ import annotations

from bisect import bisect_right

from cardquest.errors import InvalidError
from cardquest.gamification.schemas import LevelUpInfo

MAX_LEVEL = 100

_TITLES: list[tuple[int, str]] = [
    (1, "Novice"),
    (5, "Learner"),
    (10, "Scholar"),
    (20, "Expert"),
    (30, "Master"),
    (50, "Sage"),
    (75, "Legend"),
]


def _title_for(level: int) -> str:
    title = _TITLES[0][1]
    for start, name in _TITLES:
        if level >= start:
            title = name
    return title


def xp_for_level(level: int) -> int:
    """Cumulative XP needed to reach ``level``."""
    if level < 1:
        raise InvalidError("Level must be >= 1")
    return 100 * (level - 1) ** 2


LEVEL_THRESHOLDS: list[dict] = [
    {
        "level": n,
        "title": _title_for(n),
        "xp_required": xp_for_level(n) - (xp_for_level(n - 1) if n > 1 else 0),
        "cumulative": xp_for_level(n),
    }
    for n in range(1, MAX_LEVEL + 1)
]

_CUMULATIVE = [t["cumulative"] for t in LEVEL_THRESHOLDS]


def level_for_xp(total_xp: int) -> int:
    if total_xp < 0:
        raise InvalidError("Total XP must be >= 0")
    return LEVEL_THRESHOLDS[bisect_right(_CUMULATIVE, total_xp) - 1]["level"]


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP."""
    idx = bisect_right(_CUMULATIVE, max(total_xp, 0)) - 1
    current = LEVEL_THRESHOLDS[idx]
    next_level = LEVEL_THRESHOLDS[min(idx + 1, len(LEVEL_THRESHOLDS) - 1)]

    xp_into_level = total_xp - current["cumulative"]
    xp_for_next = next_level["cumulative"] - current["cumulative"]

    # At max level, avoid division by zero
    if xp_for_next == 0:
        xp_for_next = 1

    return {
        "level": current["level"],
        "title": current["title"],
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_next,
        "next_level": next_level["level"],
        "next_title": next_level["title"],
    }


def check_level_up(old_total_xp: int, new_total_xp: int) -> LevelUpInfo:
    """Describe the level change caused by moving from one XP total to another."""
    if old_total_xp < 0 or new_total_xp < 0:
        raise InvalidError("XP totals must be >= 0")
    if new_total_xp < old_total_xp:
        raise InvalidError("New XP total cannot be lower than the old one")

    old_level = level_for_xp(old_total_xp)
    new_level = level_for_xp(new_total_xp)
    return LevelUpInfo(
        leveled_up=new_level > old_level,
        old_level=old_level,
        new_level=new_level,
        levels_gained=new_level - old_level,
    )
