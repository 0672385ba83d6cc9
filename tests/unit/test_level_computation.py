"""Level computation tests: quadratic thresholds, titles and level-up detection."""

import pytest

from cardquest.errors import InvalidError
from cardquest.gamification.level_thresholds import (
    LEVEL_THRESHOLDS,
    MAX_LEVEL,
    check_level_up,
    compute_level,
    level_for_xp,
    xp_for_level,
)


class TestThresholds:
    """Test the level threshold table."""

    def test_first_levels(self):
        """Level n starts at 100 * (n - 1)^2 cumulative XP."""
        assert xp_for_level(1) == 0
        assert xp_for_level(2) == 100
        assert xp_for_level(3) == 400
        assert xp_for_level(10) == 8100

    def test_table_covers_all_levels(self):
        """The table runs from level 1 to MAX_LEVEL."""
        assert len(LEVEL_THRESHOLDS) == MAX_LEVEL
        assert LEVEL_THRESHOLDS[0]["cumulative"] == 0
        assert LEVEL_THRESHOLDS[-1]["level"] == MAX_LEVEL

    def test_thresholds_are_increasing(self):
        """Cumulative thresholds are strictly increasing."""
        cumulative = [t["cumulative"] for t in LEVEL_THRESHOLDS]
        assert cumulative == sorted(cumulative)
        assert len(set(cumulative)) == len(cumulative)

    def test_level_zero_rejected(self):
        """Levels start at 1."""
        with pytest.raises(InvalidError):
            xp_for_level(0)


class TestLevelForXP:
    """Test level_for_xp."""

    def test_new_user_is_level_one(self):
        """Zero XP is level 1."""
        assert level_for_xp(0) == 1

    def test_boundaries(self):
        """A level is reached exactly at its threshold."""
        assert level_for_xp(99) == 1
        assert level_for_xp(100) == 2
        assert level_for_xp(399) == 2
        assert level_for_xp(400) == 3

    def test_capped_at_max_level(self):
        """Huge totals stop at MAX_LEVEL."""
        assert level_for_xp(10**9) == MAX_LEVEL

    def test_negative_rejected(self):
        """Negative totals are rejected."""
        with pytest.raises(InvalidError):
            level_for_xp(-1)


class TestComputeLevel:
    """Test compute_level."""

    def test_zero_xp(self):
        """Returns the level-1 display dict for a new user."""
        info = compute_level(0)
        assert info["level"] == 1
        assert info["title"] == "Novice"
        assert info["xp_into_level"] == 0
        assert info["xp_for_level"] == 100
        assert info["next_level"] == 2

    def test_mid_level(self):
        """XP into the level is measured from its threshold."""
        info = compute_level(250)
        assert info["level"] == 2
        assert info["xp_into_level"] == 150
        assert info["xp_for_level"] == 300

    def test_title_changes_at_level_five(self):
        """Titles switch at their starting level."""
        assert compute_level(xp_for_level(5) - 1)["title"] == "Novice"
        assert compute_level(xp_for_level(5))["title"] == "Learner"

    def test_max_level_has_no_division_by_zero(self):
        """The top level reports a span of 1."""
        info = compute_level(10**9)
        assert info["level"] == MAX_LEVEL
        assert info["next_level"] == MAX_LEVEL
        assert info["xp_for_level"] == 1
        assert info["title"] == "Legend"


class TestCheckLevelUp:
    """Test check_level_up."""

    def test_no_change(self):
        """Staying inside a level is not a level-up."""
        info = check_level_up(10, 50)
        assert info.leveled_up is False
        assert info.levels_gained == 0

    def test_single_level(self):
        """Crossing one threshold gains one level."""
        info = check_level_up(0, 100)
        assert info.leveled_up is True
        assert (info.old_level, info.new_level) == (1, 2)

    def test_multiple_levels(self):
        """One grant can cross several thresholds."""
        info = check_level_up(50, 450)
        assert info.old_level == 1
        assert info.new_level == 3
        assert info.levels_gained == 2

    def test_decreasing_total_rejected(self):
        """Totals never go down."""
        with pytest.raises(InvalidError):
            check_level_up(500, 100)

    def test_negative_total_rejected(self):
        """Negative totals are rejected."""
        with pytest.raises(InvalidError):
            check_level_up(-5, 10)
