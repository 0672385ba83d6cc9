"""XP, levels, achievements, daily goals and streaks."""
