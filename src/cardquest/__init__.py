"""cardquest: XP, levels, achievements, streaks and rankings for flashcard study."""

__version__ = "0.1.0"
