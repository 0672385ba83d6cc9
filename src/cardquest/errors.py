"""Error taxonomy shared by every gamification component."""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for engine failures."""


class NotFoundError(GamificationError, LookupError):
    """A referenced document does not exist (achievement, progress, streak, daily entry)."""


class InvalidError(GamificationError, ValueError):
    """Input or stored document content fails a structural or range check."""


class UnsupportedConditionError(GamificationError):
    """A CUSTOM achievement condition has no registered metric evaluator."""
