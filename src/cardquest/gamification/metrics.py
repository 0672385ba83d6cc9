"""Custom achievement metrics.

CUSTOM conditions name a metric in ``condition.params["metric"]``; the
engine asks the registry for the user's current value and compares it to
the condition target. Metrics the surrounding application owns (profile
completion, marketplace activity, ...) are registered by that application.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cardquest.errors import InvalidError, UnsupportedConditionError
from cardquest.gamification.day_utils import local_hour
from cardquest.gamification.progress_store import ProgressStore

logger = logging.getLogger(__name__)

MetricEvaluator = Callable[[str, dict[str, Any]], Awaitable[float]]


class MetricRegistry:
    """Maps metric name -> ``evaluator(user_id, params) -> actual value``."""

    def __init__(self) -> None:
        self._evaluators: dict[str, MetricEvaluator] = {}

    def register(self, name: str, evaluator: MetricEvaluator) -> None:
        if not name or not name.strip():
            raise InvalidError("Metric name is required")
        name = name.strip()
        if name in self._evaluators:
            logger.debug("Replacing evaluator for metric %s", name)
        self._evaluators[name] = evaluator

    def unregister(self, name: str) -> None:
        self._evaluators.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._evaluators

    @property
    def names(self) -> list[str]:
        return sorted(self._evaluators)

    async def evaluate(self, name: str | None, user_id: str, params: dict[str, Any] | None = None) -> float:
        evaluator = self._evaluators.get(name) if name else None
        if evaluator is None:
            raise UnsupportedConditionError(f"No evaluator registered for metric {name!r}")
        return await evaluator(user_id, params or {})


def register_builtin_metrics(registry: MetricRegistry, progress: ProgressStore, tz: str = "UTC") -> MetricRegistry:
    """Register the metrics derivable from daily progress and study sessions."""

    async def cards_reviewed_single_day(user_id: str, params: dict[str, Any]) -> float:
        days = await progress.list_daily_progress(user_id)
        return max((d.cards_reviewed for d in days), default=0)

    async def days_goal_met(user_id: str, params: dict[str, Any]) -> float:
        return len(await progress.list_goal_met_dates(user_id))

    async def study_sessions_before_hour(user_id: str, params: dict[str, Any]) -> float:
        hour = int(params.get("hour", 8))
        sessions = await progress.get_study_sessions(user_id)
        return sum(1 for s in sessions if local_hour(s.timestamp, tz) < hour)

    async def study_sessions_after_hour(user_id: str, params: dict[str, Any]) -> float:
        hour = int(params.get("hour", 22))
        sessions = await progress.get_study_sessions(user_id)
        return sum(1 for s in sessions if local_hour(s.timestamp, tz) >= hour)

    async def unique_decks_studied(user_id: str, params: dict[str, Any]) -> float:
        sessions = await progress.get_study_sessions(user_id)
        return len({s.deck_id for s in sessions if s.deck_id})

    registry.register("cards_reviewed_single_day", cards_reviewed_single_day)
    registry.register("days_goal_met", days_goal_met)
    registry.register("study_sessions_before_hour", study_sessions_before_hour)
    registry.register("study_sessions_after_hour", study_sessions_after_hour)
    registry.register("unique_decks_studied", unique_decks_studied)
    return registry
