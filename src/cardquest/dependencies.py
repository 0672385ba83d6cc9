"""Composition root: wires every gamification component onto one store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from cardquest.competition.ranking_service import RankingAggregator
from cardquest.config import Settings, get_settings
from cardquest.gamification.achievement_catalog import AchievementCatalog
from cardquest.gamification.achievement_engine import AchievementEngine
from cardquest.gamification.activity import ActivityRecorder
from cardquest.gamification.daily_goal_service import DailyGoalService
from cardquest.gamification.metrics import MetricRegistry, register_builtin_metrics
from cardquest.gamification.progress_store import ProgressStore
from cardquest.gamification.statistics_service import StatisticsService
from cardquest.gamification.streak_service import StreakTracker
from cardquest.gamification.xp_service import XPLedger
from cardquest.store.gateway import PersistenceGateway


@dataclass
class Services:
    store: PersistenceGateway
    progress: ProgressStore
    ledger: XPLedger
    daily_goals: DailyGoalService
    streaks: StreakTracker
    catalog: AchievementCatalog
    metrics: MetricRegistry
    engine: AchievementEngine
    statistics: StatisticsService
    activity: ActivityRecorder
    rankings: RankingAggregator


def build_services(
    store: PersistenceGateway,
    redis: object = None,
    settings: Settings | None = None,
) -> Services:
    """Build the component graph with explicit dependencies (no module-level clients)."""
    settings = settings or get_settings()
    progress = ProgressStore(store)
    ledger = XPLedger(store, progress, redis)
    daily_goals = DailyGoalService(progress, ledger, target=settings.daily_goal_target, tz=settings.timezone)
    streaks = StreakTracker(
        store, progress, ledger, redis,
        bonus_7=settings.streak_bonus_xp_7,
        bonus_30=settings.streak_bonus_xp_30,
        tz=settings.timezone,
    )
    catalog = AchievementCatalog(store)
    metrics = register_builtin_metrics(MetricRegistry(), progress, tz=settings.timezone)
    engine = AchievementEngine(
        store, catalog, progress, ledger, streaks, metrics, redis,
        reconcile_grace=timedelta(minutes=settings.reward_reconcile_grace_minutes),
    )
    statistics = StatisticsService(
        store, progress, ledger,
        tz=settings.timezone,
        weekly_review_goal=settings.weekly_review_goal,
        monthly_review_goal=settings.monthly_review_goal,
    )
    return Services(
        store=store,
        progress=progress,
        ledger=ledger,
        daily_goals=daily_goals,
        streaks=streaks,
        catalog=catalog,
        metrics=metrics,
        engine=engine,
        statistics=statistics,
        activity=ActivityRecorder(progress, ledger, daily_goals, streaks, engine, statistics),
        rankings=RankingAggregator(
            store, progress, ledger, tz=settings.timezone, top_default=settings.ranking_top_default,
        ),
    )
