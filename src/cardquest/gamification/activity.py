"""Application event entry points: reviews, card/deck creation and study sessions.

Each recorder call appends to the XP ledger, updates daily and cumulative
progress, and re-evaluates only the achievement types the event can affect.
"""

from __future__ import annotations

import logging
from datetime import datetime

from cardquest.gamification.achievement_engine import AchievementEngine
from cardquest.gamification.constants import XP_VALUES
from cardquest.gamification.daily_goal_service import DailyGoalService
from cardquest.gamification.progress_store import ProgressStore
from cardquest.gamification.schemas import (
    ActivityResult,
    AchievementType,
    ReviewDifficulty,
    XPSource,
)
from cardquest.gamification.statistics_service import StatisticsService
from cardquest.gamification.streak_service import StreakTracker
from cardquest.gamification.xp_service import XPLedger

logger = logging.getLogger(__name__)

_XP_TYPES = [AchievementType.XP_TOTAL, AchievementType.LEVEL_REACHED]


class ActivityRecorder:
    def __init__(
        self,
        progress: ProgressStore,
        ledger: XPLedger,
        daily_goals: DailyGoalService,
        streaks: StreakTracker,
        engine: AchievementEngine,
        statistics: StatisticsService | None = None,
    ) -> None:
        self.progress = progress
        self.ledger = ledger
        self.daily_goals = daily_goals
        self.streaks = streaks
        self.engine = engine
        self.statistics = statistics

    async def record_review(
        self,
        user_id: str,
        card_id: str,
        difficulty: ReviewDifficulty | str,
        date: str | None = None,
    ) -> ActivityResult:
        """Record one card review.

        When this review first meets the daily goal, the goal reward is
        credited and the streak recomputed before achievements are checked.
        """
        xp = await self.ledger.process_card_review(user_id, card_id, difficulty)
        await self.progress.increment_cards_reviewed(user_id)
        daily, just_met = await self.daily_goals.record_card_review(
            user_id, date, xp_earned=xp.transaction.amount
        )

        types = [AchievementType.REVIEWS_COMPLETED, AchievementType.CUSTOM, *_XP_TYPES]
        streak = None
        if just_met:
            await self.daily_goals.award_daily_goal_xp(user_id, daily.date)
            streak = await self.streaks.update_streak(user_id, daily.date)
            types += [AchievementType.DAILY_GOAL, AchievementType.STREAK]

        unlocked = await self.engine.check_achievements(user_id, types)
        return ActivityResult(
            xp=xp,
            unlocked=unlocked,
            daily_goal=await self.daily_goals.check_daily_goal(user_id, daily.date),
            streak=streak,
        )

    async def record_card_created(self, user_id: str, card_id: str, date: str | None = None) -> ActivityResult:
        xp = await self.ledger.add_xp(
            user_id, XP_VALUES["card_creation"], XPSource.CARD_CREATION, source_id=card_id
        )
        await self.daily_goals.add_xp_earned(user_id, xp.transaction.amount, date)
        unlocked = await self.engine.check_achievements(user_id, [AchievementType.CARDS_CREATED, *_XP_TYPES])
        return ActivityResult(xp=xp, unlocked=unlocked)

    async def record_deck_created(self, user_id: str, deck_id: str, date: str | None = None) -> ActivityResult:
        xp = await self.ledger.add_xp(
            user_id, XP_VALUES["deck_creation"], XPSource.DECK_CREATION, source_id=deck_id
        )
        await self.daily_goals.add_xp_earned(user_id, xp.transaction.amount, date)
        unlocked = await self.engine.check_achievements(user_id, [AchievementType.DECK_CREATED, *_XP_TYPES])
        return ActivityResult(xp=xp, unlocked=unlocked)

    async def record_study_session(
        self,
        user_id: str,
        duration_minutes: int,
        cards_reviewed: int,
        correct_answers: int = 0,
        total_answers: int = 0,
        deck_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> ActivityResult:
        session = await self.progress.record_study_session(
            user_id,
            duration_minutes=duration_minutes,
            cards_reviewed=cards_reviewed,
            correct_answers=correct_answers,
            total_answers=total_answers,
            deck_id=deck_id,
            timestamp=timestamp,
        )
        logger.debug("Recorded %d-minute study session %s for %s", duration_minutes, session.id, user_id)
        unlocked = await self.engine.check_achievements(user_id, [AchievementType.CUSTOM])
        statistics = None
        if self.statistics is not None:
            statistics = await self.statistics.update_user_statistics(user_id)
        return ActivityResult(unlocked=unlocked, statistics=statistics)
