"""Daily goal tracking: per-day review counts and the once-per-day goal reward."""

from __future__ import annotations

import logging

from cardquest.errors import InvalidError
from cardquest.gamification.constants import DAILY_GOAL_TARGET, XP_VALUES
from cardquest.gamification.day_utils import get_today, parse_day
from cardquest.gamification.progress_store import ProgressStore
from cardquest.gamification.schemas import DailyGoalStatus, DailyProgress, XPResult, XPSource
from cardquest.gamification.xp_service import XPLedger

logger = logging.getLogger(__name__)


class DailyGoalService:
    def __init__(
        self,
        progress: ProgressStore,
        ledger: XPLedger,
        target: int = DAILY_GOAL_TARGET,
        tz: str = "UTC",
    ) -> None:
        if target < 1:
            raise InvalidError("Daily goal target must be >= 1")
        self.progress = progress
        self.ledger = ledger
        self.target = target
        self.tz = tz

    def _day(self, date: str | None) -> str:
        if date is None:
            return get_today(tz=self.tz)
        parse_day(date)
        return date

    async def record_card_review(
        self,
        user_id: str,
        date: str | None = None,
        count: int = 1,
        xp_earned: int = 0,
    ) -> tuple[DailyProgress, bool]:
        """Add reviewed cards to the day. Returns the day and whether the goal was just met."""
        date = self._day(date)
        current = await self.progress.find_daily_progress(user_id, date)
        cards = (current.cards_reviewed if current else 0) + count
        was_met = bool(current and current.goal_met)
        goal_met = was_met or cards >= self.target

        daily = await self.progress.update_daily_progress(
            user_id,
            date,
            cards_reviewed=cards,
            goal_met=goal_met,
            xp_earned=(current.xp_earned if current else 0) + xp_earned,
        )
        just_met = goal_met and not was_met
        if just_met:
            logger.info("User %s met the daily goal on %s (%d cards)", user_id, date, cards)
        return daily, just_met

    async def add_xp_earned(self, user_id: str, amount: int, date: str | None = None) -> DailyProgress:
        date = self._day(date)
        current = await self.progress.find_daily_progress(user_id, date)
        return await self.progress.update_daily_progress(
            user_id, date, xp_earned=(current.xp_earned if current else 0) + amount
        )

    async def check_daily_goal(self, user_id: str, date: str | None = None) -> DailyGoalStatus:
        """Status of the day; a day with no activity is simply not met."""
        date = self._day(date)
        daily = await self.progress.find_daily_progress(user_id, date)
        cards = daily.cards_reviewed if daily else 0
        return DailyGoalStatus(
            date=date,
            goal_met=bool(daily and daily.goal_met),
            cards_reviewed=cards,
            cards_remaining=max(0, self.target - cards),
            xp_earned=daily.xp_earned if daily else 0,
        )

    async def award_daily_goal_xp(self, user_id: str, date: str | None = None) -> XPResult:
        """Credit the daily-goal reward once per date."""
        date = self._day(date)
        status = await self.check_daily_goal(user_id, date)
        if not status.goal_met:
            raise InvalidError(f"Daily goal not met for {user_id} on {date}")
        if await self.ledger.has_transaction(user_id, XPSource.DAILY_GOAL, date):
            raise InvalidError(f"Daily goal XP already awarded for {user_id} on {date}")

        amount = XP_VALUES["daily_goal"]
        result = await self.ledger.add_xp(
            user_id, amount, XPSource.DAILY_GOAL, source_id=date,
            description=f"Daily goal completed ({date})",
        )
        await self.progress.update_daily_progress(
            user_id, date, goal_xp_awarded=True, xp_earned=status.xp_earned + amount
        )
        return result
