"""Streak tracking: consecutive goal-met days, history cleanup and milestone bonuses.

The current streak has one canonical definition used by both the live
update and the repair path: walk backward from today over days on which
the daily goal was met. If today is not met yet but yesterday is, the walk
starts from yesterday, so a streak survives until its grace day lapses.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from cardquest.errors import NotFoundError
from cardquest.gamification.constants import XP_VALUES
from cardquest.gamification.day_utils import get_today, parse_day, previous_day
from cardquest.gamification.progress_store import ProgressStore, require_user_id
from cardquest.gamification.schemas import StreakData, StreakHistoryItem, StreakUpdate, XPSource
from cardquest.gamification.xp_service import XPLedger
from cardquest.redis_client import publish_event
from cardquest.store import paths
from cardquest.store.gateway import SERVER_TIMESTAMP, PersistenceGateway

logger = logging.getLogger(__name__)


def _anchor_day(met: set[str], today: str) -> str | None:
    """Day the backward walk starts from, or None when the streak has lapsed."""
    if today in met:
        return today
    yesterday = previous_day(today)
    if yesterday in met:
        return yesterday
    return None


def compute_current_streak(goal_met_dates: Iterable[str], today: str) -> int:
    """Length of the run of consecutive goal-met days ending today (or yesterday)."""
    parse_day(today)
    met = set(goal_met_dates)
    day = _anchor_day(met, today)
    current = 0
    while day is not None and day in met:
        current += 1
        day = previous_day(day)
    return current


def dedupe_history(entries: Iterable[StreakHistoryItem | dict]) -> list[StreakHistoryItem]:
    """Keep the highest count per date, sorted ascending by date."""
    best: dict[str, StreakHistoryItem] = {}
    for entry in entries:
        item = entry if isinstance(entry, StreakHistoryItem) else StreakHistoryItem.model_validate(entry)
        kept = best.get(item.date)
        if kept is None or item.count > kept.count:
            best[item.date] = item
    return [best[d] for d in sorted(best)]


class StreakTracker:
    """Owns ``streaks/{u}`` and mirrors the counters into user progress."""

    def __init__(
        self,
        store: PersistenceGateway,
        progress: ProgressStore,
        ledger: XPLedger,
        redis: object = None,
        bonus_7: int = XP_VALUES["streak_7_days"],
        bonus_30: int = XP_VALUES["streak_30_days"],
        tz: str = "UTC",
    ) -> None:
        self.store = store
        self.progress = progress
        self.ledger = ledger
        self.redis = redis
        self.bonus_7 = bonus_7
        self.bonus_30 = bonus_30
        self.tz = tz

    def milestone_bonus(self, current: int) -> int:
        """Bonus XP for reaching ``current``: 30 days wins over the weekly bonus."""
        if current == 30:
            return self.bonus_30
        if current > 0 and current % 7 == 0:
            return self.bonus_7
        return 0

    async def find_streak(self, user_id: str) -> StreakData | None:
        user_id = require_user_id(user_id)
        doc = await self.store.get(paths.streak(user_id))
        if doc is None:
            return None
        return StreakData.from_document(doc, userId=user_id)

    async def get_streak(self, user_id: str) -> StreakData:
        streak = await self.find_streak(user_id)
        if streak is None:
            raise NotFoundError(f"Streak not found for {user_id}")
        return streak

    async def _save(self, streak: StreakData) -> StreakData:
        data = streak.to_document()
        data["lastUpdate"] = SERVER_TIMESTAMP
        await self.store.set(paths.streak(streak.user_id), data)

        progress = await self.progress.get_or_create_user_progress(streak.user_id)
        await self.progress.update_user_progress(
            streak.user_id,
            current_streak=streak.current,
            longest_streak=max(streak.longest, progress.longest_streak),
        )
        return await self.get_streak(streak.user_id)

    async def update_streak(self, user_id: str, today: str | None = None) -> StreakUpdate:
        """Recompute the streak from daily progress and award milestone bonuses."""
        user_id = require_user_id(user_id)
        today = today or get_today(tz=self.tz)
        existing = await self.find_streak(user_id) or StreakData(user_id=user_id)

        met = set(await self.progress.list_goal_met_dates(user_id))
        current = compute_current_streak(met, today)
        anchor = _anchor_day(met, today) or today

        history = dedupe_history(existing.history)
        # A lapsed streak is recorded once; idle days after that add nothing.
        if current or (history and history[-1].count):
            history = dedupe_history([*history, StreakHistoryItem(date=anchor, count=current)])
        streak = await self._save(existing.model_copy(update={
            "current": current,
            "longest": max(existing.longest, current),
            "history": history,
        }))

        bonus = 0
        milestone = None
        if current > existing.current:
            bonus = await self._award_milestone(user_id, current, anchor)
            milestone = current if bonus else None
            await publish_event(self.redis, "pubsub:streak_update", {
                "user_id": user_id, "event": "streak_extended", "streak_length": current,
            })
        elif current == 0 and existing.current > 0:
            logger.info("Streak broken for %s after %d days", user_id, existing.current)
            await publish_event(self.redis, "pubsub:streak_update", {
                "user_id": user_id, "event": "streak_broken", "streak_length": existing.current,
            })

        return StreakUpdate(streak=streak, bonus_awarded=bonus, milestone=milestone)

    async def _award_milestone(self, user_id: str, current: int, day: str) -> int:
        amount = self.milestone_bonus(current)
        if not amount:
            return 0
        source_id = f"streak-{current}-{day}"
        if await self.ledger.has_transaction(user_id, XPSource.STREAK_BONUS, source_id):
            logger.debug("Streak bonus %s already granted to %s", source_id, user_id)
            return 0
        await self.ledger.add_xp(
            user_id, amount, XPSource.STREAK_BONUS, source_id=source_id,
            description=f"{current}-day streak bonus",
        )
        logger.info("Granted %d XP streak bonus to %s (%d days)", amount, user_id, current)
        return amount

    async def repair_streak(self, user_id: str, today: str | None = None) -> StreakData:
        """Deduplicate history and recompute ``current`` with the live algorithm."""
        user_id = require_user_id(user_id)
        today = today or get_today(tz=self.tz)
        existing = await self.find_streak(user_id) or StreakData(user_id=user_id)

        history = dedupe_history(existing.history)
        current = compute_current_streak(await self.progress.list_goal_met_dates(user_id), today)
        longest = max([existing.longest, current, *(h.count for h in history)])

        if len(history) != len(existing.history) or current != existing.current:
            logger.info(
                "Repaired streak for %s: current %d -> %d, history %d -> %d entries",
                user_id, existing.current, current, len(existing.history), len(history),
            )
        return await self._save(existing.model_copy(update={
            "current": current,
            "longest": longest,
            "history": history,
        }))

    async def update_all_streaks(self, today: str | None = None, max_users: int = 0) -> dict:
        """Nightly batch: recompute every known user's streak.

        Per-user failures are logged and collected; the batch continues.
        """
        today = today or get_today(tz=self.tz)
        started = datetime.now(timezone.utc)
        user_ids = await self.progress.get_all_user_ids()
        if max_users:
            user_ids = user_ids[:max_users]

        processed = 0
        failed: list[str] = []
        for user_id in user_ids:
            try:
                await self.update_streak(user_id, today)
                processed += 1
            except Exception:
                logger.warning("Streak update failed for %s", user_id, exc_info=True)
                failed.append(user_id)

        logger.info("Streak update complete: processed %d users for %s (%d failed)", processed, today, len(failed))
        return {
            "date": today,
            "processed": processed,
            "failed": failed,
            "duration_seconds": (datetime.now(timezone.utc) - started).total_seconds(),
        }
