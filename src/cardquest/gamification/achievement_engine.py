"""Achievement engine: condition evaluation and the atomic unlock protocol.

Unlocking is a compare-and-swap on the user's achievement-progress entry,
run inside a single-document transaction. Only the caller whose transaction
performed the write credits the XP reward, so concurrent triggers for the
same (user, achievement) grant the reward exactly once.

The reward credit happens after the transaction commits. ``reconcile_rewards``
closes the gap left by a crash between the two steps.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from cardquest.errors import InvalidError, NotFoundError, UnsupportedConditionError
from cardquest.gamification.achievement_catalog import AchievementCatalog
from cardquest.gamification.metrics import MetricRegistry
from cardquest.gamification.progress_store import ProgressStore, require_user_id
from cardquest.gamification.schemas import (
    Achievement,
    AchievementType,
    UserAchievementProgress,
    XPSource,
)
from cardquest.gamification.streak_service import StreakTracker
from cardquest.gamification.xp_service import XPLedger
from cardquest.redis_client import publish_event
from cardquest.store import paths
from cardquest.store.gateway import SERVER_TIMESTAMP, Filter, PersistenceGateway, Transaction

logger = logging.getLogger(__name__)

# Count-based conditions are answered by counting ledger entries of one source.
LEDGER_SOURCES: dict[AchievementType, XPSource] = {
    AchievementType.CARDS_CREATED: XPSource.CARD_CREATION,
    AchievementType.REVIEWS_COMPLETED: XPSource.REVIEW,
    AchievementType.DECK_CREATED: XPSource.DECK_CREATION,
    AchievementType.DAILY_GOAL: XPSource.DAILY_GOAL,
}


def progress_percent(actual: float, target: int) -> int:
    """``min(100, round(100 * actual / target))`` with half-up rounding."""
    if actual <= 0:
        return 0
    return min(100, int(100 * actual / target + 0.5))


class AchievementEngine:
    """Evaluates achievement conditions and unlocks them for a user."""

    def __init__(
        self,
        store: PersistenceGateway,
        catalog: AchievementCatalog,
        progress: ProgressStore,
        ledger: XPLedger,
        streaks: StreakTracker,
        metrics: MetricRegistry | None = None,
        redis: object = None,
        reconcile_grace: timedelta = timedelta(minutes=10),
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.progress = progress
        self.ledger = ledger
        self.streaks = streaks
        self.metrics = metrics or MetricRegistry()
        self.redis = redis
        self.reconcile_grace = reconcile_grace

    # --- Reads ---

    async def get_user_achievements(self, user_id: str) -> list[UserAchievementProgress]:
        user_id = require_user_id(user_id)
        docs = await self.store.query(paths.user_achievements(user_id))
        return [
            UserAchievementProgress.from_document(d, userId=user_id, achievementId=d.id)
            for d in docs
        ]

    async def _get_entry(self, user_id: str, achievement_id: str) -> UserAchievementProgress | None:
        doc = await self.store.get(paths.user_achievement(user_id, achievement_id))
        if doc is None:
            return None
        return UserAchievementProgress.from_document(doc, userId=user_id, achievementId=achievement_id)

    # --- Evaluation ---

    async def _actual_value(self, user_id: str, achievement: Achievement) -> float | None:
        """Current value of the condition's metric; None when the source document is absent."""
        condition = achievement.condition

        source = LEDGER_SOURCES.get(condition.type)
        if source is not None:
            return await self.ledger.count_transactions_by_source(user_id, source)

        if condition.type == AchievementType.STREAK:
            streak = await self.streaks.find_streak(user_id)
            return streak.current if streak is not None else None

        if condition.type in (AchievementType.XP_TOTAL, AchievementType.LEVEL_REACHED):
            progress = await self.progress.find_user_progress(user_id)
            if progress is None:
                return None
            return progress.total_xp if condition.type == AchievementType.XP_TOTAL else progress.level

        if condition.type == AchievementType.CUSTOM:
            return await self.metrics.evaluate(condition.params.get("metric"), user_id, condition.params)

        raise InvalidError(f"Unhandled condition type {condition.type!r} for {achievement.id}")

    async def check_achievement(self, user_id: str, achievement: Achievement) -> bool:
        """True when ``actual >= target``. Missing documents and unknown metrics are unmet."""
        user_id = require_user_id(user_id)
        try:
            actual = await self._actual_value(user_id, achievement)
        except UnsupportedConditionError:
            logger.debug("No evaluator for %s (%s); treating as unmet", achievement.id, achievement.condition.params)
            return False
        return actual is not None and actual >= achievement.condition.target

    async def check_achievements(
        self,
        user_id: str,
        types: Iterable[AchievementType | str] | None = None,
    ) -> list[Achievement]:
        """Evaluate every active, not-yet-unlocked achievement and unlock the satisfied ones.

        Returns newly unlocked achievements in catalog order.
        """
        user_id = require_user_id(user_id)
        candidates = await self.catalog.get_all(active_only=True, types=types)
        unlocked_ids = {e.achievement_id for e in await self.get_user_achievements(user_id) if e.is_unlocked}

        newly_unlocked: list[Achievement] = []
        for achievement in candidates:
            if achievement.id in unlocked_ids:
                continue
            if not await self.check_achievement(user_id, achievement):
                continue
            if await self.unlock_achievement(user_id, achievement.id):
                newly_unlocked.append(achievement)

        if newly_unlocked:
            logger.info(
                "Unlocked achievements for %s: %s",
                user_id, [a.id for a in newly_unlocked],
            )
        return newly_unlocked

    # --- Writes ---

    async def unlock_achievement(self, user_id: str, achievement_id: str) -> bool:
        """Unlock an achievement. Returns True if unlocked now, False if it already was."""
        user_id = require_user_id(user_id)
        achievement = await self.catalog.get(achievement_id)
        path = paths.user_achievement(user_id, achievement.id)

        async def _compare_and_set(txn: Transaction) -> bool:
            doc = await txn.get(path)
            if doc is not None and doc.data.get("unlockedAt") is not None:
                return False
            txn.set(path, {
                "userId": user_id,
                "achievementId": achievement.id,
                "progress": 100,
                "claimed": False,
                "unlockedAt": SERVER_TIMESTAMP,
                "notificationSeen": False,
                "updatedAt": SERVER_TIMESTAMP,
            }, merge=True)
            return True

        if not await self.store.run_transaction(_compare_and_set):
            logger.debug("Achievement %s already unlocked for %s", achievement.id, user_id)
            return False

        await self._credit_reward(user_id, achievement)
        await publish_event(self.redis, "pubsub:achievement_unlocked", {
            "user_id": user_id,
            "achievement_id": achievement.id,
            "name": achievement.name,
            "tier": achievement.tier.value,
            "xp_reward": achievement.xp_reward,
        })
        return True

    async def _credit_reward(self, user_id: str, achievement: Achievement) -> None:
        await self.ledger.add_xp(
            user_id,
            achievement.xp_reward,
            XPSource.ACHIEVEMENT,
            source_id=achievement.id,
            description=f"Achievement unlocked: {achievement.name}",
        )
        await self.progress.add_achievement(user_id, achievement.id)
        logger.info("Credited %d XP to %s for achievement %s", achievement.xp_reward, user_id, achievement.id)

    async def update_achievement_progress(
        self,
        user_id: str,
        achievement_id: str,
        progress: int,
    ) -> UserAchievementProgress:
        """Record a progress percentage for UI bars. Never unlocks and never credits XP."""
        user_id = require_user_id(user_id)
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise InvalidError(f"Progress must be an integer in 0..100, got {progress!r}")
        achievement = await self.catalog.get(achievement_id)
        path = paths.user_achievement(user_id, achievement.id)

        async def _write(txn: Transaction) -> None:
            doc = await txn.get(path)
            if doc is not None and doc.data.get("unlockedAt") is not None:
                return
            txn.set(path, {
                "userId": user_id,
                "achievementId": achievement.id,
                "progress": progress,
                "unlockedAt": None,
                "claimed": False,
                "notificationSeen": doc.data.get("notificationSeen", False) if doc else False,
                "updatedAt": SERVER_TIMESTAMP,
            }, merge=True)

        await self.store.run_transaction(_write)
        entry = await self._get_entry(user_id, achievement.id)
        if entry is None:
            raise NotFoundError(f"Achievement progress missing for {user_id}/{achievement.id}")
        return entry

    async def get_user_progress(self, user_id: str, achievement_id: str) -> int:
        """Percentage towards an achievement from the current value, capped at 100.

        An unlocked achievement whose metric has since dropped (a lapsed
        streak) reports the lower figure; the unlock itself stands. Metrics
        with no evaluator fall back to the last recorded progress.
        """
        user_id = require_user_id(user_id)
        achievement = await self.catalog.get(achievement_id)
        try:
            actual = await self._actual_value(user_id, achievement)
        except UnsupportedConditionError:
            entry = await self._get_entry(user_id, achievement.id)
            return entry.progress if entry is not None else 0
        return progress_percent(actual or 0, achievement.condition.target)

    async def mark_all_as_seen(self, user_id: str) -> int:
        """Flag every unseen unlocked achievement as seen in one atomic batch."""
        user_id = require_user_id(user_id)
        docs = await self.store.query(
            paths.user_achievements(user_id),
            [Filter("unlockedAt", "!=", None), Filter("notificationSeen", "==", False)],
        )
        if not docs:
            return 0
        batch = self.store.batch()
        for doc in docs:
            batch.set(doc.path, {"notificationSeen": True, "updatedAt": SERVER_TIMESTAMP}, merge=True)
        await batch.commit()
        return len(docs)

    async def reconcile_rewards(self, user_id: str, now: datetime | None = None) -> list[str]:
        """Credit rewards for unlocks older than the grace period that have no ledger entry."""
        user_id = require_user_id(user_id)
        if now is None:
            now = datetime.now(timezone.utc)
        cutoff = now - self.reconcile_grace

        credited: list[str] = []
        for entry in await self.get_user_achievements(user_id):
            if entry.unlocked_at is None or entry.unlocked_at > cutoff:
                continue
            if await self.ledger.has_transaction(user_id, XPSource.ACHIEVEMENT, entry.achievement_id):
                continue
            try:
                achievement = await self.catalog.get(entry.achievement_id)
            except NotFoundError:
                logger.warning("Unlocked achievement %s for %s no longer in catalog", entry.achievement_id, user_id)
                continue
            logger.warning("Reward missing for %s/%s; crediting now", user_id, achievement.id)
            await self._credit_reward(user_id, achievement)
            credited.append(achievement.id)
        return credited
