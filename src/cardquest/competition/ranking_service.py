"""Ranking aggregation: periodic leaderboards folded from the XP ledger.

Snapshots are rebuilt wholesale on each run and stored at
``rankings/{period}_{date}``. Reads are best-effort: any failure is logged
and reported as "no ranking" rather than propagated.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from cardquest.competition.period_utils import coerce_period, get_period_bounds, get_period_key
from cardquest.competition.schemas import RankingEntry, RankingPeriod, RankingSnapshot
from cardquest.gamification.progress_store import ProgressStore
from cardquest.gamification.schemas import XPSource, XPTransaction
from cardquest.gamification.xp_service import XPLedger
from cardquest.store import paths
from cardquest.store.gateway import SERVER_TIMESTAMP, PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass
class ParticipantStats:
    user_id: str
    user_name: str
    cards_reviewed: int = 0
    xp_earned: int = 0
    streak_days: int = 0
    accuracy_rate: float = 0.0
    study_time_minutes: int = 0
    study_sessions: int = 0
    achievements_unlocked: int = 0
    last_activity: datetime | None = None


def rank_participants(participants: list[ParticipantStats]) -> list[RankingEntry]:
    """Order by XP earned DESC, cards reviewed DESC, user id ASC and assign dense ranks.

    Ranks are dense on XP earned: 1000/800/800/500 -> 1/2/2/3.
    """
    ordered = sorted(participants, key=lambda p: (-p.xp_earned, -p.cards_reviewed, p.user_id))

    entries: list[RankingEntry] = []
    rank = 0
    previous_xp: int | None = None
    for p in ordered:
        if p.xp_earned != previous_xp:
            rank += 1
            previous_xp = p.xp_earned
        entries.append(RankingEntry(
            user_id=p.user_id,
            user_name=p.user_name,
            rank=rank,
            cards_reviewed=p.cards_reviewed,
            xp_earned=p.xp_earned,
            streak_days=p.streak_days,
            accuracy_rate=p.accuracy_rate,
            study_time_minutes=p.study_time_minutes,
            study_sessions=p.study_sessions,
            achievements_unlocked=p.achievements_unlocked,
            last_activity=p.last_activity,
        ))
    return entries


class RankingAggregator:
    def __init__(
        self,
        store: PersistenceGateway,
        progress: ProgressStore,
        ledger: XPLedger,
        tz: str = "UTC",
        top_default: int = 10,
    ) -> None:
        self.store = store
        self.progress = progress
        self.ledger = ledger
        self.tz = tz
        self.top_default = top_default

    async def _participant(
        self,
        user_id: str,
        transactions: list[XPTransaction],
        start: datetime,
        end: datetime,
    ) -> ParticipantStats:
        """Fold one user's window of activity into ranking metrics."""
        stats = ParticipantStats(user_id=user_id, user_name=await self.progress.get_display_name(user_id))
        for txn in transactions:
            stats.xp_earned += txn.amount
            if txn.source == XPSource.REVIEW:
                stats.cards_reviewed += 1
            elif txn.source == XPSource.ACHIEVEMENT:
                stats.achievements_unlocked += 1
            if stats.last_activity is None or txn.timestamp > stats.last_activity:
                stats.last_activity = txn.timestamp

        progress = await self.progress.find_user_progress(user_id)
        stats.streak_days = progress.current_streak if progress is not None else 0

        sessions = await self.progress.get_study_sessions(user_id, start, end)
        stats.study_sessions = len(sessions)
        stats.study_time_minutes = sum(s.session_duration_minutes for s in sessions)
        correct = sum(s.accuracy_count for s in sessions)
        answered = sum(s.total_answers for s in sessions)
        stats.accuracy_rate = round(100 * correct / answered, 2) if answered else 0.0
        return stats

    async def build_ranking(self, period: RankingPeriod | str, date: str) -> RankingSnapshot:
        """Aggregate a period without persisting it."""
        period = coerce_period(period)
        start, end = get_period_bounds(period, date, self.tz)

        known_users = set(await self.progress.get_all_user_ids())
        by_user: dict[str, list[XPTransaction]] = defaultdict(list)
        for txn in await self.ledger.get_transactions_in_period(start, end):
            if txn.user_id in known_users:
                by_user[txn.user_id].append(txn)

        participants = [
            await self._participant(user_id, txns, start, end)
            for user_id, txns in sorted(by_user.items())
        ]
        entries = rank_participants(participants)

        total_reviews = sum(e.cards_reviewed for e in entries)
        return RankingSnapshot(
            period=period,
            date=date,
            entries=entries,
            total_participants=len(entries),
            total_reviews=total_reviews,
            total_xp_distributed=sum(e.xp_earned for e in entries),
            average_reviews_per_user=round(total_reviews / len(entries), 2) if entries else 0.0,
        )

    async def update_ranking(self, period: RankingPeriod | str, date: str | None = None) -> RankingSnapshot:
        """Rebuild and replace the snapshot for a period, preserving ``createdAt``."""
        period = coerce_period(period)
        date = date or get_period_key(period, tz=self.tz)
        snapshot = await self.build_ranking(period, date)

        path = paths.ranking(period.value, date)
        existing = await self.store.get(path)
        data = snapshot.to_document(exclude={"last_updated", "created_at"})
        data["lastUpdated"] = SERVER_TIMESTAMP
        data["createdAt"] = (existing.data.get("createdAt") if existing else None) or SERVER_TIMESTAMP
        await self.store.set(path, data)

        logger.info(
            "%s ranking %s rebuilt: %d participants, %d XP",
            period.value.capitalize(), date, snapshot.total_participants, snapshot.total_xp_distributed,
        )
        stored = await self.store.get(path)
        return RankingSnapshot.from_document(stored) if stored is not None else snapshot

    async def update_monthly_ranking(self, date: str | None = None) -> RankingSnapshot:
        return await self.update_ranking(RankingPeriod.MONTHLY, date)

    async def update_yearly_ranking(self, date: str | None = None) -> RankingSnapshot:
        return await self.update_ranking(RankingPeriod.YEARLY, date)

    # --- Best-effort reads ---

    async def get_ranking(self, period: RankingPeriod | str, date: str | None = None) -> RankingSnapshot | None:
        """Stored snapshot, or None when absent or unreadable."""
        try:
            period = coerce_period(period)
            date = date or get_period_key(period, tz=self.tz)
            doc = await self.store.get(paths.ranking(period.value, date))
            return RankingSnapshot.from_document(doc) if doc is not None else None
        except Exception:
            logger.warning("Failed to read %s ranking %s", period, date, exc_info=True)
            return None

    async def get_top_ranking(
        self,
        period: RankingPeriod | str,
        limit: int | None = None,
        date: str | None = None,
    ) -> list[RankingEntry]:
        snapshot = await self.get_ranking(period, date)
        if snapshot is None:
            return []
        if limit is None:
            limit = self.top_default
        return snapshot.entries[: max(limit, 0)]

    async def get_user_rank_position(
        self,
        user_id: str,
        period: RankingPeriod | str,
        date: str | None = None,
    ) -> int | None:
        """Rank of ``user_id`` in the snapshot, or None if absent."""
        snapshot = await self.get_ranking(period, date)
        if snapshot is None:
            return None
        for entry in snapshot.entries:
            if entry.user_id == user_id:
                return entry.rank
        return None
