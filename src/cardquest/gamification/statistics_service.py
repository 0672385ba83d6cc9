"""Per-deck and per-user study statistics.

Deck statistics are pushed by the client after a study session, carrying the
scheduler state of the deck's cards. User statistics are derived from data
the engine already stores: the XP ledger, study sessions, user progress and
the deck statistics themselves. Both are stored as snapshots and rebuilt
wholesale on update.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from cardquest.errors import InvalidError
from cardquest.gamification.day_utils import local_hour
from cardquest.gamification.progress_store import ProgressStore, require_user_id
from cardquest.gamification.schemas import (
    CardState,
    DeckStatistics,
    DifficultyBreakdown,
    PerformanceRating,
    PerformanceSnapshot,
    ReviewDifficulty,
    StudySession,
    StudyTime,
    UserStatistics,
    XPSource,
)
from cardquest.gamification.xp_service import XPLedger
from cardquest.store import paths
from cardquest.store.gateway import SERVER_TIMESTAMP, PersistenceGateway

logger = logging.getLogger(__name__)

MASTERED_INTERVAL_DAYS = 30
MIN_AVERAGE_EASE = 1.3
MAX_AVERAGE_EASE = 5.0

# Minimum overall score for each rating, best first
_RATING_THRESHOLDS: list[tuple[int, PerformanceRating]] = [
    (85, PerformanceRating.EXCELLENT),
    (70, PerformanceRating.GOOD),
    (50, PerformanceRating.AVERAGE),
]


def calculate_deck_progress(mastered_cards: int, total_cards: int) -> int:
    """Percentage of mastered cards, 0 for an empty deck, capped at 100."""
    if total_cards <= 0 or mastered_cards <= 0:
        return 0
    return min(100, round(100 * mastered_cards / total_cards))


def average_ease(card_states: Iterable[CardState]) -> float:
    states = list(card_states)
    if not states:
        return 0.0
    return round(sum(s.ease for s in states) / len(states), 2)


def accuracy_rate(sessions: Iterable[StudySession]) -> int:
    """Correct answers over all answers, as a whole percentage."""
    sessions = list(sessions)
    answered = sum(s.total_answers for s in sessions)
    if not answered:
        return 0
    return round(100 * sum(s.accuracy_count for s in sessions) / answered)


def retention_rate(decks: Iterable[DeckStatistics]) -> int:
    """Mastered cards over all cards, as a whole percentage."""
    decks = list(decks)
    total = sum(d.total_cards for d in decks)
    if not total:
        return 0
    return round(100 * sum(d.mastered_cards for d in decks) / total)


def study_time_for(dt: datetime, tz: str = "UTC") -> StudyTime:
    """Morning is 05:00-11:59, afternoon 12:00-17:59, evening the rest."""
    hour = local_hour(dt, tz)
    if 5 <= hour < 12:
        return StudyTime.MORNING
    if 12 <= hour < 18:
        return StudyTime.AFTERNOON
    return StudyTime.EVENING


def _goal_progress(done: int, goal: int) -> float:
    if goal <= 0:
        return 0.0
    return min(100.0, 100 * done / goal)


def performance_rating(stats: UserStatistics) -> PerformanceRating:
    """Weighted score: accuracy 40%, retention 30%, weekly goal consistency 30%."""
    score = (
        0.4 * stats.overall_accuracy_rate
        + 0.3 * stats.retention_rate
        + 0.3 * _goal_progress(stats.current_week_reviews, stats.weekly_review_goal)
    )
    for threshold, rating in _RATING_THRESHOLDS:
        if score >= threshold:
            return rating
    return PerformanceRating.NEEDS_IMPROVEMENT


def performance_snapshot(stats: UserStatistics) -> PerformanceSnapshot:
    return PerformanceSnapshot(
        accuracy_rate=stats.overall_accuracy_rate,
        retention_rate=stats.retention_rate,
        weekly_progress=_goal_progress(stats.current_week_reviews, stats.weekly_review_goal),
        monthly_progress=_goal_progress(stats.current_month_reviews, stats.monthly_review_goal),
        performance_rating=performance_rating(stats),
    )


def favorite_study_time(sessions: Iterable[StudySession], tz: str = "UTC") -> StudyTime:
    """Most frequent study time slot; ties go to the earlier slot, no sessions to afternoon."""
    counts = {slot: 0 for slot in StudyTime}
    for session in sessions:
        counts[study_time_for(session.timestamp, tz)] += 1
    if not any(counts.values()):
        return StudyTime.AFTERNOON
    return max(StudyTime, key=lambda slot: counts[slot])


class StatisticsService:
    """Owns ``deckStatistics/{u}/decks/{d}`` and ``userStatistics/{u}``."""

    def __init__(
        self,
        store: PersistenceGateway,
        progress: ProgressStore,
        ledger: XPLedger,
        tz: str = "UTC",
        weekly_review_goal: int = 50,
        monthly_review_goal: int = 200,
    ) -> None:
        self.store = store
        self.progress = progress
        self.ledger = ledger
        self.tz = tz
        self.weekly_review_goal = weekly_review_goal
        self.monthly_review_goal = monthly_review_goal

    # --- Deck statistics ---

    async def get_deck_statistics(self, user_id: str, deck_id: str) -> DeckStatistics | None:
        user_id = require_user_id(user_id)
        doc = await self.store.get(paths.deck_statistic(user_id, deck_id))
        if doc is None:
            return None
        return DeckStatistics.from_document(doc, userId=user_id, deckId=deck_id)

    async def list_deck_statistics(self, user_id: str) -> list[DeckStatistics]:
        user_id = require_user_id(user_id)
        docs = await self.store.query(paths.deck_statistics(user_id))
        return [DeckStatistics.from_document(d, userId=user_id, deckId=d.id) for d in docs]

    async def update_deck_statistics(
        self,
        user_id: str,
        deck_id: str,
        deck_name: str,
        cards_new: int = 0,
        cards_learning: int = 0,
        cards_review: int = 0,
        total_cards: int | None = None,
        card_states: Iterable[CardState | dict] = (),
    ) -> DeckStatistics:
        """Replace a deck's snapshot from its card counts and scheduler states.

        A card is mastered once it is out of the new state with an interval
        above 30 days.
        """
        user_id = require_user_id(user_id)
        if not isinstance(deck_id, str) or not deck_id.strip():
            raise InvalidError("Deck id is required")
        if not isinstance(deck_name, str) or not deck_name.strip():
            raise InvalidError("Deck name is required")
        deck_id = deck_id.strip()

        try:
            states = [s if isinstance(s, CardState) else CardState.model_validate(s) for s in card_states]
        except ValidationError as exc:
            raise InvalidError(f"Invalid card state for deck {deck_id}: {exc}") from exc

        active = cards_new + cards_learning + cards_review
        if total_cards is None:
            total_cards = active
        mastered = sum(1 for s in states if s.interval > MASTERED_INTERVAL_DAYS and s.state != "new")
        ease = average_ease(states)

        if total_cards < active:
            raise InvalidError(f"Deck {deck_id} has {active} active cards but total_cards={total_cards}")
        if mastered > total_cards:
            raise InvalidError(f"Deck {deck_id} has more mastered cards ({mastered}) than cards ({total_cards})")
        if ease and not MIN_AVERAGE_EASE <= ease <= MAX_AVERAGE_EASE:
            raise InvalidError(f"Average ease {ease} for deck {deck_id} is outside {MIN_AVERAGE_EASE}..{MAX_AVERAGE_EASE}")

        try:
            stats = DeckStatistics(
                deck_id=deck_id,
                user_id=user_id,
                deck_name=deck_name.strip(),
                cards_new=cards_new,
                cards_learning=cards_learning,
                cards_review=cards_review,
                total_cards=total_cards,
                progress_percentage=calculate_deck_progress(mastered, total_cards),
                mastered_cards=mastered,
                average_ease=ease,
            )
        except ValidationError as exc:
            raise InvalidError(f"Invalid statistics for deck {deck_id}: {exc}") from exc

        path = paths.deck_statistic(user_id, deck_id)
        existing = await self.store.get(path)
        data = stats.to_document(exclude={"last_studied_at", "created_at", "updated_at"})
        data["lastStudiedAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP
        data["createdAt"] = (existing.data.get("createdAt") if existing else None) or SERVER_TIMESTAMP
        await self.store.set(path, data)

        logger.debug("Deck %s statistics for %s: %d/%d mastered", deck_id, user_id, mastered, total_cards)
        saved = await self.get_deck_statistics(user_id, deck_id)
        return saved if saved is not None else stats

    # --- Analytics ---

    async def calculate_accuracy_rate(self, user_id: str) -> int:
        return accuracy_rate(await self.progress.get_study_sessions(user_id))

    async def calculate_retention_rate(self, user_id: str) -> int:
        return retention_rate(await self.list_deck_statistics(user_id))

    async def calculate_difficulty_breakdown(self, user_id: str) -> DifficultyBreakdown:
        counts = await self.ledger.count_reviews_by_difficulty(user_id)
        return DifficultyBreakdown(
            again_count=counts[ReviewDifficulty.AGAIN],
            hard_count=counts[ReviewDifficulty.HARD],
            good_count=counts[ReviewDifficulty.GOOD],
            easy_count=counts[ReviewDifficulty.EASY],
        )

    async def detect_favorite_study_time(self, user_id: str) -> StudyTime:
        return favorite_study_time(await self.progress.get_study_sessions(user_id), self.tz)

    # --- User statistics ---

    async def get_user_statistics(self, user_id: str) -> UserStatistics | None:
        user_id = require_user_id(user_id)
        doc = await self.store.get(paths.user_statistics(user_id))
        if doc is None:
            return None
        return UserStatistics.from_document(doc, userId=user_id)

    async def set_review_goals(
        self,
        user_id: str,
        weekly: int | None = None,
        monthly: int | None = None,
    ) -> UserStatistics:
        """Change the user's weekly and/or monthly review goals, then rebuild the snapshot."""
        user_id = require_user_id(user_id)
        goals = {}
        for field, value in (("weeklyReviewGoal", weekly), ("monthlyReviewGoal", monthly)):
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidError(f"Review goal must be a non-negative integer, got {value!r}")
            goals[field] = value
        if goals:
            await self.store.set(paths.user_statistics(user_id), {"userId": user_id, **goals}, merge=True)
        return await self.update_user_statistics(user_id)

    async def update_user_statistics(self, user_id: str, now: datetime | None = None) -> UserStatistics:
        """Rebuild the user's snapshot, keeping their goals and first activity."""
        user_id = require_user_id(user_id)
        if now is None:
            now = datetime.now(timezone.utc)

        progress = await self.progress.get_or_create_user_progress(user_id)
        existing = await self.get_user_statistics(user_id)
        sessions = await self.progress.get_study_sessions(user_id)
        decks = await self.list_deck_statistics(user_id)

        total_minutes = sum(s.session_duration_minutes for s in sessions)

        stats = UserStatistics(
            user_id=user_id,
            total_cards_created=await self.ledger.count_transactions_by_source(user_id, XPSource.CARD_CREATION),
            total_decks_created=await self.ledger.count_transactions_by_source(user_id, XPSource.DECK_CREATION),
            total_reviews_completed=await self.ledger.count_transactions_by_source(user_id, XPSource.REVIEW),
            total_study_sessions=len(sessions),
            total_study_time_minutes=total_minutes,
            average_session_duration_minutes=round(total_minutes / len(sessions)) if sessions else 0,
            longest_streak_days=progress.longest_streak,
            weekly_review_goal=existing.weekly_review_goal if existing else self.weekly_review_goal,
            current_week_reviews=await self.ledger.count_transactions_by_source(
                user_id, XPSource.REVIEW, since=now - timedelta(days=7)
            ),
            monthly_review_goal=existing.monthly_review_goal if existing else self.monthly_review_goal,
            current_month_reviews=await self.ledger.count_transactions_by_source(
                user_id, XPSource.REVIEW, since=now - timedelta(days=30)
            ),
            overall_accuracy_rate=accuracy_rate(sessions),
            retention_rate=retention_rate(decks),
            overall_average_ease=round(sum(d.average_ease for d in decks) / len(decks), 2) if decks else 0.0,
            difficulty_breakdown=await self.calculate_difficulty_breakdown(user_id),
            favorite_study_time=favorite_study_time(sessions, self.tz),
            first_activity_at=(existing.first_activity_at if existing else None) or progress.created_at,
            last_activity_at=progress.last_activity_date,
        )

        path = paths.user_statistics(user_id)
        data = stats.to_document(exclude={"created_at", "updated_at"})
        data["updatedAt"] = SERVER_TIMESTAMP
        data["createdAt"] = (existing.created_at if existing else None) or SERVER_TIMESTAMP
        await self.store.set(path, data)

        logger.debug(
            "Statistics for %s: %d reviews, %d sessions, accuracy %d%%",
            user_id, stats.total_reviews_completed, stats.total_study_sessions, stats.overall_accuracy_rate,
        )
        saved = await self.get_user_statistics(user_id)
        return saved if saved is not None else stats
