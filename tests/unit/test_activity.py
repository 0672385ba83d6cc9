"""End-to-end activity recording over the in-memory store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from cardquest.config import Settings
from cardquest.dependencies import build_services
from cardquest.errors import InvalidError
from cardquest.gamification.schemas import XPSource
from cardquest.gamification.seed import seed_achievements

DAY = "2025-01-15"
NOON = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def app(store, redis_mock):
    """Seeded services with a three-card daily goal."""
    services = build_services(store, redis_mock, Settings(_env_file=None, daily_goal_target=3))
    await seed_achievements(store)
    return services


@pytest.mark.asyncio
class TestRecordReview:
    """Test record_review."""

    async def test_first_review(self, app):
        """The first review grants XP, unlocks first_review and counts toward the goal."""
        result = await app.activity.record_review("u1", "card-1", "good", date=DAY)

        assert result.xp.transaction.amount == 15
        assert [a.id for a in result.unlocked] == ["first_review"]
        assert result.daily_goal.cards_reviewed == 1
        assert result.daily_goal.goal_met is False
        assert result.streak is None

        progress = await app.progress.get_user_progress("u1")
        assert progress.total_cards_reviewed == 1

    async def test_meeting_daily_goal(self, app):
        """Reaching the target rewards the goal and starts a streak."""
        results = [await app.activity.record_review("u1", f"card-{i}", "good", date=DAY) for i in range(3)]
        last = results[-1]

        assert last.daily_goal.goal_met is True
        assert last.streak is not None
        assert last.streak.streak.current == 1
        assert await app.ledger.count_transactions_by_source("u1", XPSource.DAILY_GOAL) == 1

        progress = await app.progress.get_user_progress("u1")
        # 3 reviews + first_review reward + daily goal
        assert progress.total_xp == 3 * 15 + 50 + 100
        assert progress.level == 2
        assert progress.current_xp == progress.total_xp - 100
        assert progress.current_streak == 1

    async def test_goal_rewarded_once_per_day(self, app):
        """Reviews past the target do not pay the goal again."""
        for i in range(5):
            await app.activity.record_review("u1", f"card-{i}", "easy", date=DAY)
        assert await app.ledger.count_transactions_by_source("u1", XPSource.DAILY_GOAL) == 1

    async def test_unknown_difficulty(self, app):
        """Unknown difficulties raise InvalidError."""
        with pytest.raises(InvalidError):
            await app.activity.record_review("u1", "card-1", "meh", date=DAY)


@pytest.mark.asyncio
class TestCreation:
    """Test card and deck creation."""

    async def test_card_created(self, app):
        """Creating a card grants XP, unlocks first_card and updates the day."""
        result = await app.activity.record_card_created("u1", "card-1", date=DAY)
        assert result.xp.transaction.amount == 25
        assert [a.id for a in result.unlocked] == ["first_card"]

        daily = await app.progress.get_daily_progress("u1", DAY)
        assert daily.xp_earned == 25

    async def test_deck_created(self, app):
        """Creating a deck grants XP and unlocks first_deck."""
        result = await app.activity.record_deck_created("u1", "deck-1", date=DAY)
        assert result.xp.transaction.amount == 50
        assert [a.id for a in result.unlocked] == ["first_deck"]


@pytest.mark.asyncio
class TestStudySessions:
    """Test record_study_session."""

    async def test_three_decks_unlock_explorer(self, app):
        """Sessions over three distinct decks unlock study_three_decks."""
        unlocked = []
        for deck in ("deck-a", "deck-b", "deck-c"):
            result = await app.activity.record_study_session(
                "u1", duration_minutes=15, cards_reviewed=10, deck_id=deck, timestamp=NOON
            )
            unlocked.extend(a.id for a in result.unlocked)
        assert unlocked == ["study_three_decks"]

    async def test_correct_cannot_exceed_total(self, app):
        """More correct answers than answers is rejected."""
        with pytest.raises(InvalidError):
            await app.activity.record_study_session("u1", 10, 5, correct_answers=6, total_answers=5)

    async def test_negative_duration(self, app):
        """Negative durations are rejected."""
        with pytest.raises(InvalidError):
            await app.activity.record_study_session("u1", -1, 5)
