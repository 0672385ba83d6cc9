"""XP ledger unit tests: append-only transactions, level accrual and counts."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from cardquest.errors import InvalidError
from cardquest.gamification.schemas import ReviewDifficulty, XPSource

pytestmark = pytest.mark.asyncio


class TestAddXP:
    """Test add_xp."""

    async def test_first_grant_creates_progress(self, services):
        """The first grant creates level-1 progress with the XP applied."""
        result = await services.ledger.add_xp("u1", 50, "review", source_id="card-1")

        assert result.transaction.amount == 50
        assert result.transaction.source == XPSource.REVIEW
        assert result.user_progress.total_xp == 50
        assert result.user_progress.current_xp == 50
        assert result.user_progress.level == 1
        assert result.level_up_info.leveled_up is False

    async def test_current_xp_restarts_at_level_boundary(self, services):
        """currentXP is the XP earned inside the current level."""
        result = await services.ledger.add_xp("u1", 450, XPSource.MANUAL_ADJUSTMENT)

        assert result.user_progress.level == 3
        assert result.user_progress.total_xp == 450
        assert result.user_progress.current_xp == 50
        assert result.level_up_info.levels_gained == 2

    async def test_current_xp_accumulates_within_level(self, services):
        """Grants inside one level add up; crossing the next threshold restarts the count."""
        await services.ledger.add_xp("u1", 120, XPSource.MANUAL_ADJUSTMENT)
        second = await services.ledger.add_xp("u1", 30, XPSource.REVIEW)
        assert (second.user_progress.level, second.user_progress.current_xp) == (2, 50)

        third = await services.ledger.add_xp("u1", 260, XPSource.REVIEW)
        assert (third.user_progress.level, third.user_progress.current_xp) == (3, 10)

    async def test_registers_user(self, services):
        """Granting XP registers the user id."""
        await services.ledger.add_xp("u1", 10, XPSource.REVIEW)
        assert await services.progress.get_all_user_ids() == ["u1"]

    async def test_level_up_publishes_event(self, services, redis_mock):
        """Crossing a level threshold publishes pubsub:level_up."""
        result = await services.ledger.add_xp("u1", 100, XPSource.MANUAL_ADJUSTMENT)

        assert result.level_up_info.leveled_up is True
        assert result.level_up_info.new_level == 2
        assert result.user_progress.current_xp == 0
        redis_mock.publish.assert_awaited_once()
        assert redis_mock.publish.await_args.args[0] == "pubsub:level_up"

    async def test_level_never_lowered(self, services):
        """A stored level above the curve is kept, with no XP counted into it yet."""
        await services.progress.update_user_progress("u1", level=5)
        result = await services.ledger.add_xp("u1", 10, XPSource.REVIEW)
        assert result.user_progress.level == 5
        assert result.user_progress.current_xp == 0
        assert result.level_up_info.leveled_up is False

    async def test_zero_amount_allowed(self, services):
        """A zero grant is recorded without changing totals."""
        result = await services.ledger.add_xp("u1", 0, XPSource.MANUAL_ADJUSTMENT)
        assert result.transaction.amount == 0
        assert result.user_progress.total_xp == 0

    async def test_redis_failure_does_not_fail_grant(self, services, redis_mock):
        """A failing publish is logged and the grant still succeeds."""
        redis_mock.publish.side_effect = ConnectionError("redis down")
        result = await services.ledger.add_xp("u1", 250, XPSource.MANUAL_ADJUSTMENT)
        assert result.user_progress.level == 2

    async def test_works_without_redis(self, services):
        """Level-ups work with no Redis client configured."""
        services.ledger.redis = None
        result = await services.ledger.add_xp("u1", 100, XPSource.MANUAL_ADJUSTMENT)
        assert result.level_up_info.leveled_up is True

    @pytest.mark.parametrize("amount", [-1, 1.5, float("nan"), float("inf"), "10", True])
    async def test_invalid_amount_rejected(self, services, amount):
        """Amounts must be finite non-negative whole numbers."""
        with pytest.raises(InvalidError):
            await services.ledger.add_xp("u1", amount, XPSource.REVIEW)

    async def test_unknown_source_rejected(self, services):
        """Unknown sources raise InvalidError."""
        with pytest.raises(InvalidError):
            await services.ledger.add_xp("u1", 10, "mining")

    async def test_blank_user_rejected(self, services):
        """Blank user ids raise InvalidError."""
        with pytest.raises(InvalidError):
            await services.ledger.add_xp("  ", 10, XPSource.REVIEW)

    async def test_default_description(self, services):
        """Transactions without a description get the source default."""
        result = await services.ledger.add_xp("u1", 25, XPSource.CARD_CREATION)
        assert result.transaction.description == "Card created"


class TestCardReview:
    """Test process_card_review."""

    @pytest.mark.parametrize(
        ("difficulty", "expected"),
        [("again", 5), ("hard", 10), ("good", 15), ("easy", 20)],
    )
    async def test_review_xp_by_difficulty(self, services, difficulty, expected):
        """Review XP follows the answer difficulty, which is kept on the transaction."""
        result = await services.ledger.process_card_review("u1", "card-1", difficulty)
        assert result.transaction.amount == expected
        assert result.transaction.source_id == "card-1"
        assert result.transaction.difficulty == ReviewDifficulty(difficulty)

    async def test_unknown_difficulty_rejected(self, services):
        """Unknown difficulties raise InvalidError."""
        with pytest.raises(InvalidError):
            await services.ledger.process_card_review("u1", "card-1", "perfect")


class TestLedgerQueries:
    """Test ledger counts and scans."""

    async def test_count_by_source(self, services):
        """Counts only transactions of the requested source."""
        for i in range(3):
            await services.ledger.process_card_review("u1", f"card-{i}", "good")
        await services.ledger.add_xp("u1", 25, XPSource.CARD_CREATION, source_id="card-x")

        assert await services.ledger.count_transactions_by_source("u1", XPSource.REVIEW) == 3
        assert await services.ledger.count_transactions_by_source("u1", "card_creation") == 1
        assert await services.ledger.count_transactions_by_source("u1", XPSource.DAILY_GOAL) == 0

    async def test_count_since(self, services):
        """A since bound drops older transactions."""
        old = datetime(2025, 1, 1, tzinfo=timezone.utc)
        new = datetime(2025, 1, 14, tzinfo=timezone.utc)
        await services.ledger.process_card_review("u1", "card-1", "good", timestamp=old)
        await services.ledger.process_card_review("u1", "card-2", "good", timestamp=new)

        since = datetime(2025, 1, 8, tzinfo=timezone.utc)
        assert await services.ledger.count_transactions_by_source("u1", XPSource.REVIEW, since=since) == 1

    async def test_count_reviews_by_difficulty(self, services):
        """Reviews are counted per difficulty; other sources are ignored."""
        for i, difficulty in enumerate(["hard", "hard", "easy"]):
            await services.ledger.process_card_review("u1", f"card-{i}", difficulty)
        await services.ledger.add_xp("u1", 25, XPSource.CARD_CREATION)

        counts = await services.ledger.count_reviews_by_difficulty("u1")
        assert counts == {
            ReviewDifficulty.AGAIN: 0,
            ReviewDifficulty.HARD: 2,
            ReviewDifficulty.GOOD: 0,
            ReviewDifficulty.EASY: 1,
        }

    async def test_has_transaction(self, services):
        """Looks up a transaction by source and source id."""
        await services.ledger.add_xp("u1", 100, XPSource.DAILY_GOAL, source_id="2025-01-15")
        assert await services.ledger.has_transaction("u1", XPSource.DAILY_GOAL, "2025-01-15") is True
        assert await services.ledger.has_transaction("u1", XPSource.DAILY_GOAL, "2025-01-16") is False

    async def test_user_transactions_newest_first(self, services):
        """History is returned newest first and honours the limit."""
        older = datetime(2025, 1, 1, tzinfo=timezone.utc)
        newer = datetime(2025, 1, 2, tzinfo=timezone.utc)
        await services.ledger.add_xp("u1", 10, XPSource.REVIEW, timestamp=older)
        await services.ledger.add_xp("u1", 20, XPSource.REVIEW, timestamp=newer)

        txns = await services.ledger.get_user_transactions("u1")
        assert [t.amount for t in txns] == [20, 10]
        assert len(await services.ledger.get_user_transactions("u1", limit=1)) == 1

    async def test_transactions_in_period_span_users(self, services):
        """The period scan covers every user and excludes the end bound."""
        inside = datetime(2025, 1, 10, tzinfo=timezone.utc)
        outside = datetime(2025, 2, 1, tzinfo=timezone.utc)
        await services.ledger.add_xp("u1", 10, XPSource.REVIEW, timestamp=inside)
        await services.ledger.add_xp("u2", 20, XPSource.REVIEW, timestamp=inside)
        await services.ledger.add_xp("u2", 30, XPSource.REVIEW, timestamp=outside)

        txns = await services.ledger.get_transactions_in_period(
            datetime(2025, 1, 1, tzinfo=timezone.utc),
            datetime(2025, 2, 1, tzinfo=timezone.utc),
        )
        assert sorted((t.user_id, t.amount) for t in txns) == [("u1", 10), ("u2", 20)]
