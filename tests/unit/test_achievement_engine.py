"""Achievement engine tests: condition evaluation, atomic unlock and reward reconciliation."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from cardquest.errors import InvalidError, NotFoundError
from cardquest.gamification.achievement_engine import progress_percent
from cardquest.gamification.schemas import AchievementType, XPSource
from cardquest.gamification.seed import seed_achievements
from cardquest.store import paths

CUSTOM_SEEDS = [
    {
        "id": "ten_points",
        "name": "Ten Points",
        "tier": "bronze",
        "xp_reward": 50,
        "condition": {"type": "custom", "target": 10, "params": {"metric": "points"}},
    },
    {
        "id": "five_reviews",
        "name": "Five Reviews",
        "tier": "bronze",
        "xp_reward": 75,
        "condition": {"type": "reviews_completed", "target": 5},
    },
]

STREAK_DAYS = ("2025-01-13", "2025-01-14", "2025-01-15")


@pytest_asyncio.fixture
async def custom(services):
    """Catalog with one custom metric whose value the test controls."""
    await seed_achievements(services.store, CUSTOM_SEEDS)
    value = {"points": 0}

    async def points(user_id, params):
        return value["points"]

    services.metrics.register("points", points)
    return services, value


async def achievement_xp_count(services, user_id: str) -> int:
    return await services.ledger.count_transactions_by_source(user_id, XPSource.ACHIEVEMENT)


async def three_day_streak(services, user_id: str = "u1") -> None:
    for day in STREAK_DAYS:
        await services.progress.update_daily_progress(user_id, day, cards_reviewed=20, goal_met=True)
    await services.streaks.update_streak(user_id, STREAK_DAYS[-1])


class TestProgressPercent:
    """Test progress_percent."""

    @pytest.mark.parametrize(
        ("actual", "target", "expected"),
        [(0, 5, 0), (1, 2, 50), (1, 3, 33), (1, 8, 13), (15, 10, 100), (10, 10, 100)],
    )
    def test_rounding_and_cap(self, actual, target, expected):
        """Half-up rounding, capped at 100."""
        assert progress_percent(actual, target) == expected


@pytest.mark.asyncio
class TestCheckAchievements:
    """Test check_achievements and check_achievement."""

    async def test_first_review_unlocks(self, seeded):
        """A single review unlocks first_review and credits its reward."""
        await seeded.ledger.process_card_review("u1", "card-1", "good")

        unlocked = await seeded.engine.check_achievements("u1")
        assert [a.id for a in unlocked] == ["first_review"]

        progress = await seeded.progress.get_user_progress("u1")
        assert progress.total_xp == 15 + 50
        assert progress.achievements == ["first_review"]

    async def test_already_unlocked_excluded(self, seeded):
        """A second check neither re-unlocks nor re-credits."""
        await seeded.ledger.process_card_review("u1", "card-1", "good")
        await seeded.engine.check_achievements("u1")
        assert await seeded.engine.check_achievements("u1") == []
        assert await achievement_xp_count(seeded, "u1") == 1

    async def test_type_filter(self, seeded):
        """Only achievements of the requested types are evaluated."""
        await seeded.ledger.add_xp("u1", 25, XPSource.CARD_CREATION, source_id="card-1")
        await seeded.ledger.add_xp("u1", 50, XPSource.DECK_CREATION, source_id="deck-1")

        unlocked = await seeded.engine.check_achievements("u1", [AchievementType.DECK_CREATED])
        assert [a.id for a in unlocked] == ["first_deck"]

        entries = {e.achievement_id for e in await seeded.engine.get_user_achievements("u1")}
        assert "first_card" not in entries

    async def test_streak_filter_ignores_other_satisfied_types(self, seeded):
        """A streak-only check leaves satisfied count achievements alone."""
        await three_day_streak(seeded)
        await seeded.ledger.add_xp("u1", 25, XPSource.CARD_CREATION, source_id="card-1")

        unlocked = await seeded.engine.check_achievements("u1", [AchievementType.STREAK])
        assert [a.id for a in unlocked] == ["streak_three_days"]

    async def test_unknown_type_rejected(self, seeded):
        """Unknown condition types in the filter raise InvalidError."""
        with pytest.raises(InvalidError):
            await seeded.engine.check_achievements("u1", ["mining"])

    async def test_unregistered_custom_metric_is_unmet(self, seeded):
        """A custom metric with no evaluator never unlocks."""
        achievement = await seeded.catalog.get("complete_profile")
        assert await seeded.engine.check_achievement("u1", achievement) is False

    async def test_missing_streak_is_unmet(self, seeded):
        """No streak document means the streak condition is unmet."""
        achievement = await seeded.catalog.get("streak_three_days")
        assert await seeded.engine.check_achievement("u1", achievement) is False

    async def test_inactive_achievement_skipped(self, seeded):
        """Deactivated catalog entries are never evaluated."""
        await seeded.store.set(paths.achievement("first_review"), {"isActive": False}, merge=True)
        seeded.catalog.refresh()
        await seeded.ledger.process_card_review("u1", "card-1", "good")
        assert await seeded.engine.check_achievements("u1") == []


@pytest.mark.asyncio
class TestUnlockAchievement:
    """Test unlock_achievement."""

    async def test_idempotent(self, seeded, redis_mock, clock):
        """A repeated unlock returns False and keeps the first unlockedAt."""
        assert await seeded.engine.unlock_achievement("u1", "first_deck") is True
        [first] = await seeded.engine.get_user_achievements("u1")
        clock.advance(minutes=5)
        assert await seeded.engine.unlock_achievement("u1", "first_deck") is False
        [second] = await seeded.engine.get_user_achievements("u1")
        assert second.unlocked_at == first.unlocked_at

        assert await achievement_xp_count(seeded, "u1") == 1
        progress = await seeded.progress.get_user_progress("u1")
        assert progress.total_xp == 50
        channels = [c.args[0] for c in redis_mock.publish.await_args_list]
        assert channels.count("pubsub:achievement_unlocked") == 1

    async def test_concurrent_unlocks_credit_once(self, seeded):
        """Concurrent unlocks of the same achievement credit exactly once."""
        results = await asyncio.gather(
            *(seeded.engine.unlock_achievement("u1", "first_deck") for _ in range(5))
        )
        assert sum(results) == 1
        assert await achievement_xp_count(seeded, "u1") == 1

    async def test_entry_fields(self, seeded, clock):
        """The unlocked entry is complete and unseen."""
        await seeded.engine.unlock_achievement("u1", "first_card")
        [entry] = await seeded.engine.get_user_achievements("u1")
        assert entry.achievement_id == "first_card"
        assert entry.progress == 100
        assert entry.unlocked_at == clock.now
        assert entry.notification_seen is False

    async def test_unknown_achievement(self, seeded):
        """Unlocking an id missing from the catalog raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await seeded.engine.unlock_achievement("u1", "does_not_exist")


@pytest.mark.asyncio
class TestAchievementProgress:
    """Test get_user_progress and update_achievement_progress."""

    async def test_capped_at_100(self, custom):
        """Values beyond the target report 100."""
        services, value = custom
        value["points"] = 15
        assert await services.engine.get_user_progress("u1", "ten_points") == 100

    async def test_partial(self, custom):
        """Partial values report the rounded percentage."""
        services, value = custom
        value["points"] = 4
        assert await services.engine.get_user_progress("u1", "ten_points") == 40

    async def test_count_based(self, custom):
        """Count achievements read their value from the ledger."""
        services, _ = custom
        for i in range(2):
            await services.ledger.process_card_review("u1", f"card-{i}", "good")
        assert await services.engine.get_user_progress("u1", "five_reviews") == 40

    async def test_recomputed_after_streak_lapses(self, seeded):
        """An unlocked streak achievement reports the current streak once it lapses."""
        await three_day_streak(seeded)
        await seeded.engine.check_achievements("u1", [AchievementType.STREAK])
        assert await seeded.engine.get_user_progress("u1", "streak_three_days") == 100

        await seeded.streaks.update_streak("u1", "2025-01-20")

        assert await seeded.engine.get_user_progress("u1", "streak_three_days") == 0
        entries = {e.achievement_id: e for e in await seeded.engine.get_user_achievements("u1")}
        assert entries["streak_three_days"].is_unlocked

    async def test_unlocked_custom_follows_metric(self, custom):
        """An unlocked custom achievement reports its metric's current value."""
        services, value = custom
        await services.engine.unlock_achievement("u1", "ten_points")
        value["points"] = 3
        assert await services.engine.get_user_progress("u1", "ten_points") == 30

    async def test_unevaluable_metric_uses_recorded_progress(self, seeded):
        """Without an evaluator the last recorded progress is reported."""
        assert await seeded.engine.get_user_progress("u1", "complete_profile") == 0
        await seeded.engine.update_achievement_progress("u1", "complete_profile", 60)
        assert await seeded.engine.get_user_progress("u1", "complete_profile") == 60

    async def test_custom_metric_unlocks(self, custom):
        """A custom metric reaching its target unlocks the achievement."""
        services, value = custom
        value["points"] = 10
        unlocked = await services.engine.check_achievements("u1", [AchievementType.CUSTOM])
        assert [a.id for a in unlocked] == ["ten_points"]

    async def test_update_progress(self, custom):
        """Recorded progress never unlocks."""
        services, _ = custom
        entry = await services.engine.update_achievement_progress("u1", "ten_points", 30)
        assert entry.progress == 30
        assert entry.is_unlocked is False

    @pytest.mark.parametrize("value", [-1, 101, 50.5, True])
    async def test_update_progress_rejects_out_of_range(self, custom, value):
        """Progress must be an integer in 0..100."""
        services, _ = custom
        with pytest.raises(InvalidError):
            await services.engine.update_achievement_progress("u1", "ten_points", value)

    async def test_update_progress_leaves_unlocked_entry(self, custom):
        """Recording progress on an unlocked entry changes nothing."""
        services, _ = custom
        await services.engine.unlock_achievement("u1", "ten_points")
        entry = await services.engine.update_achievement_progress("u1", "ten_points", 10)
        assert entry.progress == 100
        assert entry.is_unlocked is True


@pytest.mark.asyncio
class TestMarkAllAsSeen:
    """Test mark_all_as_seen."""

    async def test_marks_unseen_unlocked_only(self, seeded):
        """Only unlocked, unseen entries are flagged; locked ones are untouched."""
        await seeded.engine.unlock_achievement("u1", "first_card")
        await seeded.engine.unlock_achievement("u1", "first_deck")
        await seeded.engine.update_achievement_progress("u1", "five_reviews", 20)

        assert await seeded.engine.mark_all_as_seen("u1") == 2
        assert await seeded.engine.mark_all_as_seen("u1") == 0

        seen = {e.achievement_id: e.notification_seen for e in await seeded.engine.get_user_achievements("u1")}
        assert seen == {"first_card": True, "first_deck": True, "five_reviews": False}


@pytest.mark.asyncio
class TestReconcileRewards:
    """Test reconcile_rewards."""

    async def _orphan_unlock(self, services, clock, achievement_id: str, age: timedelta) -> None:
        await services.progress.get_or_create_user_progress("u1")
        await services.store.set(paths.user_achievement("u1", achievement_id), {
            "userId": "u1",
            "achievementId": achievement_id,
            "progress": 100,
            "unlockedAt": clock.now - age,
            "claimed": False,
            "notificationSeen": False,
        })

    async def test_credits_missing_reward(self, seeded, clock):
        """An old unlock without a ledger entry is credited once."""
        await self._orphan_unlock(seeded, clock, "first_deck", timedelta(hours=1))

        assert await seeded.engine.reconcile_rewards("u1", now=clock.now) == ["first_deck"]
        assert await seeded.engine.reconcile_rewards("u1", now=clock.now) == []
        assert await achievement_xp_count(seeded, "u1") == 1
        assert (await seeded.progress.get_user_progress("u1")).achievements == ["first_deck"]

    async def test_recent_unlock_left_alone(self, seeded, clock):
        """Unlocks inside the grace period are not touched."""
        await self._orphan_unlock(seeded, clock, "first_deck", timedelta(minutes=1))
        assert await seeded.engine.reconcile_rewards("u1", now=clock.now) == []

    async def test_credited_unlock_not_repeated(self, seeded, clock):
        """A normally credited unlock is never credited again."""
        await seeded.engine.unlock_achievement("u1", "first_deck")
        assert await seeded.engine.reconcile_rewards("u1", now=clock.now + timedelta(hours=1)) == []
        assert await achievement_xp_count(seeded, "u1") == 1
