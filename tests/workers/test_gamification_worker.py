"""Scheduled gamification job tests over the in-memory store."""

from __future__ import annotations

import pytest
import pytest_asyncio

from cardquest.gamification.schemas import XPSource
from cardquest.gamification.worker import (
    WorkerSettings,
    check_all_achievements,
    refresh_rankings,
    refresh_statistics,
    update_streaks,
)


@pytest_asyncio.fixture
async def ctx(seeded, settings):
    """arq job context as built by gamification_startup."""
    return {"services": seeded, "settings": settings, "redis": None}


class TestWorkerSettings:
    """Test the arq worker registration."""

    def test_registered_jobs(self):
        """Every scheduled job is registered and has a cron entry."""
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"update_streaks", "check_all_achievements", "refresh_rankings", "refresh_statistics"}
        assert len(WorkerSettings.cron_jobs) == 4


@pytest.mark.asyncio
class TestCheckAllAchievements:
    """Test the hourly achievement sweep."""

    async def test_unlocks_pending_achievements(self, ctx):
        """Satisfied achievements are unlocked for every user, once."""
        services = ctx["services"]
        await services.ledger.process_card_review("u1", "card-1", "good")
        await services.ledger.add_xp("u2", 50, XPSource.DECK_CREATION, source_id="deck-1")

        summary = await check_all_achievements(ctx)
        assert summary["processed"] == 2
        assert summary["unlocked"] == 2
        assert summary["failed"] == []

        again = await check_all_achievements(ctx)
        assert again["unlocked"] == 0

    async def test_failing_user_does_not_abort_sweep(self, ctx, monkeypatch):
        """A user whose check raises is reported and the rest still run."""
        services = ctx["services"]
        await services.ledger.process_card_review("u1", "card-1", "good")
        await services.ledger.process_card_review("u2", "card-2", "good")

        original = services.engine.reconcile_rewards

        async def flaky(user_id, now=None):
            if user_id == "u2":
                raise RuntimeError("boom")
            return await original(user_id, now)

        monkeypatch.setattr(services.engine, "reconcile_rewards", flaky)
        summary = await check_all_achievements(ctx)
        assert summary["processed"] == 1
        assert summary["failed"] == ["u2"]

    async def test_respects_max_users(self, ctx, settings):
        """job_max_users caps how many users one sweep touches."""
        services = ctx["services"]
        for user_id in ("u1", "u2", "u3"):
            await services.ledger.process_card_review(user_id, "card-1", "good")
        ctx["settings"] = settings.model_copy(update={"job_max_users": 2, "job_batch_size": 1})

        summary = await check_all_achievements(ctx)
        assert summary["processed"] == 2


@pytest.mark.asyncio
async def test_update_streaks(ctx):
    """The nightly streak job processes every registered user."""
    services = ctx["services"]
    await services.progress.get_or_create_user_progress("u1")
    summary = await update_streaks(ctx)
    assert summary["processed"] == 1
    assert summary["failed"] == []


@pytest.mark.asyncio
async def test_refresh_rankings(ctx):
    """The ranking job rebuilds the current month and year."""
    services = ctx["services"]
    await services.ledger.add_xp("u1", 10, XPSource.REVIEW)

    summary = await refresh_rankings(ctx)
    assert summary["monthly"]["participants"] == 1
    assert summary["yearly"]["participants"] == 1


@pytest.mark.asyncio
class TestRefreshStatistics:
    """Test the nightly statistics rebuild."""

    async def test_builds_snapshot_per_user(self, ctx):
        """Each registered user gets a fresh statistics snapshot."""
        services = ctx["services"]
        await services.ledger.process_card_review("u1", "card-1", "good")
        await services.ledger.add_xp("u2", 25, XPSource.CARD_CREATION, source_id="card-9")

        summary = await refresh_statistics(ctx)
        assert summary == {"processed": 2, "failed": []}

        u1 = await services.statistics.get_user_statistics("u1")
        u2 = await services.statistics.get_user_statistics("u2")
        assert u1.total_reviews_completed == 1
        assert u1.current_week_reviews == 1
        assert u2.total_cards_created == 1

    async def test_failing_user_reported(self, ctx, monkeypatch):
        """A failing rebuild is collected without stopping the others."""
        services = ctx["services"]
        for user_id in ("u1", "u2"):
            await services.progress.get_or_create_user_progress(user_id)

        original = services.statistics.update_user_statistics

        async def flaky(user_id, now=None):
            if user_id == "u1":
                raise RuntimeError("boom")
            return await original(user_id, now=now)

        monkeypatch.setattr(services.statistics, "update_user_statistics", flaky)
        summary = await refresh_statistics(ctx)
        assert summary == {"processed": 1, "failed": ["u1"]}
