"""Gamification arq worker: nightly streaks, hourly achievement sweeps and rankings.

Import path for arq CLI: arq cardquest.gamification.worker.WorkerSettings
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from arq import cron
from arq.connections import RedisSettings

from cardquest.config import get_settings
from cardquest.dependencies import Services, build_services
from cardquest.logging_config import bind_job_context, setup_logging
from cardquest.redis_client import close_redis, init_redis
from cardquest.store.database import close_db, get_session_factory, init_db
from cardquest.store.sql import SqlDocumentStore

logger = logging.getLogger(__name__)


async def gamification_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections and the component graph."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    redis_client = await init_redis(settings.redis_url)

    ctx["settings"] = settings
    ctx["redis"] = redis_client
    ctx["services"] = build_services(SqlDocumentStore(get_session_factory()), redis_client, settings)
    logger.info("Gamification worker started (%s, v%s)", settings.environment, settings.app_version)


async def gamification_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_redis()
    await close_db()
    logger.info("Gamification worker shut down")


async def _user_batches(services: Services, batch_size: int, max_users: int) -> list[list[str]]:
    user_ids = await services.progress.get_all_user_ids()
    if max_users:
        user_ids = user_ids[:max_users]
    size = max(batch_size, 1)
    return [user_ids[i:i + size] for i in range(0, len(user_ids), size)]


async def update_streaks(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled task: recompute every streak shortly after midnight."""
    bind_job_context("update_streaks")
    services: Services = ctx["services"]
    settings = ctx.get("settings") or get_settings()
    return await services.streaks.update_all_streaks(max_users=settings.job_max_users)


async def check_all_achievements(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled task: reconcile missing rewards, then evaluate achievements for every user.

    Users are processed in concurrent batches; a failing user is logged and
    skipped without aborting the sweep.
    """
    bind_job_context("check_all_achievements")
    services: Services = ctx["services"]
    settings = ctx.get("settings") or get_settings()
    services.catalog.refresh()
    started = datetime.now(timezone.utc)

    async def _check(user_id: str) -> tuple[int, int]:
        credited = await services.engine.reconcile_rewards(user_id)
        unlocked = await services.engine.check_achievements(user_id)
        return len(credited), len(unlocked)

    processed = unlocked = credited = 0
    failed: list[str] = []
    for batch in await _user_batches(services, settings.job_batch_size, settings.job_max_users):
        results = await asyncio.gather(*(_check(u) for u in batch), return_exceptions=True)
        for user_id, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.warning("Achievement check failed for %s", user_id, exc_info=result)
                failed.append(user_id)
                continue
            processed += 1
            credited += result[0]
            unlocked += result[1]

    logger.info(
        "Achievement sweep complete: %d users, %d unlocked, %d rewards reconciled, %d failed",
        processed, unlocked, credited, len(failed),
    )
    return {
        "processed": processed,
        "unlocked": unlocked,
        "reconciled": credited,
        "failed": failed,
        "duration_seconds": (datetime.now(timezone.utc) - started).total_seconds(),
    }


async def refresh_rankings(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled task: rebuild the current monthly and yearly rankings."""
    bind_job_context("refresh_rankings")
    services: Services = ctx["services"]
    monthly = await services.rankings.update_monthly_ranking()
    yearly = await services.rankings.update_yearly_ranking()
    return {
        "monthly": {"date": monthly.date, "participants": monthly.total_participants},
        "yearly": {"date": yearly.date, "participants": yearly.total_participants},
    }


async def refresh_statistics(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled task: rebuild every user's statistics snapshot so weekly and monthly counts roll over."""
    bind_job_context("refresh_statistics")
    services: Services = ctx["services"]
    settings = ctx.get("settings") or get_settings()
    now = datetime.now(timezone.utc)

    processed = 0
    failed: list[str] = []
    for batch in await _user_batches(services, settings.job_batch_size, settings.job_max_users):
        results = await asyncio.gather(
            *(services.statistics.update_user_statistics(u, now=now) for u in batch),
            return_exceptions=True,
        )
        for user_id, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.warning("Statistics refresh failed for %s", user_id, exc_info=result)
                failed.append(user_id)
            else:
                processed += 1

    logger.info("Statistics refresh complete: %d users (%d failed)", processed, len(failed))
    return {"processed": processed, "failed": failed}


class WorkerSettings:
    """arq worker settings for scheduled gamification jobs."""

    functions = [update_streaks, check_all_achievements, refresh_rankings, refresh_statistics]
    cron_jobs = [
        cron(update_streaks, hour={0}, minute={5}),  # 00:05 daily
        cron(check_all_achievements, minute={15}),  # hourly
        cron(refresh_rankings, minute={30}),  # hourly
        cron(refresh_statistics, hour={1}, minute={0}),  # 01:00 daily
    ]
    on_startup = gamification_startup
    on_shutdown = gamification_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 600  # 10 minutes max per sweep
