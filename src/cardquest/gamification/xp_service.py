"""XP ledger: append-only transactions, level accrual and activity counts."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone

from cardquest.errors import InvalidError
from cardquest.gamification.constants import DEFAULT_DESCRIPTIONS, REVIEW_XP
from cardquest.gamification.level_thresholds import compute_level, level_for_xp, xp_for_level
from cardquest.gamification.progress_store import ProgressStore, require_user_id
from cardquest.gamification.schemas import (
    LevelUpInfo,
    ReviewDifficulty,
    XPResult,
    XPSource,
    XPTransaction,
)
from cardquest.redis_client import publish_event
from cardquest.store import paths
from cardquest.store.gateway import Filter, PersistenceGateway

logger = logging.getLogger(__name__)


def _coerce_amount(amount: int | float) -> int:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidError(f"XP amount must be a number, got {amount!r}")
    if not math.isfinite(amount) or amount < 0:
        raise InvalidError(f"XP amount must be a finite number >= 0, got {amount!r}")
    if isinstance(amount, float) and not amount.is_integer():
        raise InvalidError(f"XP amount must be a whole number, got {amount!r}")
    return int(amount)


def _coerce_source(source: XPSource | str) -> XPSource:
    try:
        return XPSource(source)
    except ValueError as exc:
        raise InvalidError(f"Unknown XP source: {source!r}") from exc


class XPLedger:
    """Appends XP transactions and keeps the progress singleton in step."""

    def __init__(self, store: PersistenceGateway, progress: ProgressStore, redis: object = None) -> None:
        self.store = store
        self.progress = progress
        self.redis = redis

    async def add_xp(
        self,
        user_id: str,
        amount: int,
        source: XPSource | str,
        source_id: str | None = None,
        description: str | None = None,
        timestamp: datetime | None = None,
        difficulty: ReviewDifficulty | None = None,
    ) -> XPResult:
        """Grant XP to a user.

        1. Append an immutable ledger transaction
        2. Increment total XP on the progress singleton
        3. Recompute level (never lowered) and the XP earned within it
        4. If the level changed, publish a level_up event
        """
        user_id = require_user_id(user_id)
        amount = _coerce_amount(amount)
        source = _coerce_source(source)
        now = timestamp or datetime.now(timezone.utc)

        txn = XPTransaction(
            id=uuid.uuid4().hex,
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            description=description or DEFAULT_DESCRIPTIONS[source],
            timestamp=now,
            difficulty=difficulty,
        )
        await self.store.set(paths.xp_transaction(user_id, txn.id), txn.to_document())

        progress = await self.progress.get_or_create_user_progress(user_id)
        old_level = progress.level
        new_total = progress.total_xp + amount
        new_level = max(old_level, level_for_xp(new_total))

        saved = await self.progress.save_user_progress(progress.model_copy(update={
            "total_xp": new_total,
            "current_xp": max(new_total - xp_for_level(new_level), 0),
            "level": new_level,
            "last_activity_date": now,
        }))

        info = LevelUpInfo(
            leveled_up=new_level > old_level,
            old_level=old_level,
            new_level=new_level,
            levels_gained=new_level - old_level,
        )
        if info.leveled_up:
            title = compute_level(new_total)["title"]
            logger.info("User %s leveled up %d -> %d (%s)", user_id, old_level, new_level, title)
            await publish_event(self.redis, "pubsub:level_up", {
                "user_id": user_id,
                "old_level": old_level,
                "new_level": new_level,
                "title": title,
            })

        logger.debug("Granted %d XP to %s (source=%s, source_id=%s)", amount, user_id, source.value, source_id)
        return XPResult(user_progress=saved, level_up_info=info, transaction=txn)

    async def process_card_review(
        self,
        user_id: str,
        card_id: str,
        difficulty: ReviewDifficulty | str,
        timestamp: datetime | None = None,
    ) -> XPResult:
        """Grant review XP according to the answer difficulty."""
        try:
            difficulty = ReviewDifficulty(difficulty)
        except ValueError as exc:
            raise InvalidError(f"Unknown review difficulty: {difficulty!r}") from exc
        return await self.add_xp(
            user_id,
            REVIEW_XP[difficulty],
            XPSource.REVIEW,
            source_id=card_id,
            description=f"Card review ({difficulty.value})",
            timestamp=timestamp,
            difficulty=difficulty,
        )

    async def count_transactions_by_source(
        self,
        user_id: str,
        source: XPSource | str,
        since: datetime | None = None,
    ) -> int:
        """Count ledger entries of one source; the cardinality oracle for count achievements."""
        user_id = require_user_id(user_id)
        source = _coerce_source(source)
        filters = [Filter("source", "==", source.value)]
        if since is not None:
            filters.append(Filter("timestamp", ">=", since))
        return await self.store.count(paths.xp_transactions(user_id), filters)

    async def count_reviews_by_difficulty(self, user_id: str) -> dict[ReviewDifficulty, int]:
        user_id = require_user_id(user_id)
        return {
            difficulty: await self.store.count(
                paths.xp_transactions(user_id),
                [Filter("source", "==", XPSource.REVIEW.value), Filter("difficulty", "==", difficulty.value)],
            )
            for difficulty in ReviewDifficulty
        }

    async def has_transaction(self, user_id: str, source: XPSource | str, source_id: str) -> bool:
        user_id = require_user_id(user_id)
        source = _coerce_source(source)
        return await self.store.count(
            paths.xp_transactions(user_id),
            [Filter("source", "==", source.value), Filter("sourceId", "==", source_id)],
        ) > 0

    async def get_user_transactions(self, user_id: str, limit: int = 50) -> list[XPTransaction]:
        """Most recent transactions first."""
        user_id = require_user_id(user_id)
        docs = await self.store.query(
            paths.xp_transactions(user_id), order_by="timestamp", descending=True, limit=limit
        )
        return [XPTransaction.from_document(d) for d in docs]

    async def get_transactions_in_period(
        self,
        start: datetime,
        end: datetime,
        source: XPSource | str | None = None,
    ) -> list[XPTransaction]:
        """Cross-user ledger scan over ``[start, end)``."""
        filters = [Filter("timestamp", ">=", start), Filter("timestamp", "<", end)]
        if source is not None:
            filters.append(Filter("source", "==", _coerce_source(source).value))
        docs = await self.store.collection_group(paths.TRANSACTIONS, filters)
        return [XPTransaction.from_document(d) for d in docs]
