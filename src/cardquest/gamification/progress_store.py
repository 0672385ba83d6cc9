"""Per-user cumulative progress, daily snapshots and study sessions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from cardquest.errors import InvalidError, NotFoundError
from cardquest.gamification.day_utils import parse_day
from cardquest.gamification.schemas import DailyProgress, StudySession, UserProgress, field_alias
from cardquest.store import paths
from cardquest.store.gateway import SERVER_TIMESTAMP, Filter, PersistenceGateway

logger = logging.getLogger(__name__)

_NON_NEGATIVE = ("current_streak", "longest_streak", "total_cards_reviewed")


def require_user_id(user_id: str) -> str:
    """Reject blank user ids before they reach a document path."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidError("User id is required")
    return user_id.strip()


def _aliases(model: type, fields: dict[str, Any]) -> dict[str, Any]:
    """Translate snake_case attribute names to stored field names."""
    out: dict[str, Any] = {}
    for name, value in fields.items():
        if name not in model.model_fields:
            raise InvalidError(f"Unknown {model.__name__} field: {name}")
        out[field_alias(model, name)] = value
    return out


class ProgressStore:
    """Owns ``users/{u}/profile/profile``, ``dailyProgress`` and ``studySessions``."""

    def __init__(self, store: PersistenceGateway) -> None:
        self.store = store

    # --- User progress ---

    async def find_user_progress(self, user_id: str) -> UserProgress | None:
        user_id = require_user_id(user_id)
        doc = await self.store.get(paths.user_progress(user_id))
        if doc is None:
            return None
        return UserProgress.from_document(doc, userId=user_id)

    async def get_user_progress(self, user_id: str) -> UserProgress:
        progress = await self.find_user_progress(user_id)
        if progress is None:
            raise NotFoundError(f"User progress not found for {user_id}")
        return progress

    async def create_user_progress(self, user_id: str) -> UserProgress:
        """Create the level-1 progress singleton and register the user id."""
        user_id = require_user_id(user_id)
        data = UserProgress(user_id=user_id).to_document(exclude={"created_at", "updated_at"})
        data["createdAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP
        await self.store.set(paths.user_progress(user_id), data)
        await self.store.set(paths.user(user_id), {"userId": user_id}, merge=True)
        logger.debug("Created user progress for %s", user_id)
        return await self.get_user_progress(user_id)

    async def get_or_create_user_progress(self, user_id: str) -> UserProgress:
        """Get or create the progress singleton for a user."""
        progress = await self.find_user_progress(user_id)
        if progress is None:
            progress = await self.create_user_progress(user_id)
        return progress

    async def save_user_progress(self, progress: UserProgress) -> UserProgress:
        """Replace the stored singleton with ``progress``."""
        data = progress.to_document(exclude={"updated_at"})
        if data.get("createdAt") is None:
            data["createdAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP
        await self.store.set(paths.user_progress(progress.user_id), data)
        return await self.get_user_progress(progress.user_id)

    async def update_user_progress(self, user_id: str, **fields: Any) -> UserProgress:
        """Merge-patch progress fields (snake_case names)."""
        await self.get_or_create_user_progress(user_id)
        for name in _NON_NEGATIVE:
            if name in fields and fields[name] is not None:
                fields[name] = max(0, int(fields[name]))
        if "achievements" in fields:
            fields["achievements"] = list(dict.fromkeys(fields["achievements"]))
        patch = _aliases(UserProgress, fields)
        patch["updatedAt"] = SERVER_TIMESTAMP
        await self.store.set(paths.user_progress(user_id), patch, merge=True)
        return await self.get_user_progress(user_id)

    async def add_achievement(self, user_id: str, achievement_id: str) -> UserProgress:
        progress = await self.get_or_create_user_progress(user_id)
        if achievement_id in progress.achievements:
            return progress
        return await self.update_user_progress(
            user_id, achievements=[*progress.achievements, achievement_id]
        )

    async def increment_cards_reviewed(self, user_id: str, count: int = 1) -> UserProgress:
        progress = await self.get_or_create_user_progress(user_id)
        return await self.update_user_progress(
            user_id,
            total_cards_reviewed=progress.total_cards_reviewed + count,
            last_activity_date=datetime.now(timezone.utc),
        )

    # --- Users ---

    async def get_all_user_ids(self) -> list[str]:
        return await self.store.list_ids(paths.users())

    async def get_display_name(self, user_id: str) -> str:
        """Display name from the user document, falling back to the id."""
        doc = await self.store.get(paths.user(user_id))
        if doc is not None:
            name = doc.data.get("displayName") or doc.data.get("name")
            if isinstance(name, str) and name.strip():
                return name.strip()
        return user_id

    # --- Daily progress ---

    async def find_daily_progress(self, user_id: str, date: str) -> DailyProgress | None:
        user_id = require_user_id(user_id)
        parse_day(date)
        doc = await self.store.get(paths.daily_day(user_id, date))
        if doc is None:
            return None
        return DailyProgress.from_document(doc, userId=user_id, date=date)

    async def get_daily_progress(self, user_id: str, date: str) -> DailyProgress:
        daily = await self.find_daily_progress(user_id, date)
        if daily is None:
            raise NotFoundError(f"Daily progress not found for {user_id} on {date}")
        return daily

    async def update_daily_progress(self, user_id: str, date: str, **fields: Any) -> DailyProgress:
        user_id = require_user_id(user_id)
        parse_day(date)
        patch = _aliases(DailyProgress, fields)
        patch.update({"userId": user_id, "date": date, "timestamp": SERVER_TIMESTAMP})
        await self.store.set(paths.daily_day(user_id, date), patch, merge=True)
        return await self.get_daily_progress(user_id, date)

    async def list_daily_progress(self, user_id: str) -> list[DailyProgress]:
        user_id = require_user_id(user_id)
        docs = await self.store.query(paths.daily_days(user_id))
        return [DailyProgress.from_document(d, userId=user_id, date=d.id) for d in docs]

    async def list_goal_met_dates(self, user_id: str, limit: int | None = None) -> list[str]:
        """Dates on which the daily goal was met, most recent first."""
        user_id = require_user_id(user_id)
        docs = await self.store.query(
            paths.daily_days(user_id),
            [Filter("goalMet", "==", True)],
        )
        dates = sorted((d.id for d in docs), reverse=True)
        return dates[:limit] if limit is not None else dates

    # --- Study sessions ---

    async def record_study_session(
        self,
        user_id: str,
        duration_minutes: int,
        cards_reviewed: int,
        correct_answers: int = 0,
        total_answers: int = 0,
        deck_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> StudySession:
        user_id = require_user_id(user_id)
        if correct_answers > total_answers:
            raise InvalidError("Correct answers cannot exceed total answers")
        try:
            session = StudySession(
                id=uuid.uuid4().hex,
                user_id=user_id,
                session_duration_minutes=duration_minutes,
                cards_reviewed=cards_reviewed,
                accuracy_count=correct_answers,
                total_answers=total_answers,
                deck_id=deck_id,
                timestamp=timestamp or datetime.now(timezone.utc),
            )
        except ValidationError as exc:
            raise InvalidError(f"Invalid study session for {user_id}: {exc}") from exc
        await self.store.set(paths.study_session(user_id, session.id), session.to_document())
        return session

    async def get_study_sessions(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[StudySession]:
        """Sessions in ``[start, end)``, oldest first."""
        user_id = require_user_id(user_id)
        filters = []
        if start is not None:
            filters.append(Filter("timestamp", ">=", start))
        if end is not None:
            filters.append(Filter("timestamp", "<", end))
        docs = await self.store.query(paths.study_sessions(user_id), filters, order_by="timestamp")
        return [StudySession.from_document(d) for d in docs]
