"""Pydantic models for ranking snapshots."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from cardquest.gamification.schemas import DocumentModel


class RankingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RankingEntry(DocumentModel):
    user_id: str
    user_name: str
    rank: int = Field(ge=1)
    cards_reviewed: int = 0
    xp_earned: int = 0
    streak_days: int = 0
    accuracy_rate: float = 0.0
    study_time_minutes: int = 0
    study_sessions: int = 0
    achievements_unlocked: int = 0
    last_activity: datetime | None = None


class RankingSnapshot(DocumentModel):
    period: RankingPeriod
    date: str
    entries: list[RankingEntry] = Field(default_factory=list)
    total_participants: int = 0
    total_reviews: int = 0
    total_xp_distributed: int = 0
    average_reviews_per_user: float = 0.0
    last_updated: datetime | None = None
    created_at: datetime | None = None
