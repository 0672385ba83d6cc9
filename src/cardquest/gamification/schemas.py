"""Pydantic models for gamification documents and results.

Stored documents use camelCase field names; Python code works with the
snake_case attributes. ``to_document()`` produces the stored form.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from cardquest.errors import InvalidError
from cardquest.store.gateway import Document, path_str

M = TypeVar("M", bound="DocumentModel")


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self, exclude: set[str] | None = None) -> dict[str, Any]:
        return _plain(self.model_dump(by_alias=True, exclude=exclude))

    @classmethod
    def from_document(cls: type[M], doc: Document, **defaults: Any) -> M:
        """Validate a stored document, raising InvalidError naming its path."""
        try:
            return cls.model_validate({**defaults, **doc.data})
        except ValidationError as exc:
            raise InvalidError(f"Invalid {cls.__name__} document at {path_str(doc.path)}: {exc}") from exc


# --- Enums ---


class AchievementTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class AchievementType(str, Enum):
    STREAK = "streak"
    DAILY_GOAL = "daily_goal"
    REVIEWS_COMPLETED = "reviews_completed"
    CARDS_CREATED = "cards_created"
    DECK_CREATED = "deck_created"
    XP_TOTAL = "xp_total"
    LEVEL_REACHED = "level_reached"
    CUSTOM = "custom"


class XPSource(str, Enum):
    REVIEW = "review"
    ACHIEVEMENT = "achievement"
    DAILY_GOAL = "daily_goal"
    STREAK_BONUS = "streak_bonus"
    CARD_CREATION = "card_creation"
    DECK_CREATION = "deck_creation"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class ReviewDifficulty(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class StudyTime(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class PerformanceRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    NEEDS_IMPROVEMENT = "needs_improvement"


# --- Achievements ---


class AchievementCondition(DocumentModel):
    type: AchievementType
    target: int = Field(gt=0)
    params: dict[str, Any] = Field(default_factory=dict)


class Achievement(DocumentModel):
    id: str
    name: str
    description: str = ""
    tier: AchievementTier
    xp_reward: int = Field(ge=0)
    icon: str = ""
    condition: AchievementCondition
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserAchievementProgress(DocumentModel):
    user_id: str
    achievement_id: str
    unlocked_at: datetime | None = None
    progress: int = Field(default=0, ge=0, le=100)
    claimed: bool = False
    notification_seen: bool = False
    updated_at: datetime | None = None

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None


# --- Progress / XP ---


class UserProgress(DocumentModel):
    user_id: str
    level: int = Field(default=1, ge=1)
    current_xp: int = Field(default=0, ge=0, alias="currentXP")
    total_xp: int = Field(default=0, ge=0, alias="totalXP")
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    total_cards_reviewed: int = Field(default=0, ge=0)
    last_activity_date: datetime | None = None
    achievements: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class XPTransaction(DocumentModel):
    id: str
    user_id: str
    amount: int = Field(ge=0)
    source: XPSource
    source_id: str | None = None
    description: str = ""
    timestamp: datetime
    difficulty: ReviewDifficulty | None = None


class LevelUpInfo(BaseModel):
    leveled_up: bool
    old_level: int
    new_level: int
    levels_gained: int


class XPResult(BaseModel):
    user_progress: UserProgress
    level_up_info: LevelUpInfo
    transaction: XPTransaction


# --- Daily progress / sessions ---


class DailyProgress(DocumentModel):
    user_id: str
    date: str
    cards_reviewed: int = Field(default=0, ge=0)
    goal_met: bool = False
    xp_earned: int = Field(default=0, ge=0)
    goal_xp_awarded: bool = False
    timestamp: datetime | None = None


class DailyGoalStatus(BaseModel):
    date: str
    goal_met: bool
    cards_reviewed: int
    cards_remaining: int
    xp_earned: int


class StudySession(DocumentModel):
    id: str
    user_id: str
    session_duration_minutes: int = Field(default=0, ge=0)
    cards_reviewed: int = Field(default=0, ge=0)
    accuracy_count: int = Field(default=0, ge=0)
    total_answers: int = Field(default=0, ge=0)
    deck_id: str | None = None
    timestamp: datetime


# --- Streaks ---


class StreakHistoryItem(DocumentModel):
    date: str
    count: int = Field(ge=0)


class StreakData(DocumentModel):
    user_id: str
    current: int = Field(default=0, ge=0)
    longest: int = Field(default=0, ge=0)
    last_update: datetime | None = None
    history: list[StreakHistoryItem] = Field(default_factory=list)


class StreakUpdate(BaseModel):
    streak: StreakData
    bonus_awarded: int = 0
    milestone: int | None = None


# --- Statistics ---


class CardState(BaseModel):
    """Scheduler state of one card, as reported by the client."""

    ease: float = Field(default=0, ge=0)
    interval: int = Field(default=0, ge=0)  # days
    state: Literal["new", "learning", "review"] = "new"


class DeckStatistics(DocumentModel):
    deck_id: str
    user_id: str
    deck_name: str
    cards_new: int = Field(default=0, ge=0)
    cards_learning: int = Field(default=0, ge=0)
    cards_review: int = Field(default=0, ge=0)
    total_cards: int = Field(default=0, ge=0)
    progress_percentage: int = Field(default=0, ge=0, le=100)
    mastered_cards: int = Field(default=0, ge=0)
    average_ease: float = Field(default=0, ge=0)
    last_studied_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def remaining_cards(self) -> int:
        return max(0, self.total_cards - self.mastered_cards)

    @property
    def is_completed(self) -> bool:
        return self.progress_percentage >= 100 or (self.total_cards > 0 and self.mastered_cards >= self.total_cards)


class DifficultyBreakdown(DocumentModel):
    again_count: int = Field(default=0, ge=0)
    hard_count: int = Field(default=0, ge=0)
    good_count: int = Field(default=0, ge=0)
    easy_count: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.again_count + self.hard_count + self.good_count + self.easy_count


class UserStatistics(DocumentModel):
    user_id: str
    total_cards_created: int = Field(default=0, ge=0)
    total_decks_created: int = Field(default=0, ge=0)
    total_reviews_completed: int = Field(default=0, ge=0)
    total_study_sessions: int = Field(default=0, ge=0)
    total_study_time_minutes: int = Field(default=0, ge=0)
    average_session_duration_minutes: int = Field(default=0, ge=0)
    longest_streak_days: int = Field(default=0, ge=0)
    weekly_review_goal: int = Field(default=50, ge=0)
    current_week_reviews: int = Field(default=0, ge=0)
    monthly_review_goal: int = Field(default=200, ge=0)
    current_month_reviews: int = Field(default=0, ge=0)
    overall_accuracy_rate: int = Field(default=0, ge=0, le=100)
    retention_rate: int = Field(default=0, ge=0, le=100)
    overall_average_ease: float = Field(default=0, ge=0)
    difficulty_breakdown: DifficultyBreakdown = Field(default_factory=DifficultyBreakdown)
    favorite_study_time: StudyTime = StudyTime.AFTERNOON
    first_activity_at: datetime | None = None
    last_activity_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PerformanceSnapshot(BaseModel):
    accuracy_rate: int
    retention_rate: int
    weekly_progress: float
    monthly_progress: float
    performance_rating: PerformanceRating


# --- Activity ---


class ActivityResult(BaseModel):
    xp: XPResult | None = None
    unlocked: list[Achievement] = Field(default_factory=list)
    daily_goal: DailyGoalStatus | None = None
    streak: StreakUpdate | None = None
    statistics: UserStatistics | None = None


def field_alias(model: type[BaseModel], name: str) -> str:
    """Stored (camelCase) name of a model attribute."""
    info = model.model_fields[name]
    return info.alias or to_camel(name)
