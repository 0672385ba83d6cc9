"""XP reward table and achievement tier metadata."""

from __future__ import annotations

from cardquest.gamification.schemas import AchievementTier, ReviewDifficulty, XPSource

XP_VALUES: dict[str, int] = {
    "review_again": 5,
    "review_hard": 10,
    "review_good": 15,
    "review_easy": 20,
    "card_creation": 25,
    "deck_creation": 50,
    "daily_goal": 100,
    "streak_7_days": 200,
    "streak_30_days": 300,
}

REVIEW_XP: dict[ReviewDifficulty, int] = {
    ReviewDifficulty.AGAIN: XP_VALUES["review_again"],
    ReviewDifficulty.HARD: XP_VALUES["review_hard"],
    ReviewDifficulty.GOOD: XP_VALUES["review_good"],
    ReviewDifficulty.EASY: XP_VALUES["review_easy"],
}

DEFAULT_DESCRIPTIONS: dict[XPSource, str] = {
    XPSource.REVIEW: "Card review",
    XPSource.ACHIEVEMENT: "Achievement unlocked",
    XPSource.DAILY_GOAL: "Daily goal completed",
    XPSource.STREAK_BONUS: "Streak bonus",
    XPSource.CARD_CREATION: "Card created",
    XPSource.DECK_CREATION: "Deck created",
    XPSource.MANUAL_ADJUSTMENT: "Manual adjustment",
}

DAILY_GOAL_TARGET = 20

TIER_METADATA: dict[AchievementTier, dict] = {
    AchievementTier.BRONZE: {
        "label": "Bronze",
        "color": "#CD7F32",
        "xp_range": (50, 100),
        "description": "Early, easy-to-reach achievements",
    },
    AchievementTier.SILVER: {
        "label": "Silver",
        "color": "#C0C0C0",
        "xp_range": (150, 300),
        "description": "Intermediate achievements",
    },
    AchievementTier.GOLD: {
        "label": "Gold",
        "color": "#FFD700",
        "xp_range": (400, 600),
        "description": "Advanced achievements for dedicated learners",
    },
    AchievementTier.PLATINUM: {
        "label": "Platinum",
        "color": "#E5E4E2",
        "xp_range": (800, 1200),
        "description": "Hard achievements that need long commitment",
    },
    AchievementTier.DIAMOND: {
        "label": "Diamond",
        "color": "#B9F2FF",
        "xp_range": (2000, 5000),
        "description": "Legendary achievements",
    },
}
