"""Achievement seed data and the idempotent catalog upsert."""

from __future__ import annotations

import logging

from cardquest.errors import InvalidError
from cardquest.gamification.achievement_catalog import validate_achievement
from cardquest.store import paths
from cardquest.store.gateway import SERVER_TIMESTAMP, PersistenceGateway

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Bronze
    {
        "id": "first_card",
        "name": "First Card",
        "description": "Create your first study card.",
        "tier": "bronze",
        "xp_reward": 50,
        "icon": "bronze_first_card",
        "condition": {"type": "cards_created", "target": 1},
    },
    {
        "id": "first_deck",
        "name": "First Deck",
        "description": "Create your first study deck.",
        "tier": "bronze",
        "xp_reward": 50,
        "icon": "bronze_first_deck",
        "condition": {"type": "deck_created", "target": 1},
    },
    {
        "id": "first_review",
        "name": "First Review",
        "description": "Complete your first card review.",
        "tier": "bronze",
        "xp_reward": 50,
        "icon": "bronze_first_review",
        "condition": {"type": "reviews_completed", "target": 1},
    },
    {
        "id": "five_reviews",
        "name": "First Steps",
        "description": "Complete 5 card reviews.",
        "tier": "bronze",
        "xp_reward": 75,
        "icon": "bronze_five_reviews",
        "condition": {"type": "reviews_completed", "target": 5},
    },
    {
        "id": "study_three_decks",
        "name": "Explorer",
        "description": "Study 3 different decks.",
        "tier": "bronze",
        "xp_reward": 75,
        "icon": "bronze_explorer",
        "condition": {"type": "custom", "target": 3, "params": {"metric": "unique_decks_studied"}},
    },
    {
        "id": "ten_cards_created",
        "name": "Apprentice",
        "description": "Create 10 cards.",
        "tier": "bronze",
        "xp_reward": 100,
        "icon": "bronze_ten_cards",
        "condition": {"type": "cards_created", "target": 10},
    },
    {
        "id": "streak_three_days",
        "name": "Consistent",
        "description": "Keep a 3-day streak.",
        "tier": "bronze",
        "xp_reward": 100,
        "icon": "bronze_three_day_streak",
        "condition": {"type": "streak", "target": 3},
    },
    {
        "id": "daily_goal_five_days",
        "name": "Five Days",
        "description": "Complete the daily goal 5 times.",
        "tier": "bronze",
        "xp_reward": 100,
        "icon": "bronze_five_day_goal",
        "condition": {"type": "daily_goal", "target": 5},
    },
    {
        "id": "complete_profile",
        "name": "Complete Profile",
        "description": "Fill in 100% of your profile.",
        "tier": "bronze",
        "xp_reward": 50,
        "icon": "bronze_complete_profile",
        "condition": {"type": "custom", "target": 1, "params": {"metric": "profile_completed"}},
    },
    {
        "id": "twenty_cards_in_day",
        "name": "Sprinter",
        "description": "Review 20 cards in a single day.",
        "tier": "bronze",
        "xp_reward": 100,
        "icon": "bronze_twenty_cards_day",
        "condition": {"type": "custom", "target": 20, "params": {"metric": "cards_reviewed_single_day"}},
    },
    {
        "id": "study_before_eight",
        "name": "Early Bird",
        "description": "Start a study session before 8 AM.",
        "tier": "bronze",
        "xp_reward": 75,
        "icon": "bronze_early_bird",
        "condition": {"type": "custom", "target": 1, "params": {"metric": "study_sessions_before_hour", "hour": 8}},
    },
    # Silver
    {
        "id": "create_fifty_cards",
        "name": "Card Maker",
        "description": "Create 50 cards.",
        "tier": "silver",
        "xp_reward": 150,
        "icon": "silver_fifty_cards",
        "condition": {"type": "cards_created", "target": 50},
    },
    {
        "id": "streak_seven_days",
        "name": "Full Week",
        "description": "Keep a 7-day streak.",
        "tier": "silver",
        "xp_reward": 200,
        "icon": "silver_seven_day_streak",
        "condition": {"type": "streak", "target": 7},
    },
    {
        "id": "complete_hundred_reviews",
        "name": "Centurion",
        "description": "Complete 100 card reviews.",
        "tier": "silver",
        "xp_reward": 200,
        "icon": "silver_hundred_reviews",
        "condition": {"type": "reviews_completed", "target": 100},
    },
    {
        "id": "daily_goal_fifteen_times",
        "name": "Dedicated",
        "description": "Complete the daily goal 15 times.",
        "tier": "silver",
        "xp_reward": 250,
        "icon": "silver_fifteen_goals",
        "condition": {"type": "daily_goal", "target": 15},
    },
    {
        "id": "study_after_twenty_two",
        "name": "Night Owl",
        "description": "Start a study session after 10 PM.",
        "tier": "silver",
        "xp_reward": 150,
        "icon": "silver_night_owl",
        "condition": {"type": "custom", "target": 1, "params": {"metric": "study_sessions_after_hour", "hour": 22}},
    },
    {
        "id": "fifty_cards_in_day",
        "name": "Marathon",
        "description": "Review 50 cards in a single day.",
        "tier": "silver",
        "xp_reward": 250,
        "icon": "silver_fifty_cards_day",
        "condition": {"type": "custom", "target": 50, "params": {"metric": "cards_reviewed_single_day"}},
    },
    {
        "id": "reach_level_five",
        "name": "Rising Learner",
        "description": "Reach level 5.",
        "tier": "silver",
        "xp_reward": 200,
        "icon": "silver_level_five",
        "condition": {"type": "level_reached", "target": 5},
    },
    # Gold
    {
        "id": "streak_30_days",
        "name": "Unstoppable",
        "description": "Keep a 30-day streak.",
        "tier": "gold",
        "xp_reward": 600,
        "icon": "gold_thirty_day_streak",
        "condition": {"type": "streak", "target": 30},
    },
    {
        "id": "complete_500_reviews",
        "name": "Review Veteran",
        "description": "Complete 500 card reviews.",
        "tier": "gold",
        "xp_reward": 500,
        "icon": "gold_500_reviews",
        "condition": {"type": "reviews_completed", "target": 500},
    },
    {
        "id": "earn_10000_xp",
        "name": "XP Hoarder",
        "description": "Earn 10,000 XP in total.",
        "tier": "gold",
        "xp_reward": 500,
        "icon": "gold_10000_xp",
        "condition": {"type": "xp_total", "target": 10000},
    },
    # Platinum
    {
        "id": "create_1000_cards",
        "name": "Librarian",
        "description": "Create 1,000 cards.",
        "tier": "platinum",
        "xp_reward": 1000,
        "icon": "platinum_1000_cards",
        "condition": {"type": "cards_created", "target": 1000},
    },
    {
        "id": "streak_90_days",
        "name": "Quarter Year",
        "description": "Keep a 90-day streak.",
        "tier": "platinum",
        "xp_reward": 1200,
        "icon": "platinum_ninety_day_streak",
        "condition": {"type": "streak", "target": 90},
    },
    # Diamond
    {
        "id": "streak_365_days",
        "name": "Year of Study",
        "description": "Keep a 365-day streak.",
        "tier": "diamond",
        "xp_reward": 5000,
        "icon": "diamond_year_streak",
        "condition": {"type": "streak", "target": 365},
    },
    {
        "id": "daily_goal_100_times",
        "name": "Goal Legend",
        "description": "Complete the daily goal 100 times.",
        "tier": "diamond",
        "xp_reward": 2000,
        "icon": "diamond_hundred_goals",
        "condition": {"type": "daily_goal", "target": 100},
    },
]


async def seed_achievements(store: PersistenceGateway, seeds: list[dict] | None = None) -> int:
    """Upsert achievement definitions, preserving ``createdAt``. Returns number seeded."""
    seeds = ACHIEVEMENT_SEED_DATA if seeds is None else seeds
    achievements = [validate_achievement(seed) for seed in seeds]

    seen: set[str] = set()
    for achievement in achievements:
        if achievement.id in seen:
            raise InvalidError(f"Duplicate achievement id in seed data: {achievement.id}")
        seen.add(achievement.id)

    created = updated = 0
    for achievement in achievements:
        path = paths.achievement(achievement.id)
        data = achievement.to_document(exclude={"created_at", "updated_at"})
        data["updatedAt"] = SERVER_TIMESTAMP
        if await store.get(path) is None:
            data["createdAt"] = SERVER_TIMESTAMP
            created += 1
        else:
            updated += 1
        await store.set(path, data, merge=True)

    logger.info("Seeded %d achievement definitions (%d created, %d updated)", len(achievements), created, updated)
    return len(achievements)
