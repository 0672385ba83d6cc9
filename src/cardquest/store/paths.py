"""Document layout of the gamification store."""

from __future__ import annotations

from cardquest.store.gateway import Path, collection_path, doc_path

ACHIEVEMENTS = "achievements"
USERS = "users"
USER_ACHIEVEMENTS = "userAchievements"
DAILY_PROGRESS = "dailyProgress"
XP_TRANSACTIONS = "xpTransactions"
STREAKS = "streaks"
RANKINGS = "rankings"
STUDY_SESSIONS = "studySessions"
USER_STATISTICS = "userStatistics"
DECK_STATISTICS = "deckStatistics"

# Subcollection names (also used for cross-user collection-group scans)
TRANSACTIONS = "transactions"
SESSIONS = "sessions"


def achievements() -> Path:
    return collection_path(ACHIEVEMENTS)


def achievement(achievement_id: str) -> Path:
    return doc_path(ACHIEVEMENTS, achievement_id)


def users() -> Path:
    return collection_path(USERS)


def user(user_id: str) -> Path:
    return doc_path(USERS, user_id)


def user_progress(user_id: str) -> Path:
    return doc_path(USERS, user_id, "profile", "profile")


def user_achievements(user_id: str) -> Path:
    return collection_path(USER_ACHIEVEMENTS, user_id, "achievements")


def user_achievement(user_id: str, achievement_id: str) -> Path:
    return doc_path(USER_ACHIEVEMENTS, user_id, "achievements", achievement_id)


def daily_days(user_id: str) -> Path:
    return collection_path(DAILY_PROGRESS, user_id, "days")


def daily_day(user_id: str, date: str) -> Path:
    return doc_path(DAILY_PROGRESS, user_id, "days", date)


def xp_transactions(user_id: str) -> Path:
    return collection_path(XP_TRANSACTIONS, user_id, TRANSACTIONS)


def xp_transaction(user_id: str, transaction_id: str) -> Path:
    return doc_path(XP_TRANSACTIONS, user_id, TRANSACTIONS, transaction_id)


def streak(user_id: str) -> Path:
    return doc_path(STREAKS, user_id)


def study_sessions(user_id: str) -> Path:
    return collection_path(STUDY_SESSIONS, user_id, SESSIONS)


def study_session(user_id: str, session_id: str) -> Path:
    return doc_path(STUDY_SESSIONS, user_id, SESSIONS, session_id)


def user_statistics(user_id: str) -> Path:
    return doc_path(USER_STATISTICS, user_id)


def deck_statistics(user_id: str) -> Path:
    return collection_path(DECK_STATISTICS, user_id, "decks")


def deck_statistic(user_id: str, deck_id: str) -> Path:
    return doc_path(DECK_STATISTICS, user_id, "decks", deck_id)


def ranking(period: str, date: str) -> Path:
    """Snapshot document id is ``{period}_{date}``, e.g. ``monthly_2025-01``."""
    return doc_path(RANKINGS, f"{period}_{date}")
