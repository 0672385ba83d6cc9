"""Periodic leaderboards built from the XP ledger."""
