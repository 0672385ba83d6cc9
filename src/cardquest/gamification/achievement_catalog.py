"""Achievement definitions: normalisation, validation and the read-only catalog."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from cardquest.errors import InvalidError, NotFoundError
from cardquest.gamification.constants import TIER_METADATA
from cardquest.gamification.schemas import Achievement, AchievementType, field_alias
from cardquest.store import paths
from cardquest.store.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("id", "name", "description", "icon")


def _round_number(value: Any, minimum: int) -> Any:
    """Round finite numbers and clamp to ``minimum``; anything else is left for validation."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return value
    return max(minimum, int(round(value)))


def normalize_achievement(data: dict[str, Any] | Achievement) -> dict[str, Any]:
    """Trim text fields, round ``xpReward`` (>= 0) and ``condition.target`` (>= 1)."""
    raw = data.to_document() if isinstance(data, Achievement) else dict(data)
    out = {field_alias(Achievement, k) if k in Achievement.model_fields else k: v for k, v in raw.items()}

    for key in _TEXT_FIELDS:
        if isinstance(out.get(key), str):
            out[key] = out[key].strip()

    if "xpReward" in out:
        out["xpReward"] = _round_number(out["xpReward"], 0)

    condition = out.get("condition")
    if isinstance(condition, dict):
        condition = dict(condition)
        if "target" in condition:
            condition["target"] = _round_number(condition["target"], 1)
        out["condition"] = condition
    return out


def validate_achievement(data: dict[str, Any] | Achievement) -> Achievement:
    """Normalise and validate a definition, raising InvalidError when malformed."""
    normalized = normalize_achievement(data)
    for key in ("id", "name"):
        value = normalized.get(key)
        if not isinstance(value, str) or not value:
            raise InvalidError(f"Achievement {key} must be a non-empty string")

    reward = normalized.get("xpReward")
    if isinstance(reward, float) and not math.isfinite(reward):
        raise InvalidError(f"Achievement {normalized['id']}: xpReward must be finite")

    try:
        achievement = Achievement.model_validate(normalized)
    except ValidationError as exc:
        raise InvalidError(f"Invalid achievement {normalized['id']}: {exc}") from exc

    low, high = TIER_METADATA[achievement.tier]["xp_range"]
    if not low <= achievement.xp_reward <= high:
        logger.warning(
            "Achievement %s reward %d outside %s range %d-%d",
            achievement.id, achievement.xp_reward, achievement.tier.value, low, high,
        )
    return achievement


class AchievementCatalog:
    """Read-only registry of achievement definitions, cached per instance."""

    def __init__(self, store: PersistenceGateway) -> None:
        self.store = store
        self._cache: list[Achievement] | None = None

    async def _load(self) -> list[Achievement]:
        """Load and cache all definitions, skipping malformed documents."""
        if self._cache is None:
            loaded = []
            for doc in await self.store.query(paths.achievements()):
                try:
                    loaded.append(validate_achievement({"id": doc.id, **doc.data}))
                except InvalidError:
                    logger.warning("Skipping malformed achievement document %s", doc.id, exc_info=True)
            self._cache = loaded
        return self._cache

    def refresh(self) -> None:
        self._cache = None

    async def get_all(
        self,
        active_only: bool = True,
        types: Iterable[AchievementType | str] | None = None,
    ) -> list[Achievement]:
        """Definitions in catalog order, optionally restricted to condition types."""
        achievements = await self._load()
        if active_only:
            achievements = [a for a in achievements if a.is_active]
        if types is not None:
            try:
                wanted = {AchievementType(t) for t in types}
            except ValueError as exc:
                raise InvalidError(f"Unknown achievement type in {types!r}") from exc
            achievements = [a for a in achievements if a.condition.type in wanted]
        return list(achievements)

    async def get(self, achievement_id: str) -> Achievement:
        if not isinstance(achievement_id, str) or not achievement_id.strip():
            raise InvalidError("Achievement id is required")
        doc = await self.store.get(paths.achievement(achievement_id.strip()))
        if doc is None:
            raise NotFoundError(f"Achievement not found: {achievement_id}")
        return validate_achievement({"id": doc.id, **doc.data})
