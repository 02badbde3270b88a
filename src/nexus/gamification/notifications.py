"""Best-effort pub/sub broadcasts for level-ups and earned badges.

Subscribers (activity feeds, overlays, websocket fan-out) listen on
``pubsub:level_up`` and ``pubsub:badge_earned``. A publish failure is logged
and swallowed: it must never fail the award that caused it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from nexus.gamification.types import BadgeDefinition

logger = logging.getLogger(__name__)

LEVEL_UP_CHANNEL = "pubsub:level_up"
BADGE_EARNED_CHANNEL = "pubsub:badge_earned"


class GamificationPublisher:
    """Publishes gamification events to Redis. ``redis=None`` disables publishing."""

    def __init__(self, redis: object | None) -> None:
        self.redis = redis

    async def _publish(self, channel: str, payload: dict) -> bool:
        if self.redis is None:
            return False
        try:
            await self.redis.publish(channel, json.dumps(payload))  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Failed to publish %s broadcast", channel, exc_info=True)
            return False
        return True

    async def publish_level_up(self, user_id: str, old_level: int, new_level: int, total_points: int) -> bool:
        return await self._publish(
            LEVEL_UP_CHANNEL,
            {
                "user_id": user_id,
                "old_level": old_level,
                "new_level": new_level,
                "total_points": total_points,
            },
        )

    async def publish_badge_earned(self, user_id: str, badge: BadgeDefinition, earned_at: datetime) -> bool:
        return await self._publish(
            BADGE_EARNED_CHANNEL,
            {
                "user_id": user_id,
                "badge_id": badge.id,
                "badge_slug": badge.slug,
                "badge_name": badge.name,
                "points": badge.points,
                "earned_at": earned_at.isoformat(),
            },
        )
