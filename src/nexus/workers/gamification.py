"""Gamification arq worker: out-of-band award retries, badge re-evaluation, seeding.

Run with: arq nexus.workers.gamification.WorkerSettings
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis
from arq import Retry
from arq.connections import RedisSettings

from nexus.config import get_settings
from nexus.database import close_db, init_db
from nexus.gamification.engine import GamificationEngine, build_engine
from nexus.gamification.exceptions import InvalidAwardError, StorageError
from nexus.gamification.types import AwardStatus
from nexus.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def gamification_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging, DB and the pub/sub connection on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    session_factory = await init_db(settings)

    pubsub = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    ctx["pubsub"] = pubsub
    ctx["engine"] = build_engine(session_factory, redis=pubsub, settings=settings)
    logger.info("Gamification worker started")


async def gamification_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    pubsub: aioredis.Redis | None = ctx.get("pubsub")
    if pubsub is not None:
        await pubsub.aclose()
    await close_db()
    logger.info("Gamification worker shut down")


async def award_points_job(ctx: dict, payload: dict[str, Any]) -> dict[str, Any]:  # type: ignore[type-arg]
    """Retry an award that failed on the request path.

    Storage failures raise ``Retry`` so arq tries again after the configured
    delay, up to ``max_tries``. Validation failures are final and dropped.
    Badge evaluation re-runs even for a duplicate, in case the earlier
    attempt wrote the transaction but never evaluated.
    """
    engine: GamificationEngine = ctx["engine"]
    settings = get_settings()
    try:
        result = await engine.award_points(payload)
    except InvalidAwardError as e:
        logger.warning("Dropping invalid award %s: %s", payload.get("event_type"), e)
        return {"status": "rejected", "error": str(e)}
    except StorageError as e:
        logger.warning(
            "Award retry %d failed for user %s: %s", ctx.get("job_try", 1), payload.get("user_id"), e,
        )
        raise Retry(defer=settings.award_retry_delay_seconds) from e

    badges = [b.badge.slug for b in result.new_badges]
    if result.status is AwardStatus.DUPLICATE:
        badges = [b.badge.slug for b in await engine.evaluate_badges(result.user_id)]

    logger.info(
        "Award %s for user %s: %s (badges=%s)",
        payload.get("event_type"), result.user_id, result.status.value, badges,
    )
    return {
        "status": result.status.value,
        "total_points": result.total_points,
        "level": result.level,
        "badges": badges,
    }


async def evaluate_badges_job(ctx: dict, user_id: str) -> list[str]:  # type: ignore[type-arg]
    """Re-run badge evaluation for one user. Returns slugs newly awarded."""
    engine: GamificationEngine = ctx["engine"]
    awarded = await engine.evaluate_badges(user_id)
    if awarded:
        logger.info("Awarded badges %s to user %s", [b.badge.slug for b in awarded], user_id)
    return [b.badge.slug for b in awarded]


async def seed_badges_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Administrative: upsert the badge catalog."""
    engine: GamificationEngine = ctx["engine"]
    return await engine.seed_badges()


class WorkerSettings:
    """arq worker settings for the gamification worker."""

    functions = [award_points_job, evaluate_badges_job, seed_badges_job]
    on_startup = gamification_startup
    on_shutdown = gamification_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_tries = get_settings().award_retry_max_tries
    max_jobs = 10
    job_timeout = 60
