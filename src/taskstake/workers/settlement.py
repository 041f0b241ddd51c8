"""Challenge settlement arq worker: sweeps decided challenges on a schedule.

Lazy settlement on read covers active users; this sweep makes sure a
challenge whose participants never come back still pays out.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.challenges import daily_service, player_service
from taskstake.config import get_settings
from taskstake.database import close_db, get_session, init_db
from taskstake.middleware.logging import setup_logging

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def settlement_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    ctx["redis"] = redis_client
    logger.info("Settlement worker started")


async def settlement_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Settlement worker shut down")


async def sweep_challenges(ctx: dict) -> dict[str, dict[str, int]]:  # type: ignore[type-arg]
    """Periodic task: settle every daily and player challenge whose outcome is decided.

    Both sweeps are idempotent, so overlapping runs or a run racing a lazy
    settlement on read never pay twice.
    """
    redis_client = ctx.get("redis")
    results: dict[str, dict[str, int]] = {}

    db = await _get_db_session()
    try:
        results["daily"] = await daily_service.sweep_challenges(db, redis_client)
    except Exception:
        logger.exception("Daily challenge sweep failed")
        await db.rollback()
    finally:
        await db.close()

    db = await _get_db_session()
    try:
        results["player"] = await player_service.sweep_challenges(db, redis_client)
    except Exception:
        logger.exception("Player challenge sweep failed")
        await db.rollback()
    finally:
        await db.close()

    logger.info("Challenge sweep complete: %s", results)
    return results
