"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.config import get_settings
from taskstake.database import get_session
from taskstake.db.models import PointsLedger, User
from taskstake.redis_client import get_optional_redis

router = APIRouter()


async def _check_ledger(db: AsyncSession) -> str:
    """The balance and ledger tables must both be queryable."""
    try:
        await db.execute(select(func.count()).select_from(User))
        await db.execute(select(PointsLedger.id).limit(1))
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


async def _check_pubsub() -> str:
    redis = get_optional_redis()
    if redis is None:
        return "error: redis not initialized"
    try:
        await redis.ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness: the process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness: balances can be read and change events can be published.

    Without Redis the API still serves points, but live updates stop, so the
    service reports itself degraded rather than down.
    """
    checks = {"database": await _check_ledger(db), "redis": await _check_pubsub()}
    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
