"""FastAPI application factory."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from taskstake.challenges.router import router as challenges_router
from taskstake.config import get_settings
from taskstake.database import close_db, init_db
from taskstake.health.router import router as health_router
from taskstake.ledger.router import router as ledger_router
from taskstake.middleware import setup_middleware
from taskstake.redis_client import close_redis, get_redis, init_redis
from taskstake.rewards.router import router as rewards_router
from taskstake.tasks.router import router as tasks_router
from taskstake.ws.bridge import PubSubBridge
from taskstake.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Start the Redis pub/sub -> WebSocket bridge
    bridge = PubSubBridge(get_redis())
    bridge_task = asyncio.create_task(bridge.start())

    yield

    await bridge.stop()
    bridge_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await bridge_task

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="TaskStake API",
        description="Points economy for a gamified task manager: task rewards, challenges, and a reward shop",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(ledger_router)
    app.include_router(tasks_router)
    app.include_router(challenges_router)
    app.include_router(rewards_router)
    app.include_router(ws_router)

    return app


app = create_app()
