"""Shared test fixtures.

Every test gets its own SQLite file database with the schema created from
the ORM metadata. Redis is left uninitialised, so event publishing is a
no-op unless a test passes its own mock.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import Header
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.auth.dependencies import get_current_user_id
from taskstake.config import get_settings
from taskstake.database import close_db, get_engine, get_session_factory, init_db
from taskstake.db.base import Base
from taskstake.db.models import Task, User
from taskstake.ledger.service import credit
from taskstake.users.service import get_or_create_user

# Fixed reference instant for challenge windows.
T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _test_settings(tmp_path, monkeypatch):
    """Point settings at a throwaway SQLite file and console logging."""
    monkeypatch.setenv("TSK_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("TSK_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Initialise the engine and create all tables."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory: provision a user and grant them an opening balance."""

    async def _make(
        user_id: str,
        points: int = 0,
        *,
        seed_tasks: bool = False,
        display_name: str | None = None,
    ) -> User:
        user, _ = await get_or_create_user(db_session, user_id, display_name, seed_tasks=seed_tasks)
        if points:
            await credit(db_session, user_id, points, reason="grant", description="Test grant")
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def add_completed_tasks(db_session: AsyncSession) -> Callable[..., Awaitable[list[Task]]]:
    """Factory: insert tasks that were already completed at ``completed_at``.

    Bypasses the completion gateway, so no points are credited.
    """

    async def _add(user_id: str, count: int, completed_at: datetime, points: int = 10) -> list[Task]:
        tasks = [
            Task(
                owner_id=user_id,
                title=f"Done task {i + 1}",
                points=points,
                completed=True,
                completed_at=completed_at,
                created_at=completed_at,
            )
            for i in range(count)
        ]
        db_session.add_all(tasks)
        await db_session.commit()
        return tasks

    return _add


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client using real bearer-token auth."""
    from taskstake.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def authed_client(database) -> AsyncGenerator[AsyncClient, None]:
    """Client whose caller is taken from the X-Test-User header (default ``alice``)."""
    from taskstake.main import create_app

    async def _user_from_header(x_test_user: str = Header("alice")) -> str:
        return x_test_user

    app = create_app()
    app.dependency_overrides[get_current_user_id] = _user_from_header
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def jwt_private_key(tmp_path, monkeypatch) -> bytes:
    """Generate an RSA key pair; settings point at the public half."""
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    from taskstake.auth.jwt import reset_keys

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_path = tmp_path / "jwt_public.pem"
    public_path.write_bytes(
        key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    monkeypatch.setenv("TSK_JWT_PUBLIC_KEY_PATH", str(public_path))
    get_settings.cache_clear()
    reset_keys()

    yield key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    reset_keys()


@pytest.fixture
def make_token(jwt_private_key: bytes) -> Callable[..., str]:
    """Factory: sign a token the way the external auth service does."""
    import jwt

    def _make(
        sub: str = "alice",
        *,
        token_type: str = "access",
        issuer: str | None = None,
        expires_in: timedelta = timedelta(minutes=15),
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": sub,
            "type": token_type,
            "iss": issuer or get_settings().jwt_issuer,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, jwt_private_key, algorithm="RS256")

    return _make
