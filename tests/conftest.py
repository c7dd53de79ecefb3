from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cinelist.config import Settings
from cinelist.database import create_engine, create_sessionmaker
from cinelist.main import create_app
from cinelist.schema import ensure_schema

JWT_SECRET = "test-signing-secret"


def make_token(
    owner_id: str,
    *,
    secret: str = JWT_SECRET,
    audience: str = "authenticated",
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    payload = {
        "sub": owner_id,
        "aud": audience,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(owner_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(owner_id)}"}


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'watchlist.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(database_url)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    await ensure_schema(engine, scoped_by_owner=True)
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def legacy_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    await ensure_schema(engine, scoped_by_owner=False)
    return create_sessionmaker(engine)


def make_settings(database_url: str, tmp_path, **overrides) -> Settings:
    values = dict(
        database_url=database_url,
        scoped_by_owner=True,
        auth_mode="jwt",
        identity_jwt_secret=JWT_SECRET,
        identity_url="https://identity.test",
        static_dir=tmp_path / "no-static",
    )
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def app(database_url: str, tmp_path) -> AsyncGenerator[FastAPI, None]:
    app = create_app(make_settings(database_url, tmp_path))
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def legacy_client(database_url: str, tmp_path) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(make_settings(database_url, tmp_path, scoped_by_owner=False))
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
