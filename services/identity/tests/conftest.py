from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.auth.dependencies import get_auth_settings
from ojtech_shared.auth.tokens import encode_access_token
from ojtech_shared.database.postgres import Base, get_async_engine
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth import router as auth_router_module
from ojtech_identity.auth import store
from ojtech_identity.auth.models import User  # noqa: F401 - register with Base
from ojtech_identity.config import Settings
from ojtech_identity.database import get_db
from ojtech_identity.main import create_app
from ojtech_identity.rate_limit import limiter


class FakeRedis:
    """The subset of redis.asyncio.Redis the OAuth2 flow uses. TTLs are recorded, not enforced."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    limiter.reset()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = get_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        await store.seed_roles(session)
        await session.commit()
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def auth_settings() -> AuthSettings:
    return AuthSettings(secret="test-secret", expire_seconds=300)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        identity_database_url="sqlite+aiosqlite://",
        seed_roles=False,
        max_upload_bytes=1024,
        oauth2_callback_base_url="http://testserver",
        oauth2_default_redirect_url="http://localhost:5173/oauth2/redirect",
        google_client_id="google-client",
        google_client_secret="google-secret",
        github_client_id="github-client",
        github_client_secret="github-secret",
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def app(session_factory, settings, auth_settings, fake_redis) -> FastAPI:
    application = create_app(settings)

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = _get_test_db
    application.dependency_overrides[get_auth_settings] = lambda: auth_settings
    application.dependency_overrides[auth_router_module._get_settings] = lambda: settings
    application.dependency_overrides[auth_router_module._get_redis] = lambda: fake_redis
    return application


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def bearer(auth_settings):
    """Build an Authorization header for an arbitrary principal."""

    def _bearer(principal: AuthenticatedPrincipal) -> dict[str, str]:
        return {"Authorization": f"Bearer {encode_access_token(principal, auth_settings)}"}

    return _bearer
