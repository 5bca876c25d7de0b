"""
Test Configuration and Fixtures

Shared fixtures for the authorization service tests.
Provides an isolated in-memory database, a token service on a
controllable clock, seeded roles and an async HTTP client.
"""

import os

# Must be set before anything under `authz` reads settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SEED_ON_STARTUP", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import uuid  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.orm import selectinload  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from authz.core.database import get_db  # noqa: E402
from authz.core.security import hash_password  # noqa: E402
from authz.main import create_app  # noqa: E402
from authz.models import Base, Role, User  # noqa: E402
from authz.rbac.permission_seed import seed  # noqa: E402
from authz.services.token_service import TokenConfig, TokenService, get_token_service  # noqa: E402

DEFAULT_PASSWORD = "Password123!"


class FakeClock:
    """Callable clock the token service reads; tests move it by hand."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging data and calling services directly."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ==================== Token Fixtures ====================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(
        access_secret="test-access-secret",
        refresh_secret="test-refresh-secret",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        rotate_refresh_tokens=True,
    )


@pytest.fixture
def token_service(token_config, clock) -> TokenService:
    return TokenService(token_config, clock=clock)


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(session_factory, token_service) -> FastAPI:
    """FastAPI app on the test database; one session per request, like production."""
    test_app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_token_service] = lambda: token_service
    return test_app


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ==================== RBAC Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def seeded_roles(db_session) -> dict[str, Role]:
    """Default permissions and roles, keyed by role name, permissions loaded."""
    await seed(db_session)
    roles = (
        await db_session.execute(select(Role).options(selectinload(Role.permissions)))
    ).scalars().all()
    return {r.name: r for r in roles}


@pytest.fixture
def make_user(db_session, seeded_roles):
    """Factory: persist a user holding the named seeded roles."""

    async def _make(
        email: str | None = None,
        roles: tuple[str, ...] = (),
        is_active: bool = True,
        password: str = DEFAULT_PASSWORD,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            password_hash=hash_password(password),
            first_name="Test",
            last_name="User",
            is_active=is_active,
            is_email_verified=True,
            roles=[seeded_roles[name] for name in roles],
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def auth_headers(token_service):
    """Bearer header for a user whose roles are loaded."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_service.issue_access_token(user)}"}

    return _headers
