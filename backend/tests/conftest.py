"""Pytest configuration and fixtures for church RBAC tests.

Stores run against an in-memory SQLite database (aiosqlite). Each test
gets a fresh database, a fresh PermissionCache and a fresh app, so no
cached state leaks between tests.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from church_rbac.auth.cache import PermissionCache
from church_rbac.auth.deps import get_current_user
from church_rbac.auth.engine import PermissionEngine, build_permission_engine
from church_rbac.config import settings
from church_rbac.database import Base
from church_rbac.main import create_app
from church_rbac.middleware.exceptions import AuthenticationRequiredError
from church_rbac.models import User


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def sqlite_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    async def __aexit__(self, *exc):
        return False


class FlakySessionFactory:
    """Session factory that can be switched into a failing state."""

    def __init__(self, real: async_sessionmaker[AsyncSession]):
        self.real = real
        self.fail = False

    def __call__(self):
        if self.fail:
            return _BrokenSession()
        return self.real()


@pytest.fixture
def flaky_sessions(session_factory) -> FlakySessionFactory:
    return FlakySessionFactory(session_factory)


# ── Test Data Fixtures ───────────────────────────────────────────

USERS = {
    "admin": ("u-admin", "admin@igreja.test", "Admin", "admin"),
    "secretary": ("u-secretary", "secretaria@igreja.test", "Secretária", "secretary"),
    "secretary2": ("u-secretary-2", "secretaria2@igreja.test", "Secretária 2", "secretary"),
    "member": ("u-member", "membro@igreja.test", "Membro", "member"),
    "finance": ("u-finance", "tesouraria@igreja.test", "Tesouraria", "finance"),
    "leader": ("u-leader", "lider@igreja.test", "Líder", "leader"),
}


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, User]:
    """Seed one user per fixture key and return them detached."""
    created = {}
    async with session_factory() as session:
        for key, (user_id, email, name, role) in USERS.items():
            user = User(id=user_id, email=email, display_name=name, role=role, is_active=True)
            session.add(user)
            created[key] = user
        await session.commit()
    return created


@pytest.fixture
def permission_engine(session_factory) -> PermissionEngine:
    return build_permission_engine(session_factory, settings, cache=PermissionCache())


@pytest.fixture
def flaky_engine(flaky_sessions) -> PermissionEngine:
    return build_permission_engine(flaky_sessions, settings, cache=PermissionCache())


# ── App / HTTP Fixtures ──────────────────────────────────────────

@pytest.fixture
def app(session_factory):
    return create_app(session_factory=session_factory)


@pytest_asyncio.fixture
async def client(app, users) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; the caller is chosen with an `X-User` header naming a fixture user."""

    async def override_get_current_user(request: Request) -> User:
        user = users.get(request.headers.get("X-User", ""))
        if user is None:
            raise AuthenticationRequiredError()
        return user

    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "cache: Permission cache tests")
    config.addinivalue_line("markers", "permissions: Permission rule tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
