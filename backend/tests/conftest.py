"""Pytest configuration and shared fixtures for API tests."""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB before app imports so config/engine use it
_db_dir = tempfile.mkdtemp(prefix="identity-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_db_dir}/test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BASE_ADDRESS", "https://identity.test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ENCRYPTION_KEY", "")

from app.db import Base, async_session_maker, engine, init_db
from app.main import app
from app.services.identity_tokens import clear_jwks_cache
from app.services.roles_service import ADMINISTRATOR_ROLE_CODE, RolesService
from tests.factories import create_user, login

pytest_plugins = ["pytest_asyncio"]


async def _delete_all():
    """Delete all rows in reverse dependency order so tests start clean."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest_asyncio.fixture
async def ensure_db():
    """Create tables and init HTTP client (no scheduler)."""
    await init_db()
    from app.services.http_client import init_http_client

    init_http_client(timeout=5.0)
    yield
    from app.services.http_client import close_http_client

    await close_http_client()
    clear_jwks_cache()


@pytest_asyncio.fixture
async def clean_db(ensure_db):
    """Empty all tables and re-create the built-in roles."""
    await _delete_all()
    async with async_session_maker() as session:
        await RolesService(session).ensure_default_roles()
        await session.commit()
    yield


@pytest_asyncio.fixture
async def client(clean_db):
    """Yield AsyncClient against the app on a clean database."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth_config():
    return app.state.auth_config


@pytest_asyncio.fixture
async def test_user(client):
    """A regular member user."""
    return await create_user("sandragreen", "sandragreen@testemail.com", "Sandra Green")


@pytest_asyncio.fixture
async def admin_user(client):
    """A user with the administrator (super privileges) role."""
    return await create_user(
        "nickford", "nickford@testemail.com", "Nick Ford", role_codes=(ADMINISTRATOR_ROLE_CODE,)
    )


@pytest_asyncio.fixture
async def auth_headers(client, test_user):
    """Authorization header for test_user."""
    tokens = await login(client, test_user.user_name)
    return {"Authorization": f"Bearer {tokens['accessToken']}"}


@pytest_asyncio.fixture
async def admin_headers(client, admin_user):
    """Authorization header for admin_user."""
    tokens = await login(client, admin_user.user_name)
    return {"Authorization": f"Bearer {tokens['accessToken']}"}
