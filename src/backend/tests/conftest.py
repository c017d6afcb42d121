"""
Pytest fixtures for TrustGate backend tests.

Each test gets its own SQLite file (via aiosqlite) with the full schema, so
services run their real queries and transactions.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("POSTGRES_PASSWORD", "test-password")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INTERNAL_API_SECRET", "test-internal-secret")
os.environ.setdefault("ENABLE_BACKGROUND_JOBS", "false")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import models  # noqa: E402,F401
from db.base import Base  # noqa: E402
from db.types import utcnow  # noqa: E402
from models.account import Account, VerificationState  # noqa: E402

INTERNAL_SECRET = os.environ["INTERNAL_API_SECRET"]

AccountFactory = Callable[..., Awaitable[Account]]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def now() -> datetime:
    """A fixed 'current time' shared by a test and the services it calls."""
    return utcnow().replace(microsecond=0)


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'trustgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the service under test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(session_factory: async_sessionmaker[AsyncSession], now: datetime) -> AccountFactory:
    """
    Insert an account directly, bypassing the state machine.

    Keyword arguments override any column; ``created_at`` defaults to ``now``.
    """

    async def _make(
        state: VerificationState = VerificationState.UNVERIFIED,
        **fields: Any,
    ) -> Account:
        created_at = fields.pop("created_at", now)
        fields.setdefault("version", 1)
        account = Account(
            verification_state=state,
            created_at=created_at,
            updated_at=created_at,
            **fields,
        )
        async with session_factory() as session:
            session.add(account)
            await session.commit()
        return account

    return _make


@pytest.fixture
def load_account(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[str], Awaitable[Account]]:
    """Read an account back through a separate session."""

    async def _load(account_id: str) -> Account:
        async with session_factory() as session:
            account = await session.get(Account, account_id)
            assert account is not None
            return account

    return _load


@pytest.fixture
async def app(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[Any, None]:
    """FastAPI application wired to the test database."""
    from api.deps import get_session_factory
    from db.session import get_db
    from main import app as fastapi_app

    async def _get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> Callable[[Account], dict[str, str]]:
    """Bearer headers for an account."""
    from core.security import create_access_token

    def _headers(account: Account) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(account.id)}"}

    return _headers


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Secret": INTERNAL_SECRET}
