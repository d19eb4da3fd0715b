"""Pytest configuration and fixtures for mailsync.

Settings come from the environment variables set below, before anything
calls get_settings(). DB-dependent fixtures build a throwaway
sqlite+aiosqlite database per test from Base.metadata, so no external
Postgres or Redis is needed.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789abcdef"
os.environ["ENCRYPTION_SALT"] = "test-salt-0123"
os.environ["REDIS_ENABLED"] = "false"
os.environ["TELEMETRY_ENABLED"] = "false"

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import mailsync.infrastructure.persistence.models  # noqa: F401  (registers tables)
from mailsync.core.config import Settings, get_settings
from mailsync.infrastructure.cache.account_lock import AccountLockManager
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.persistence.database import (
    Base,
    build_engine,
    build_session_factory,
    get_db,
    get_db_transactional,
)
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.services.sync_orchestrator import SyncOrchestrator
from mailsync.infrastructure.services.sync_runner import SyncRunner
from mailsync.main import create_app
from tests.fakes import FakeProvider, RecordingSleep

DEFAULT_CREDENTIALS = {"access_token": "stale-access", "refresh_token": "refresh-1"}


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    """Drop the cached Settings so per-test env changes are picked up."""
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
async def engine(tmp_path: Any) -> AsyncIterator[AsyncEngine]:
    """File-backed sqlite engine with the full schema created."""
    async_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailsync.db'}")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_engine
    await async_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Session for repository/integration tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def encryptor(settings: Settings) -> CredentialEncryptor:
    return CredentialEncryptor(settings)


@pytest.fixture
def create_account(
    session_factory: async_sessionmaker[AsyncSession],
    encryptor: CredentialEncryptor,
) -> Callable[..., Awaitable[EmailAccount]]:
    """Factory that commits an email account; extra kwargs are set on the row."""

    async def _create(**overrides: Any) -> EmailAccount:
        credentials = overrides.pop("credentials", DEFAULT_CREDENTIALS)
        async with session_factory() as session:
            account = await EmailAccountRepository(session).create_email_account(
                user_id=overrides.pop("user_id", "user-1"),
                provider_kind=overrides.pop("provider_kind", "graph"),
                email_address=overrides.pop("email_address", "owner@example.com"),
                credentials_encrypted=encryptor.encrypt(credentials),
                connection_params=overrides.pop("connection_params", None),
                token_expires_at=overrides.pop("token_expires_at", None),
            )
            for name, value in overrides.items():
                setattr(account, name, value)
            await session.commit()
            return account

    return _create


@pytest.fixture
def sleep() -> RecordingSleep:
    """Sleep stand-in that records requested delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def make_runner(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    encryptor: CredentialEncryptor,
    sleep: RecordingSleep,
) -> Callable[[FakeProvider], SyncRunner]:
    """Build a SyncRunner whose orchestrators all talk to the given fake provider."""

    def _make(provider: FakeProvider) -> SyncRunner:
        def orchestrator_factory(session: AsyncSession) -> SyncOrchestrator:
            return SyncOrchestrator(
                session,
                settings=settings,
                encryptor=encryptor,
                provider_builder=lambda account, credentials: provider,
                sleep=sleep,
            )

        return SyncRunner(
            session_factory,
            settings=settings,
            lock_manager=AccountLockManager(),
            orchestrator_factory=orchestrator_factory,
            sleep=sleep,
        )

    return _make


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> FastAPI:
    """Fresh app bound to the test database.

    ASGITransport does not run the lifespan, so the runner is attached to
    app.state here and the DB dependencies are overridden.
    """
    app = create_app()

    async def _get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    async def _get_db_transactional() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            async with session.begin():
                yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_db_transactional] = _get_db_transactional
    app.state.sync_runner = SyncRunner(
        session_factory, settings=settings, lock_manager=AccountLockManager()
    )
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client against the app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
