from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fastapi_license_key.repositories.base import AbstractAuditLogRepository, AbstractLicenseKeyRepository
from fastapi_license_key.repositories.in_memory import InMemoryAuditLogRepository, InMemoryLicenseKeyRepository
from fastapi_license_key.repositories.sql import (
    Base,
    SqlAlchemyAuditLogRepository,
    SqlAlchemyLicenseKeyRepository,
)
from fastapi_license_key.security import AdminAuthorizer
from fastapi_license_key.services.base import LicenseKeyService

ADMIN_TOKEN = "unit-test-admin-token"

Repositories = Tuple[AbstractLicenseKeyRepository, AbstractAuditLogRepository]


class FrozenClock:
    """Controllable clock: returns the same instant until advanced."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """Create a SQLite async engine on a file database.

    Each repository call opens its own connection, so an in-memory SQLite
    database would not be shared between calls.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'keys.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session maker bound to the file database engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(params=["memory", "sqlalchemy"], scope="function")
def repositories(request, async_session_maker: async_sessionmaker[AsyncSession]) -> Iterator[Repositories]:
    """Fixture to provide the key store and audit log of each backend."""
    if request.param == "memory":
        yield InMemoryLicenseKeyRepository(), InMemoryAuditLogRepository()
    elif request.param == "sqlalchemy":
        yield (
            SqlAlchemyLicenseKeyRepository(async_session_maker),
            SqlAlchemyAuditLogRepository(async_session_maker),
        )
    else:
        raise ValueError(f"Unknown repository type: {request.param}")


@pytest.fixture(scope="function")
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(scope="function")
def authorizer() -> AdminAuthorizer:
    return AdminAuthorizer(ADMIN_TOKEN)


@pytest.fixture(scope="function")
def service(repositories: Repositories, clock: FrozenClock, authorizer: AdminAuthorizer) -> LicenseKeyService:
    """Service over each backend with a frozen clock and a known admin token."""
    repo, audit_repo = repositories
    return LicenseKeyService(repo, audit_repo, authorizer=authorizer, clock=clock)
