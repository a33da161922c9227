from contextlib import AbstractAsyncContextManager
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_license_key.services.base import AbstractLicenseKeyService


AsyncSessionMaker = async_sessionmaker[AsyncSession]
"""Type alias for an "async_sessionmaker" instance of SQLAlchemy."""

ServiceFactory = Callable[[], AbstractAsyncContextManager[AbstractLicenseKeyService]]
"""Callable returning an async context manager that yields a license key service instance."""
