"""
FastAPI application factory.

Application lifecycle:
  startup  -> configure logging, open the database engine, ensure tables
  shutdown -> dispose the engine pool
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fastapi_license_key._types import AsyncSessionMaker, ServiceFactory
from fastapi_license_key.api import create_license_keys_router
from fastapi_license_key.config import Settings, get_settings
from fastapi_license_key.logger import configure_logging, get_logger
from fastapi_license_key.repositories.sql import SqlAlchemyAuditLogRepository, SqlAlchemyLicenseKeyRepository
from fastapi_license_key.security import AdminAuthorizer
from fastapi_license_key.services.base import AbstractLicenseKeyService, LicenseKeyService

logger = get_logger(__name__)


def build_service(settings: Settings, async_session_maker: AsyncSessionMaker) -> LicenseKeyService:
    """Wire SQL repositories and settings into a license key service.

    A positive ``cache_ttl_seconds`` returns a
    :class:`~fastapi_license_key.services.cached.CachedLicenseKeyService`.
    """
    repo = SqlAlchemyLicenseKeyRepository(async_session_maker)
    audit_repo = SqlAlchemyAuditLogRepository(async_session_maker)
    options = dict(
        authorizer=AdminAuthorizer(settings.admin_token),
        default_validity_days=settings.default_validity_days,
        default_max_resets=settings.default_max_resets,
        max_generate_count=settings.max_generate_count,
        max_generation_attempts=settings.max_generation_attempts,
        max_update_attempts=settings.max_update_attempts,
        allow_expired_activation=settings.allow_expired_activation,
    )

    if settings.cache_ttl_seconds > 0:
        import aiocache

        from fastapi_license_key.services.cached import CachedLicenseKeyService

        return CachedLicenseKeyService(
            repo,
            audit_repo,
            cache=aiocache.SimpleMemoryCache(ttl=settings.cache_ttl_seconds),
            **options,
        )

    return LicenseKeyService(repo, audit_repo, **options)


def create_service_factory(settings: Optional[Settings] = None) -> ServiceFactory:
    """Return a factory yielding a service bound to a freshly opened database engine.

    Without explicit settings, the environment is read when the factory is
    entered rather than when it is built.
    """

    @asynccontextmanager
    async def service_factory() -> AsyncIterator[AbstractLicenseKeyService]:
        current = settings or get_settings()
        engine = create_async_engine(current.database_url, echo=current.db_echo)
        async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            service = build_service(current, async_session_maker)
            await SqlAlchemyLicenseKeyRepository(async_session_maker).ensure_table()
            yield service
        finally:
            await engine.dispose()

    return service_factory


def create_app(
    settings: Optional[Settings] = None,
    service_factory: Optional[ServiceFactory] = None,
) -> FastAPI:
    """Application factory. Returns a configured FastAPI instance.

    Args:
        settings: Configuration, read from the environment if omitted.
        service_factory: Overrides the SQL-backed service, mostly for tests.
    """
    settings = settings or get_settings()
    service_factory = service_factory or create_service_factory(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(log_level=settings.log_level.value, json_logs=settings.log_json)
        logger.info("service_starting", version=settings.app_version)

        if not AdminAuthorizer(settings.admin_token).enabled:
            logger.warning("admin_token_missing", detail="administrative operations are disabled")

        async with service_factory() as service:
            app.state.license_key_service = service
            logger.info("service_ready", host=settings.host, port=settings.port)
            yield

        logger.info("service_shutdown")

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def get_service(request: Request) -> AbstractLicenseKeyService:
        return request.app.state.license_key_service

    app.include_router(
        create_license_keys_router(
            get_service,
            project_name=settings.app_name,
            version=settings.app_version,
        )
    )
    return app
