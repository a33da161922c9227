import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fastapi_license_key import AdminAuthorizer, LicenseKeyService
from fastapi_license_key.api import create_license_keys_router
from fastapi_license_key.repositories.sql import SqlAlchemyAuditLogRepository, SqlAlchemyLicenseKeyRepository

# Create the async engine and session maker
DATABASE_URL = "sqlite+aiosqlite:///./keys.db"
async_engine = create_async_engine(DATABASE_URL)
async_session_maker = async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)

admin_token = os.environ.get("LICENSE_ADMIN_TOKEN")

repo = SqlAlchemyLicenseKeyRepository(async_session_maker)
service = LicenseKeyService(
    repo=repo,
    audit_repo=SqlAlchemyAuditLogRepository(async_session_maker),
    authorizer=AdminAuthorizer(admin_token),
    default_validity_days=30,
)


async def get_service() -> LicenseKeyService:
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    await repo.ensure_table()
    yield
    await async_engine.dispose()


app = FastAPI(title="Game launcher backend", lifespan=lifespan)


router = APIRouter(prefix="/licenses", tags=["License Keys"])
app.include_router(create_license_keys_router(get_service, router=router))

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="localhost", port=8000)
