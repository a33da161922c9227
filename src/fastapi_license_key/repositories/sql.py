try:
    import sqlalchemy  # noqa: F401
except ModuleNotFoundError as e:
    raise ImportError(
        "SQLAlchemy backend requires 'sqlalchemy'. Install it with: uv add fastapi_license_key[sqlalchemy]"
    ) from e


from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Mapping, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fastapi_license_key.domain.entities import DEFAULT_MAX_RESETS, AuditAction, AuditEvent, LicenseKey
from fastapi_license_key.domain.errors import DuplicateKey, StorageFailure
from fastapi_license_key.repositories.base import (
    AbstractAuditLogRepository,
    AbstractLicenseKeyRepository,
    ensure_mutable_fields,
)
from fastapi_license_key.utils import datetime_factory


class Base(DeclarativeBase): ...


class LicenseKeyModelMixin:
    """SQLAlchemy ORM model mixin for license keys.

    Notes:
        This is a mixin to allow easy extension of the model with additional fields.
    """

    __tablename__ = "license_keys"

    id_: Mapped[str] = mapped_column(
        String(36),
        name="id",
        primary_key=True,
    )
    key: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        index=True,
    )
    discord_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    hwid: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime_factory,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    activated: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=False,
    )
    hwid_resets: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=0,
    )
    max_resets: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=DEFAULT_MAX_RESETS,
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text(),
        nullable=True,
    )


class LicenseKeyModel(LicenseKeyModelMixin, Base):
    """Concrete SQLAlchemy ORM model for license keys."""

    ...


class AuditEventModel(Base):
    """SQLAlchemy ORM model for the audit log."""

    __tablename__ = "audit_logs"

    id_: Mapped[int] = mapped_column(
        Integer(),
        name="id",
        primary_key=True,
        autoincrement=True,
    )
    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    key: Mapped[str] = mapped_column(Text(), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), name="discord_id", nullable=True)
    hwid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    origin: Mapped[Optional[str]] = mapped_column(String(64), name="ip", nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime_factory,
    )


class _SqlAlchemyRepository:
    """Shared plumbing: one short transaction per repository call.

    Notes:
        Each call commits on its own, so a record written by a batch stays
        written even if a later call of the same batch fails.
    """

    def __init__(self, async_session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._async_session_maker = async_session_maker

    async def ensure_table(self) -> None:
        """Ensure the database tables for license keys and audit events exist.

        Notes:
            This method creates the tables if they do not exist.
        """
        async with self._transaction() as session:
            conn = await session.connection()
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._async_session_maker() as session, session.begin():
                yield session
        except IntegrityError as e:
            raise DuplicateKey(f"Unique constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageFailure(f"Storage operation failed: {e}") from e


class SqlAlchemyLicenseKeyRepository(_SqlAlchemyRepository, AbstractLicenseKeyRepository):
    """SQLAlchemy implementation of the license key repository."""

    @staticmethod
    def _to_model(entity: LicenseKey) -> LicenseKeyModel:
        """Convert a domain entity to a SQLAlchemy model instance."""
        return LicenseKeyModel(
            id_=entity.id_,
            key=entity.key,
            discord_id=entity.discord_id,
            hwid=entity.hwid,
            created_at=entity.created_at,
            expires_at=entity.expires_at,
            activated=entity.activated,
            hwid_resets=entity.hwid_resets,
            max_resets=entity.max_resets,
            notes=entity.notes,
        )

    @staticmethod
    def _to_domain(model: Optional[LicenseKeyModel]) -> Optional[LicenseKey]:
        """Convert a SQLAlchemy model instance to a domain entity."""
        if model is None:
            return None

        return LicenseKey(
            id_=model.id_,
            key=model.key,
            discord_id=model.discord_id,
            hwid=model.hwid,
            created_at=model.created_at,
            expires_at=model.expires_at,
            activated=model.activated,
            hwid_resets=model.hwid_resets,
            max_resets=model.max_resets,
            notes=model.notes,
        )

    async def create(self, entity: LicenseKey) -> LicenseKey:
        async with self._transaction() as session:
            model = self._to_model(entity)
            session.add(model)
            await session.flush()
            result = self._to_domain(model)

        assert result is not None  # nosec B101 - Model was just created, domain entity must exist
        return result

    async def get_by_key(self, key: str) -> Optional[LicenseKey]:
        async with self._transaction() as session:
            stmt = select(LicenseKeyModel).where(LicenseKeyModel.key == key)
            result = await session.execute(stmt)
            return self._to_domain(result.scalar_one_or_none())

    async def update_conditional(
        self,
        key: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> bool:
        ensure_mutable_fields(expected)
        ensure_mutable_fields(changes)

        conditions = [LicenseKeyModel.key == key]
        for name, value in expected.items():
            column = getattr(LicenseKeyModel, name)
            conditions.append(column.is_(None) if value is None else column == value)

        stmt = (
            update(LicenseKeyModel)
            .where(*conditions)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def delete_by_key(self, key: str) -> int:
        stmt = delete(LicenseKeyModel).where(LicenseKeyModel.key == key).execution_options(synchronize_session=False)

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def list_all(self) -> List[LicenseKey]:
        stmt = select(LicenseKeyModel).order_by(LicenseKeyModel.created_at.asc(), LicenseKeyModel.id_.asc())

        async with self._transaction() as session:
            result = await session.execute(stmt)
            models = result.scalars().all()
            return [self._to_domain(m) for m in models]


class SqlAlchemyAuditLogRepository(_SqlAlchemyRepository, AbstractAuditLogRepository):
    """SQLAlchemy implementation of the audit log."""

    @staticmethod
    def _to_domain(model: AuditEventModel) -> AuditEvent:
        return AuditEvent(
            id_=model.id_,
            action=AuditAction(model.action),
            key=model.key,
            actor_id=model.actor_id,
            hwid=model.hwid,
            origin=model.origin,
            details=model.details,
            timestamp=model.timestamp,
        )

    async def append(self, event: AuditEvent) -> AuditEvent:
        async with self._transaction() as session:
            model = AuditEventModel(
                action=event.action.value,
                key=event.key,
                actor_id=event.actor_id,
                hwid=event.hwid,
                origin=event.origin,
                details=event.details,
                timestamp=event.timestamp,
            )
            session.add(model)
            await session.flush()
            return self._to_domain(model)

    async def recent(self, limit: int = 10) -> List[AuditEvent]:
        stmt = select(AuditEventModel).order_by(AuditEventModel.id_.desc()).limit(limit)

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [self._to_domain(m) for m in result.scalars().all()]
