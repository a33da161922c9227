from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from fastapi_license_key.domain import lifecycle
from fastapi_license_key.domain.entities import DEFAULT_MAX_RESETS, AuditEvent, LicenseKey
from fastapi_license_key.domain.errors import (
    DuplicateKey,
    GenerationIncomplete,
    InvalidRequest,
    KeyNotFound,
    StorageFailure,
    Unauthorized,
)
from fastapi_license_key.domain.results import (
    ActivationResult,
    CheckResult,
    Decision,
    DeletionResult,
    GenerationResult,
    KeyInfo,
    KeyStats,
    ResetResult,
)
from fastapi_license_key.logger import get_logger
from fastapi_license_key.repositories.base import AbstractAuditLogRepository, AbstractLicenseKeyRepository
from fastapi_license_key.security import AdminAuthorizer
from fastapi_license_key.utils import datetime_factory, license_key_factory

logger = get_logger(__name__)

R = TypeVar("R")

DEFAULT_VALIDITY_DAYS = 365
DEFAULT_MAX_GENERATE_COUNT = 100


class AbstractLicenseKeyService(ABC):
    """Service contract for the license key lifecycle.

    Args:
        repo: Repository persisting license key records.
        audit_repo: Append-only audit log.
        authorizer: Capability check for the administrative credential.
        clock: Callable returning the current time. Defaults to UTC now.
        key_factory: Callable returning a fresh key token.
        default_validity_days: Validity window when none is given.
        default_max_resets: Reset ceiling of generated keys when none is given.
        max_generate_count: Largest accepted generation batch.
        max_generation_attempts: Inserts tried per key before giving up on collisions.
        max_update_attempts: Decide-and-write rounds tried before giving up on conflicts.
        allow_expired_activation: Whether expired keys can still be activated.
    """

    def __init__(
        self,
        repo: AbstractLicenseKeyRepository,
        audit_repo: AbstractAuditLogRepository,
        authorizer: Optional[AdminAuthorizer] = None,
        clock: Optional[Callable[[], datetime]] = None,
        key_factory: Optional[Callable[[], str]] = None,
        default_validity_days: int = DEFAULT_VALIDITY_DAYS,
        default_max_resets: int = DEFAULT_MAX_RESETS,
        max_generate_count: int = DEFAULT_MAX_GENERATE_COUNT,
        max_generation_attempts: int = 5,
        max_update_attempts: int = 3,
        allow_expired_activation: bool = False,
    ) -> None:
        if max_generation_attempts < 1 or max_update_attempts < 1:
            raise ValueError("Attempt counts must be at least 1")

        self._repo = repo
        self._audit_repo = audit_repo
        self._authorizer = authorizer or AdminAuthorizer()
        self._clock = clock or datetime_factory
        self._key_factory = key_factory or license_key_factory

        self.default_validity_days = default_validity_days
        self.default_max_resets = default_max_resets
        self.max_generate_count = max_generate_count
        self.max_generation_attempts = max_generation_attempts
        self.max_update_attempts = max_update_attempts
        self.allow_expired_activation = allow_expired_activation

    @abstractmethod
    async def generate(
        self,
        count: int = 1,
        validity_days: Optional[int] = None,
        notes: Optional[str] = None,
        max_resets: Optional[int] = None,
        admin_credential: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> GenerationResult:
        """Generate and persist ``count`` keys sharing one expiration.

        Raises:
            Unauthorized: If the admin credential is wrong.
            InvalidRequest: If ``count`` or ``validity_days`` is out of range.
            GenerationIncomplete: If the store failed mid-batch; carries the
                keys persisted before the failure.
            StorageFailure: If the store failed before any key was persisted.
        """
        ...

    @abstractmethod
    async def check(self, key: str, hwid: str, origin: Optional[str] = None) -> CheckResult:
        """Validate ``key`` for the device ``hwid``. Never mutates the record."""
        ...

    @abstractmethod
    async def activate(
        self,
        key: str,
        hwid: str,
        discord_id: str,
        origin: Optional[str] = None,
    ) -> ActivationResult:
        """Bind ``key`` to ``discord_id`` and ``hwid``.

        Raises:
            InvalidRequest: If a field is missing.
            KeyNotFound: If the key does not exist.
            KeyAlreadyActivated: If the key belongs to someone else.
            KeyExpired: If the key is expired and expired activation is not allowed.
            StorageFailure: If the write keeps conflicting.
        """
        ...

    @abstractmethod
    async def reset(
        self,
        key: str,
        admin_credential: Optional[str] = None,
        discord_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> ResetResult:
        """Clear the HWID binding of ``key``.

        Raises:
            KeyNotFound: If the key does not exist.
            Unauthorized: If a wrong admin credential came without a Discord ID.
            NotOwner: If ``discord_id`` does not own the key.
            ResetLimitExceeded: If the owner has no reset left.
            MissingCredential: If neither credential is given.
            StorageFailure: If the write keeps conflicting.
        """
        ...

    @abstractmethod
    async def info(self, key: str) -> KeyInfo:
        """Read-only projection of ``key``, raise KeyNotFound if absent."""
        ...

    @abstractmethod
    async def stats(self, admin_credential: Optional[str] = None) -> KeyStats:
        """Aggregate counters, recent audit events and per-key summaries (admin only)."""
        ...

    @abstractmethod
    async def delete(
        self,
        key: str,
        admin_credential: Optional[str] = None,
        reason: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> DeletionResult:
        """Permanently delete ``key`` (admin only), raise KeyNotFound if absent."""
        ...


class LicenseKeyService(AbstractLicenseKeyService):
    """Concrete implementation of the license key service.

    The service loads records, asks :mod:`~fastapi_license_key.domain.lifecycle`
    for a decision, applies the decision's mutation as a conditional write and
    appends its audit event. When a conditional write loses a race, the record
    is reloaded and the decision taken again.

    Example:
        Basic usage::

            service = LicenseKeyService(
                repo=InMemoryLicenseKeyRepository(),
                audit_repo=InMemoryAuditLogRepository(),
                authorizer=AdminAuthorizer("secret"),
            )
            batch = await service.generate(count=5, validity_days=30, admin_credential="secret")
            await service.activate(batch.keys[0], hwid="HWID-1", discord_id="42")
            result = await service.check(batch.keys[0], hwid="HWID-1")
    """

    async def generate(
        self,
        count: int = 1,
        validity_days: Optional[int] = None,
        notes: Optional[str] = None,
        max_resets: Optional[int] = None,
        admin_credential: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> GenerationResult:
        self._require_admin(admin_credential)

        if count < 1 or count > self.max_generate_count:
            raise InvalidRequest(f"Count must be between 1 and {self.max_generate_count}")

        now = self._clock()
        validity_days = validity_days if validity_days is not None else self.default_validity_days
        max_resets = max_resets if max_resets is not None else self.default_max_resets
        expires_at = lifecycle.expiration_for(now, validity_days)

        persisted: List[str] = []
        try:
            for _ in range(count):
                entity = await self._insert_unique(now, expires_at, notes, max_resets)
                persisted.append(entity.key)
        except StorageFailure as exc:
            logger.error(
                "generation_incomplete",
                requested=count,
                persisted=len(persisted),
                error=str(exc),
            )
            if not persisted:
                raise

            await self._audit(lifecycle.generation_event(persisted), origin)
            raise GenerationIncomplete(
                f"Generated {len(persisted)} of {count} keys before a storage failure",
                persisted=persisted,
                expires_at=expires_at,
            ) from exc

        await self._audit(lifecycle.generation_event(persisted), origin)
        logger.info("keys_generated", count=len(persisted), expires_at=expires_at.isoformat())
        return GenerationResult(keys=persisted, expires_at=expires_at)

    async def check(self, key: str, hwid: str, origin: Optional[str] = None) -> CheckResult:
        record = await self._lookup(key) if key and key.strip() else None
        decision = lifecycle.check(record, key, hwid, self._clock())

        await self._audit(decision.event, origin)
        logger.debug("key_checked", key=key, status=decision.result.status.value)
        return decision.result

    async def activate(
        self,
        key: str,
        hwid: str,
        discord_id: str,
        origin: Optional[str] = None,
    ) -> ActivationResult:
        def decide(record: Optional[LicenseKey]) -> Decision[ActivationResult]:
            return lifecycle.activate(
                record,
                key,
                hwid,
                discord_id,
                self._clock(),
                allow_expired=self.allow_expired_activation,
            )

        decision = await self._apply(key, decide, origin)
        if decision.mutation is not None:
            logger.info("key_activated", key=key, discord_id=discord_id)

        return decision.result

    async def reset(
        self,
        key: str,
        admin_credential: Optional[str] = None,
        discord_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> ResetResult:
        is_admin = self._authorizer(admin_credential)
        admin_presented = bool(admin_credential)

        def decide(record: Optional[LicenseKey]) -> Decision[ResetResult]:
            return lifecycle.reset(
                record,
                key,
                is_admin=is_admin,
                admin_presented=admin_presented,
                discord_id=discord_id,
            )

        decision = await self._apply(key, decide, origin)
        result = decision.result
        logger.info(
            "hwid_reset",
            key=key,
            used=result.used_resets,
            maximum=result.max_resets,
            by_admin=result.by_admin,
        )
        return result

    async def info(self, key: str) -> KeyInfo:
        record = await self._lookup(key) if key and key.strip() else None
        return lifecycle.info(record, key, self._clock())

    async def stats(self, admin_credential: Optional[str] = None) -> KeyStats:
        self._require_admin(admin_credential)

        records = await self._repo.list_all()
        recent = await self._audit_repo.recent(lifecycle.RECENT_EVENTS_LIMIT)
        return lifecycle.stats(records, recent, self._clock())

    async def delete(
        self,
        key: str,
        admin_credential: Optional[str] = None,
        reason: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> DeletionResult:
        self._require_admin(admin_credential)

        if not key or not key.strip():
            raise InvalidRequest("'key' is required")

        deleted = await self._repo.delete_by_key(key)
        if deleted == 0:
            raise KeyNotFound(f"License key '{key}' not found")

        await self._on_changed(key)
        await self._audit(lifecycle.deletion_event(key, reason), origin)
        logger.info("key_deleted", key=key, reason=reason)
        return DeletionResult(key=key, reason=reason)

    # --- Helpers ---

    def _require_admin(self, admin_credential: Optional[str]) -> None:
        if not self._authorizer(admin_credential):
            raise Unauthorized("Invalid or missing admin credential")

    async def _lookup(self, key: str) -> Optional[LicenseKey]:
        """Load a record for a read-only path."""
        return await self._repo.get_by_key(key)

    async def _on_changed(self, key: str) -> None:
        """Hook called after a record was written or deleted."""

    async def _insert_unique(
        self,
        now: datetime,
        expires_at: datetime,
        notes: Optional[str],
        max_resets: int,
    ) -> LicenseKey:
        """Insert a fresh key, drawing a new token on each collision."""
        for attempt in range(1, self.max_generation_attempts + 1):
            entity = lifecycle.new_license_key(
                now,
                expires_at,
                notes=notes,
                max_resets=max_resets,
                key=self._key_factory(),
            )
            try:
                return await self._repo.create(entity)
            except DuplicateKey:
                logger.warning("key_collision", attempt=attempt)

        raise StorageFailure(f"Could not draw a unique key after {self.max_generation_attempts} attempts")

    async def _apply(
        self,
        key: str,
        decide: Callable[[Optional[LicenseKey]], Decision[R]],
        origin: Optional[str] = None,
    ) -> Decision[R]:
        """Run a read-decide-write round until the conditional write holds."""
        for attempt in range(1, self.max_update_attempts + 1):
            record = await self._repo.get_by_key(key) if key and key.strip() else None
            decision = decide(record)
            mutation = decision.mutation

            if mutation is None:
                return decision

            if await self._repo.update_conditional(mutation.key, mutation.expected, mutation.changes):
                await self._on_changed(mutation.key)
                await self._audit(decision.event, origin)
                return decision

            logger.warning("write_conflict", key=key, attempt=attempt)

        raise StorageFailure(f"License key '{key}' kept changing, giving up after {self.max_update_attempts} attempts")

    async def _audit(self, event: Optional[AuditEvent], origin: Optional[str]) -> None:
        """Append an audit event; a failing audit store never undoes the operation."""
        if event is None:
            return

        try:
            await self._audit_repo.append(replace(event, origin=origin))
        except StorageFailure:
            logger.exception("audit_write_failed", action=event.action.value, key=event.key)
