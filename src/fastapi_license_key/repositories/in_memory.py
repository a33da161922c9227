import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional

from fastapi_license_key.domain.entities import AuditEvent, LicenseKey
from fastapi_license_key.domain.errors import DuplicateKey
from fastapi_license_key.repositories.base import (
    AbstractAuditLogRepository,
    AbstractLicenseKeyRepository,
    ensure_mutable_fields,
)


class InMemoryLicenseKeyRepository(AbstractLicenseKeyRepository):
    """In-memory implementation of the AbstractLicenseKeyRepository.

    Notes:
        Conditional updates are serialized by an asyncio lock, so this
        implementation is safe across coroutines of one event loop but not
        across threads. It has no persistence and will lose all data when
        the application stops. Records are copied in and out so callers
        never alias the stored state.
    """

    def __init__(self) -> None:
        self._store: Dict[str, LicenseKey] = {}
        self._lock = asyncio.Lock()

    async def create(self, entity: LicenseKey) -> LicenseKey:
        async with self._lock:
            if entity.key in self._store:
                raise DuplicateKey(f"License key '{entity.key}' already exists")

            self._store[entity.key] = replace(entity)
            return replace(entity)

    async def get_by_key(self, key: str) -> Optional[LicenseKey]:
        entity = self._store.get(key)
        return replace(entity) if entity is not None else None

    async def update_conditional(
        self,
        key: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> bool:
        ensure_mutable_fields(expected)
        ensure_mutable_fields(changes)

        async with self._lock:
            current = self._store.get(key)

            if current is None:
                return False

            if any(getattr(current, name) != value for name, value in expected.items()):
                return False

            self._store[key] = replace(current, **changes)
            return True

    async def delete_by_key(self, key: str) -> int:
        async with self._lock:
            if key not in self._store:
                return 0

            del self._store[key]
            return 1

    async def list_all(self) -> List[LicenseKey]:
        items = sorted(self._store.values(), key=lambda x: x.created_at)
        return [replace(item) for item in items]


class InMemoryAuditLogRepository(AbstractAuditLogRepository):
    """In-memory audit log, sequence numbers start at 1."""

    def __init__(self) -> None:
        self._events: List[AuditEvent] = []

    async def append(self, event: AuditEvent) -> AuditEvent:
        stored = replace(event, id_=len(self._events) + 1)
        self._events.append(stored)
        return stored

    async def recent(self, limit: int = 10) -> List[AuditEvent]:
        return list(reversed(self._events[-limit:])) if limit > 0 else []

    @property
    def events(self) -> List[AuditEvent]:
        """Every event in append order."""
        return list(self._events)
