from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

from fastapi_license_key.domain.entities import AuditEvent, LicenseKey

MUTABLE_FIELDS = frozenset({"activated", "discord_id", "hwid", "hwid_resets"})
"""Fields a conditional update may read or write; everything else is immutable."""


def ensure_mutable_fields(fields: Mapping[str, Any]) -> None:
    """Reject conditional updates touching an immutable field."""
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")


class AbstractLicenseKeyRepository(ABC):
    """Repository contract for license key records, addressed by key token."""

    @abstractmethod
    async def create(self, entity: LicenseKey) -> LicenseKey:
        """Insert a new record and return the stored version.

        Raises:
            DuplicateKey: If a record with the same key token already exists.
        """
        ...

    @abstractmethod
    async def get_by_key(self, key: str) -> Optional[LicenseKey]:
        """Get the record by its key token, or None if not found."""
        ...

    @abstractmethod
    async def update_conditional(
        self,
        key: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> bool:
        """Apply ``changes`` only if the stored record still matches ``expected``.

        Notes:
            The comparison and the write are atomic. Returns False on a
            conflict or when the key is gone.
        """
        ...

    @abstractmethod
    async def delete_by_key(self, key: str) -> int:
        """Delete the record by key token and return the number of deleted records."""
        ...

    @abstractmethod
    async def list_all(self) -> List[LicenseKey]:
        """Return every record, oldest first."""
        ...


class AbstractAuditLogRepository(ABC):
    """Append-only store of audit events."""

    @abstractmethod
    async def append(self, event: AuditEvent) -> AuditEvent:
        """Persist the event and return it with its sequence number set."""
        ...

    @abstractmethod
    async def recent(self, limit: int = 10) -> List[AuditEvent]:
        """Return the newest events first."""
        ...
