from dataclasses import field, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from fastapi_license_key.utils import (
    uuid_factory,
    datetime_factory,
    license_key_factory,
    days_until,
)

DEFAULT_MAX_RESETS = 3


def _normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetimes are timezone-aware (UTC)."""
    if value is None:
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)

    return value


@dataclass
class LicenseKey:
    """Domain entity representing a license key and its binding.

    Important:
        Use ``LicenseKeyService.generate()`` to create new keys. The service
        handles token uniqueness, expiration and auditing.

    Notes:
        A key goes through three states: freshly generated (``activated`` is
        False), activated (bound to a Discord ID and a HWID), and reset
        (still activated but with ``hwid`` cleared until the owner binds a
        new device). Expiration is orthogonal to these states.

    Example::

        service = LicenseKeyService(repo=repo, audit_repo=audit_repo, authorizer=authorizer)
        result = await service.generate(count=1, validity_days=30, admin_credential="secret")
        print(result.keys[0])  # Give this to the user
    """

    id_: str = field(default_factory=uuid_factory)
    key: str = field(default_factory=license_key_factory)
    discord_id: Optional[str] = None
    hwid: Optional[str] = None
    created_at: datetime = field(default_factory=datetime_factory)
    expires_at: datetime = field(default_factory=datetime_factory)
    activated: bool = False
    hwid_resets: int = 0
    max_resets: int = DEFAULT_MAX_RESETS
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.created_at = _normalize_datetime(self.created_at) or datetime_factory()
        self.expires_at = _normalize_datetime(self.expires_at) or self.created_at

    def days_left(self, now: datetime) -> int:
        """Whole days before expiration, may be zero or negative."""
        return days_until(self.expires_at, now)

    def is_expired(self, now: datetime) -> bool:
        return self.days_left(now) <= 0

    @property
    def can_reset(self) -> bool:
        """Whether the owner still has a HWID reset available."""
        return self.hwid_resets < self.max_resets


class AuditAction(str, Enum):
    """Kinds of lifecycle actions written to the audit log."""

    KEYS_GENERATED = "keys_generated"
    CHECK_FAILED = "check_failed"
    KEY_EXPIRED = "key_expired"
    CHECK_SUCCESS = "check_success"
    HWID_MISMATCH = "hwid_mismatch"
    KEY_ACTIVATED = "key_activated"
    HWID_RESET = "hwid_reset"
    KEY_DELETED = "key_deleted"


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record of a lifecycle action.

    Attributes:
        action: What happened.
        key: Subject key token (comma-joined tokens for a generation batch).
        actor_id: Discord ID of the acting user, or ``"admin"``.
        hwid: Hardware identifier presented with the request, if any.
        origin: Client address of the request, if known.
        details: Free text such as a deletion reason.
        timestamp: When the action happened.
        id_: Sequence number assigned by the audit store on append.
    """

    action: AuditAction
    key: str
    actor_id: Optional[str] = None
    hwid: Optional[str] = None
    origin: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime_factory)
    id_: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", _normalize_datetime(self.timestamp))
