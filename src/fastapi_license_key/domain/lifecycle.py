"""Key lifecycle decisions.

Every function here is pure: it receives the current record (or ``None`` when
the token did not resolve) plus the request, and returns a :class:`Decision`
holding the result, the conditional write to apply and the audit event to
append. Rejections are raised as domain errors. Nothing in this module talks
to a store, so the caller is free to retry a decision after a write conflict.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from fastapi_license_key.domain.entities import (
    DEFAULT_MAX_RESETS,
    AuditAction,
    AuditEvent,
    LicenseKey,
)
from fastapi_license_key.domain.errors import (
    InvalidRequest,
    KeyAlreadyActivated,
    KeyExpired,
    KeyNotFound,
    MissingCredential,
    NotOwner,
    ResetLimitExceeded,
    Unauthorized,
)
from fastapi_license_key.domain.results import (
    ActivationResult,
    CheckResult,
    CheckStatus,
    Decision,
    KeyInfo,
    KeyStats,
    KeySummary,
    Mutation,
    ResetResult,
)
from fastapi_license_key.utils import license_key_factory

ADMIN_ACTOR = "admin"
"""Actor recorded on audit events written for administrative actions."""

RECENT_EVENTS_LIMIT = 10


def _require(**fields: Optional[str]) -> None:
    for name, value in fields.items():
        if value is None or not value.strip():
            raise InvalidRequest(f"'{name}' is required")


def _is_provided(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


# --- Generation ---


def expiration_for(now: datetime, validity_days: int) -> datetime:
    """Compute the shared expiration of a generation batch."""
    if validity_days <= 0:
        raise InvalidRequest("Validity must be a positive number of days")

    return now + timedelta(days=validity_days)


def new_license_key(
    now: datetime,
    expires_at: datetime,
    notes: Optional[str] = None,
    max_resets: int = DEFAULT_MAX_RESETS,
    key: Optional[str] = None,
) -> LicenseKey:
    """Build a fresh, never activated key record.

    Args:
        now: Creation time.
        expires_at: Expiration time, usually from :func:`expiration_for`.
        notes: Optional annotation kept with the key.
        max_resets: How many HWID resets the owner may perform.
        key: Token to use. If None, a new random one is generated.
    """
    if max_resets < 0:
        raise InvalidRequest("max_resets cannot be negative")

    return LicenseKey(
        key=key or license_key_factory(),
        created_at=now,
        expires_at=expires_at,
        max_resets=max_resets,
        notes=notes,
    )


def generation_event(keys: Sequence[str]) -> AuditEvent:
    """Single audit event summarizing a generation batch."""
    return AuditEvent(
        action=AuditAction.KEYS_GENERATED,
        key=",".join(keys),
        actor_id=ADMIN_ACTOR,
    )


# --- Check ---


def check(record: Optional[LicenseKey], key: str, hwid: str, now: datetime) -> Decision[CheckResult]:
    """Decide whether ``hwid`` may use ``key`` right now.

    Notes:
        Expiration wins over every other state. A key whose HWID was cleared
        by a reset is reported as needing activation: the owner binds the new
        device through :func:`activate`. Checking never mutates the record.
    """
    _require(key=key, hwid=hwid)

    if record is None:
        return Decision(
            result=CheckResult(status=CheckStatus.NOT_FOUND, key=key),
            event=AuditEvent(action=AuditAction.CHECK_FAILED, key=key, hwid=hwid),
        )

    days_left = record.days_left(now)

    if days_left <= 0:
        return Decision(
            result=CheckResult(
                status=CheckStatus.EXPIRED,
                key=record.key,
                expires_at=record.expires_at,
                days_left=0,
            ),
            event=AuditEvent(
                action=AuditAction.KEY_EXPIRED,
                key=record.key,
                actor_id=record.discord_id,
                hwid=hwid,
            ),
        )

    if not record.activated or record.hwid is None:
        return Decision(
            result=CheckResult(
                status=CheckStatus.NEEDS_ACTIVATION,
                key=record.key,
                expires_at=record.expires_at,
                days_left=days_left,
            )
        )

    if record.hwid == hwid:
        return Decision(
            result=CheckResult(
                status=CheckStatus.GRANTED,
                key=record.key,
                expires_at=record.expires_at,
                days_left=days_left,
            ),
            event=AuditEvent(
                action=AuditAction.CHECK_SUCCESS,
                key=record.key,
                actor_id=record.discord_id,
                hwid=hwid,
            ),
        )

    return Decision(
        result=CheckResult(
            status=CheckStatus.HWID_MISMATCH,
            key=record.key,
            expires_at=record.expires_at,
            days_left=days_left,
            reset_available=record.can_reset,
        ),
        event=AuditEvent(
            action=AuditAction.HWID_MISMATCH,
            key=record.key,
            actor_id=record.discord_id,
            hwid=hwid,
        ),
    )


# --- Activation ---


def activate(
    record: Optional[LicenseKey],
    key: str,
    hwid: str,
    discord_id: str,
    now: datetime,
    allow_expired: bool = False,
) -> Decision[ActivationResult]:
    """Bind ``key`` to an owner and a device.

    Notes:
        Once activated, a key belongs to its Discord owner for good. The same
        owner may activate again: presenting the bound HWID is a no-op, and a
        HWID cleared by a reset gets re-bound. Any other re-binding is rejected.

    Raises:
        InvalidRequest: If a field is missing or blank.
        KeyNotFound: If the token did not resolve.
        KeyAlreadyActivated: If another owner holds the key, or the owner's
            key is still bound to another device.
        KeyExpired: If the key is expired and ``allow_expired`` is False.
    """
    _require(key=key, hwid=hwid, discord_id=discord_id)

    if record is None:
        raise KeyNotFound(f"License key '{key}' not found")

    if record.activated and record.discord_id and record.discord_id != discord_id:
        raise KeyAlreadyActivated("License key is already activated by another user")

    if not allow_expired and record.is_expired(now):
        raise KeyExpired("License key is expired")

    result = ActivationResult(
        key=record.key,
        discord_id=discord_id,
        hwid=hwid,
        expires_at=record.expires_at,
    )

    if record.activated and record.discord_id == discord_id:
        if record.hwid == hwid:
            return Decision(result=result)

        if record.hwid is not None:
            raise KeyAlreadyActivated("License key is bound to another device, reset the HWID first")

    mutation = Mutation(
        key=record.key,
        expected={
            "activated": record.activated,
            "discord_id": record.discord_id,
            "hwid": record.hwid,
        },
        changes={
            "activated": True,
            "discord_id": discord_id,
            "hwid": hwid,
        },
    )
    event = AuditEvent(
        action=AuditAction.KEY_ACTIVATED,
        key=record.key,
        actor_id=discord_id,
        hwid=hwid,
    )
    return Decision(result=result, mutation=mutation, event=event)


# --- Reset ---


def reset(
    record: Optional[LicenseKey],
    key: str,
    is_admin: bool = False,
    admin_presented: bool = False,
    discord_id: Optional[str] = None,
) -> Decision[ResetResult]:
    """Clear the HWID binding of ``key`` and count the reset.

    Args:
        record: Current record, or None if the token did not resolve.
        key: Presented token.
        is_admin: Whether a valid administrative credential was presented.
        admin_presented: Whether any administrative credential was presented.
        discord_id: Discord ID claiming ownership of the key.

    Notes:
        Administrators reset unconditionally and may push ``hwid_resets``
        past ``max_resets``. Owners are bounded by ``max_resets``.

    Raises:
        KeyNotFound: If the token did not resolve.
        Unauthorized: If a wrong admin credential came without a Discord ID.
        NotOwner: If the Discord ID is not the key owner.
        ResetLimitExceeded: If the owner has no reset left.
        MissingCredential: If neither credential was presented.
    """
    _require(key=key)

    if record is None:
        raise KeyNotFound(f"License key '{key}' not found")

    if not is_admin:
        if _is_provided(discord_id):
            if record.discord_id != discord_id:
                raise NotOwner("License key belongs to another user")

            if not record.can_reset:
                raise ResetLimitExceeded(used=record.hwid_resets, maximum=record.max_resets)

        elif admin_presented:
            raise Unauthorized("Invalid admin credential")

        else:
            raise MissingCredential("An admin credential or a Discord ID is required")

    used = record.hwid_resets + 1
    mutation = Mutation(
        key=record.key,
        expected={"hwid_resets": record.hwid_resets},
        changes={"hwid": None, "hwid_resets": used},
    )
    event = AuditEvent(
        action=AuditAction.HWID_RESET,
        key=record.key,
        actor_id=record.discord_id,
    )
    result = ResetResult(
        key=record.key,
        used_resets=used,
        max_resets=record.max_resets,
        remaining_resets=max(record.max_resets - used, 0),
        by_admin=is_admin,
    )
    return Decision(result=result, mutation=mutation, event=event)


# --- Reporting ---


def info(record: Optional[LicenseKey], key: str, now: datetime) -> KeyInfo:
    """Read-only projection of a key, with ``days_left`` clamped at zero."""
    _require(key=key)

    if record is None:
        raise KeyNotFound(f"License key '{key}' not found")

    return KeyInfo(
        key=record.key,
        activated=record.activated,
        discord_id=record.discord_id,
        created_at=record.created_at,
        expires_at=record.expires_at,
        days_left=max(record.days_left(now), 0),
        hwid_resets=record.hwid_resets,
        max_resets=record.max_resets,
        can_reset=record.can_reset,
        notes=record.notes,
    )


def stats(
    records: Iterable[LicenseKey],
    recent_events: Sequence[AuditEvent],
    now: datetime,
) -> KeyStats:
    """Aggregate counters over every record plus the newest audit events."""
    records = list(records)
    activated = sum(1 for r in records if r.activated)

    return KeyStats(
        total=len(records),
        activated=activated,
        inactive=len(records) - activated,
        expired=sum(1 for r in records if r.is_expired(now)),
        total_hwid_resets=sum(r.hwid_resets for r in records),
        recent_events=list(recent_events[:RECENT_EVENTS_LIMIT]),
        keys=[_to_summary(r) for r in records],
    )


def _to_summary(record: LicenseKey) -> KeySummary:
    return KeySummary(
        key=record.key,
        activated=record.activated,
        discord_id=record.discord_id,
        expires_at=record.expires_at,
        hwid_resets=record.hwid_resets,
    )


# --- Deletion ---


def deletion_event(key: str, reason: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        action=AuditAction.KEY_DELETED,
        key=key,
        actor_id=ADMIN_ACTOR,
        details=reason,
    )
