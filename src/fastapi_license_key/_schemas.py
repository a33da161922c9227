"""Pydantic schemas used by the HTTP integration.

Request models validate presence and ranges of fields; lifecycle rules stay in
the domain. Response models mirror the domain results one to one.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from fastapi_license_key.domain.entities import AuditEvent
from fastapi_license_key.domain.results import (
    ActivationResult,
    CheckResult,
    CheckStatus,
    DeletionResult,
    GenerationResult,
    KeyInfo,
    KeyStats,
    ResetResult,
)

_CHECK_MESSAGES = {
    CheckStatus.NOT_FOUND: "License key not found",
    CheckStatus.EXPIRED: "License key expired",
    CheckStatus.NEEDS_ACTIVATION: "License key requires activation",
    CheckStatus.GRANTED: "Access granted",
    CheckStatus.HWID_MISMATCH: "HWID does not match",
}


class StatusOut(BaseModel):
    status: Literal["online"] = "online"
    project: str
    version: str
    endpoints: Dict[str, str]


class GenerateIn(BaseModel):
    """Payload to generate a batch of license keys.

    Attributes:
        count: How many keys to generate.
        validity_days: Validity window in days (service default if omitted).
        notes: Optional annotation stored with every key of the batch.
        max_resets: HWID resets allowed per key (service default if omitted).
    """

    count: int = Field(1, ge=1, description="Number of keys to generate")
    validity_days: Optional[int] = Field(None, gt=0, description="Validity window in days")
    notes: Optional[str] = Field(None, max_length=1024)
    max_resets: Optional[int] = Field(None, ge=0, description="HWID resets allowed per key")


class GenerateOut(BaseModel):
    keys: List[str]
    count: int
    expires_at: datetime


class CheckOut(BaseModel):
    """Result of a key check.

    Note:
        ``valid`` is only True for a granted check. Every other outcome is a
        regular answer, not an error, and is reported with status 200.
    """

    valid: bool
    status: CheckStatus
    message: str
    key: str
    expires_at: Optional[datetime] = None
    days_left: Optional[int] = None
    needs_activation: bool = False
    needs_reset: bool = False
    reset_available: Optional[bool] = None


class ActivateIn(BaseModel):
    key: str = Field(..., min_length=1)
    hwid: str = Field(..., min_length=1)
    discord_id: str = Field(..., min_length=1)


class ActivateOut(BaseModel):
    key: str
    discord_id: str
    expires_at: datetime


class ResetIn(BaseModel):
    """Payload to reset the HWID binding of a key.

    Attributes:
        key: The license key to reset.
        discord_id: Owner claiming the key, when no admin credential is sent.
    """

    key: str = Field(..., min_length=1)
    discord_id: Optional[str] = Field(None, min_length=1)


class ResetOut(BaseModel):
    key: str
    used_resets: int
    max_resets: int
    remaining_resets: int


class InfoOut(BaseModel):
    key: str
    activated: bool
    discord_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    days_left: int
    hwid_resets: int
    max_resets: int
    can_reset: bool
    notes: Optional[str] = None


class AuditEventOut(BaseModel):
    id: Optional[int] = None
    action: str
    key: str
    discord_id: Optional[str] = None
    hwid: Optional[str] = None
    ip: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime


class KeySummaryOut(BaseModel):
    key: str
    activated: bool
    discord_id: Optional[str] = None
    expires_at: datetime
    hwid_resets: int


class StatsCountersOut(BaseModel):
    total_keys: int
    activated_keys: int
    inactive_keys: int
    expired_keys: int
    total_hwid_resets: int


class StatsOut(BaseModel):
    stats: StatsCountersOut
    recent_logs: List[AuditEventOut] = Field(default_factory=list)
    keys: List[KeySummaryOut] = Field(default_factory=list)


class DeletedOut(BaseModel):
    status: Literal["deleted"] = "deleted"
    key: str
    reason: Optional[str] = None


def _to_generate_out(result: GenerationResult) -> GenerateOut:
    return GenerateOut(keys=result.keys, count=len(result.keys), expires_at=result.expires_at)


def _to_check_out(result: CheckResult) -> CheckOut:
    """Map a ``CheckResult`` to the public ``CheckOut`` schema."""
    return CheckOut(
        valid=result.valid,
        status=result.status,
        message=_CHECK_MESSAGES[result.status],
        key=result.key,
        expires_at=result.expires_at,
        days_left=result.days_left,
        needs_activation=result.status is CheckStatus.NEEDS_ACTIVATION,
        needs_reset=result.status is CheckStatus.HWID_MISMATCH,
        reset_available=result.reset_available,
    )


def _to_activate_out(result: ActivationResult) -> ActivateOut:
    return ActivateOut(key=result.key, discord_id=result.discord_id, expires_at=result.expires_at)


def _to_reset_out(result: ResetResult) -> ResetOut:
    return ResetOut(
        key=result.key,
        used_resets=result.used_resets,
        max_resets=result.max_resets,
        remaining_resets=result.remaining_resets,
    )


def _to_info_out(result: KeyInfo) -> InfoOut:
    return InfoOut(
        key=result.key,
        activated=result.activated,
        discord_id=result.discord_id,
        created_at=result.created_at,
        expires_at=result.expires_at,
        days_left=result.days_left,
        hwid_resets=result.hwid_resets,
        max_resets=result.max_resets,
        can_reset=result.can_reset,
        notes=result.notes,
    )


def _to_event_out(event: AuditEvent) -> AuditEventOut:
    return AuditEventOut(
        id=event.id_,
        action=event.action.value,
        key=event.key,
        discord_id=event.actor_id,
        hwid=event.hwid,
        ip=event.origin,
        details=event.details,
        timestamp=event.timestamp,
    )


def _to_stats_out(result: KeyStats) -> StatsOut:
    return StatsOut(
        stats=StatsCountersOut(
            total_keys=result.total,
            activated_keys=result.activated,
            inactive_keys=result.inactive,
            expired_keys=result.expired,
            total_hwid_resets=result.total_hwid_resets,
        ),
        recent_logs=[_to_event_out(e) for e in result.recent_events],
        keys=[
            KeySummaryOut(
                key=k.key,
                activated=k.activated,
                discord_id=k.discord_id,
                expires_at=k.expires_at,
                hwid_resets=k.hwid_resets,
            )
            for k in result.keys
        ],
    )


def _to_deleted_out(result: DeletionResult) -> DeletedOut:
    return DeletedOut(key=result.key, reason=result.reason)
