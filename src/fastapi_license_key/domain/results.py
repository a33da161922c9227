from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from fastapi_license_key.domain.entities import AuditEvent

R = TypeVar("R")
"""Result type carried by a lifecycle decision."""


class CheckStatus(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    NEEDS_ACTIVATION = "needs_activation"
    GRANTED = "granted"
    HWID_MISMATCH = "hwid_mismatch"


@dataclass(frozen=True)
class Mutation:
    """Conditional write produced by a lifecycle decision.

    Attributes:
        key: Token of the record to update.
        expected: Field values the stored record must still hold.
        changes: Field values to write when ``expected`` matches.
    """

    key: str
    expected: Dict[str, Any]
    changes: Dict[str, Any]


@dataclass(frozen=True)
class Decision(Generic[R]):
    """Outcome of a lifecycle decision: what to answer, write and audit."""

    result: R
    mutation: Optional[Mutation] = None
    event: Optional[AuditEvent] = None


@dataclass(frozen=True)
class CheckResult:
    status: CheckStatus
    key: str
    expires_at: Optional[datetime] = None
    days_left: Optional[int] = None
    reset_available: Optional[bool] = None

    @property
    def valid(self) -> bool:
        return self.status is CheckStatus.GRANTED


@dataclass(frozen=True)
class ActivationResult:
    key: str
    discord_id: str
    hwid: str
    expires_at: datetime


@dataclass(frozen=True)
class ResetResult:
    key: str
    used_resets: int
    max_resets: int
    remaining_resets: int
    by_admin: bool = False


@dataclass(frozen=True)
class KeyInfo:
    """Read-only projection of a key for its owner."""

    key: str
    activated: bool
    discord_id: Optional[str]
    created_at: datetime
    expires_at: datetime
    days_left: int
    hwid_resets: int
    max_resets: int
    can_reset: bool
    notes: Optional[str] = None


@dataclass(frozen=True)
class KeySummary:
    key: str
    activated: bool
    discord_id: Optional[str]
    expires_at: datetime
    hwid_resets: int


@dataclass(frozen=True)
class KeyStats:
    total: int
    activated: int
    inactive: int
    expired: int
    total_hwid_resets: int
    recent_events: List[AuditEvent] = field(default_factory=list)
    keys: List[KeySummary] = field(default_factory=list)


@dataclass(frozen=True)
class GenerationResult:
    keys: List[str]
    expires_at: datetime


@dataclass(frozen=True)
class DeletionResult:
    key: str
    reason: Optional[str] = None
