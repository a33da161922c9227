from datetime import datetime
from typing import List, Optional


class LicenseKeyError(Exception):
    """Base exception for license key domain errors."""


class InvalidRequest(LicenseKeyError):
    """Raised when a required field is missing or malformed."""


class KeyNotFound(LicenseKeyError):
    """Raised when no license key matches the presented token."""


class Unauthorized(LicenseKeyError):
    """Raised when the administrative credential is missing or wrong."""


class MissingCredential(LicenseKeyError):
    """Raised when a reset carries neither an admin credential nor a Discord ID."""


class NotOwner(LicenseKeyError):
    """Raised when a Discord ID claims a key bound to someone else."""


class KeyAlreadyActivated(LicenseKeyError):
    """Raised when a key is already bound to another owner or device."""


class KeyExpired(LicenseKeyError):
    """Raised when activating a key whose validity window is over."""


class ResetLimitExceeded(LicenseKeyError):
    """Raised when the owner has used every HWID reset of the key."""

    def __init__(self, used: int, maximum: int) -> None:
        super().__init__(f"Reset limit reached ({used}/{maximum})")
        self.used = used
        self.maximum = maximum


class StorageFailure(LicenseKeyError):
    """Raised when the store is unavailable or a write keeps conflicting."""


class DuplicateKey(StorageFailure):
    """Raised by a store when inserting a key token that already exists."""


class GenerationIncomplete(StorageFailure):
    """Raised when a generation batch stops before every key was persisted.

    Attributes:
        persisted: Tokens that were stored before the failure.
        expires_at: Expiration shared by the persisted keys.
    """

    def __init__(self, message: str, persisted: List[str], expires_at: Optional[datetime] = None) -> None:
        super().__init__(message)
        self.persisted = persisted
        self.expires_at = expires_at
