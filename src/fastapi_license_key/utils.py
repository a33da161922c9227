import math
import secrets
import string
import uuid
from datetime import datetime, timezone

KEY_ALPHABET = string.ascii_uppercase + string.digits  # 36 chars
KEY_GROUPS = 4
KEY_GROUP_SIZE = 4
KEY_SEPARATOR = "-"

SECONDS_PER_DAY = 24 * 60 * 60


def uuid_factory() -> str:
    """Helper function to create a UUID string."""
    return uuid.uuid4().hex


def license_key_factory() -> str:
    """Helper function to create a random license key like ``ABCD-EFGH-IJKL-MNOP``."""
    groups = (
        "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_GROUP_SIZE))
        for _ in range(KEY_GROUPS)
    )
    return KEY_SEPARATOR.join(groups)


def datetime_factory() -> datetime:
    """Helper function to create a timezone-aware datetime object."""
    return datetime.now(timezone.utc)


def days_until(expires_at: datetime, now: datetime) -> int:
    """Whole days left before ``expires_at``, rounded up (zero or less means expired)."""
    return math.ceil((expires_at - now).total_seconds() / SECONDS_PER_DAY)
