import re
from datetime import datetime, timedelta, timezone
from types import NoneType

import pytest

from fastapi_license_key.domain import lifecycle
from fastapi_license_key.domain.entities import AuditAction, AuditEvent, LicenseKey
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
from fastapi_license_key.domain.results import CheckStatus
from fastapi_license_key.utils import days_until, license_key_factory

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
KEY_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def make_key(**kwargs) -> LicenseKey:
    values = dict(
        key="ABCD-EFGH-IJKL-MNOP",
        created_at=NOW,
        expires_at=NOW + timedelta(days=30),
    )
    values.update(kwargs)
    return LicenseKey(**values)


def make_activated(**kwargs) -> LicenseKey:
    return make_key(**{"activated": True, "discord_id": "owner", "hwid": "HWID-A", **kwargs})


@pytest.mark.parametrize(
    [
        "field_name",
        "expected_type",
    ],
    [
        ("id_", str),
        ("key", str),
        ("discord_id", (str, NoneType)),
        ("hwid", (str, NoneType)),
        ("created_at", datetime),
        ("expires_at", datetime),
        ("activated", bool),
        ("hwid_resets", int),
        ("max_resets", int),
        ("notes", (str, NoneType)),
    ],
)
def test_license_key_entity_structure(
    field_name: str,
    expected_type: type | tuple[type, ...],
):
    instance = LicenseKey()
    assert hasattr(instance, field_name), f"Missing field '{field_name}'"

    value = getattr(instance, field_name)
    assert isinstance(value, expected_type), f"Field '{field_name}' has wrong type"


def test_license_key_defaults():
    """A fresh key is inactive, unbound and allows three resets."""
    instance = LicenseKey()
    assert instance.activated is False
    assert instance.hwid is None
    assert instance.hwid_resets == 0
    assert instance.max_resets == 3
    assert instance.can_reset is True


def test_naive_datetimes_are_normalized_to_utc():
    naive = datetime(2025, 6, 1, 0, 0)
    instance = LicenseKey(created_at=naive, expires_at=naive)
    assert instance.created_at.tzinfo is timezone.utc
    assert instance.expires_at == naive.replace(tzinfo=timezone.utc)


def test_license_key_factory_format():
    tokens = {license_key_factory() for _ in range(200)}
    assert len(tokens) == 200
    assert all(KEY_PATTERN.match(t) for t in tokens)


@pytest.mark.parametrize(
    ["delta", "expected"],
    [
        (timedelta(days=2), 2),
        (timedelta(days=1, seconds=1), 2),
        (timedelta(hours=1), 1),
        (timedelta(0), 0),
        (timedelta(hours=-1), 0),
        (timedelta(days=-2), -2),
    ],
)
def test_days_until_rounds_up(delta: timedelta, expected: int):
    assert days_until(NOW + delta, NOW) == expected


# --- Generation ---


def test_expiration_for_rejects_non_positive_validity():
    with pytest.raises(InvalidRequest):
        lifecycle.expiration_for(NOW, 0)


def test_new_license_key_is_inactive():
    expires_at = lifecycle.expiration_for(NOW, 10)
    entity = lifecycle.new_license_key(NOW, expires_at, notes="batch", max_resets=5)

    assert KEY_PATTERN.match(entity.key)
    assert entity.expires_at == NOW + timedelta(days=10)
    assert entity.activated is False
    assert entity.max_resets == 5
    assert entity.notes == "batch"


def test_new_license_key_rejects_negative_max_resets():
    with pytest.raises(InvalidRequest):
        lifecycle.new_license_key(NOW, NOW, max_resets=-1)


def test_generation_event_joins_tokens():
    event = lifecycle.generation_event(["AAAA-AAAA-AAAA-AAAA", "BBBB-BBBB-BBBB-BBBB"])
    assert event.action is AuditAction.KEYS_GENERATED
    assert event.key == "AAAA-AAAA-AAAA-AAAA,BBBB-BBBB-BBBB-BBBB"
    assert event.actor_id == lifecycle.ADMIN_ACTOR


# --- Check ---


def test_check_unknown_key_is_not_found():
    decision = lifecycle.check(None, "NOPE", "HWID-A", NOW)
    assert decision.result.status is CheckStatus.NOT_FOUND
    assert decision.result.valid is False
    assert decision.mutation is None
    assert decision.event.action is AuditAction.CHECK_FAILED


def test_check_fresh_key_needs_activation():
    decision = lifecycle.check(make_key(), "ABCD-EFGH-IJKL-MNOP", "HWID-A", NOW)
    assert decision.result.status is CheckStatus.NEEDS_ACTIVATION
    assert decision.result.days_left == 30
    assert decision.event is None


def test_check_granted_and_mismatch():
    record = make_activated()

    granted = lifecycle.check(record, record.key, "HWID-A", NOW)
    assert granted.result.status is CheckStatus.GRANTED
    assert granted.result.valid is True
    assert granted.event.action is AuditAction.CHECK_SUCCESS

    mismatch = lifecycle.check(record, record.key, "HWID-B", NOW)
    assert mismatch.result.status is CheckStatus.HWID_MISMATCH
    assert mismatch.result.reset_available is True
    assert mismatch.event.action is AuditAction.HWID_MISMATCH
    assert mismatch.mutation is None


def test_check_mismatch_reports_exhausted_resets():
    record = make_activated(hwid_resets=3)
    decision = lifecycle.check(record, record.key, "HWID-B", NOW)
    assert decision.result.reset_available is False


def test_check_expired_wins_over_binding():
    record = make_activated(expires_at=NOW - timedelta(hours=1))
    decision = lifecycle.check(record, record.key, "HWID-A", NOW)
    assert decision.result.status is CheckStatus.EXPIRED
    assert decision.result.days_left == 0
    assert decision.event.action is AuditAction.KEY_EXPIRED


def test_check_after_reset_needs_activation():
    record = make_activated(hwid=None, hwid_resets=1)
    decision = lifecycle.check(record, record.key, "HWID-A", NOW)
    assert decision.result.status is CheckStatus.NEEDS_ACTIVATION


@pytest.mark.parametrize(["key", "hwid"], [("", "HWID-A"), ("KEY", " "), (None, "HWID-A")])
def test_check_requires_fields(key, hwid):
    with pytest.raises(InvalidRequest):
        lifecycle.check(None, key, hwid, NOW)


# --- Activation ---


def test_activate_fresh_key():
    record = make_key()
    decision = lifecycle.activate(record, record.key, "HWID-A", "owner", NOW)

    assert decision.mutation.expected == {"activated": False, "discord_id": None, "hwid": None}
    assert decision.mutation.changes == {"activated": True, "discord_id": "owner", "hwid": "HWID-A"}
    assert decision.event.action is AuditAction.KEY_ACTIVATED
    assert decision.event.actor_id == "owner"
    assert decision.result.expires_at == record.expires_at


def test_activate_unknown_key_raises():
    with pytest.raises(KeyNotFound):
        lifecycle.activate(None, "NOPE", "HWID-A", "owner", NOW)


def test_activate_by_other_owner_raises():
    record = make_activated()
    with pytest.raises(KeyAlreadyActivated):
        lifecycle.activate(record, record.key, "HWID-A", "intruder", NOW)


def test_activate_same_owner_same_device_is_noop():
    record = make_activated()
    decision = lifecycle.activate(record, record.key, "HWID-A", "owner", NOW)
    assert decision.mutation is None
    assert decision.event is None
    assert decision.result.hwid == "HWID-A"


def test_activate_same_owner_other_device_raises_until_reset():
    record = make_activated()
    with pytest.raises(KeyAlreadyActivated):
        lifecycle.activate(record, record.key, "HWID-B", "owner", NOW)

    after_reset = make_activated(hwid=None, hwid_resets=1)
    decision = lifecycle.activate(after_reset, after_reset.key, "HWID-B", "owner", NOW)
    assert decision.mutation.changes["hwid"] == "HWID-B"


def test_activate_expired_key():
    record = make_key(expires_at=NOW - timedelta(days=1))
    with pytest.raises(KeyExpired):
        lifecycle.activate(record, record.key, "HWID-A", "owner", NOW)

    decision = lifecycle.activate(record, record.key, "HWID-A", "owner", NOW, allow_expired=True)
    assert decision.mutation is not None


@pytest.mark.parametrize(
    ["hwid", "discord_id"],
    [("", "owner"), ("HWID-A", ""), (None, "owner"), ("HWID-A", "  ")],
)
def test_activate_requires_fields(hwid, discord_id):
    with pytest.raises(InvalidRequest):
        lifecycle.activate(make_key(), "ABCD-EFGH-IJKL-MNOP", hwid, discord_id, NOW)


# --- Reset ---


def test_reset_by_owner():
    record = make_activated()
    decision = lifecycle.reset(record, record.key, discord_id="owner")

    assert decision.mutation.expected == {"hwid_resets": 0}
    assert decision.mutation.changes == {"hwid": None, "hwid_resets": 1}
    assert decision.result.used_resets == 1
    assert decision.result.remaining_resets == 2
    assert decision.result.by_admin is False
    assert decision.event.action is AuditAction.HWID_RESET
    assert decision.event.actor_id == "owner"


def test_reset_by_other_user_raises():
    record = make_activated()
    with pytest.raises(NotOwner):
        lifecycle.reset(record, record.key, discord_id="intruder")


def test_reset_owner_limit():
    record = make_activated(hwid_resets=3)
    with pytest.raises(ResetLimitExceeded) as exc_info:
        lifecycle.reset(record, record.key, discord_id="owner")

    assert exc_info.value.used == 3
    assert exc_info.value.maximum == 3
    assert "3/3" in str(exc_info.value)


def test_reset_admin_goes_past_limit():
    record = make_activated(hwid_resets=3)
    decision = lifecycle.reset(record, record.key, is_admin=True, admin_presented=True)

    assert decision.mutation.changes["hwid_resets"] == 4
    assert decision.result.remaining_resets == 0
    assert decision.result.by_admin is True


def test_reset_credentials():
    record = make_activated()

    with pytest.raises(MissingCredential):
        lifecycle.reset(record, record.key)

    with pytest.raises(Unauthorized):
        lifecycle.reset(record, record.key, admin_presented=True)


def test_reset_unknown_key_raises():
    with pytest.raises(KeyNotFound):
        lifecycle.reset(None, "NOPE", is_admin=True, admin_presented=True)


# --- Reporting ---


def test_info_clamps_days_left():
    record = make_key(expires_at=NOW - timedelta(days=5), notes="n")
    result = lifecycle.info(record, record.key, NOW)
    assert result.days_left == 0
    assert result.notes == "n"
    assert result.can_reset is True


def test_info_unknown_key_raises():
    with pytest.raises(KeyNotFound):
        lifecycle.info(None, "NOPE", NOW)


def test_stats_counters():
    records = [
        make_key(key="AAAA-AAAA-AAAA-AAAA"),
        make_activated(key="BBBB-BBBB-BBBB-BBBB", hwid_resets=2),
        make_activated(key="CCCC-CCCC-CCCC-CCCC", expires_at=NOW - timedelta(days=1)),
    ]
    events = [AuditEvent(action=AuditAction.CHECK_FAILED, key=str(i), id_=i) for i in range(15, 0, -1)]

    result = lifecycle.stats(records, events, NOW)

    assert result.total == 3
    assert result.activated == 2
    assert result.inactive == 1
    assert result.expired == 1
    assert result.total_hwid_resets == 2
    assert len(result.recent_events) == lifecycle.RECENT_EVENTS_LIMIT
    assert result.recent_events[0].id_ == 15
    assert [k.key for k in result.keys] == [r.key for r in records]


def test_deletion_event_keeps_reason():
    event = lifecycle.deletion_event("AAAA-AAAA-AAAA-AAAA", reason="refund")
    assert event.action is AuditAction.KEY_DELETED
    assert event.details == "refund"
    assert event.actor_id == lifecycle.ADMIN_ACTOR
