"""Tests for ApiKeyValidator."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from herald.constants.security import SecurityEventType, ValidationReason
from herald.core.rate_limit import RateLimitCounter
from herald.models.security_audit_log import SecurityAuditLog
from herald.schemas.api_key import RateLimitQuota, RequestContext
from herald.services.api_key_repository import ApiKeyRepository
from herald.services.api_key_validator import ApiKeyValidator
from herald.services.security_audit_service import SecurityAuditService


@pytest.fixture
def context():
    return RequestContext(
        ip_address="203.0.113.7",
        user_agent="pytest",
        request_id="req-1",
        endpoint="POST /notifications",
    )


@pytest.fixture
def validator(db, crypto, rate_limiter):
    return ApiKeyValidator(
        crypto, rate_limiter, ApiKeyRepository(db), SecurityAuditService(db)
    )


def validation_events(db):
    """Audit rows written by validation (key creation events excluded)."""
    return (
        db.query(SecurityAuditLog)
        .filter(SecurityAuditLog.event_type != SecurityEventType.API_KEY_CREATED.value)
        .filter(SecurityAuditLog.event_type != SecurityEventType.API_KEY_DELETED.value)
        .all()
    )


def test_valid_key_is_allowed(validator, setup_api_key, context, db):
    api_key, plaintext = setup_api_key

    decision = validator.validate(plaintext, context, "notifications:create")

    assert decision.allowed is True
    assert decision.reason is None
    assert decision.degraded is False
    assert decision.credential.id == api_key.id
    assert decision.credential.scopes == ["notifications:create", "notifications:read"]
    assert decision.rate_limit_info.limit == 100
    assert decision.rate_limit_info.current == 1

    events = validation_events(db)
    assert [e.event_type for e in events] == [SecurityEventType.API_KEY_USED.value]
    assert events[0].api_key_id == str(api_key.id)
    assert events[0].ip_address == "203.0.113.7"
    assert events[0].request_id == "req-1"


def test_no_scope_required_allows_any_active_key(validator, setup_api_key):
    _, plaintext = setup_api_key
    assert validator.validate(plaintext).allowed is True


def test_success_updates_last_used_at(validator, setup_api_key, db):
    api_key, plaintext = setup_api_key
    assert api_key.last_used_at is None

    validator.validate(plaintext)

    db.expire_all()
    assert ApiKeyRepository(db).get(api_key.id).last_used_at is not None


@pytest.mark.parametrize(
    "presented",
    [None, "", "short", "A" * 44, "A" * 42 + "=", 12345, b"A" * 43],
)
def test_malformed_key_is_rejected_without_lookup(crypto, rate_limiter, presented):
    store = MagicMock()
    audit = MagicMock()
    validator = ApiKeyValidator(crypto, rate_limiter, store, audit)

    decision = validator.validate(presented)

    assert decision.allowed is False
    assert decision.reason == ValidationReason.INVALID_FORMAT
    store.find_by_fingerprint.assert_not_called()
    audit.log_security_event.assert_called_once()
    event = audit.log_security_event.call_args.args[0]
    assert event.event_type == SecurityEventType.INVALID_API_KEY_ATTEMPT


def test_unknown_key_is_invalid_credential(validator, crypto, context, db):
    decision = validator.validate(crypto.generate_secret(), context)

    assert decision.allowed is False
    assert decision.reason == ValidationReason.INVALID_CREDENTIAL
    events = validation_events(db)
    assert [e.event_type for e in events] == [
        SecurityEventType.INVALID_API_KEY_ATTEMPT.value
    ]
    assert events[0].api_key_id is None
    assert events[0].key_fingerprint is not None


def test_unknown_key_still_runs_a_hash_verification(crypto, rate_limiter):
    store = MagicMock()
    store.find_by_fingerprint.return_value = None
    spy = MagicMock(wraps=crypto)
    spy.dummy_hash = crypto.dummy_hash
    validator = ApiKeyValidator(spy, rate_limiter, store, MagicMock())

    validator.validate(crypto.generate_secret())

    spy.verify.assert_called_once()
    assert spy.verify.call_args.args[1] == crypto.dummy_hash


def test_fingerprint_match_with_wrong_hash_is_invalid_credential(
    crypto, rate_limiter, setup_api_key
):
    api_key, plaintext = setup_api_key
    api_key.hashed_key = crypto.derive_hash(crypto.generate_secret())
    store = MagicMock()
    store.find_by_fingerprint.return_value = api_key
    validator = ApiKeyValidator(crypto, rate_limiter, store, MagicMock())

    decision = validator.validate(plaintext)

    assert decision.reason == ValidationReason.INVALID_CREDENTIAL
    store.touch.assert_not_called()


def test_deactivated_key_is_indistinguishable_from_unknown(
    validator, api_key_service, setup_api_key, crypto
):
    api_key, plaintext = setup_api_key
    api_key_service.deactivate_api_key(api_key.id)

    deactivated = validator.validate(plaintext)
    unknown = validator.validate(crypto.generate_secret())

    assert deactivated.allowed is False
    assert deactivated.reason == unknown.reason == ValidationReason.INVALID_CREDENTIAL


def test_expired_key_is_rejected(validator, create_api_key, db):
    _, plaintext = create_api_key(
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )

    decision = validator.validate(plaintext, required_scope="notifications:create")

    assert decision.allowed is False
    assert decision.reason == ValidationReason.EXPIRED
    assert [e.event_type for e in validation_events(db)] == [
        SecurityEventType.API_KEY_EXPIRED.value
    ]


def test_expiry_is_reported_before_deactivation(
    validator, create_api_key, api_key_service
):
    api_key, plaintext = create_api_key(
        expires_at=datetime.now(timezone.utc) - timedelta(days=1)
    )
    api_key_service.deactivate_api_key(api_key.id)

    assert validator.validate(plaintext).reason == ValidationReason.EXPIRED


def test_future_expiry_is_allowed(validator, create_api_key):
    _, plaintext = create_api_key(
        expires_at=datetime.now(timezone.utc) + timedelta(days=1)
    )
    assert validator.validate(plaintext).allowed is True


def test_missing_scope_is_rejected_with_one_event(validator, setup_api_key, db):
    api_key, plaintext = setup_api_key

    decision = validator.validate(plaintext, required_scope="api_keys:manage")

    assert decision.allowed is False
    assert decision.reason == ValidationReason.INSUFFICIENT_SCOPE
    events = validation_events(db)
    assert len(events) == 1
    assert events[0].event_type == SecurityEventType.SUSPICIOUS_ACTIVITY.value
    assert events[0].metadata_["required_scope"] == "api_keys:manage"
    assert events[0].metadata_["available_scopes"] == [
        "notifications:create",
        "notifications:read",
    ]


def test_scope_rejection_does_not_count_usage(
    validator, setup_api_key, rate_limiter
):
    api_key, plaintext = setup_api_key
    validator.validate(plaintext, required_scope="api_keys:manage")
    assert rate_limiter.get_count(f"api_key:{api_key.id}:hourly", 3_600_000) == 0


def test_hourly_quota_is_enforced(validator, create_api_key, db):
    _, plaintext = create_api_key(rate_limit=RateLimitQuota(hourly=2, daily=100))

    first = validator.validate(plaintext)
    second = validator.validate(plaintext)
    third = validator.validate(plaintext)

    assert first.allowed and second.allowed
    assert third.allowed is False
    assert third.reason == ValidationReason.RATE_LIMIT_EXCEEDED
    assert third.rate_limit_info.limit == 2
    assert third.rate_limit_info.current == 3
    assert third.rate_limit_info.window_ms == 3_600_000

    events = validation_events(db)
    assert sorted(e.event_type for e in events) == sorted(
        [
            SecurityEventType.API_KEY_USED.value,
            SecurityEventType.API_KEY_USED.value,
            SecurityEventType.RATE_LIMIT_EXCEEDED.value,
        ]
    )
    exceeded = next(
        e for e in events if e.event_type == SecurityEventType.RATE_LIMIT_EXCEEDED.value
    )
    assert exceeded.metadata_["tier"] == "api_key"


def test_daily_quota_is_enforced(validator, create_api_key):
    _, plaintext = create_api_key(rate_limit=RateLimitQuota(hourly=100, daily=1))

    assert validator.validate(plaintext).allowed is True
    decision = validator.validate(plaintext)

    assert decision.reason == ValidationReason.RATE_LIMIT_EXCEEDED
    assert decision.rate_limit_info.window_ms == 86_400_000


def test_zero_quota_means_unlimited(validator, create_api_key):
    _, plaintext = create_api_key(rate_limit=RateLimitQuota(hourly=0, daily=0))
    assert all(validator.validate(plaintext).allowed for _ in range(5))


def test_new_hour_window_restores_access(
    validator, create_api_key, frozen_clock
):
    _, plaintext = create_api_key(rate_limit=RateLimitQuota(hourly=1, daily=100))
    validator.validate(plaintext)
    assert validator.validate(plaintext).allowed is False

    frozen_clock.advance(3600)

    assert validator.validate(plaintext).allowed is True


def test_fingerprint_limit_applies_before_lookup(crypto, rate_limiter):
    store = MagicMock()
    store.find_by_fingerprint.return_value = None
    audit = MagicMock()
    validator = ApiKeyValidator(
        crypto, rate_limiter, store, audit, fingerprint_limit=2
    )
    presented = crypto.generate_secret()

    validator.validate(presented)
    validator.validate(presented)
    decision = validator.validate(presented)

    assert decision.reason == ValidationReason.RATE_LIMIT_EXCEEDED
    assert decision.rate_limit_info.limit == 2
    assert store.find_by_fingerprint.call_count == 2
    event = audit.log_security_event.call_args.args[0]
    assert event.event_type == SecurityEventType.RATE_LIMIT_EXCEEDED
    assert event.metadata["tier"] == "fingerprint"
    assert event.key_fingerprint == crypto.fast_hash(presented)


def test_fingerprint_limit_is_per_presented_key(crypto, rate_limiter):
    store = MagicMock()
    store.find_by_fingerprint.return_value = None
    validator = ApiKeyValidator(
        crypto, rate_limiter, store, MagicMock(), fingerprint_limit=1
    )

    validator.validate(crypto.generate_secret())
    decision = validator.validate(crypto.generate_secret())

    assert decision.reason == ValidationReason.INVALID_CREDENTIAL


def test_counter_store_down_fails_open_for_unknown_keys(
    db, crypto, failing_redis, frozen_clock
):
    validator = ApiKeyValidator(
        crypto,
        RateLimitCounter(failing_redis, clock=frozen_clock),
        ApiKeyRepository(db),
        SecurityAuditService(db),
    )

    decision = validator.validate(crypto.generate_secret())

    assert decision.reason == ValidationReason.INVALID_CREDENTIAL
    assert decision.degraded is True
    events = validation_events(db)
    assert events[0].metadata_["rate_limit_degraded"] is True


def test_counter_store_down_fails_closed_for_usage(
    db, crypto, failing_redis, frozen_clock, setup_api_key
):
    _, plaintext = setup_api_key
    validator = ApiKeyValidator(
        crypto,
        RateLimitCounter(failing_redis, clock=frozen_clock),
        ApiKeyRepository(db),
        SecurityAuditService(db),
    )

    decision = validator.validate(plaintext)

    assert decision.allowed is False
    assert decision.reason == ValidationReason.INTERNAL_ERROR
    assert [e.event_type for e in validation_events(db)] == [
        SecurityEventType.VALIDATION_ERROR.value
    ]
    assert decision.degraded is True
    assert validation_events(db)[0].metadata_["rate_limit_degraded"] is True


def test_malformed_fingerprint_counter_reply_fails_open(
    db, crypto, malformed_reply_redis, frozen_clock, setup_api_key
):
    _, plaintext = setup_api_key
    malformed_reply_redis.malformed_pipelines = 1
    validator = ApiKeyValidator(
        crypto,
        RateLimitCounter(malformed_reply_redis, clock=frozen_clock),
        ApiKeyRepository(db),
        SecurityAuditService(db),
    )

    decision = validator.validate(plaintext)

    assert decision.allowed is True
    assert decision.degraded is True
    events = validation_events(db)
    assert [e.event_type for e in events] == [SecurityEventType.API_KEY_USED.value]
    assert events[0].metadata_["rate_limit_degraded"] is True


def test_malformed_usage_counter_reply_fails_closed(
    db, crypto, malformed_reply_redis, frozen_clock, setup_api_key
):
    _, plaintext = setup_api_key
    malformed_reply_redis.malformed_pipelines = 2
    validator = ApiKeyValidator(
        crypto,
        RateLimitCounter(malformed_reply_redis, clock=frozen_clock),
        ApiKeyRepository(db),
        SecurityAuditService(db),
    )

    decision = validator.validate(plaintext)

    assert decision.reason == ValidationReason.INTERNAL_ERROR
    assert decision.degraded is True


def test_store_error_becomes_internal_error(crypto, rate_limiter):
    store = MagicMock()
    store.find_by_fingerprint.side_effect = OperationalError("SELECT", {}, Exception("db down"))
    audit = MagicMock()
    validator = ApiKeyValidator(crypto, rate_limiter, store, audit)

    decision = validator.validate(crypto.generate_secret())

    assert decision.allowed is False
    assert decision.reason == ValidationReason.INTERNAL_ERROR
    audit.log_security_event.assert_called_once()
    event = audit.log_security_event.call_args.args[0]
    assert event.event_type == SecurityEventType.VALIDATION_ERROR


def test_audit_failure_does_not_change_decision(crypto, rate_limiter, db, setup_api_key):
    _, plaintext = setup_api_key
    audit = MagicMock()
    audit.log_security_event.side_effect = RuntimeError("audit store down")
    validator = ApiKeyValidator(crypto, rate_limiter, ApiKeyRepository(db), audit)

    allowed = validator.validate(plaintext)
    rejected = validator.validate(crypto.generate_secret())

    assert allowed.allowed is True
    assert rejected.reason == ValidationReason.INVALID_CREDENTIAL


def test_touch_failure_does_not_block_request(crypto, rate_limiter, setup_api_key):
    api_key, plaintext = setup_api_key
    store = MagicMock()
    store.find_by_fingerprint.return_value = api_key
    store.touch.return_value = False
    validator = ApiKeyValidator(crypto, rate_limiter, store, MagicMock())

    assert validator.validate(plaintext).allowed is True
    store.touch.assert_called_once()


def test_exactly_one_event_per_outcome(
    validator, create_api_key, crypto, db
):
    _, good = create_api_key(rate_limit=RateLimitQuota(hourly=1, daily=10))
    expired_key, expired = create_api_key(
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1)
    )

    outcomes = [
        validator.validate("bad"),
        validator.validate(crypto.generate_secret()),
        validator.validate(expired),
        validator.validate(good, required_scope="nope"),
        validator.validate(good),
        validator.validate(good),
    ]

    assert [d.reason for d in outcomes] == [
        ValidationReason.INVALID_FORMAT,
        ValidationReason.INVALID_CREDENTIAL,
        ValidationReason.EXPIRED,
        ValidationReason.INSUFFICIENT_SCOPE,
        None,
        ValidationReason.RATE_LIMIT_EXCEEDED,
    ]
    assert len(validation_events(db)) == len(outcomes)
