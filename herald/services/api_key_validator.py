"""
API key validation: the gate every protected request passes through.

Stages run in a fixed order and the first rejection ends the run:

1. surface format (no store access at all)
2. anonymous anti-abuse limit on the presented key's fingerprint
3. lookup by fingerprint, then slow PBKDF2 verification
4. expiry
5. active flag
6. required scope
7. per-key hourly/daily quota, ``last_used_at``

Every outcome, success or rejection, writes exactly one audit event.
Unknown keys, wrong secrets and deactivated keys share one reason code
(``invalid_credential``) so probing cannot tell them apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Sequence, Tuple
from uuid import UUID

from herald.constants.security import (
    DAY_MS,
    HOUR_MS,
    SecurityEventType,
    ValidationReason,
)
from herald.core.crypto import CryptoPrimitives
from herald.core.rate_limit import RateLimitCounter, RateLimitResult, RateLimitWindow
from herald.models.api_key import ApiKey
from herald.models.mixins import utcnow
from herald.schemas.api_key import (
    ApiKeyPrincipal,
    RateLimitInfo,
    RequestContext,
    ValidationDecision,
)
from herald.schemas.security_audit import AuditEvent

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def find_by_fingerprint(self, fingerprint: str) -> Optional[ApiKey]: ...
    def touch(self, api_key_id: UUID, now: Optional[datetime] = None) -> bool: ...


class AuditSink(Protocol):
    def log_security_event(self, event: AuditEvent) -> Any: ...


def fingerprint_identifier(fingerprint: str) -> str:
    return f"fingerprint:{fingerprint}"


def hourly_usage_identifier(api_key_id: Any) -> str:
    return f"api_key:{api_key_id}:hourly"


def daily_usage_identifier(api_key_id: Any) -> str:
    return f"api_key:{api_key_id}:daily"


@dataclass
class _RunState:
    """What a validation run learned before it stopped, kept for the error path."""

    degraded: bool = False


def _rate_limit_info(result: RateLimitResult) -> RateLimitInfo:
    return RateLimitInfo(
        limit=result.limit,
        current=result.current,
        window_ms=result.window_ms,
        reset_time=result.window_reset_at,
    )


class ApiKeyValidator:
    """Verify a presented API key and decide whether the request may proceed."""

    def __init__(
        self,
        crypto: CryptoPrimitives,
        rate_limiter: RateLimitCounter,
        store: CredentialStore,
        audit: AuditSink,
        *,
        fingerprint_limit: int = 1000,
        fingerprint_window_ms: int = HOUR_MS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.crypto = crypto
        self.rate_limiter = rate_limiter
        self.store = store
        self.audit = audit
        self.fingerprint_limit = fingerprint_limit
        self.fingerprint_window_ms = fingerprint_window_ms
        self._clock = clock

    def validate(
        self,
        presented_key: Any,
        context: Optional[RequestContext] = None,
        required_scope: Optional[str] = None,
    ) -> ValidationDecision:
        """Run all stages. Never raises; failures come back as a rejection."""
        context = context or RequestContext()
        state = _RunState()
        try:
            decision, event = self._run(presented_key, context, required_scope, state)
        except Exception:
            logger.exception(
                "API key validation error (request %s, endpoint %s)",
                context.request_id,
                context.endpoint,
            )
            decision = ValidationDecision(
                allowed=False,
                reason=ValidationReason.INTERNAL_ERROR,
                degraded=state.degraded,
            )
            event = self._event(
                SecurityEventType.VALIDATION_ERROR,
                context,
                message=f"Internal error while validating API key for {context.endpoint}",
                reason=ValidationReason.INTERNAL_ERROR,
                degraded=state.degraded,
            )
        self._emit(event)
        return decision

    def _run(
        self,
        presented_key: Any,
        context: RequestContext,
        required_scope: Optional[str],
        state: _RunState,
    ) -> Tuple[ValidationDecision, AuditEvent]:
        if not self.crypto.is_valid_surface_format(presented_key):
            return self._reject(
                ValidationReason.INVALID_FORMAT,
                self._event(
                    SecurityEventType.INVALID_API_KEY_ATTEMPT,
                    context,
                    message=(
                        f"Malformed API key from {context.ip_address} "
                        f"for {context.endpoint}"
                    ),
                    reason=ValidationReason.INVALID_FORMAT,
                ),
            )

        fingerprint = self.crypto.fast_hash(presented_key)

        guard = self.rate_limiter.increment_and_check(
            fingerprint_identifier(fingerprint),
            self.fingerprint_window_ms,
            self.fingerprint_limit,
        )
        degraded = state.degraded = guard.degraded
        if not guard.allowed:
            return self._reject(
                ValidationReason.RATE_LIMIT_EXCEEDED,
                self._event(
                    SecurityEventType.RATE_LIMIT_EXCEEDED,
                    context,
                    key_fingerprint=fingerprint,
                    message=(
                        f"Rate limit exceeded: {guard.current}/{guard.limit} requests "
                        f"in {guard.window_ms}ms window"
                    ),
                    reason=ValidationReason.RATE_LIMIT_EXCEEDED,
                    tier="fingerprint",
                    rate_limit_info=_rate_limit_info(guard).model_dump(mode="json"),
                ),
                rate_limit_info=_rate_limit_info(guard),
            )

        api_key = self.store.find_by_fingerprint(fingerprint)
        # Verify against a throwaway hash when nothing matched so both
        # paths cost one PBKDF2 derivation.
        stored_hash = api_key.hashed_key if api_key is not None else self.crypto.dummy_hash
        verified = self.crypto.verify(presented_key, stored_hash)
        if api_key is None or not verified:
            return self._reject(
                ValidationReason.INVALID_CREDENTIAL,
                self._event(
                    SecurityEventType.INVALID_API_KEY_ATTEMPT,
                    context,
                    key_fingerprint=fingerprint,
                    message=(
                        f"Invalid API key attempt from {context.ip_address} "
                        f"for {context.endpoint}"
                    ),
                    reason=ValidationReason.INVALID_CREDENTIAL,
                    degraded=degraded,
                ),
                degraded=degraded,
            )

        now = self._clock()
        if api_key.is_expired(now):
            return self._reject(
                ValidationReason.EXPIRED,
                self._event(
                    SecurityEventType.API_KEY_EXPIRED,
                    context,
                    api_key=api_key,
                    message=f"Expired API key attempt for {context.endpoint}",
                    reason=ValidationReason.EXPIRED,
                    degraded=degraded,
                ),
                degraded=degraded,
            )

        if not api_key.is_active:
            return self._reject(
                ValidationReason.INVALID_CREDENTIAL,
                self._event(
                    SecurityEventType.INVALID_API_KEY_ATTEMPT,
                    context,
                    api_key=api_key,
                    message=f"Deactivated API key attempt for {context.endpoint}",
                    reason=ValidationReason.INVALID_CREDENTIAL,
                    inactive=True,
                    degraded=degraded,
                ),
                degraded=degraded,
            )

        if required_scope and not api_key.has_scope(required_scope):
            return self._reject(
                ValidationReason.INSUFFICIENT_SCOPE,
                self._event(
                    SecurityEventType.SUSPICIOUS_ACTIVITY,
                    context,
                    api_key=api_key,
                    message=(
                        f"API key attempted to access {context.endpoint} "
                        f"without required scope: {required_scope}"
                    ),
                    reason=ValidationReason.INSUFFICIENT_SCOPE,
                    required_scope=required_scope,
                    available_scopes=list(api_key.scopes or []),
                    degraded=degraded,
                ),
                degraded=degraded,
            )

        # Usage accounting fails closed: RateLimitStoreError propagates to
        # validate() and becomes internal_error.
        quota = api_key.rate_limit or {}
        usage = self.rate_limiter.increment_many(
            [
                RateLimitWindow(
                    hourly_usage_identifier(api_key.id), HOUR_MS, int(quota.get("hourly", 0))
                ),
                RateLimitWindow(
                    daily_usage_identifier(api_key.id), DAY_MS, int(quota.get("daily", 0))
                ),
            ],
            fail_open=False,
        )
        exceeded = next((r for r in usage if not r.allowed), None)
        if exceeded is not None:
            return self._reject(
                ValidationReason.RATE_LIMIT_EXCEEDED,
                self._event(
                    SecurityEventType.RATE_LIMIT_EXCEEDED,
                    context,
                    api_key=api_key,
                    message=(
                        f"Rate limit exceeded: {exceeded.current}/{exceeded.limit} "
                        f"requests in {exceeded.window_ms}ms window"
                    ),
                    reason=ValidationReason.RATE_LIMIT_EXCEEDED,
                    tier="api_key",
                    rate_limit_info=_rate_limit_info(exceeded).model_dump(mode="json"),
                    degraded=degraded,
                ),
                rate_limit_info=_rate_limit_info(exceeded),
                degraded=degraded,
            )

        self.store.touch(api_key.id, now)

        info = _rate_limit_info(self._tightest(usage))
        decision = ValidationDecision(
            allowed=True,
            credential=ApiKeyPrincipal.model_validate(api_key),
            rate_limit_info=info,
            degraded=degraded,
        )
        event = self._event(
            SecurityEventType.API_KEY_USED,
            context,
            api_key=api_key,
            message=f"API key used for {context.endpoint}",
            degraded=degraded,
        )
        return decision, event

    @staticmethod
    def _tightest(results: Sequence[RateLimitResult]) -> RateLimitResult:
        """The capped window closest to its limit, else the first one."""
        capped = [r for r in results if r.limit > 0]
        if not capped:
            return results[0]
        return min(capped, key=lambda r: r.remaining)

    @staticmethod
    def _reject(
        reason: ValidationReason,
        event: AuditEvent,
        rate_limit_info: Optional[RateLimitInfo] = None,
        degraded: bool = False,
    ) -> Tuple[ValidationDecision, AuditEvent]:
        decision = ValidationDecision(
            allowed=False,
            reason=reason,
            rate_limit_info=rate_limit_info,
            degraded=degraded,
        )
        return decision, event

    @staticmethod
    def _event(
        event_type: SecurityEventType,
        context: RequestContext,
        *,
        message: str,
        api_key: Optional[ApiKey] = None,
        key_fingerprint: Optional[str] = None,
        degraded: bool = False,
        **metadata: Any,
    ) -> AuditEvent:
        metadata["endpoint"] = context.endpoint
        if degraded:
            metadata["rate_limit_degraded"] = True
        return AuditEvent(
            event_type=event_type,
            api_key_id=str(api_key.id) if api_key is not None else None,
            key_fingerprint=key_fingerprint,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_id=context.request_id,
            organization_id=api_key.organization_id if api_key is not None else None,
            metadata=metadata,
            message=message,
        )

    def _emit(self, event: AuditEvent) -> None:
        try:
            self.audit.log_security_event(event)
        except Exception as e:
            logger.error("Audit sink rejected %s event: %s", event.event_type, e)
