"""Administrative operations on API keys: issue, revoke, list, usage."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Query

from herald.constants.security import DAY_MS, HOUR_MS
from herald.core.crypto import CryptoPrimitives
from herald.core.rate_limit import RateLimitCounter, RateLimitStoreError
from herald.models.api_key import ApiKey
from herald.schemas.api_key import ApiKeyCreate, RateLimitQuota, UsageDay, UsageStats
from herald.services.api_key_repository import ApiKeyRepository
from herald.services.api_key_validator import (
    daily_usage_identifier,
    hourly_usage_identifier,
)
from herald.services.security_audit_service import SecurityAuditService

logger = logging.getLogger(__name__)


class ApiKeyNotFoundError(LookupError):
    """No API key with the given id."""


class ApiKeyService:
    """Manages API key lifecycle. Validation lives in ApiKeyValidator."""

    def __init__(
        self,
        repository: ApiKeyRepository,
        crypto: CryptoPrimitives,
        audit: SecurityAuditService,
        rate_limiter: Optional[RateLimitCounter] = None,
        *,
        default_rate_limit: Optional[RateLimitQuota] = None,
    ) -> None:
        self.repository = repository
        self.crypto = crypto
        self.audit = audit
        self.rate_limiter = rate_limiter
        self.default_rate_limit = default_rate_limit or RateLimitQuota(
            hourly=1000, daily=10000
        )

    def _counters(self) -> RateLimitCounter:
        """The usage counter store; issuing and revoking keys work without one."""
        if self.rate_limiter is None:
            raise RateLimitStoreError("No usage counter store configured")
        return self.rate_limiter

    def create_api_key(
        self,
        data: ApiKeyCreate,
        created_by_user_id: Optional[str] = None,
    ) -> Tuple[ApiKey, str]:
        """
        Issue a new key.

        Returns:
            (api_key, plaintext). The plaintext is not stored anywhere and
            cannot be recovered later.
        """
        plaintext = self.crypto.generate_secret()
        rate_limit = data.rate_limit or self.default_rate_limit

        api_key = self.repository.create(
            hashed_key=self.crypto.derive_hash(plaintext),
            key_fingerprint=self.crypto.fast_hash(plaintext),
            name=data.name,
            scopes=list(data.scopes),
            rate_limit=rate_limit.model_dump(),
            expires_at=data.expires_at,
            organization_id=data.organization_id,
            created_by_user_id=created_by_user_id,
            is_active=True,
        )

        self.audit.log_api_key_created(
            api_key.id,
            api_key.name,
            api_key.scopes,
            created_by_user_id=created_by_user_id,
            organization_id=api_key.organization_id,
        )
        logger.info("API key created: %s (%s)", api_key.name, api_key.id)
        return api_key, plaintext

    def get_api_key(self, api_key_id: UUID) -> Optional[ApiKey]:
        return self.repository.get(api_key_id)

    def deactivate_api_key(
        self,
        api_key_id: UUID,
        deactivated_by_user_id: Optional[str] = None,
    ) -> ApiKey:
        """Permanently disable a key. Repeating the call is a no-op."""
        api_key = self.repository.get(api_key_id)
        if api_key is None:
            raise ApiKeyNotFoundError(f"API key {api_key_id} not found")
        if not api_key.is_active:
            return api_key

        self.repository.deactivate(api_key_id)
        self.audit.log_api_key_deleted(
            api_key.id,
            api_key.name,
            deleted_by_user_id=deactivated_by_user_id,
            organization_id=api_key.organization_id,
        )
        logger.info("API key deactivated: %s (%s)", api_key.name, api_key.id)
        return api_key

    def list_api_keys(
        self,
        organization_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ApiKey]:
        return self.repository.find_many(
            organization_id=organization_id, skip=skip, limit=limit
        )

    def get_api_keys_query(self, organization_id: Optional[str] = None) -> Query[ApiKey]:
        return self.repository.query(organization_id)

    def cleanup_expired_keys(self) -> int:
        """Deactivate every active key past its expiry. Returns how many changed."""
        count = self.repository.deactivate_expired()
        if count:
            logger.info("Deactivated %d expired API keys", count)
        return count

    def get_usage_stats(self, api_key_id: UUID, days: int = 30) -> UsageStats:
        """Daily request counts for the last ``days`` days, oldest first."""
        if self.repository.get(api_key_id) is None:
            raise ApiKeyNotFoundError(f"API key {api_key_id} not found")

        counters = self._counters()
        now_ms = counters.now_ms()
        today = counters.window_start(DAY_MS, now_ms)
        starts = [today - i * DAY_MS for i in reversed(range(days))]
        counts = counters.get_counts(daily_usage_identifier(api_key_id), starts)

        breakdown = [
            UsageDay(
                day=datetime.fromtimestamp(start / 1000, tz=timezone.utc).date(),
                requests=count,
            )
            for start, count in zip(starts, counts)
        ]
        return UsageStats(
            api_key_id=api_key_id,
            total_requests=sum(counts),
            daily_breakdown=breakdown,
            current_hour=counters.get_count(
                hourly_usage_identifier(api_key_id), HOUR_MS
            ),
            current_day=counts[-1] if counts else 0,
        )

    def reset_usage(self, api_key_id: UUID) -> None:
        """Clear the current hourly and daily usage windows for a key."""
        if self.repository.get(api_key_id) is None:
            raise ApiKeyNotFoundError(f"API key {api_key_id} not found")
        counters = self._counters()
        counters.reset(hourly_usage_identifier(api_key_id), HOUR_MS)
        counters.reset(daily_usage_identifier(api_key_id), DAY_MS)
        logger.info("Usage counters reset for API key %s", api_key_id)
