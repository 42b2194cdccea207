"""
Security audit sink.

Writes are best effort: a failed insert is rolled back and logged at ERROR,
and never propagates to the caller, so auditing cannot change an
authentication outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from herald.constants.security import SecurityEventType
from herald.models.security_audit_log import SecurityAuditLog
from herald.schemas.security_audit import AuditEvent, SuspiciousActivitySummary

logger = logging.getLogger(__name__)


class SecurityAuditService:
    """Append security events and query them for monitoring."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def log_security_event(self, event: AuditEvent) -> Optional[SecurityAuditLog]:
        """Persist an event. Returns the row, or None if the write failed."""
        try:
            row = SecurityAuditLog(
                event_type=event.event_type.value,
                api_key_id=event.api_key_id,
                key_fingerprint=event.key_fingerprint,
                ip_address=event.ip_address,
                user_agent=event.user_agent[:500] if event.user_agent else None,
                request_id=event.request_id,
                organization_id=event.organization_id,
                metadata_=dict(event.metadata) or None,
                message=event.message[:1000] if event.message else None,
                occurred_at=event.occurred_at,
            )
            self.db.add(row)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Failed to log security event %s (request %s): %s",
                event.event_type,
                event.request_id,
                e,
            )
            return None

        logger.info(
            "Security event %s: %s (api_key=%s ip=%s request=%s)",
            event.event_type,
            event.message,
            event.api_key_id,
            event.ip_address,
            event.request_id,
        )
        return row

    def log_api_key_created(
        self,
        api_key_id: UUID,
        name: str,
        scopes: Sequence[str],
        created_by_user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Optional[SecurityAuditLog]:
        return self.log_security_event(
            AuditEvent(
                event_type=SecurityEventType.API_KEY_CREATED,
                api_key_id=str(api_key_id),
                organization_id=organization_id,
                metadata={
                    "name": name,
                    "scopes": list(scopes),
                    "created_by_user_id": created_by_user_id,
                },
                message=f"API key '{name}' created with scopes: {', '.join(scopes)}",
            )
        )

    def log_api_key_deleted(
        self,
        api_key_id: UUID,
        name: str,
        deleted_by_user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Optional[SecurityAuditLog]:
        return self.log_security_event(
            AuditEvent(
                event_type=SecurityEventType.API_KEY_DELETED,
                api_key_id=str(api_key_id),
                organization_id=organization_id,
                metadata={"name": name, "deleted_by_user_id": deleted_by_user_id},
                message=f"API key '{name}' deactivated",
            )
        )

    def get_recent_events(
        self,
        limit: int = 100,
        event_types: Optional[Sequence[SecurityEventType]] = None,
    ) -> List[SecurityAuditLog]:
        q = self.db.query(SecurityAuditLog).order_by(
            SecurityAuditLog.occurred_at.desc()
        )
        if event_types:
            q = q.filter(
                SecurityAuditLog.event_type.in_([t.value for t in event_types])
            )
        return q.limit(limit).all()

    def get_api_key_events(
        self, api_key_id: UUID, limit: int = 50
    ) -> List[SecurityAuditLog]:
        return (
            self.db.query(SecurityAuditLog)
            .filter(SecurityAuditLog.api_key_id == str(api_key_id))
            .order_by(SecurityAuditLog.occurred_at.desc())
            .limit(limit)
            .all()
        )

    def get_suspicious_activity(
        self, time_window_hours: int = 24
    ) -> SuspiciousActivitySummary:
        """Counts of rejected attempts in the window, plus distinct source IPs."""
        since = datetime.now(timezone.utc) - timedelta(hours=time_window_hours)
        rows = (
            self.db.query(SecurityAuditLog.event_type, func.count(SecurityAuditLog.id))
            .filter(SecurityAuditLog.occurred_at >= since)
            .group_by(SecurityAuditLog.event_type)
            .all()
        )
        counts: Dict[str, Any] = dict(rows)

        unique_ips = (
            self.db.query(func.count(func.distinct(SecurityAuditLog.ip_address)))
            .filter(SecurityAuditLog.occurred_at >= since)
            .filter(
                SecurityAuditLog.event_type.in_(
                    [
                        SecurityEventType.INVALID_API_KEY_ATTEMPT.value,
                        SecurityEventType.RATE_LIMIT_EXCEEDED.value,
                        SecurityEventType.SUSPICIOUS_ACTIVITY.value,
                    ]
                )
            )
            .scalar()
        )

        return SuspiciousActivitySummary(
            time_window_hours=time_window_hours,
            invalid_attempts=counts.get(
                SecurityEventType.INVALID_API_KEY_ATTEMPT.value, 0
            ),
            rate_limit_exceeded=counts.get(
                SecurityEventType.RATE_LIMIT_EXCEEDED.value, 0
            ),
            expired_key_attempts=counts.get(SecurityEventType.API_KEY_EXPIRED.value, 0),
            scope_violations=counts.get(
                SecurityEventType.SUSPICIOUS_ACTIVITY.value, 0
            ),
            unique_ips=unique_ips or 0,
        )
