"""Security monitoring API over the audit log."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from herald.config import get_settings
from herald.constants.security import SecurityEventType
from herald.db import get_db
from herald.routers.utils.dependencies import require_api_key
from herald.schemas.api_key import ApiKeyPrincipal
from herald.schemas.security_audit import (
    SecurityAuditLogRead,
    SuspiciousActivitySummary,
)
from herald.services.security_audit_service import SecurityAuditService

router = APIRouter(
    prefix="/security",
    tags=["security"],
)

require_admin = require_api_key(get_settings().api_key_admin_scope)


@router.get("/events", response_model=List[SecurityAuditLogRead])
def list_security_events(
    limit: int = Query(100, ge=1, le=1000),
    event_type: Optional[List[SecurityEventType]] = Query(None),
    _principal: ApiKeyPrincipal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> List[SecurityAuditLogRead]:
    """Most recent security events, optionally filtered by type."""
    svc = SecurityAuditService(db)
    events = svc.get_recent_events(limit=limit, event_types=event_type)
    return [SecurityAuditLogRead.model_validate(e) for e in events]


@router.get("/api-keys/{api_key_id}/events", response_model=List[SecurityAuditLogRead])
def list_api_key_events(
    api_key_id: UUID,
    limit: int = Query(50, ge=1, le=1000),
    _principal: ApiKeyPrincipal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> List[SecurityAuditLogRead]:
    """Security events recorded for one API key."""
    svc = SecurityAuditService(db)
    events = svc.get_api_key_events(api_key_id, limit=limit)
    return [SecurityAuditLogRead.model_validate(e) for e in events]


@router.get("/suspicious-activity", response_model=SuspiciousActivitySummary)
def get_suspicious_activity(
    hours: int = Query(24, ge=1, le=24 * 30),
    _principal: ApiKeyPrincipal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> SuspiciousActivitySummary:
    """Rejected-attempt counts over the last ``hours`` hours."""
    return SecurityAuditService(db).get_suspicious_activity(time_window_hours=hours)
