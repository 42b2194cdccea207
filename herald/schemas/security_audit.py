"""Pydantic schemas for security audit events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from herald.constants.security import SecurityEventType


class AuditEvent(BaseModel):
    """A security event handed to the audit sink. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    event_type: SecurityEventType
    api_key_id: str | None = None
    key_fingerprint: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    organization_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class SecurityAuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: SecurityEventType
    api_key_id: str | None
    key_fingerprint: str | None
    ip_address: str | None
    user_agent: str | None
    request_id: str | None
    organization_id: str | None
    metadata: dict[str, Any] | None = Field(
        None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    message: str | None
    occurred_at: datetime


class SuspiciousActivitySummary(BaseModel):
    time_window_hours: int
    invalid_attempts: int
    rate_limit_exceeded: int
    expired_key_attempts: int
    scope_violations: int
    unique_ips: int
