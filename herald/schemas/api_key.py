"""Pydantic schemas for API keys and validation decisions."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from herald.constants.security import ValidationReason


class RateLimitQuota(BaseModel):
    """Per-key request quota. Zero disables the corresponding window."""

    hourly: int = Field(..., ge=0)
    daily: int = Field(..., ge=0)


class ApiKeyCreate(BaseModel):
    """Request schema for creating an API key."""

    name: str = Field(..., min_length=1, max_length=100)
    scopes: list[str] = Field(
        default_factory=list,
        description="Capability tokens such as notifications:create",
    )
    rate_limit: RateLimitQuota | None = None
    expires_at: datetime | None = None
    organization_id: str | None = Field(None, max_length=36)

    @field_validator("scopes")
    @classmethod
    def dedupe_scopes(cls, scopes: list[str]) -> list[str]:
        cleaned = []
        for scope in scopes:
            scope = scope.strip()
            if not scope:
                raise ValueError("scopes must not contain blank entries")
            if scope not in cleaned:
                cleaned.append(scope)
        return cleaned


class ApiKeyRead(BaseModel):
    """Response schema for an API key (never includes the hash)."""

    id: UUID
    name: str
    scopes: list[str]
    rate_limit: RateLimitQuota
    is_active: bool
    last_used_at: datetime | None
    expires_at: datetime | None
    organization_id: str | None
    created_by_user_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ApiKeyCreated(ApiKeyRead):
    """Returned once on creation; ``api_key`` is the only copy of the secret."""

    api_key: str


class RequestContext(BaseModel):
    """Where a validation request came from."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"
    request_id: str | None = None
    endpoint: str = ""


class RateLimitInfo(BaseModel):
    limit: int
    current: int
    window_ms: int
    reset_time: datetime


class ApiKeyPrincipal(BaseModel):
    """The part of a validated key handed to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scopes: list[str]
    organization_id: str | None = None


class ValidationDecision(BaseModel):
    allowed: bool
    credential: Optional[ApiKeyPrincipal] = None
    reason: Optional[ValidationReason] = None
    rate_limit_info: Optional[RateLimitInfo] = None
    # Set when the counter store was unreachable and quota checks were skipped.
    degraded: bool = False


class UsageDay(BaseModel):
    day: date
    requests: int


class UsageStats(BaseModel):
    api_key_id: UUID
    total_requests: int
    daily_breakdown: list[UsageDay]
    current_hour: int
    current_day: int
