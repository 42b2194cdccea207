"""API key model: hashed credentials that authorize calls into Herald."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from herald.db import Base
from herald.models.mixins import TimestampMixin, as_utc, utcnow


class ApiKey(Base, TimestampMixin):
    """API key credential.

    Only a salted PBKDF2 hash of the secret is stored (``hashed_key``), plus a
    SHA-256 ``key_fingerprint`` used to find the row before verifying. The
    plaintext is handed out once at creation and never persisted.
    """

    __tablename__ = "api_keys"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    hashed_key = Column(String(255), unique=True, nullable=False)
    key_fingerprint = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    scopes = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list
    )
    rate_limit = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    organization_id = Column(String(36), nullable=True, index=True)
    created_by_user_id = Column(String(36), nullable=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        return (now or utcnow()) > expires_at

    def has_scope(self, scope: str) -> bool:
        return scope in (self.scopes or [])
