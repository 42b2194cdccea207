"""
Security audit log.

Append-only: rows are inserted by the audit service and never updated.
Invalid attempts carry the presented key's fingerprint, never the key.
"""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from herald.db import Base
from herald.models.mixins import utcnow


class SecurityAuditLog(Base):
    __tablename__ = "security_audit_log"

    __table_args__ = (
        Index("ix_security_audit_log_event_type", "event_type"),
        Index("ix_security_audit_log_occurred_at", "occurred_at"),
        Index("ix_security_audit_log_api_key_id", "api_key_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(32), nullable=False)
    api_key_id = Column(String(36), nullable=True)
    key_fingerprint = Column(String(64), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    request_id = Column(String(64), nullable=True)
    organization_id = Column(String(36), nullable=True)
    metadata_ = Column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    message = Column(String(1000), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
