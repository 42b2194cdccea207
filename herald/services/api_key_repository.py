"""Persistence for API keys."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from herald.models.api_key import ApiKey
from herald.models.mixins import utcnow

logger = logging.getLogger(__name__)

# Written once at creation; a new secret means a new key.
WRITE_ONCE_FIELDS = frozenset({"id", "hashed_key", "key_fingerprint"})


class ApiKeyRepository:
    """Look up and update API key rows. Lookup is by fingerprint, never by hash."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, api_key_id: UUID) -> Optional[ApiKey]:
        return self.db.query(ApiKey).filter(ApiKey.id == api_key_id).first()

    def find_by_fingerprint(self, fingerprint: str) -> Optional[ApiKey]:
        return (
            self.db.query(ApiKey).filter(ApiKey.key_fingerprint == fingerprint).first()
        )

    def create(self, **fields: Any) -> ApiKey:
        api_key = ApiKey(**fields)
        self.db.add(api_key)
        self.db.commit()
        self.db.refresh(api_key)
        return api_key

    def update(self, api_key_id: UUID, **fields: Any) -> Optional[ApiKey]:
        """Apply a partial update. Returns None if the key does not exist."""
        forbidden = WRITE_ONCE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"Cannot update write-once fields: {sorted(forbidden)}")
        api_key = self.get(api_key_id)
        if api_key is None:
            return None
        for name, value in fields.items():
            setattr(api_key, name, value)
        self.db.commit()
        self.db.refresh(api_key)
        return api_key

    def query(self, organization_id: Optional[str] = None) -> Query[ApiKey]:
        """Newest first, optionally scoped to one organization (for pagination)."""
        q = self.db.query(ApiKey).order_by(ApiKey.created_at.desc())
        if organization_id is not None:
            q = q.filter(ApiKey.organization_id == organization_id)
        return q

    def find_many(
        self,
        organization_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ApiKey]:
        q = self.query(organization_id)
        if is_active is not None:
            q = q.filter(ApiKey.is_active == is_active)
        return q.offset(skip).limit(limit).all()

    def touch(self, api_key_id: UUID, now: Optional[datetime] = None) -> bool:
        """
        Record ``last_used_at``. Best effort: failures are logged and
        reported as False, never raised.
        """
        try:
            updated = (
                self.db.query(ApiKey)
                .filter(ApiKey.id == api_key_id)
                .update({ApiKey.last_used_at: now or utcnow()}, synchronize_session=False)
            )
            self.db.commit()
            return updated > 0
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Failed to update last_used_at for %s: %s", api_key_id, e)
            return False

    def deactivate(self, api_key_id: UUID) -> bool:
        """Set ``is_active`` to False. Idempotent; returns False for an unknown id."""
        api_key = self.get(api_key_id)
        if api_key is None:
            return False
        if api_key.is_active:
            api_key.is_active = False
            self.db.commit()
        return True

    def find_expired_active(self, now: Optional[datetime] = None) -> List[ApiKey]:
        now = now or utcnow()
        return (
            self.db.query(ApiKey)
            .filter(ApiKey.is_active.is_(True))
            .filter(ApiKey.expires_at.isnot(None))
            .filter(ApiKey.expires_at < now)
            .all()
        )

    def deactivate_expired(self, now: Optional[datetime] = None) -> int:
        """Deactivate every active key whose expiry has passed."""
        expired = self.find_expired_active(now)
        for api_key in expired:
            api_key.is_active = False
        if expired:
            self.db.commit()
        return len(expired)
