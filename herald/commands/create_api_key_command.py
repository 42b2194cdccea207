"""
Command to issue an API key from a shell.

Used to bootstrap the first admin key, since the admin API itself requires
one:

    python -m herald.commands.create_api_key_command --name ops --scope api_keys:manage
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from herald.config import get_settings
from herald.core.crypto import CryptoPrimitives
from herald.core.rate_limit import RateLimitCounter
from herald.db import db_manager
from herald.infra.logging_config import LoggingConfig
from herald.models.api_key import ApiKey
from herald.schemas.api_key import ApiKeyCreate, RateLimitQuota
from herald.services.api_key_repository import ApiKeyRepository
from herald.services.api_key_service import ApiKeyService
from herald.services.security_audit_service import SecurityAuditService


class CreateApiKeyCommand:
    """
    Command to create an API key outside the HTTP API.
    """

    def __init__(
        self,
        db: Session,
        crypto: Optional[CryptoPrimitives] = None,
        rate_limiter: Optional[RateLimitCounter] = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.crypto = crypto or CryptoPrimitives(
            iterations=settings.api_key_pbkdf2_iterations
        )
        # Issuing a key never touches the usage counters.
        self.rate_limiter = rate_limiter
        self.default_rate_limit = RateLimitQuota(
            hourly=settings.api_key_default_hourly_limit,
            daily=settings.api_key_default_daily_limit,
        )
        self.logger = logging.getLogger(__name__)

    def execute(
        self,
        name: str,
        scopes: Sequence[str],
        organization_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        rate_limit: Optional[RateLimitQuota] = None,
    ) -> Tuple[ApiKey, str]:
        """
        Execute the command.

        Returns:
            (api_key, plaintext): the plaintext is not recoverable afterwards.
        """
        svc = ApiKeyService(
            ApiKeyRepository(self.db),
            self.crypto,
            SecurityAuditService(self.db),
            self.rate_limiter,
            default_rate_limit=self.default_rate_limit,
        )
        api_key, plaintext = svc.create_api_key(
            ApiKeyCreate(
                name=name,
                scopes=list(scopes),
                organization_id=organization_id,
                expires_at=expires_at,
                rate_limit=rate_limit,
            ),
            created_by_user_id=None,
        )
        self.logger.info("Issued API key %s from command line", api_key.id)
        return api_key, plaintext


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Create a Herald API key")
    parser.add_argument("--name", required=True)
    parser.add_argument("--scope", action="append", default=[], dest="scopes")
    parser.add_argument("--organization-id", default=None)
    parser.add_argument("--expires-at", type=datetime.fromisoformat, default=None)
    args = parser.parse_args(argv)

    LoggingConfig()
    with db_manager.db_session() as db:
        api_key, plaintext = CreateApiKeyCommand(db).execute(
            name=args.name,
            scopes=args.scopes,
            organization_id=args.organization_id,
            expires_at=args.expires_at,
        )
    print(f"id:      {api_key.id}")
    print(f"api_key: {plaintext}")
    print("Store this key now; it will not be shown again.")


if __name__ == "__main__":
    main()
