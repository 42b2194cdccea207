"""
FastAPI dependencies.

This module is the composition root: collaborators are built here and
passed to services explicitly.
"""

from __future__ import annotations

import uuid
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from herald.config import get_settings
from herald.constants.security import ValidationReason
from herald.core.crypto import CryptoPrimitives
from herald.core.rate_limit import RateLimitCounter
from herald.db import get_db
from herald.infra.redis_client import get_redis_client
from herald.models.mixins import utcnow
from herald.schemas.api_key import (
    ApiKeyPrincipal,
    RateLimitQuota,
    RequestContext,
    ValidationDecision,
)
from herald.services.api_key_repository import ApiKeyRepository
from herald.services.api_key_service import ApiKeyService
from herald.services.api_key_validator import ApiKeyValidator
from herald.services.security_audit_service import SecurityAuditService

API_KEY_HEADER = "X-API-Key"
REQUEST_ID_HEADER = "X-Request-ID"

_REJECTIONS: dict[ValidationReason, tuple[int, str, str, str]] = {
    ValidationReason.INVALID_FORMAT: (
        401,
        "INVALID_API_KEY_FORMAT",
        "Invalid API key format",
        "The provided API key format is invalid",
    ),
    ValidationReason.INVALID_CREDENTIAL: (
        401,
        "INVALID_API_KEY",
        "Invalid API key",
        "The provided API key is not valid",
    ),
    ValidationReason.EXPIRED: (
        401,
        "API_KEY_EXPIRED",
        "API key expired",
        "The provided API key has expired",
    ),
    ValidationReason.INSUFFICIENT_SCOPE: (
        403,
        "INSUFFICIENT_PERMISSIONS",
        "Insufficient permissions",
        "The API key does not have the required permissions for this operation",
    ),
    ValidationReason.RATE_LIMIT_EXCEEDED: (
        429,
        "RATE_LIMIT_EXCEEDED",
        "Rate limit exceeded",
        "API key rate limit exceeded",
    ),
    ValidationReason.INTERNAL_ERROR: (
        401,
        "AUTH_ERROR",
        "Authentication failed",
        "An error occurred during authentication",
    ),
}


def get_redis() -> Any:
    """FastAPI dependency for the shared Redis client."""
    return get_redis_client()


@lru_cache(maxsize=4)
def _crypto_for(iterations: int) -> CryptoPrimitives:
    return CryptoPrimitives(iterations=iterations)


def get_crypto() -> CryptoPrimitives:
    return _crypto_for(get_settings().api_key_pbkdf2_iterations)


def get_rate_limiter(redis_client: Any = Depends(get_redis)) -> RateLimitCounter:
    return RateLimitCounter(redis_client, key_prefix=get_settings().rate_limit_key_prefix)


def get_api_key_validator(
    db: Session = Depends(get_db),
    rate_limiter: RateLimitCounter = Depends(get_rate_limiter),
    crypto: CryptoPrimitives = Depends(get_crypto),
) -> ApiKeyValidator:
    settings = get_settings()
    return ApiKeyValidator(
        crypto,
        rate_limiter,
        ApiKeyRepository(db),
        SecurityAuditService(db),
        fingerprint_limit=settings.api_key_fingerprint_limit,
        fingerprint_window_ms=settings.api_key_fingerprint_window_ms,
    )


def get_api_key_service(
    db: Session = Depends(get_db),
    rate_limiter: RateLimitCounter = Depends(get_rate_limiter),
    crypto: CryptoPrimitives = Depends(get_crypto),
) -> ApiKeyService:
    settings = get_settings()
    return ApiKeyService(
        ApiKeyRepository(db),
        crypto,
        SecurityAuditService(db),
        rate_limiter,
        default_rate_limit=RateLimitQuota(
            hourly=settings.api_key_default_hourly_limit,
            daily=settings.api_key_default_daily_limit,
        ),
    )


def extract_api_key(request: Request) -> Optional[str]:
    """X-API-Key header first, then ``Authorization: Bearer``."""
    header_key = request.headers.get(API_KEY_HEADER)
    if header_key:
        return header_key
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer ") :]
    return None


def build_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    elif request.client is not None:
        ip_address = request.client.host
    else:
        ip_address = "unknown"
    return RequestContext(
        ip_address=ip_address,
        user_agent=request.headers.get("User-Agent", "unknown"),
        request_id=request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex,
        endpoint=f"{request.method} {request.url.path}",
    )


def _rate_limit_headers(decision: ValidationDecision) -> dict[str, str]:
    info = decision.rate_limit_info
    if info is None or info.limit <= 0:
        return {}
    return {
        "X-RateLimit-Limit": str(info.limit),
        "X-RateLimit-Remaining": str(max(info.limit - info.current, 0)),
        "X-RateLimit-Reset": str(int(info.reset_time.timestamp())),
    }


def _rejection(decision: ValidationDecision, request_id: Optional[str]) -> HTTPException:
    reason = decision.reason or ValidationReason.INTERNAL_ERROR
    status_code, code, error, message = _REJECTIONS[reason]
    detail: dict[str, Any] = {
        "error": error,
        "code": code,
        "message": message,
        "request_id": request_id,
    }
    headers = {}
    if reason == ValidationReason.RATE_LIMIT_EXCEEDED and decision.rate_limit_info:
        info = decision.rate_limit_info
        detail["rate_limit_info"] = info.model_dump(mode="json")
        headers = _rate_limit_headers(decision)
        headers["Retry-After"] = str(
            max(int((info.reset_time - utcnow()).total_seconds()), 0) + 1
        )
    elif status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(status_code=status_code, detail=detail, headers=headers or None)


def require_api_key(scope: Optional[str] = None) -> Callable[..., ApiKeyPrincipal]:
    """Build a dependency that admits only requests carrying a valid key with ``scope``."""

    def dependency(
        request: Request,
        response: Response,
        validator: ApiKeyValidator = Depends(get_api_key_validator),
    ) -> ApiKeyPrincipal:
        presented = extract_api_key(request)
        if not presented:
            raise HTTPException(
                status_code=401,
                detail={
                    "error": "API key required",
                    "code": "MISSING_API_KEY",
                    "message": (
                        f"Please provide a valid API key in the {API_KEY_HEADER} "
                        "header or as a Bearer token"
                    ),
                },
                headers={"WWW-Authenticate": "Bearer"},
            )

        context = build_request_context(request)
        decision = validator.validate(presented, context, scope)
        if not decision.allowed:
            raise _rejection(decision, context.request_id)

        for name, value in _rate_limit_headers(decision).items():
            response.headers[name] = value
        request.state.api_key = decision.credential
        return decision.credential

    return dependency
