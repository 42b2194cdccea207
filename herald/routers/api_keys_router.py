"""API keys admin API: issue, list, revoke and inspect usage."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate

from herald.config import get_settings
from herald.core.rate_limit import RateLimitStoreError
from herald.routers.utils.dependencies import get_api_key_service, require_api_key
from herald.schemas.api_key import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyPrincipal,
    ApiKeyRead,
    UsageStats,
)
from herald.services.api_key_service import ApiKeyNotFoundError, ApiKeyService

router = APIRouter(
    prefix="/api-keys",
    tags=["api-keys"],
    responses={404: {"description": "Not found"}},
)

require_admin = require_api_key(get_settings().api_key_admin_scope)


@router.get("", response_model=Page[ApiKeyRead])
def list_api_keys(
    organization_id: Optional[str] = Query(None, max_length=36),
    params: Params = Depends(),
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> Page[ApiKeyRead]:
    """List API keys, newest first, optionally for one organization."""
    return paginate(svc.get_api_keys_query(organization_id), params=params)


@router.post("", response_model=ApiKeyCreated, status_code=201)
def create_api_key(
    data: ApiKeyCreate,
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyCreated:
    """Issue a new API key. The response is the only time the secret is shown."""
    api_key, plaintext = svc.create_api_key(data, created_by_user_id=str(_principal.id))
    return ApiKeyCreated(
        **ApiKeyRead.model_validate(api_key).model_dump(), api_key=plaintext
    )


@router.post("/cleanup-expired", response_model=dict)
def cleanup_expired_api_keys(
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> dict:
    """Deactivate every key whose expiry has passed."""
    return {"deactivated": svc.cleanup_expired_keys()}


@router.get("/{api_key_id}", response_model=ApiKeyRead)
def get_api_key(
    api_key_id: UUID,
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyRead:
    """Get an API key by ID."""
    api_key = svc.get_api_key(api_key_id)
    if api_key is None:
        raise HTTPException(status_code=404, detail="API key not found")
    return api_key


@router.delete("/{api_key_id}", status_code=204)
def deactivate_api_key(
    api_key_id: UUID,
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> None:
    """Deactivate an API key. There is no way to reactivate it."""
    try:
        svc.deactivate_api_key(api_key_id, deactivated_by_user_id=str(_principal.id))
    except ApiKeyNotFoundError:
        raise HTTPException(status_code=404, detail="API key not found") from None


@router.get("/{api_key_id}/usage", response_model=UsageStats)
def get_api_key_usage(
    api_key_id: UUID,
    days: int = Query(30, ge=1, le=90),
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> UsageStats:
    """Per-day request counts for an API key."""
    try:
        return svc.get_usage_stats(api_key_id, days=days)
    except ApiKeyNotFoundError:
        raise HTTPException(status_code=404, detail="API key not found") from None
    except RateLimitStoreError:
        raise HTTPException(
            status_code=503, detail="Usage counters are unavailable"
        ) from None


@router.post("/{api_key_id}/usage/reset", status_code=204)
def reset_api_key_usage(
    api_key_id: UUID,
    _principal: ApiKeyPrincipal = Depends(require_admin),
    svc: ApiKeyService = Depends(get_api_key_service),
) -> None:
    """Clear the current hourly and daily usage windows."""
    try:
        svc.reset_usage(api_key_id)
    except ApiKeyNotFoundError:
        raise HTTPException(status_code=404, detail="API key not found") from None
    except RateLimitStoreError:
        raise HTTPException(
            status_code=503, detail="Usage counters are unavailable"
        ) from None
