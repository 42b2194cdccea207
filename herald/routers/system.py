from fastapi import APIRouter, Depends

from herald.config import get_settings
from herald.routers.utils.dependencies import require_api_key
from herald.schemas.api_key import ApiKeyPrincipal

router = APIRouter(
    tags=["system"],
)


@router.get("/health")
def health() -> dict:
    """Liveness probe. Does not touch the database or Redis."""
    s = get_settings()
    return {"status": "ok", "app": s.app_name, "environment": s.environment}


@router.get("/whoami", response_model=ApiKeyPrincipal)
def whoami(principal: ApiKeyPrincipal = Depends(require_api_key())) -> ApiKeyPrincipal:
    """Echo the key the request authenticated with (no scope required)."""
    return principal
