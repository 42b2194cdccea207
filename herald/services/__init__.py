from herald.services.api_key_repository import ApiKeyRepository
from herald.services.api_key_service import ApiKeyNotFoundError, ApiKeyService
from herald.services.api_key_validator import ApiKeyValidator
from herald.services.security_audit_service import SecurityAuditService

__all__ = [
    "ApiKeyNotFoundError",
    "ApiKeyRepository",
    "ApiKeyService",
    "ApiKeyValidator",
    "SecurityAuditService",
]
