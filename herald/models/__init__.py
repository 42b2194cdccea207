from herald.models.api_key import ApiKey
from herald.models.security_audit_log import SecurityAuditLog

__all__ = [
    "ApiKey",
    "SecurityAuditLog",
]
