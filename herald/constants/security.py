"""Security event types and validation rejection reasons."""

from enum import StrEnum


class SecurityEventType(StrEnum):
    """Kinds of rows written to the security audit log."""

    API_KEY_CREATED = "API_KEY_CREATED"
    API_KEY_DELETED = "API_KEY_DELETED"
    API_KEY_USED = "API_KEY_USED"
    INVALID_API_KEY_ATTEMPT = "INVALID_API_KEY_ATTEMPT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    API_KEY_EXPIRED = "API_KEY_EXPIRED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class ValidationReason(StrEnum):
    """Reason codes returned by the API key validator on rejection."""

    INVALID_FORMAT = "invalid_format"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_CREDENTIAL = "invalid_credential"
    EXPIRED = "expired"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    INTERNAL_ERROR = "internal_error"


HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
