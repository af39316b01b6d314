"""
Shared error handling for the Fact Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class FactServiceException(Exception):
    """Base exception for Fact Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthError(FactServiceException):
    """Credential or identity rejected. Never retried internally."""

    status_code = 401

    def __init__(self, code: str = "AUTHENTICATION_ERROR", message: str = "Authentication failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class MissingCredential(AuthError):
    """No API key or session token was presented."""

    def __init__(self, message: str = "API key or session token is required", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_CREDENTIAL", message, details)


class UnknownCredential(AuthError):
    """Presented credential does not match any stored credential."""

    def __init__(self, message: str = "Invalid credential", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNKNOWN_CREDENTIAL", message, details)


class CredentialInactive(AuthError):
    """Credential is suspended, revoked or expired."""

    status_code = 403

    def __init__(self, message: str = "Credential is not active", details: Optional[Dict[str, Any]] = None):
        super().__init__("CREDENTIAL_INACTIVE", message, details)


class OriginNotAllowed(AuthError):
    """Caller IP or origin is outside the credential restriction list."""

    status_code = 403

    def __init__(self, message: str = "Request origin not allowed for this credential",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("ORIGIN_NOT_ALLOWED", message, details)


class IdentityInactive(AuthError):
    """Owning identity is suspended, locked or deleted."""

    status_code = 403

    def __init__(self, message: str = "Account is not active", details: Optional[Dict[str, Any]] = None):
        super().__init__("IDENTITY_INACTIVE", message, details)


class QuotaError(FactServiceException):
    """Request denied by a quota window."""

    status_code = 429

    def __init__(self, code: str, message: str, *, limit: int, remaining: int, reset_at: float,
                 retry_after: int, details: Optional[Dict[str, Any]] = None):
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after
        merged = {
            "limit": limit,
            "remaining": remaining,
            "reset_at": int(reset_at),
            "retry_after": retry_after,
        }
        merged.update(details or {})
        super().__init__(code, message, merged)


class RateLimited(QuotaError):
    """Per-credential rate limit override exhausted."""

    def __init__(self, message: str = "Rate limit exceeded for this credential", **kwargs):
        super().__init__("RATE_LIMITED", message, **kwargs)


class QuotaExceeded(QuotaError):
    """Plan request or monthly quota exhausted."""

    def __init__(self, message: str = "Plan limit reached. Please upgrade your plan for more requests.", **kwargs):
        super().__init__("QUOTA_EXCEEDED", message, **kwargs)


class ResolutionError(FactServiceException):
    """Fact could not be resolved for this request."""

    def __init__(self, code: str = "RESOLUTION_ERROR", message: str = "Fact resolution failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class InvalidCategory(ResolutionError):
    """Requested category is not part of the fixed category set."""

    def __init__(self, category: str, details: Optional[Dict[str, Any]] = None):
        self.category = category
        super().__init__("INVALID_CATEGORY", f"Invalid category: {category}", details)


class NoFactAvailable(ResolutionError):
    """Cache, store and generator tiers were all exhausted."""

    status_code = 404

    def __init__(self, category: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.category = category
        message = f"No facts found for category: {category}" if category else "No facts available"
        super().__init__("NO_FACT_AVAILABLE", message, details)


class ValidationError(FactServiceException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ExternalServiceError(FactServiceException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class GenerationError(ExternalServiceError):
    """Text generation failed, timed out or returned unusable output."""

    def __init__(self, message: str = "Generation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("generator", message, details)


class InfrastructureError(ExternalServiceError):
    """Cache or counter backend unavailable. Absorbed, never surfaced to callers."""

    status_code = 503

    def __init__(self, service: str = "redis", message: str = "Backend unavailable",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(service, message, details)
