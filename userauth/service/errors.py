from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code rendered in the error envelope:
    - validation_error (400)
    - invalid_token / token_expired (400)
    - invalid_credentials (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - audit_unavailable (424)
    - server_error (500)
    - service_unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"
    default_message = "validation failed"


class BadRequestError(ValidationError):
    """Alias for ValidationError - request is malformed or invalid."""
    pass


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"
    default_message = "unauthorized"


class NoTokenError(AuthenticationError):
    """Protected request arrived without a bearer token (401)."""
    default_message = "Access denied. No token provided."


class InvalidTokenError(ServiceError):
    """Bearer token is malformed, tampered with or uses another algorithm (400)."""
    status_code = 400
    error_code = "invalid_token"
    default_message = "Invalid token."


class ExpiredTokenError(ServiceError):
    """Bearer token is past its expiry (400)."""
    status_code = 400
    error_code = "token_expired"
    default_message = "Authentication token expired"


class InvalidCredentialsError(ServiceError):
    """Email/password pair rejected (400). Same message for every cause."""
    status_code = 400
    error_code = "invalid_credentials"
    default_message = "Invalid email or password"


class NotRegisteredError(InvalidCredentialsError):
    """No active account for the email. Rendered exactly like a bad password."""
    pass


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"
    default_message = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"
    default_message = "not found"


class OtpNotFoundError(NotFoundError):
    default_message = "One time password token was already used."


class OtpExpiredError(ValidationError):
    default_message = "One time password token has expired."


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"
    default_message = "conflict"


class AuditUnavailableError(ServiceError):
    """Primary action done but the audit sink did not accept the event (424)."""
    status_code = 424
    error_code = "audit_unavailable"
    default_message = "Auditing enabled but connection refused."


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    default_message = "internal server error"


class ServiceUnavailableError(ServiceError):
    """A required collaborator could not be reached (503)."""
    status_code = 503
    error_code = "service_unavailable"
    default_message = "service unavailable"


class RoleResolutionUnavailableError(ServiceUnavailableError):
    default_message = "Role service unavailable."


class EmailDeliveryError(ServiceUnavailableError):
    default_message = "Password reset email could not be sent."


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "NoTokenError",
    "InvalidTokenError",
    "ExpiredTokenError",
    "InvalidCredentialsError",
    "NotRegisteredError",
    "ForbiddenError",
    "NotFoundError",
    "OtpNotFoundError",
    "OtpExpiredError",
    "ConflictError",
    "AuditUnavailableError",
    "ServerError",
    "ServiceUnavailableError",
    "RoleResolutionUnavailableError",
    "EmailDeliveryError",
]
