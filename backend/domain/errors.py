"""
Storefront error types.

Services raise these; main.py turns them into the error envelope, using the
class name (without "Error", lowercased) as the code.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base for errors that carry their own HTTP status."""
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
        headers: dict | None = None,
    ):
        super().__init__(status_code=status_code or self.status_code_default, detail=message, headers=headers)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """404 for a missing order, product or user."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        super().__init__(f"{resource_type} not found: {identifier}", status.HTTP_404_NOT_FOUND, details)


class ValidationError(DomainError):
    """400. `field`, when given, is reported in details."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class PermissionDeniedError(DomainError):
    status_code_default = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, details=details)


class UnauthorizedError(DomainError):
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required", details: dict | None = None):
        super().__init__(message, details=details)


class ConflictError(DomainError):
    """409: duplicate email, order id clash, unpaid invoice."""
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, details=details)


class RateLimitError(DomainError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str = "Rate limit exceeded", details: dict | None = None, headers: dict | None = None):
        super().__init__(message, details=details, headers=headers)


class PaymentGatewayError(DomainError):
    """PhonePe call failed or returned an unusable response (502)."""
    status_code_default = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, details=details)


class ConfigurationError(DomainError):
    """A required setting (credentials, secrets) is missing (500)."""
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, details=details)


class EmailDeliveryError(DomainError):
    """Resend rejected or failed to send a message (502)."""
    status_code_default = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, details=details)
