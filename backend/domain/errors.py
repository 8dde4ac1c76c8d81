"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py. Payment callbacks never surface them as JSON: the callback routes
turn them into redirects (see services/callback_service.py).
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400)."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class ConflictError(DomainError):
    """Resource conflict (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


# ── Payment / order lifecycle ───────────────────────────────────────


class UnknownOrderError(NotFoundError):
    """Callback or request references an order the ledger does not hold."""
    def __init__(self, identifier: str, details: dict | None = None):
        super().__init__("Order", identifier, details=details)
        self.identifier = identifier


class InvalidTransitionError(DomainError):
    """Requested status change violates the order state machine (400)."""
    def __init__(self, current: str, requested: str, reason: str | None = None):
        message = f"Cannot move order from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class PaymentRequestError(ValidationError):
    """Outbound payment request rejected before reaching the gateway (400)."""
    pass


class GatewayConfigMissingError(DomainError):
    """Gateway secret / merchant id missing. Raised at startup."""
    def __init__(self, gateway: str, missing: list[str]):
        super().__init__(
            f"{gateway} configuration is missing: {', '.join(missing)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"gateway": gateway, "missing": missing},
        )
        self.gateway = gateway
        self.missing = missing


class GatewayUnavailableError(DomainError):
    """Outbound gateway call timed out or failed at the transport level (502)."""
    def __init__(self, gateway: str, message: str = "Payment gateway unavailable", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)
        self.gateway = gateway


class PersistenceFailureError(DomainError):
    """The atomic order/inventory transaction failed and was rolled back (503)."""
    def __init__(self, message: str = "Could not commit order changes", details: dict | None = None):
        details = dict(details or {})
        details.setdefault("retryable", True)
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)
