"""
Base exception classes for application-wide error handling.

Every domain error carries a human-readable message, a machine-readable
error code and optional details, so views can turn any of them into the
same JSON error body.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures (400)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - Operation conflicts with current state (409)
    ├── ExternalServiceError - Third-party service failures (502/503)
    └── ConfigurationError - Required setting missing (500)

Usage:
    from core.exceptions import ConflictError, NotFoundError

    raise NotFoundError(
        "Order not found",
        error_code="ORDER_NOT_FOUND",
        details={"reference": ref},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=409)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (current status, limits, etc.)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Order is on hold",
                "error_code": "ORDER_ON_HOLD",
                "details": {"current_status": "on_hold"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation or a business rule on input fails.

    For DRF request-shape validation, use serializers. Use this for
    service-layer rules such as quantity bounds or price caps.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource does not exist."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for invalid state transitions and concurrent modification
    conflicts. HTTP 409 Conflict is the appropriate status.

    Example:
        if order.status != "authorized":
            raise ConflictError(
                f"Cannot confirm order in {order.status} status",
                error_code="INVALID_STATE_TRANSITION",
                details={"current_status": order.status, "action": "confirm"}
            )
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose internal
    details to clients. HTTP 502 or 503 are appropriate.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"


class ConfigurationError(BaseApplicationError):
    """Raised when a required setting (API key, secret) is missing."""

    default_error_code: str = "CONFIGURATION_ERROR"
