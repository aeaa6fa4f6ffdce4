"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules,
      state preconditions)
    - Exceptions: Use for unexpected or retryable failures (provider outages,
      timeouts, database errors)

Usage:
    from core.services import BaseService, ServiceResult

    class EscrowService(BaseService):
        @classmethod
        def mark_sent(cls, reference: str) -> ServiceResult[Order]:
            with cls.atomic():
                order = Order.objects.select_for_update().get(...)
                if order.status == OrderStatus.ON_HOLD:
                    return ServiceResult.failure(
                        "Order is on hold", error_code="ORDER_ON_HOLD"
                    )
                ...
            return ServiceResult.success(order)

    # In view
    result = EscrowService.mark_sent(ref)
    if result.success:
        return Response(OrderStatusSerializer(result.data).data)
    return Response(result.to_response(), status=409)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

    from core.exceptions import BaseApplicationError

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures
        details: Extra error context (current status, limits)

    Usage:
        return ServiceResult.success(order)
        return ServiceResult.failure("Order not found", "ORDER_NOT_FOUND")

        result = EscrowService.confirm_receipt(ref)
        if result:  # Same as: if result.success
            ...
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            details: Additional context, e.g. {"current_status": "captured"}
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_exception(cls, exc: BaseApplicationError) -> ServiceResult[T]:
        """
        Create a failed result from a domain exception.

        Keeps the exception's error code and details so the view can
        pick the HTTP status from the code alone.
        """
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.error_code,
            details=exc.details or None,
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API error response format.

        Returns:
            Dict with error, error_code and, when present, errors/details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {"error": self.error}
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        if self.details:
            response["details"] = self.details
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get a logger named after the service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around Django's transaction.atomic() that makes
        transaction boundaries explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: BaseApplicationError,
        context: str = "",
        log_level: int = logging.WARNING,
    ) -> ServiceResult:
        """
        Log a domain exception and convert it to a failed ServiceResult.

        Example:
            try:
                fees = compute_fees(price, qty, config)
            except EscrowValidationError as e:
                return cls.handle_exception(e, "checkout")
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(
            log_level,
            message,
            extra={"error_code": exc.error_code, "details": exc.details},
        )
        return ServiceResult.from_exception(exc)
