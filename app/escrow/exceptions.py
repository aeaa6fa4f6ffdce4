"""
Escrow-specific exceptions.

Exception Hierarchy:
    EscrowValidationError (ValidationError, 400)
    ├── InvalidQuantityError - Quantity outside 1..max
    ├── PriceCapExceededError - Unit price above the face value cap
    ├── FaceValueRequiredError - Face value missing while required
    ├── FeeConfigurationError - Fees would consume the whole order (reject policy)
    └── InvalidCaptureAmountError - Operator capture amount outside 1..capturable

    OrderNotFoundError / ListingNotFoundError (NotFoundError, 404)

    EscrowStateError (ConflictError, 409) - carries details.current_status
    ├── InvalidStateTransitionError - Transition not legal from current status
    ├── DeadlineExpiredError - Buyer action after the confirmation window
    ├── OrderOnHoldError - Order is disputed
    ├── OrderMarkedSentError - Seller already sent the tickets
    └── SettlementConflictError - Stripe reports the payment already resolved

    EscrowConfigurationError (ConfigurationError, 500)

    StripeError (ExternalServiceError) - is_retryable decides retry behavior
    ├── StripeCardDeclinedError - Card declined (permanent)
    ├── StripeInvalidAccountError - Invalid destination account (permanent)
    ├── StripeInvalidRequestError - Invalid request params (permanent)
    ├── StripeUnexpectedStateError - PaymentIntent not in the expected state
    ├── StripeRateLimitError - Rate limited (transient, retry)
    ├── StripeAPIUnavailableError - API unavailable (transient, retry)
    └── StripeTimeoutError - Request timed out, outcome unknown (transient, retry)

Usage:
    from escrow.exceptions import OrderOnHoldError

    raise OrderOnHoldError(
        "Order is on hold pending dispute review",
        details={"current_status": order.status},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Validation Errors
# =============================================================================


class EscrowValidationError(ValidationError):
    """Base for checkout input that breaks an escrow business rule."""

    default_error_code: str = "ESCROW_VALIDATION_ERROR"


class InvalidQuantityError(EscrowValidationError):
    default_error_code: str = "INVALID_QUANTITY"


class InvalidCaptureAmountError(EscrowValidationError):
    default_error_code: str = "INVALID_CAPTURE_AMOUNT"


class PriceCapExceededError(EscrowValidationError):
    """
    Unit price is above the resale cap.

    details carries max_per_ticket_cents so the seller can fix the price.
    """

    default_error_code: str = "PRICE_CAP_EXCEEDED"


class FaceValueRequiredError(EscrowValidationError):
    default_error_code: str = "FACE_VALUE_REQUIRED"


class FeeConfigurationError(EscrowValidationError):
    """Platform fees would be greater than or equal to the order total."""

    default_error_code: str = "FEES_EXCEED_TOTAL"


# =============================================================================
# Lookup Errors
# =============================================================================


class OrderNotFoundError(NotFoundError):
    default_error_code: str = "ORDER_NOT_FOUND"


class ListingNotFoundError(NotFoundError):
    default_error_code: str = "LISTING_NOT_FOUND"


# =============================================================================
# State Errors
# =============================================================================


class EscrowStateError(ConflictError):
    """
    Base for operations whose precondition on order status does not hold.

    Always raised with details["current_status"] so callers can show or
    reconcile the state they actually observed.
    """

    default_error_code: str = "ESCROW_STATE_ERROR"


class InvalidStateTransitionError(EscrowStateError):
    default_error_code: str = "INVALID_STATE_TRANSITION"


class DeadlineExpiredError(EscrowStateError):
    default_error_code: str = "DEADLINE_EXPIRED"


class OrderOnHoldError(EscrowStateError):
    default_error_code: str = "ORDER_ON_HOLD"


class OrderMarkedSentError(EscrowStateError):
    default_error_code: str = "ORDER_MARKED_SENT"


class SettlementConflictError(EscrowStateError):
    """
    Stripe refused the capture/cancel and the PaymentIntent was resolved the
    other way, or sits in a state the order cannot follow. Sweeps count
    this as skipped, not as an error.
    """

    default_error_code: str = "SETTLEMENT_CONFLICT"


# =============================================================================
# Configuration Errors
# =============================================================================


class EscrowConfigurationError(ConfigurationError):
    default_error_code: str = "ESCROW_MISCONFIGURED"


# =============================================================================
# Stripe Errors
# =============================================================================


class StripeError(ExternalServiceError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's internal error code
        decline_code: Card decline code (if applicable)
        is_retryable: True for transient errors that are safe to retry with
            the same idempotency key, False for permanent errors
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInvalidAccountError(StripeError):
    """Destination Connect account is missing, restricted or not payable."""

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class StripeUnexpectedStateError(StripeInvalidRequestError):
    """Stripe code payment_intent_unexpected_state."""

    default_error_code: str = "PAYMENT_INTENT_UNEXPECTED_STATE"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    The request timed out and its outcome is unknown.

    The capture or cancel may or may not have happened on Stripe's side.
    Retrying with the same idempotency key is the only safe follow-up.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True
