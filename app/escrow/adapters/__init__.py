"""
Adapters for external services used by escrow.

All Stripe API calls go through StripeAdapter to ensure consistent error
handling, timeouts, idempotency and observability.
"""

from escrow.adapters.stripe_adapter import (
    CheckoutSessionResult,
    CreateCheckoutSessionParams,
    PaymentIntentResult,
    StripeAdapter,
    TransferResult,
)

__all__ = [
    "CheckoutSessionResult",
    "CreateCheckoutSessionParams",
    "PaymentIntentResult",
    "StripeAdapter",
    "TransferResult",
]
