"""
Stripe API adapter for escrow payment operations.

All Stripe calls made by the escrow flow go through StripeAdapter so that
timeouts, idempotency keys, error translation and logging are handled the
same way everywhere.

Escrow relies on manual capture: Checkout authorizes the buyer's card,
funds stay held on the PaymentIntent, and the settlement executor later
either captures (then transfers the seller payout) or cancels.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries performed by the SDK (default: 0, so a
  call takes at most one timeout; callers retry with the same idempotency key)

Usage:
    from escrow.adapters import StripeAdapter

    result = StripeAdapter.capture_payment_intent(
        payment_intent_id="pi_xxx",
        idempotency_key="capture:pi_xxx",
    )
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings

from escrow.exceptions import (
    EscrowConfigurationError,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    StripeUnexpectedStateError,
)

UNEXPECTED_STATE_CODE = "payment_intent_unexpected_state"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateCheckoutSessionParams:
    """
    Parameters for creating an escrow Checkout Session.

    The session charges two line items: the tickets themselves and the
    per-ticket buyer service fee. Its PaymentIntent uses manual capture.

    Attributes:
        ticket_name: Line item name shown to the buyer
        ticket_description: Event date, city and seat details
        unit_amount_cents: Ticket price per unit
        quantity: Number of tickets
        buyer_fee_per_ticket_cents: Service fee per ticket
        currency: ISO 4217 currency code
        base_url: Origin the buyer is redirected back to
        idempotency_key: Unique key for idempotent creation
        metadata: Session metadata (order id, listing id, fee snapshot)
        payment_intent_metadata: Mirror metadata stored on the PaymentIntent
        customer_email: Prefill for the buyer's email
    """

    ticket_name: str
    unit_amount_cents: int
    quantity: int
    buyer_fee_per_ticket_cents: int
    base_url: str
    idempotency_key: str
    currency: str = "usd"
    ticket_description: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    payment_intent_metadata: dict[str, str] = field(default_factory=dict)
    customer_email: str | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")
        if self.unit_amount_cents < 0:
            raise ValueError("unit_amount_cents must not be negative")
        if not self.base_url:
            raise ValueError("base_url is required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")

    @property
    def success_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/?success=1&sid={{CHECKOUT_SESSION_ID}}"

    @property
    def cancel_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/?canceled=1"

    def line_items(self) -> list[dict[str, Any]]:
        ticket_product: dict[str, Any] = {"name": self.ticket_name}
        if self.ticket_description:
            ticket_product["description"] = self.ticket_description
        items = [
            {
                "price_data": {
                    "currency": self.currency,
                    "unit_amount": self.unit_amount_cents,
                    "product_data": ticket_product,
                },
                "quantity": self.quantity,
            },
        ]
        if self.buyer_fee_per_ticket_cents > 0:
            items.append(
                {
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": self.buyer_fee_per_ticket_cents,
                        "product_data": {
                            "name": "Service Fee (per ticket)",
                            "description": "Covers escrow and platform services",
                        },
                    },
                    "quantity": self.quantity,
                }
            )
        return items


@dataclass
class CheckoutSessionResult:
    """
    Result from Stripe Checkout Session operations.

    Attributes:
        id: Checkout Session ID (cs_xxx)
        url: Hosted checkout page URL (None once the session is complete)
        status: open, complete or expired
        payment_status: paid, unpaid or no_payment_required
        payment_intent_id: PaymentIntent created by the session, if any
        customer_email: Email the buyer entered
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    url: str | None = None
    status: str | None = None
    payment_status: str | None = None
    payment_intent_id: str | None = None
    customer_email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: requires_capture, succeeded, canceled, ...
        amount_cents: Authorized amount in cents
        currency: Currency code
        amount_capturable_cents: Amount still capturable
        amount_received_cents: Amount captured so far
        capture_method: automatic or manual
        latest_charge: Charge ID used as transfer source_transaction
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_capturable_cents: int = 0
    amount_received_cents: int = 0
    capture_method: str | None = None
    latest_charge: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def captured(self) -> bool:
        return self.status == "succeeded"

    @property
    def canceled(self) -> bool:
        return self.status == "canceled"

    @property
    def requires_capture(self) -> bool:
        return self.status == "requires_capture"


@dataclass
class TransferResult:
    """
    Result from Stripe Transfer operations.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred in cents
        currency: Currency code
        destination_account: Destination Stripe account ID
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


def _charge_id(value: Any) -> str | None:
    """latest_charge is an ID string unless expanded into a Charge object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _payment_intent_result(intent: Any) -> PaymentIntentResult:
    return PaymentIntentResult(
        id=intent.id,
        status=intent.status,
        amount_cents=intent.amount,
        currency=intent.currency,
        amount_capturable_cents=intent.amount_capturable or 0,
        amount_received_cents=intent.amount_received or 0,
        capture_method=intent.capture_method,
        latest_charge=_charge_id(intent.latest_charge),
        metadata=dict(intent.metadata or {}),
        raw_response=intent.to_dict(),
    )


def _checkout_session_result(session: Any) -> CheckoutSessionResult:
    payment_intent = session.payment_intent
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.id
    customer_details = session.customer_details
    customer_email = session.customer_email or (
        getattr(customer_details, "email", None) if customer_details else None
    )
    return CheckoutSessionResult(
        id=session.id,
        url=session.url,
        status=session.status,
        payment_status=session.payment_status,
        payment_intent_id=payment_intent,
        customer_email=customer_email,
        metadata=dict(session.metadata or {}),
        raw_response=session.to_dict(),
    )


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations used by escrow.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Every mutating call takes an idempotency key. Escrow derives keys from
    the PaymentIntent ID ("capture:{pi}", "cancel:{pi}", "transfer:{pi}"),
    so a retry after a timeout repeats the same Stripe operation instead of
    issuing a second one.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key, timeout and retries."""
        api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
        if not api_key:
            raise EscrowConfigurationError("STRIPE_SECRET_KEY is not configured")
        stripe.api_key = api_key
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 0)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Checkout
    # =========================================================================

    @classmethod
    def create_checkout_session(
        cls,
        params: CreateCheckoutSessionParams,
    ) -> CheckoutSessionResult:
        """
        Create a Checkout Session whose PaymentIntent uses manual capture.

        Returns:
            CheckoutSessionResult with the hosted checkout URL

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
            StripeTimeoutError: Request timed out
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_checkout_session",
            "quantity": params.quantity,
            "unit_amount_cents": params.unit_amount_cents,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            session_params: dict[str, Any] = {
                "mode": "payment",
                "line_items": params.line_items(),
                "payment_intent_data": {
                    "capture_method": "manual",
                    "metadata": params.payment_intent_metadata,
                },
                "metadata": params.metadata,
                "success_url": params.success_url,
                "cancel_url": params.cancel_url,
            }
            if params.customer_email:
                session_params["customer_email"] = params.customer_email

            session = stripe.checkout.Session.create(
                idempotency_key=params.idempotency_key,
                **session_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "checkout_session_id": session.id,
                    "duration_ms": duration_ms,
                },
            )

            return _checkout_session_result(session)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def retrieve_checkout_session(cls, session_id: str) -> CheckoutSessionResult:
        """Retrieve a Checkout Session by ID."""
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_checkout_session",
            "checkout_session_id": session_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            session = stripe.checkout.Session.retrieve(session_id)

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": session.status,
                    "duration_ms": duration_ms,
                },
            )

            return _checkout_session_result(session)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # PaymentIntent Operations
    # =========================================================================

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return _payment_intent_result(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def capture_payment_intent(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_to_capture: int | None = None,
    ) -> PaymentIntentResult:
        """
        Capture a held PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent capture
            amount_to_capture: Optional partial amount; must be positive.
                Stripe rejects amounts above amount_capturable.

        Raises:
            StripeUnexpectedStateError: PaymentIntent is not capturable
            StripeTimeoutError: Outcome unknown, retry with the same key
            StripeAPIUnavailableError: Stripe service unavailable
        """
        if amount_to_capture is not None and amount_to_capture <= 0:
            raise ValueError("amount_to_capture must be positive")

        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "capture_payment_intent",
            "payment_intent_id": payment_intent_id,
            "idempotency_key": idempotency_key,
            "amount_to_capture": amount_to_capture,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            capture_params: dict[str, Any] = {}
            if amount_to_capture is not None:
                capture_params["amount_to_capture"] = amount_to_capture

            intent = stripe.PaymentIntent.capture(
                payment_intent_id,
                idempotency_key=idempotency_key,
                **capture_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "amount_captured": intent.amount_received,
                    "duration_ms": duration_ms,
                },
            )

            return _payment_intent_result(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def cancel_payment_intent(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        reason: str | None = None,
    ) -> PaymentIntentResult:
        """
        Cancel a PaymentIntent, releasing the authorization hold.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent cancellation
            reason: Stripe cancellation_reason (duplicate, fraudulent,
                requested_by_customer, abandoned)

        Raises:
            StripeUnexpectedStateError: PaymentIntent already captured
            StripeTimeoutError: Outcome unknown, retry with the same key
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "cancel_payment_intent",
            "payment_intent_id": payment_intent_id,
            "idempotency_key": idempotency_key,
            "reason": reason,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            cancel_params: dict[str, Any] = {}
            if reason:
                cancel_params["cancellation_reason"] = reason

            intent = stripe.PaymentIntent.cancel(
                payment_intent_id,
                idempotency_key=idempotency_key,
                **cancel_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return _payment_intent_result(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def update_payment_intent_metadata(
        cls,
        payment_intent_id: str,
        metadata: dict[str, str],
    ) -> PaymentIntentResult:
        """
        Update the metadata mirror on a PaymentIntent.

        Stripe merges metadata keys, so only changed keys need to be sent.
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "update_payment_intent_metadata",
            "payment_intent_id": payment_intent_id,
            "metadata_keys": sorted(metadata),
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.modify(payment_intent_id, metadata=metadata)

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={**log_context, "duration_ms": duration_ms},
            )

            return _payment_intent_result(intent)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Transfers
    # =========================================================================

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
        source_transaction: str | None = None,
    ) -> TransferResult:
        """
        Create a transfer to a connected Stripe account.

        Args:
            amount_cents: Amount to transfer in cents
            destination_account: Stripe Connect account ID (acct_xxx)
            idempotency_key: Unique key for idempotent transfer
            currency: Currency code (default: 'usd')
            metadata: Optional metadata dict
            source_transaction: Charge the transfer is funded from

        Raises:
            StripeInvalidAccountError: Invalid destination account
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_transfer",
            "amount_cents": amount_cents,
            "destination_account": destination_account,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            transfer_params: dict[str, Any] = {
                "amount": amount_cents,
                "currency": currency,
                "destination": destination_account,
                "metadata": metadata or {},
            }
            if source_transaction:
                transfer_params["source_transaction"] = source_transaction

            transfer = stripe.Transfer.create(
                idempotency_key=idempotency_key,
                **transfer_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "transfer_id": transfer.id,
                    "duration_ms": duration_ms,
                },
            )

            return TransferResult(
                id=transfer.id,
                amount_cents=transfer.amount,
                currency=transfer.currency,
                destination_account=transfer.destination,
                metadata=dict(transfer.metadata or {}),
                raw_response=transfer.to_dict(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Returns:
            Parsed event data dict

        Raises:
            EscrowConfigurationError: STRIPE_WEBHOOK_SECRET not configured
            StripeInvalidRequestError: Invalid signature or payload
        """
        secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
        if not secret:
            raise EscrowConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook payload",
                stripe_code="invalid_payload",
            ) from e
        return event.to_dict()

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe SDK exceptions to escrow exceptions.

        Non-Stripe exceptions are logged and returned so the caller's
        bare ``raise`` propagates them unchanged.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeUnexpectedStateError: PaymentIntent not in the required state
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            if error.code == UNEXPECTED_STATE_CODE:
                logger.warning(
                    "PaymentIntent in unexpected state",
                    extra={**log_context, "stripe_code": error.code},
                )
                raise StripeUnexpectedStateError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                ) from error

            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if error.param == "destination" or "account" in str(error).lower():
                raise StripeInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                ) from error
            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            message = str(error).lower()
            if "timeout" in message or "timed out" in message:
                logger.error(
                    "Stripe request timed out, outcome unknown",
                    extra=log_context,
                )
                raise StripeTimeoutError(
                    "Stripe request timed out. Retry with the same idempotency key.",
                    stripe_code="timeout",
                ) from error
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise EscrowConfigurationError(
                "Stripe authentication failed",
                details={"stripe_code": "authentication_error"},
            ) from error

        elif isinstance(error, stripe.StripeError):
            logger.error(
                f"Stripe API error: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        logger.error(
            f"Unexpected error during Stripe operation: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
