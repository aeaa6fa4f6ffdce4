"""
Tests for the escrow Stripe adapter.

Tests cover:
- Checkout Session parameters (manual capture, two line items, redirects)
- PaymentIntent capture / cancel / metadata mirror
- Transfers to connected accounts
- Error translation for each exception type
- Webhook signature verification
- Configuration from settings
"""

import pytest
import stripe
from django.conf import settings
from django.test import override_settings

from escrow.adapters import (
    CheckoutSessionResult,
    CreateCheckoutSessionParams,
    PaymentIntentResult,
    StripeAdapter,
    TransferResult,
)
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


def make_checkout_params(**overrides) -> CreateCheckoutSessionParams:
    values = {
        "ticket_name": "Fleetwood Tribute",
        "ticket_description": "2026-11-02 • Austin • Sec 104 Row F",
        "unit_amount_cents": 2000,
        "quantity": 3,
        "buyer_fee_per_ticket_cents": 350,
        "base_url": "https://tickets.example.com",
        "idempotency_key": "checkout:order-1",
        "metadata": {"order_id": "order-1", "listingId": "lst_1"},
        "payment_intent_metadata": {"fep": "1", "fep_status": "authorized"},
    }
    values.update(overrides)
    return CreateCheckoutSessionParams(**values)


# =============================================================================
# CreateCheckoutSessionParams Tests
# =============================================================================


class TestCreateCheckoutSessionParams:
    """Tests for CreateCheckoutSessionParams validation and rendering."""

    def test_quantity_must_be_positive(self):
        """Should reject zero quantity."""
        with pytest.raises(ValueError, match="quantity must be positive"):
            make_checkout_params(quantity=0)

    def test_idempotency_key_required(self):
        """Should reject an empty idempotency key."""
        with pytest.raises(ValueError, match="idempotency_key is required"):
            make_checkout_params(idempotency_key="")

    def test_redirect_urls(self):
        """Success URL carries the session placeholder, cancel URL the flag."""
        params = make_checkout_params(base_url="https://tickets.example.com/")

        assert params.success_url == (
            "https://tickets.example.com/?success=1&sid={CHECKOUT_SESSION_ID}"
        )
        assert params.cancel_url == "https://tickets.example.com/?canceled=1"

    def test_line_items_include_service_fee(self):
        """Tickets and the per-ticket service fee are separate line items."""
        items = make_checkout_params().line_items()

        assert len(items) == 2
        assert items[0]["price_data"]["unit_amount"] == 2000
        assert items[0]["quantity"] == 3
        assert items[1]["price_data"]["unit_amount"] == 350
        assert items[1]["quantity"] == 3
        assert items[1]["price_data"]["product_data"]["name"] == "Service Fee (per ticket)"

    def test_no_fee_line_item_when_fee_is_zero(self):
        """A zero buyer fee produces only the ticket line item."""
        items = make_checkout_params(buyer_fee_per_ticket_cents=0).line_items()

        assert len(items) == 1


# =============================================================================
# Checkout Session Tests
# =============================================================================


class TestStripeAdapterCheckoutSession:
    """Tests for create_checkout_session and retrieve_checkout_session."""

    def test_create_uses_manual_capture(self, mock_stripe_checkout_session):
        """The session's PaymentIntent must be created with manual capture."""
        result = StripeAdapter.create_checkout_session(make_checkout_params())

        assert isinstance(result, CheckoutSessionResult)
        assert result.id == "cs_test123456"
        assert result.url.startswith("https://checkout.stripe.com/")

        call_kwargs = mock_stripe_checkout_session.create.call_args.kwargs
        assert call_kwargs["mode"] == "payment"
        assert call_kwargs["payment_intent_data"]["capture_method"] == "manual"
        assert call_kwargs["payment_intent_data"]["metadata"]["fep"] == "1"
        assert call_kwargs["idempotency_key"] == "checkout:order-1"
        assert call_kwargs["metadata"]["order_id"] == "order-1"
        assert "customer_email" not in call_kwargs

    def test_create_passes_customer_email(self, mock_stripe_checkout_session):
        """Buyer email is prefilled when known."""
        StripeAdapter.create_checkout_session(
            make_checkout_params(customer_email="buyer@example.com")
        )

        call_kwargs = mock_stripe_checkout_session.create.call_args.kwargs
        assert call_kwargs["customer_email"] == "buyer@example.com"

    def test_retrieve_returns_payment_intent_id(
        self, mock_stripe_checkout_session, mock_checkout_session
    ):
        """Completed sessions expose the PaymentIntent they created."""
        mock_stripe_checkout_session.retrieve.return_value = mock_checkout_session(
            status="complete",
            payment_status="paid",
            payment_intent="pi_abc",
            url=None,
        )

        result = StripeAdapter.retrieve_checkout_session("cs_test123456")

        assert result.payment_intent_id == "pi_abc"
        assert result.payment_status == "paid"
        mock_stripe_checkout_session.retrieve.assert_called_once_with("cs_test123456")


# =============================================================================
# PaymentIntent Tests
# =============================================================================


class TestStripeAdapterPaymentIntent:
    """Tests for PaymentIntent capture, cancel and metadata updates."""

    def test_retrieve_payment_intent(self, mock_stripe_payment_intent):
        """Should map the held PaymentIntent."""
        result = StripeAdapter.retrieve_payment_intent("pi_test123456")

        assert isinstance(result, PaymentIntentResult)
        assert result.requires_capture is True
        assert result.amount_capturable_cents == 7050
        assert result.latest_charge == "ch_test123456"

    def test_capture_payment_intent_success(self, mock_stripe_payment_intent):
        """Should capture with the given idempotency key."""
        result = StripeAdapter.capture_payment_intent(
            payment_intent_id="pi_test123456",
            idempotency_key="capture:pi_test123456",
        )

        assert result.captured is True
        assert result.amount_received_cents == 7050
        mock_stripe_payment_intent.capture.assert_called_once_with(
            "pi_test123456",
            idempotency_key="capture:pi_test123456",
        )

    def test_capture_partial_amount(self, mock_stripe_payment_intent):
        """Should pass amount_to_capture through."""
        StripeAdapter.capture_payment_intent(
            payment_intent_id="pi_test123456",
            idempotency_key="capture:pi_test123456",
            amount_to_capture=3000,
        )

        call_kwargs = mock_stripe_payment_intent.capture.call_args.kwargs
        assert call_kwargs["amount_to_capture"] == 3000

    def test_capture_rejects_non_positive_amount(self, mock_stripe_payment_intent):
        """A partial capture of zero cents is never sent to Stripe."""
        with pytest.raises(ValueError, match="amount_to_capture must be positive"):
            StripeAdapter.capture_payment_intent(
                payment_intent_id="pi_test123456",
                idempotency_key="capture:pi_test123456",
                amount_to_capture=0,
            )

        mock_stripe_payment_intent.capture.assert_not_called()

    def test_cancel_payment_intent(self, mock_stripe_payment_intent):
        """Should cancel with reason and idempotency key."""
        result = StripeAdapter.cancel_payment_intent(
            payment_intent_id="pi_test123456",
            idempotency_key="cancel:pi_test123456",
            reason="requested_by_customer",
        )

        assert result.canceled is True
        mock_stripe_payment_intent.cancel.assert_called_once_with(
            "pi_test123456",
            idempotency_key="cancel:pi_test123456",
            cancellation_reason="requested_by_customer",
        )

    def test_update_metadata(self, mock_stripe_payment_intent):
        """Only the changed mirror keys are sent."""
        StripeAdapter.update_payment_intent_metadata(
            "pi_test123456", {"fep_status": "captured"}
        )

        mock_stripe_payment_intent.modify.assert_called_once_with(
            "pi_test123456", metadata={"fep_status": "captured"}
        )


# =============================================================================
# Transfer Tests
# =============================================================================


class TestStripeAdapterCreateTransfer:
    """Tests for StripeAdapter.create_transfer."""

    def test_create_transfer_with_source_transaction(self, mock_stripe_transfer):
        """Transfers are funded from the captured charge."""
        result = StripeAdapter.create_transfer(
            amount_cents=5475,
            destination_account="acct_seller123",
            idempotency_key="transfer:pi_test123456",
            source_transaction="ch_test123456",
        )

        assert isinstance(result, TransferResult)
        assert result.id == "tr_test123456"
        call_kwargs = mock_stripe_transfer.create.call_args.kwargs
        assert call_kwargs["source_transaction"] == "ch_test123456"
        assert call_kwargs["destination"] == "acct_seller123"
        assert call_kwargs["idempotency_key"] == "transfer:pi_test123456"

    def test_invalid_destination_account(
        self, mock_stripe_transfer, invalid_request_error
    ):
        """Destination errors map to StripeInvalidAccountError."""
        mock_stripe_transfer.create.side_effect = invalid_request_error(
            message="No such destination: 'acct_gone'",
            param="destination",
            code="resource_missing",
        )

        with pytest.raises(StripeInvalidAccountError):
            StripeAdapter.create_transfer(
                amount_cents=5475,
                destination_account="acct_gone",
                idempotency_key="transfer:pi_x",
            )


# =============================================================================
# Error Translation Tests
# =============================================================================


class TestStripeAdapterErrorTranslation:
    """Tests for Stripe error translation to escrow exceptions."""

    def test_card_declined_error(self, mock_stripe_payment_intent, card_error):
        """Should translate CardError to StripeCardDeclinedError."""
        mock_stripe_payment_intent.capture.side_effect = card_error

        with pytest.raises(StripeCardDeclinedError) as exc_info:
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")

        assert exc_info.value.decline_code == "generic_decline"
        assert exc_info.value.is_retryable is False

    def test_unexpected_state_error(
        self, mock_stripe_payment_intent, unexpected_state_error
    ):
        """payment_intent_unexpected_state has its own exception."""
        mock_stripe_payment_intent.capture.side_effect = unexpected_state_error

        with pytest.raises(StripeUnexpectedStateError) as exc_info:
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")

        assert exc_info.value.stripe_code == "payment_intent_unexpected_state"
        assert exc_info.value.is_retryable is False

    def test_invalid_request_error(
        self, mock_stripe_payment_intent, invalid_request_error
    ):
        """Should translate InvalidRequestError to StripeInvalidRequestError."""
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error()

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.retrieve_payment_intent("pi_missing")

        assert exc_info.value.stripe_code == "resource_missing"

    def test_rate_limit_error(self, mock_stripe_payment_intent, rate_limit_error):
        """Rate limits are retryable."""
        mock_stripe_payment_intent.cancel.side_effect = rate_limit_error

        with pytest.raises(StripeRateLimitError) as exc_info:
            StripeAdapter.cancel_payment_intent("pi_x", "cancel:pi_x")

        assert exc_info.value.is_retryable is True

    def test_timeout_error(self, mock_stripe_payment_intent, timeout_error):
        """Timeouts are retryable with unknown outcome."""
        mock_stripe_payment_intent.capture.side_effect = timeout_error

        with pytest.raises(StripeTimeoutError) as exc_info:
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")

        assert exc_info.value.is_retryable is True

    def test_api_connection_error(
        self, mock_stripe_payment_intent, api_connection_error
    ):
        """Connection errors are retryable."""
        mock_stripe_payment_intent.capture.side_effect = api_connection_error

        with pytest.raises(StripeAPIUnavailableError) as exc_info:
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")

        assert exc_info.value.is_retryable is True

    def test_api_error(self, mock_stripe_payment_intent, api_error):
        """Stripe server errors are retryable."""
        mock_stripe_payment_intent.capture.side_effect = api_error

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")

    def test_authentication_error(
        self, mock_stripe_payment_intent, authentication_error
    ):
        """Bad API keys are a configuration problem."""
        mock_stripe_payment_intent.capture.side_effect = authentication_error

        with pytest.raises(EscrowConfigurationError):
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")

    def test_non_stripe_error_propagates(self, mock_stripe_payment_intent):
        """Errors not raised by the SDK are re-raised unchanged."""
        mock_stripe_payment_intent.capture.side_effect = RuntimeError("Unexpected")

        with pytest.raises(RuntimeError, match="Unexpected"):
            StripeAdapter.capture_payment_intent("pi_x", "capture:pi_x")


# =============================================================================
# Webhook Verification Tests
# =============================================================================


class TestStripeAdapterVerifyWebhookSignature:
    """Tests for StripeAdapter.verify_webhook_signature."""

    def test_verify_webhook_signature_success(self, mock_stripe_webhook):
        """Should verify and return event data."""
        result = StripeAdapter.verify_webhook_signature(
            payload=b'{"id": "evt_test"}',
            signature="t=1,v1=abc",
        )

        assert result["id"] == "evt_test123"
        mock_stripe_webhook.construct_event.assert_called_once_with(
            b'{"id": "evt_test"}', "t=1,v1=abc", "whsec_test_escrow"
        )

    def test_verify_webhook_signature_invalid(
        self, mock_stripe_webhook, signature_verification_error
    ):
        """Should raise StripeInvalidRequestError for invalid signature."""
        mock_stripe_webhook.construct_event.side_effect = signature_verification_error

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.verify_webhook_signature(
                payload=b"tampered",
                signature="bad_signature",
            )

        assert "signature" in str(exc_info.value).lower()

    @override_settings(STRIPE_WEBHOOK_SECRET="")
    def test_missing_webhook_secret(self, mock_stripe_webhook):
        """Verification without a secret is a configuration error."""
        with pytest.raises(EscrowConfigurationError):
            StripeAdapter.verify_webhook_signature(b"{}", "sig")

        mock_stripe_webhook.construct_event.assert_not_called()


# =============================================================================
# Configuration Tests
# =============================================================================


class TestStripeAdapterConfiguration:
    """Tests for Stripe adapter configuration."""

    @override_settings(STRIPE_SECRET_KEY="sk_test_custom")
    def test_uses_settings_api_key(self, mock_stripe_payment_intent):
        """Should use API key from settings."""
        StripeAdapter.retrieve_payment_intent("pi_x")

        assert stripe.api_key == "sk_test_custom"

    @override_settings(STRIPE_API_TIMEOUT_SECONDS=30)
    def test_uses_settings_timeout(
        self, mock_stripe_payment_intent, mock_stripe_http_client
    ):
        """Should use timeout from settings."""
        StripeAdapter.retrieve_payment_intent("pi_x")

        mock_stripe_http_client.assert_called_with(timeout=30)

    def test_single_attempt_by_default(
        self, mock_stripe_payment_intent, mock_stripe_http_client
    ):
        """A call is one request bounded by one timeout; the SDK does not retry."""
        StripeAdapter.retrieve_payment_intent("pi_x")

        assert settings.STRIPE_MAX_RETRIES == 0
        assert stripe.max_network_retries == 0
        mock_stripe_http_client.assert_called_with(timeout=settings.STRIPE_API_TIMEOUT_SECONDS)

    @override_settings(STRIPE_MAX_RETRIES=2)
    def test_uses_settings_retries(self, mock_stripe_payment_intent):
        StripeAdapter.retrieve_payment_intent("pi_x")

        assert stripe.max_network_retries == 2

    @override_settings(STRIPE_SECRET_KEY="")
    def test_missing_api_key(self, mock_stripe_payment_intent):
        """Calls fail fast without an API key."""
        with pytest.raises(EscrowConfigurationError):
            StripeAdapter.retrieve_payment_intent("pi_x")

        mock_stripe_payment_intent.retrieve.assert_not_called()
