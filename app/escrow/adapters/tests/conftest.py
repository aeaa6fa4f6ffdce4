"""
Pytest fixtures for Stripe adapter tests.

Sections:
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe
from django.test import override_settings


@pytest.fixture(autouse=True)
def stripe_settings():
    """Adapter calls require configured keys."""
    with override_settings(
        STRIPE_SECRET_KEY="sk_test_escrow",
        STRIPE_WEBHOOK_SECRET="whsec_test_escrow",
    ):
        yield


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_capture",
        amount: int = 7050,
        currency: str = "usd",
        amount_capturable: int = 7050,
        amount_received: int = 0,
        capture_method: str = "manual",
        latest_charge: str | None = "ch_test123456",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "amount_capturable": amount_capturable,
                "amount_received": amount_received,
                "capture_method": capture_method,
                "latest_charge": latest_charge,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_checkout_session():
    """Create a mock Checkout Session response."""

    def _create(
        id: str = "cs_test123456",
        url: str | None = "https://checkout.stripe.com/c/pay/cs_test123456",
        status: str = "open",
        payment_status: str = "unpaid",
        payment_intent: str | None = None,
        customer_email: str | None = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "checkout.session",
                "url": url,
                "status": status,
                "payment_status": payment_status,
                "payment_intent": payment_intent,
                "customer_email": customer_email,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_transfer():
    """Create a mock Transfer response."""

    def _create(
        id: str = "tr_test123456",
        amount: int = 5475,
        currency: str = "usd",
        destination: str = "acct_seller123",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "transfer",
                "amount": amount,
                "currency": currency,
                "destination": destination,
                "metadata": metadata or {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""
    error = stripe.CardError(
        message="Your card was declined.",
        param=None,
        code="card_declined",
    )
    error.decline_code = "generic_decline"
    return error


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such payment_intent: 'pi_missing'",
        param: str | None = "intent",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def unexpected_state_error():
    """Stripe's answer to capturing or canceling a resolved PaymentIntent."""
    return stripe.InvalidRequestError(
        message=(
            "This PaymentIntent could not be captured because it has a "
            "status of canceled."
        ),
        param=None,
        code="payment_intent_unexpected_state",
    )


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def timeout_error():
    return stripe.APIConnectionError(
        message="Request to Stripe timed out. Network error: Read timeout"
    )


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")


@pytest.fixture
def signature_verification_error():
    return stripe.SignatureVerificationError(
        message="Unable to verify webhook signature.",
        sig_header="bad_signature",
    )


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_http_client():
    """Mock stripe.RequestsClient."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent, mock_stripe_http_client):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.retrieve.return_value = mock_payment_intent()
        mock.capture.return_value = mock_payment_intent(
            status="succeeded", amount_capturable=0, amount_received=7050
        )
        mock.cancel.return_value = mock_payment_intent(
            status="canceled", amount_capturable=0, latest_charge=None
        )
        mock.modify.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_checkout_session(mock_checkout_session, mock_stripe_http_client):
    """Mock stripe.checkout.Session API."""
    with patch("stripe.checkout.Session") as mock:
        mock.create.return_value = mock_checkout_session()
        mock.retrieve.return_value = mock_checkout_session()
        yield mock


@pytest.fixture
def mock_stripe_transfer(mock_transfer, mock_stripe_http_client):
    """Mock stripe.Transfer API."""
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = mock_transfer()
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook API."""
    with patch("stripe.Webhook") as mock:
        mock.construct_event.return_value = MockStripeObject(
            {
                "id": "evt_test123",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "id": "cs_test123",
                        "object": "checkout.session",
                    }
                },
            }
        )
        yield mock
