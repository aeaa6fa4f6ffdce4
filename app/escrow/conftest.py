"""
Pytest fixtures shared by all escrow test packages.

Provides listings, orders in each escrow status, and StripeAdapter mocks.
Stripe is never called for real: every adapter method used by the escrow
flow is patched on the StripeAdapter class, so the patch applies no matter
which module imported it.
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from django.utils import timezone

from escrow.adapters import StripeAdapter, TransferResult
from escrow.config import EscrowConfig
from escrow.state_machines import OrderStatus
from escrow.tests.factories import (
    ListingFactory,
    OrderFactory,
    make_checkout_session,
    make_payment_intent,
)


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def escrow_config():
    """Default configuration: $3.50 buyer fee, 5% + 75c seller fee, 72h window."""
    return EscrowConfig()


# =============================================================================
# Listing & Order Fixtures
# =============================================================================


@pytest.fixture
def listing(db):
    """Listing with 10 tickets at $50.00 (face value $50.00)."""
    return ListingFactory(
        listing_id="lst_42",
        seat_numbers=["A1", "A2", "A3", "A4"],
    )


@pytest.fixture
def pending_order(db, listing):
    return OrderFactory(listing=listing, status=OrderStatus.PENDING)


@pytest.fixture
def authorized_order(db, listing):
    """Authorized order with 72 hours left to confirm."""
    return OrderFactory(
        listing=listing,
        status=OrderStatus.AUTHORIZED,
        stripe_payment_intent_id="pi_test_authorized",
    )


@pytest.fixture
def on_hold_order(db, listing):
    return OrderFactory(
        listing=listing,
        status=OrderStatus.ON_HOLD,
        stripe_payment_intent_id="pi_test_on_hold",
    )


@pytest.fixture
def captured_order(db, listing):
    return OrderFactory(
        listing=listing,
        status=OrderStatus.CAPTURED,
        stripe_payment_intent_id="pi_test_captured",
        amount_captured_cents=10700,
    )


@pytest.fixture
def canceled_order(db, listing):
    return OrderFactory(
        listing=listing,
        status=OrderStatus.CANCELED,
        stripe_payment_intent_id="pi_test_canceled",
        cancel_reason="buyer_canceled",
    )


@pytest.fixture
def expired_authorized_order(db, listing):
    """Authorized order whose confirmation window closed an hour ago."""
    return OrderFactory(
        listing=listing,
        status=OrderStatus.AUTHORIZED,
        stripe_payment_intent_id="pi_test_expired_authorized",
        confirm_deadline=timezone.now() - timedelta(hours=1),
    )


@pytest.fixture
def expired_on_hold_order(db, listing):
    """On-hold order whose confirmation window closed an hour ago."""
    return OrderFactory(
        listing=listing,
        status=OrderStatus.ON_HOLD,
        stripe_payment_intent_id="pi_test_expired_on_hold",
        confirm_deadline=timezone.now() - timedelta(hours=1),
    )


# =============================================================================
# StripeAdapter Mocks
# =============================================================================


@pytest.fixture
def stripe_mocks():
    """
    Patch every StripeAdapter call used by the escrow flow.

    Defaults: captures succeed, cancels succeed, transfers succeed, and
    retrieve_payment_intent reports requires_capture. Each mock echoes the
    PaymentIntent ID it was called with, and capture echoes a partial amount.

    Usage:
        def test_x(stripe_mocks):
            stripe_mocks.capture.side_effect = StripeTimeoutError("timed out")
            ...
            stripe_mocks.capture.assert_called_once()
    """

    def capture(payment_intent_id, idempotency_key, amount_to_capture=None):
        intent = make_payment_intent(payment_intent_id, status="succeeded")
        if amount_to_capture is not None:
            intent.amount_received_cents = amount_to_capture
        return intent

    def cancel(payment_intent_id, idempotency_key, reason=None):
        return make_payment_intent(payment_intent_id, status="canceled", latest_charge=None)

    def retrieve(payment_intent_id):
        return make_payment_intent(payment_intent_id, status="requires_capture", latest_charge=None)

    def transfer(amount_cents, destination_account, idempotency_key, **kwargs):
        return TransferResult(
            id="tr_test_123",
            amount_cents=amount_cents,
            currency=kwargs.get("currency", "usd"),
            destination_account=destination_account,
        )

    with (
        patch.object(StripeAdapter, "capture_payment_intent", side_effect=capture) as capture_mock,
        patch.object(StripeAdapter, "cancel_payment_intent", side_effect=cancel) as cancel_mock,
        patch.object(StripeAdapter, "retrieve_payment_intent", side_effect=retrieve) as retrieve_mock,
        patch.object(StripeAdapter, "create_transfer", side_effect=transfer) as transfer_mock,
        patch.object(StripeAdapter, "update_payment_intent_metadata") as metadata_mock,
        patch.object(
            StripeAdapter,
            "create_checkout_session",
            side_effect=lambda params: make_checkout_session(
                f"cs_test_{params.idempotency_key.split(':')[-1][:8]}"
            ),
        ) as checkout_mock,
        patch.object(
            StripeAdapter,
            "retrieve_checkout_session",
            side_effect=lambda session_id: make_checkout_session(session_id),
        ) as retrieve_session_mock,
    ):
        yield SimpleNamespace(
            capture=capture_mock,
            cancel=cancel_mock,
            retrieve_payment_intent=retrieve_mock,
            transfer=transfer_mock,
            update_metadata=metadata_mock,
            create_checkout_session=checkout_mock,
            retrieve_checkout_session=retrieve_session_mock,
        )
