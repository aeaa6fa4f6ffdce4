"""
Factory Boy factories for escrow test data.

Usage:
    from escrow.tests.factories import ListingFactory, OrderFactory

    listing = ListingFactory(price_cents=5000, face_value_cents=5000)

    # Order in a specific status. status is FSM-protected, so it can only
    # be set when the instance is constructed, never afterwards.
    order = OrderFactory(status=OrderStatus.AUTHORIZED, listing=listing)
"""

import uuid
from datetime import timedelta

import factory
from django.utils import timezone

from escrow.adapters import CheckoutSessionResult, PaymentIntentResult
from escrow.models import Listing, Order, WebhookEvent
from escrow.state_machines import OrderStatus, TransferStatus, WebhookEventStatus


class ListingFactory(factory.django.DjangoModelFactory):
    """
    Factory for Listing.

    Default: 10 tickets at $50.00 with a $50.00 face value and a connected
    seller account.
    """

    class Meta:
        model = Listing
        skip_postgeneration_save = True

    listing_id = factory.Sequence(lambda n: f"lst_{n}")
    title = factory.Sequence(lambda n: f"Concert #{n}")
    event_date = "2026-11-20"
    city = "Austin"
    seat_info = "Section 104, Row F"
    price_cents = 5000
    face_value_cents = 5000
    seller_account_id = factory.Sequence(lambda n: f"acct_seller_{n}")
    seller_email = factory.Sequence(lambda n: f"seller{n}@example.com")
    remaining = 10
    sold = 0
    seat_numbers = factory.LazyFunction(list)
    assigned_seats = factory.LazyFunction(list)


class OrderFactory(factory.django.DjangoModelFactory):
    """
    Factory for Order.

    Default: PENDING order for 2 tickets at $50.00 with the default fee
    configuration frozen on it (gross 10700, payout 9350).

    Pass listing=<Listing> to copy its identifier and seller, and
    status=<OrderStatus> to build an order already in that state. Escrowed
    statuses get a PaymentIntent ID and a deadline 72 hours out unless
    given explicitly.
    """

    class Meta:
        model = Order
        skip_postgeneration_save = True

    class Params:
        listing = None

    id = factory.LazyFunction(uuid.uuid4)
    stripe_checkout_session_id = factory.Sequence(lambda n: f"cs_test_{n}_{uuid.uuid4().hex[:8]}")
    listing_id = factory.LazyAttribute(lambda o: o.listing.listing_id if o.listing else "lst_default")
    quantity = 2
    unit_price_cents = 5000
    face_value_cents = 5000
    currency = "usd"
    buyer_fee_cents = 700
    seller_fee_per_ticket_cents = 325
    seller_fee_cents = 650
    gross_amount_cents = 10700
    platform_take_cents = 1350
    seller_payout_cents = 9350
    seller_account_id = factory.LazyAttribute(
        lambda o: o.listing.seller_account_id if o.listing else "acct_seller_default"
    )
    buyer_email = factory.Sequence(lambda n: f"buyer{n}@example.com")
    seller_email = factory.LazyAttribute(lambda o: o.listing.seller_email if o.listing else "")
    status = OrderStatus.PENDING
    confirm_deadline = factory.LazyFunction(lambda: timezone.now() + timedelta(hours=72))
    metadata = factory.LazyFunction(dict)

    @factory.lazy_attribute
    def stripe_payment_intent_id(self):
        if self.status == OrderStatus.PENDING:
            return None
        return f"pi_test_{uuid.uuid4().hex[:16]}"

    @factory.lazy_attribute
    def authorized_at(self):
        if self.status == OrderStatus.PENDING:
            return None
        return timezone.now()

    @factory.lazy_attribute
    def on_hold_at(self):
        return timezone.now() if self.status == OrderStatus.ON_HOLD else None

    @factory.lazy_attribute
    def captured_at(self):
        return timezone.now() if self.status == OrderStatus.CAPTURED else None

    @factory.lazy_attribute
    def canceled_at(self):
        return timezone.now() if self.status == OrderStatus.CANCELED else None

    @factory.lazy_attribute
    def transfer_status(self):
        if self.status == OrderStatus.CAPTURED:
            return TransferStatus.SUCCEEDED
        return TransferStatus.NOT_REQUIRED


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for WebhookEvent.

    Default: PENDING payment_intent.succeeded event with an empty object.

    Example:
        event = WebhookEventFactory(
            event_type="checkout.session.completed",
            payload=stripe_event("checkout.session.completed", {...}),
        )
    """

    class Meta:
        model = WebhookEvent

    stripe_event_id = factory.Sequence(lambda n: f"evt_test_{n}_{uuid.uuid4().hex[:8]}")
    event_type = "payment_intent.succeeded"
    payload = factory.LazyAttribute(
        lambda o: {"id": o.stripe_event_id, "type": o.event_type, "data": {"object": {}}}
    )
    order_reference = factory.LazyAttribute(lambda o: WebhookEvent.reference_from_payload(o.payload))
    status = WebhookEventStatus.PENDING
    retry_count = 0


def stripe_event(event_type: str, obj: dict, event_id: str | None = None) -> dict:
    """Build a Stripe event payload around a data object."""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


# =============================================================================
# Stripe Result Builders
# =============================================================================


def make_payment_intent(
    payment_intent_id: str = "pi_test_123",
    status: str = "succeeded",
    amount_cents: int = 10700,
    latest_charge: str | None = "ch_test_123",
) -> PaymentIntentResult:
    return PaymentIntentResult(
        id=payment_intent_id,
        status=status,
        amount_cents=amount_cents,
        currency="usd",
        amount_capturable_cents=amount_cents if status == "requires_capture" else 0,
        amount_received_cents=amount_cents if status == "succeeded" else 0,
        capture_method="manual",
        latest_charge=latest_charge,
    )


def make_checkout_session(
    session_id: str = "cs_test_123",
    payment_status: str = "unpaid",
    payment_intent_id: str | None = None,
) -> CheckoutSessionResult:
    return CheckoutSessionResult(
        id=session_id,
        url=f"https://checkout.stripe.com/c/pay/{session_id}",
        status="complete" if payment_status == "paid" else "open",
        payment_status=payment_status,
        payment_intent_id=payment_intent_id,
    )
