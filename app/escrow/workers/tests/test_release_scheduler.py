"""
Tests for the release sweep.
"""

from datetime import timedelta

from django.utils import timezone

from escrow.config import EscrowConfig
from escrow.exceptions import (
    StripeInvalidRequestError,
    StripeTimeoutError,
    StripeUnexpectedStateError,
)
from escrow.models import Order
from escrow.state_machines import OrderStatus
from escrow.tests.factories import OrderFactory, make_payment_intent
from escrow.workers.release_scheduler import (
    ReleaseScheduler,
    run_release_sweep,
    settle_retry_delay,
)


def status_of(order):
    return Order.objects.get(pk=order.pk).status


class TestReleaseSweep:
    def test_silent_buyer_is_captured(self, db, expired_authorized_order, stripe_mocks):
        report = ReleaseScheduler.sweep()

        assert report.captured == 1
        assert report.due == 1
        assert status_of(expired_authorized_order) == OrderStatus.CAPTURED

    def test_unresolved_dispute_is_canceled(self, db, expired_on_hold_order, stripe_mocks):
        report = ReleaseScheduler.sweep()

        assert report.canceled == 1
        assert status_of(expired_on_hold_order) == OrderStatus.CANCELED
        stripe_mocks.capture.assert_not_called()

    def test_orders_within_window_untouched(
        self, db, authorized_order, on_hold_order, pending_order, stripe_mocks
    ):
        report = ReleaseScheduler.sweep()

        assert report.checked == 2
        assert report.due == 0
        stripe_mocks.capture.assert_not_called()
        stripe_mocks.cancel.assert_not_called()

    def test_pending_orders_never_swept(self, db, listing, stripe_mocks):
        order = OrderFactory(
            listing=listing,
            status=OrderStatus.PENDING,
            confirm_deadline=timezone.now() - timedelta(days=1),
        )

        report = ReleaseScheduler.sweep()

        assert report.checked == 0
        assert status_of(order) == OrderStatus.PENDING

    def test_stops_at_max_ops(self, db, listing, stripe_mocks):
        past = timezone.now() - timedelta(hours=1)
        for _ in range(3):
            OrderFactory(listing=listing, status=OrderStatus.AUTHORIZED, confirm_deadline=past)

        report = ReleaseScheduler.sweep(max_ops=2)

        assert report.captured == 2
        assert report.capped is True
        assert Order.objects.filter(status=OrderStatus.AUTHORIZED).count() == 1

    def test_pages_through_all_orders(self, db, listing, stripe_mocks):
        past = timezone.now() - timedelta(hours=1)
        for _ in range(5):
            OrderFactory(listing=listing, status=OrderStatus.AUTHORIZED, confirm_deadline=past)

        report = ReleaseScheduler.sweep(config=EscrowConfig(sweep_page_size=2))

        assert report.checked == 5
        assert report.captured == 5

    def test_stripe_failure_counts_error_and_continues(
        self, db, expired_authorized_order, expired_on_hold_order, stripe_mocks
    ):
        stripe_mocks.capture.side_effect = StripeTimeoutError("timed out")

        report = ReleaseScheduler.sweep()

        assert report.errors == 1
        assert report.canceled == 1
        assert status_of(expired_authorized_order) == OrderStatus.AUTHORIZED

    def test_uses_given_clock(self, db, authorized_order, stripe_mocks):
        later = authorized_order.confirm_deadline + timedelta(minutes=1)

        report = ReleaseScheduler.sweep(now=later)

        assert report.captured == 1

    def test_report_to_dict(self, db):
        data = ReleaseScheduler.sweep().to_dict()

        assert data == {
            "checked": 0,
            "due": 0,
            "captured": 0,
            "canceled": 0,
            "skipped": 0,
            "errors": 0,
            "already_final": 0,
            "deferred": 0,
            "capped": False,
        }

class TestStripeResolvedElsewhere:
    def test_order_canceled_at_stripe_is_reconciled(
        self, db, expired_authorized_order, stripe_mocks
    ):
        stripe_mocks.capture.side_effect = StripeUnexpectedStateError("unexpected state")
        stripe_mocks.retrieve_payment_intent.side_effect = None
        stripe_mocks.retrieve_payment_intent.return_value = make_payment_intent(
            "pi_test_expired_authorized", status="canceled", latest_charge=None
        )

        report = ReleaseScheduler.sweep()
        second = ReleaseScheduler.sweep()

        assert report.skipped == 1
        assert report.already_final == 1
        assert report.errors == 0
        order = Order.objects.get(pk=expired_authorized_order.pk)
        assert order.status == OrderStatus.CANCELED
        assert order.cancel_reason == "canceled_at_provider"
        assert second.checked == 0

    def test_dispute_captured_at_stripe_is_reconciled(
        self, db, expired_on_hold_order, stripe_mocks
    ):
        stripe_mocks.cancel.side_effect = StripeUnexpectedStateError("unexpected state")
        stripe_mocks.retrieve_payment_intent.side_effect = None
        stripe_mocks.retrieve_payment_intent.return_value = make_payment_intent(
            "pi_test_expired_on_hold", status="succeeded"
        )

        report = ReleaseScheduler.sweep()

        assert report.already_final == 1
        assert status_of(expired_on_hold_order) == OrderStatus.CAPTURED


class TestFailureBackoff:
    def _stuck_and_fresh(self, listing):
        now = timezone.now()
        stuck = OrderFactory(
            listing=listing,
            status=OrderStatus.AUTHORIZED,
            stripe_payment_intent_id="pi_test_stuck",
            confirm_deadline=now - timedelta(days=2),
        )
        fresh = OrderFactory(
            listing=listing,
            status=OrderStatus.AUTHORIZED,
            stripe_payment_intent_id="pi_test_fresh",
            confirm_deadline=now - timedelta(hours=1),
        )
        Order.objects.filter(pk=stuck.pk).update(created_at=now - timedelta(days=5))
        return stuck, fresh

    def test_failing_order_does_not_starve_newer_orders(self, db, listing, stripe_mocks):
        stuck, fresh = self._stuck_and_fresh(listing)

        def capture(payment_intent_id, idempotency_key, **kwargs):
            if payment_intent_id == "pi_test_stuck":
                raise StripeInvalidRequestError("No such payment_intent")
            return make_payment_intent(payment_intent_id)

        stripe_mocks.capture.side_effect = capture

        first = ReleaseScheduler.sweep(max_ops=1)
        second = ReleaseScheduler.sweep(max_ops=1)

        assert first.errors == 1
        assert first.capped is True
        assert second.deferred == 1
        assert second.captured == 1
        assert status_of(fresh) == OrderStatus.CAPTURED
        assert status_of(stuck) == OrderStatus.AUTHORIZED

    def test_failed_order_retried_after_backoff(self, db, expired_authorized_order, stripe_mocks):
        stripe_mocks.capture.side_effect = StripeTimeoutError("timed out")
        now = timezone.now()
        ReleaseScheduler.sweep(now=now)

        order = Order.objects.get(pk=expired_authorized_order.pk)
        assert order.settle_failures == 1
        assert order.next_settle_attempt_at == now + timedelta(minutes=15)

        stripe_mocks.capture.side_effect = None
        stripe_mocks.capture.return_value = make_payment_intent("pi_test_expired_authorized")

        assert ReleaseScheduler.sweep(now=now + timedelta(minutes=5)).checked == 0
        report = ReleaseScheduler.sweep(now=now + timedelta(minutes=16))

        assert report.captured == 1
        assert status_of(expired_authorized_order) == OrderStatus.CAPTURED

    def test_backoff_grows_and_is_capped(self):
        assert settle_retry_delay(1) == timedelta(minutes=15)
        assert settle_retry_delay(2) == timedelta(minutes=30)
        assert settle_retry_delay(3) == timedelta(hours=1)
        assert settle_retry_delay(10) == timedelta(hours=6)



class TestRunReleaseSweepTask:
    def test_returns_report(self, db, expired_authorized_order, stripe_mocks):
        result = run_release_sweep()

        assert result["captured"] == 1
