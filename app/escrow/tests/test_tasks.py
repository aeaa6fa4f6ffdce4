"""
Tests for escrow Celery tasks.

Tasks are called directly (synchronously); .delay is patched where a task
queues another one.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from escrow.models import Order, WebhookEvent
from escrow.models.webhook_event import MAX_WEBHOOK_RETRIES
from escrow.state_machines import OrderStatus, WebhookEventStatus
from escrow.tasks import (
    cleanup_stuck_webhooks,
    process_webhook_event,
    retry_failed_webhooks,
)
from escrow.tests.factories import WebhookEventFactory, stripe_event


# =============================================================================
# process_webhook_event
# =============================================================================


class TestProcessWebhookEvent:
    def test_processes_event(self, db, pending_order):
        session = {
            "id": pending_order.stripe_checkout_session_id,
            "payment_status": "paid",
            "payment_intent": "pi_test_task",
        }
        event = WebhookEventFactory(
            event_type="checkout.session.completed",
            payload=stripe_event("checkout.session.completed", session),
        )

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 1
        assert result["order_reference"] == event.order_reference
        assert Order.objects.get(pk=pending_order.pk).status == OrderStatus.AUTHORIZED

    def test_unknown_event_type_is_processed(self, db):
        event = WebhookEventFactory(event_type="invoice.paid")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"

    def test_handler_failure_marks_failed(self, db):
        event = WebhookEventFactory(event_type="payment_intent.succeeded")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert "payment_intent_id" in event.error_message

    def test_exception_marks_failed_and_reraises(self, db):
        event = WebhookEventFactory(event_type="payment_intent.succeeded")

        with patch(
            "escrow.webhooks.handlers.dispatch_webhook",
            side_effect=RuntimeError("db went away"),
        ):
            with pytest.raises(RuntimeError):
                process_webhook_event(str(event.id))

        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: db went away"

    def test_already_processed_is_skipped(self, db):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"

    def test_missing_event(self, db):
        result = process_webhook_event("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "not_found"


# =============================================================================
# Maintenance Tasks
# =============================================================================


class TestRetryFailedWebhooks:
    def test_queues_failed_events_with_retries_left(self, db):
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        with patch("escrow.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        mock_delay.assert_called_once_with(str(retryable.id))

    def test_queues_pending_events_that_were_never_queued(self, db):
        lost = WebhookEventFactory(status=WebhookEventStatus.PENDING)
        WebhookEventFactory(status=WebhookEventStatus.PENDING)
        WebhookEvent.objects.filter(pk=lost.pk).update(
            created_at=timezone.now() - timedelta(hours=1)
        )

        with patch("escrow.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        mock_delay.assert_called_once_with(str(lost.id))


class TestCleanupStuckWebhooks:
    def test_resets_old_processing_events(self, db):
        stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        fresh = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=stuck.pk).update(
            updated_at=timezone.now() - timedelta(hours=1)
        )

        result = cleanup_stuck_webhooks()

        assert result == {"reset_count": 1}
        assert WebhookEvent.objects.get(pk=stuck.pk).status == WebhookEventStatus.FAILED
        assert WebhookEvent.objects.get(pk=fresh.pk).status == WebhookEventStatus.PROCESSING

