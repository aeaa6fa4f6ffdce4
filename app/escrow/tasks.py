"""
Celery tasks for escrow processing.

This module provides async tasks for:
- Processing stored Stripe webhook events against their order
- Re-queuing failed events and events whose queueing was lost
- Resetting events stuck in processing by a dead worker

Settlement tasks (release sweep, transfer retry) live in escrow.workers
and are re-exported here so Celery autodiscovery finds them.

Usage:
    from escrow.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))

    # Run the release sweep now instead of waiting for celery-beat
    from escrow.tasks import run_release_sweep
    run_release_sweep.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.db import models, transaction
from django.utils import timezone

from escrow.models import WebhookEvent
from escrow.models.webhook_event import MAX_WEBHOOK_RETRIES
from escrow.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30

# Pending events older than this were never queued (broker down at intake)
STALE_PENDING_THRESHOLD_MINUTES = 10

# Maximum failed webhooks re-queued per run
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored Stripe webhook event.

    This task:
    1. Loads the WebhookEvent by ID
    2. Skips it if already processed
    3. Marks it as processing
    4. Dispatches to the registered handler inside a transaction
    5. Marks it as processed or failed

    Raises:
        Exception: Re-raised to trigger Celery retry
    """
    # Import here to avoid circular imports
    from escrow.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    logger.info(
        "Processing webhook event",
        extra={"webhook_event_id": str(webhook_event_id)},
    )

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.status == WebhookEventStatus.PROCESSED:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        return {
            "status": "already_processed",
            "webhook_event_id": str(webhook_event_id),
        }

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
            "order_reference": webhook_event.order_reference,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)

        if result.success:
            webhook_event.mark_processed()
            webhook_event.save()
            logger.info(
                "Webhook processed successfully",
                extra={
                    "webhook_event_id": str(webhook_event_id),
                    "stripe_event_id": webhook_event.stripe_event_id,
                    "order_reference": webhook_event.order_reference,
                },
            )
            return {
                "status": "processed",
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "order_reference": webhook_event.order_reference,
            }

        error_msg = result.error or "Handler returned failure"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.warning(
            f"Webhook handler failed: {error_msg}",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "error": error_msg,
                "error_code": result.error_code,
                "order_reference": webhook_event.order_reference,
            },
        )
        return {
            "status": "handler_failed",
            "webhook_event_id": str(webhook_event_id),
            "error": error_msg,
        }

    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()

        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "error": error_msg,
            },
        )

        # Re-raise to trigger Celery retry
        raise


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue webhook events that did not get processed.

    Picks up FAILED events with retries left, and PENDING events older than
    STALE_PENDING_THRESHOLD_MINUTES whose intake could not reach the broker.

    Scheduled via celery-beat (see migration 0002_add_escrow_schedules).
    """
    stale_before = timezone.now() - timedelta(minutes=STALE_PENDING_THRESHOLD_MINUTES)
    unprocessed = WebhookEvent.objects.filter(
        models.Q(status=WebhookEventStatus.FAILED, retry_count__lt=MAX_WEBHOOK_RETRIES)
        | models.Q(status=WebhookEventStatus.PENDING, created_at__lt=stale_before)
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in unprocessed:
        try:
            process_webhook_event.delay(str(webhook.id))
            queued_count += 1
            logger.info(
                "Queued webhook for retry",
                extra={
                    "webhook_event_id": str(webhook.id),
                    "stripe_event_id": webhook.stripe_event_id,
                    "order_reference": webhook.order_reference,
                    "status": webhook.status,
                    "retry_count": webhook.retry_count,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )

    logger.info(
        f"Queued {queued_count} webhooks for retry",
        extra={"queued_count": queued_count},
    )

    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Reset webhooks stuck in PROCESSING to FAILED so they are retried.

    Handles workers that died mid-processing.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================

from escrow.workers import (  # noqa: E402, F401
    retry_failed_transfers,
    run_release_sweep,
)
