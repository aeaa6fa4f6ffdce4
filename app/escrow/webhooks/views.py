"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the webhook signature
2. Acknowledges event types no handler is registered for without storing them
3. Creates/retrieves the WebhookEvent record with its order reference (idempotent)
4. Queues the event for async processing
5. Returns immediately

Usage:
    # In urls.py
    from escrow.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from escrow.adapters import StripeAdapter
from escrow.exceptions import EscrowConfigurationError, StripeInvalidRequestError
from escrow.models import WebhookEvent
from escrow.state_machines import WebhookEventStatus
from escrow.webhooks.handlers import WEBHOOK_HANDLERS

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue Stripe webhook events.

    Stripe expects a 2xx response within 20 seconds, so the event is only
    stored here and processed by the process_webhook_event task.

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - Events already processed return 200 without being queued again

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate) or ignored (unhandled type)
        - 400: Missing or invalid signature, or malformed event
        - 500: Webhook secret not configured
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    # Step 1: Verify signature
    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except EscrowConfigurationError:
        logger.error("Stripe webhook secret is not configured")
        return HttpResponse("Webhook not configured", status=500)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)
    except Exception as e:
        logger.error(
            f"Unexpected error verifying webhook: {type(e).__name__}",
            exc_info=True,
        )
        return HttpResponse("Verification error", status=400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    if event_type not in WEBHOOK_HANDLERS:
        logger.debug(
            f"Ignoring unhandled Stripe webhook: {event_type}",
            extra={"stripe_event_id": stripe_event_id},
        )
        return HttpResponse("Ignored", status=200)

    order_reference = WebhookEvent.reference_from_payload(event_data)
    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={
            "stripe_event_id": stripe_event_id,
            "event_type": event_type,
            "order_reference": order_reference,
        },
    )

    # Step 2: Create/get WebhookEvent (idempotent)
    webhook_event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id=stripe_event_id,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "order_reference": order_reference,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created:
        if webhook_event.status == WebhookEventStatus.PROCESSED:
            logger.info(
                "Webhook already processed, returning success",
                extra={"stripe_event_id": stripe_event_id},
            )
            return HttpResponse("Already processed", status=200)

        logger.info(
            f"Webhook already exists with status: {webhook_event.status}",
            extra={"stripe_event_id": stripe_event_id},
        )

    # Step 3: Queue for async processing
    try:
        from escrow.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
        logger.info(
            "Webhook queued for processing",
            extra={
                "stripe_event_id": stripe_event_id,
                "webhook_event_id": str(webhook_event.id),
            },
        )
    except Exception as e:
        # Stored PENDING event is re-queued by retry_failed_webhooks
        logger.error(
            f"Failed to queue webhook: {type(e).__name__}",
            extra={"stripe_event_id": stripe_event_id},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)
