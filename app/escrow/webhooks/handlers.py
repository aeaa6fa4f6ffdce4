"""
Webhook event handlers for Stripe events.

Webhooks reconcile the Order row with what Stripe reports. They never call
Stripe back: a capture or cancellation Stripe reports is recorded as-is,
because Stripe is the authority on what already happened to the money.

Handled events:
    checkout.session.completed             PENDING -> AUTHORIZED (paid sessions)
    checkout.session.expired               PENDING -> CANCELED
    payment_intent.amount_capturable_updated PENDING -> AUTHORIZED
    payment_intent.succeeded               -> CAPTURED, inventory decrement
    payment_intent.canceled                -> CANCELED

Usage:
    from escrow.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from django.db import transaction

from core.services import ServiceResult
from escrow.exceptions import ListingNotFoundError
from escrow.inventory import InventoryService
from escrow.models import Order, WebhookEvent
from escrow.services import EscrowService
from escrow.state_machines import OrderStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("payment_intent.succeeded")
        def handle_payment_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged with success so Stripe does not
    keep redelivering events this service does not subscribe to.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event)


# =============================================================================
# Helpers
# =============================================================================


def _invalid_payload(webhook_event: WebhookEvent, field_name: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: Could not extract {field_name}",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {field_name} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


def _metadata_order_id(obj: dict) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("order_id") or None


def _resolve_reference(primary: str, obj: dict) -> str | None:
    """
    Pick the reference that identifies an order for this Stripe object.

    The Stripe object id is tried first; the order_id written into metadata
    at checkout covers events that arrive before the PaymentIntent is
    attached to the order.
    """
    if Order.objects.by_reference(primary).exists():
        return primary
    order_id = _metadata_order_id(obj)
    if order_id and Order.objects.by_reference(order_id).exists():
        return order_id
    return None


def _lock_order(primary: str, obj: dict) -> Order | None:
    """Row-lock the order for a Stripe object. Must run inside a transaction."""
    order = Order.objects.select_for_update().by_reference(primary).first()
    if order is None:
        order_id = _metadata_order_id(obj)
        if order_id:
            order = Order.objects.select_for_update().by_reference(order_id).first()
    return order


def _authorize(
    webhook_event: WebhookEvent,
    reference: str,
    payment_intent_id: str,
) -> ServiceResult:
    result = EscrowService.record_authorization(reference, payment_intent_id)
    if result.success:
        return result

    if result.error_code == "INVALID_STATE_TRANSITION":
        # Funds held for an order that was already canceled; Stripe will
        # release the uncaptured authorization on its own.
        logger.warning(
            "Authorization reported for a canceled order",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "reference": reference,
                "payment_intent_id": payment_intent_id,
            },
        )
        return ServiceResult.success(None)

    return result


# =============================================================================
# Checkout Session Handlers
# =============================================================================


@register_handler("checkout.session.completed")
def handle_checkout_session_completed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Buyer finished checkout.

    For card payments the session is already paid and its PaymentIntent is
    in requires_capture, so the order becomes AUTHORIZED here. Sessions
    that are not paid yet (delayed payment methods) are left PENDING.
    """
    session = webhook_event.get_object()
    session_id = session.get("id")

    if not session_id:
        return _invalid_payload(webhook_event, "checkout_session_id")

    payment_intent_id = session.get("payment_intent") or ""
    payment_status = session.get("payment_status")

    logger.info(
        "Processing checkout.session.completed",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "checkout_session_id": session_id,
            "payment_intent_id": payment_intent_id,
            "payment_status": payment_status,
        },
    )

    reference = _resolve_reference(session_id, session)
    if reference is None:
        if _metadata_order_id(session):
            logger.warning(
                "Order not found for completed checkout session",
                extra={"checkout_session_id": session_id},
            )
            return ServiceResult.failure(
                f"Order not found for checkout session: {session_id}",
                error_code="ORDER_NOT_FOUND",
            )
        # Not one of ours
        logger.info(
            "Ignoring checkout session without an escrow order",
            extra={"checkout_session_id": session_id},
        )
        return ServiceResult.success(None)

    if payment_status != "paid" or not payment_intent_id:
        logger.info(
            "Checkout session not paid yet, order stays pending",
            extra={"checkout_session_id": session_id, "payment_status": payment_status},
        )
        return ServiceResult.success(None)

    return _authorize(webhook_event, reference, payment_intent_id)


@register_handler("checkout.session.expired")
def handle_checkout_session_expired(webhook_event: WebhookEvent) -> ServiceResult:
    """Buyer abandoned checkout; cancel the pending order."""
    session = webhook_event.get_object()
    session_id = session.get("id")

    if not session_id:
        return _invalid_payload(webhook_event, "checkout_session_id")

    with transaction.atomic():
        order = _lock_order(session_id, session)

        if not order:
            logger.info(
                "Order not found for expired checkout session (OK)",
                extra={"checkout_session_id": session_id},
            )
            return ServiceResult.success(None)

        if order.status == OrderStatus.PENDING:
            order.expire_checkout()
            order.save()
            logger.info(
                "Pending order canceled after checkout expiry",
                extra={"order_id": str(order.id), "checkout_session_id": session_id},
            )

        return ServiceResult.success(order)


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.amount_capturable_updated")
def handle_payment_intent_amount_capturable_updated(
    webhook_event: WebhookEvent,
) -> ServiceResult:
    """
    The card hold is in place (PaymentIntent in requires_capture).

    Covers the case where this event arrives before
    checkout.session.completed.
    """
    payment_intent = webhook_event.get_object()
    payment_intent_id = payment_intent.get("id")

    if not payment_intent_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    if payment_intent.get("status") != "requires_capture":
        logger.info(
            "PaymentIntent not awaiting capture, ignoring",
            extra={
                "payment_intent_id": payment_intent_id,
                "status": payment_intent.get("status"),
            },
        )
        return ServiceResult.success(None)

    reference = _resolve_reference(payment_intent_id, payment_intent)
    if reference is None:
        logger.info(
            "Order not found for capturable PaymentIntent (OK)",
            extra={"payment_intent_id": payment_intent_id},
        )
        return ServiceResult.success(None)

    return _authorize(webhook_event, reference, payment_intent_id)


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Funds captured.

    Captures performed by this service were already recorded; this event
    then only makes sure inventory was decremented. A capture made
    elsewhere (e.g. from the Stripe dashboard) is recorded on the order and
    its seller transfer is left for retry_failed_transfers.
    """
    payment_intent = webhook_event.get_object()
    payment_intent_id = payment_intent.get("id")

    if not payment_intent_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    logger.info(
        "Processing payment_intent.succeeded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
        },
    )

    with transaction.atomic():
        order = _lock_order(payment_intent_id, payment_intent)

        if not order:
            logger.info(
                "Order not found for succeeded PaymentIntent (OK)",
                extra={"payment_intent_id": payment_intent_id},
            )
            return ServiceResult.success(None)

        if order.status == OrderStatus.CANCELED:
            logger.error(
                "Stripe reports capture for a canceled order",
                extra={"order_id": str(order.id), "payment_intent_id": payment_intent_id},
            )
            return ServiceResult.failure(
                f"Order {order.id} is canceled but PaymentIntent succeeded",
                error_code="ORDER_STATE_CONFLICT",
            )

        if order.status != OrderStatus.CAPTURED:
            if not order.stripe_payment_intent_id:
                order.stripe_payment_intent_id = payment_intent_id
            order.record_capture(
                amount_captured_cents=payment_intent.get("amount_received"),
                charge_id=payment_intent.get("latest_charge") or "",
            )
            order.save()
            logger.info(
                "Recorded capture reported by Stripe",
                extra={"order_id": str(order.id), "payment_intent_id": payment_intent_id},
            )

        try:
            InventoryService.decrement_for_order(order)
        except ListingNotFoundError:
            logger.warning(
                "Listing not found for captured order, inventory unchanged",
                extra={"order_id": str(order.id), "listing_id": order.listing_id},
            )

        return ServiceResult.success(order)


@register_handler("payment_intent.canceled")
def handle_payment_intent_canceled(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Authorization released.

    Happens when this service cancels, when the authorization expires at
    Stripe, or when someone cancels from the dashboard.
    """
    payment_intent = webhook_event.get_object()
    payment_intent_id = payment_intent.get("id")

    if not payment_intent_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    with transaction.atomic():
        order = _lock_order(payment_intent_id, payment_intent)

        if not order:
            logger.info(
                "Order not found for canceled PaymentIntent (OK)",
                extra={"payment_intent_id": payment_intent_id},
            )
            return ServiceResult.success(None)

        if order.status == OrderStatus.CANCELED:
            return ServiceResult.success(order)

        if order.status == OrderStatus.CAPTURED:
            logger.error(
                "Stripe reports cancellation for a captured order",
                extra={"order_id": str(order.id), "payment_intent_id": payment_intent_id},
            )
            return ServiceResult.failure(
                f"Order {order.id} is captured but PaymentIntent was canceled",
                error_code="ORDER_STATE_CONFLICT",
            )

        order.record_cancellation(reason=payment_intent.get("cancellation_reason") or "")
        order.save()
        logger.info(
            "Recorded cancellation reported by Stripe",
            extra={
                "order_id": str(order.id),
                "payment_intent_id": payment_intent_id,
                "cancel_reason": order.cancel_reason,
            },
        )

        return ServiceResult.success(order)
