"""
Periodic retry of seller payout transfers.

A capture is never undone because its transfer failed. Instead the order
keeps transfer_status=failed and this task tries again once
next_transfer_attempt_at has passed. SettlementExecutor.transfer_payout
chooses the key: the same one after an unknown outcome, so Stripe creates
the transfer at most once, and a fresh one after a definitive rejection,
so a fixed seller account is not answered with the stored rejection.

Orders left in transfer_status=pending (the worker died between capture
and transfer) are picked up once they are older than STRANDED_AFTER.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.db import models, transaction
from django.utils import timezone

from escrow.models import Order
from escrow.state_machines import OrderStatus, TransferStatus
from escrow.workers.settlement_executor import SettlementExecutor

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum orders to process per run
BATCH_SIZE = 100

# Transfers are abandoned (left for manual review) after this many attempts
MAX_TRANSFER_ATTEMPTS = 5

# Pending transfers older than this are treated as stranded
STRANDED_AFTER = timedelta(minutes=15)


def transfers_due(now):
    """Captured orders whose seller transfer should be attempted now."""
    return (
        Order.objects.filter(
            status=OrderStatus.CAPTURED,
            transfer_attempts__lt=MAX_TRANSFER_ATTEMPTS,
        )
        .filter(
            models.Q(
                transfer_status=TransferStatus.FAILED,
                next_transfer_attempt_at__isnull=True,
            )
            | models.Q(
                transfer_status=TransferStatus.FAILED,
                next_transfer_attempt_at__lte=now,
            )
            | models.Q(
                transfer_status=TransferStatus.PENDING,
                captured_at__lt=now - STRANDED_AFTER,
            )
        )
        .order_by("captured_at")
    )


@shared_task(bind=True, acks_late=True)
def retry_failed_transfers(self) -> dict:
    """
    Retry seller transfers for captured orders.

    Returns:
        Dict with:
        - retried: Orders a transfer was attempted for
        - succeeded: Transfers created
        - failed: Transfers that failed again
        - skipped: Orders whose state changed under the lock
    """
    logger.info("Starting failed transfer retry scan")

    candidates = transfers_due(timezone.now()).values_list("id", flat=True)[:BATCH_SIZE]
    stats = {"retried": 0, "succeeded": 0, "failed": 0, "skipped": 0}

    for order_id in list(candidates):
        with transaction.atomic():
            order = Order.objects.select_for_update().get(id=order_id)

            # Double-check under lock
            if order.transfer_status not in (TransferStatus.FAILED, TransferStatus.PENDING):
                stats["skipped"] += 1
                continue

            stats["retried"] += 1
            warning = SettlementExecutor.transfer_payout(order)

        if warning:
            stats["failed"] += 1
            if order.transfer_attempts >= MAX_TRANSFER_ATTEMPTS:
                logger.error(
                    "Seller transfer abandoned after max attempts",
                    extra={
                        "order_id": str(order.id),
                        "payment_intent_id": order.stripe_payment_intent_id,
                        "transfer_error": order.transfer_error,
                    },
                )
        else:
            stats["succeeded"] += 1

    logger.info(
        "Failed transfer retry scan complete",
        extra=stats,
    )
    return stats


__all__ = ["retry_failed_transfers", "transfers_due", "MAX_TRANSFER_ATTEMPTS"]
