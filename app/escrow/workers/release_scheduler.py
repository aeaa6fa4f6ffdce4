"""
Release scheduler: settles escrowed orders whose confirmation window closed.

For each order in AUTHORIZED or ON_HOLD past its confirm_deadline:
    ON_HOLD    -> auto_cancel  (dispute never resolved, buyer gets the hold back)
    AUTHORIZED -> auto_release (buyer stayed silent, seller gets paid)

The sweep pages through escrowed orders with a keyset cursor on
(created_at, id), so orders settled mid-sweep do not shift later pages.
It stops after max_ops settlement attempts and reports capped=True.

An order whose settlement fails is backed off (next_settle_attempt_at) and
left out of the following sweeps until then, so a PaymentIntent that keeps
failing cannot use up max_ops ahead of newer due orders.

Triggers:
    - Celery beat: run_release_sweep every 15 minutes
    - HTTP: GET|POST /api/v1/escrow/cron/release/ (cron secret)

Usage:
    from escrow.workers.release_scheduler import ReleaseScheduler

    report = ReleaseScheduler.sweep()
    report.to_dict()
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from celery import shared_task
from django.db.models import Q
from django.utils import timezone

from escrow.config import EscrowConfig
from escrow.exceptions import StripeError
from escrow.models import Order
from escrow.state_machines import OrderStatus

logger = logging.getLogger(__name__)


SETTLE_RETRY_BASE_DELAY = timedelta(minutes=15)
SETTLE_RETRY_MAX_DELAY = timedelta(hours=6)


def settle_retry_delay(failures: int) -> timedelta:
    """15m, 30m, 1h, ... capped at 6h between sweep attempts on one order."""
    delay = SETTLE_RETRY_BASE_DELAY * (2 ** max(failures - 1, 0))
    return min(delay, SETTLE_RETRY_MAX_DELAY)


@dataclass
class SweepReport:
    """
    Counters for one release sweep.

    Attributes:
        checked: Escrowed orders examined
        due: Orders past their confirmation deadline
        captured: Orders auto-released
        canceled: Orders auto-canceled
        skipped: Orders finalized concurrently or no longer eligible
        errors: Settlement attempts that failed
        already_final: Subset of skipped that were already captured/canceled
        deferred: Due orders left out because an earlier attempt failed
        capped: True if the sweep stopped at max_ops
    """

    checked: int = 0
    due: int = 0
    captured: int = 0
    canceled: int = 0
    skipped: int = 0
    errors: int = 0
    already_final: int = 0
    deferred: int = 0
    capped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class ReleaseScheduler:
    """Sweeps escrowed orders and applies auto_release / auto_cancel."""

    @classmethod
    def sweep(
        cls,
        max_ops: int | None = None,
        now: datetime | None = None,
        config: EscrowConfig | None = None,
    ) -> SweepReport:
        config = config or EscrowConfig.from_settings()
        now = now or timezone.now()
        max_ops = config.max_ops_per_sweep if max_ops is None else max_ops

        report = SweepReport()
        report.deferred = (
            Order.objects.escrowed().past_deadline(now).settle_deferred(now).count()
        )
        ops = 0

        logger.info(
            "Starting release sweep",
            extra={
                "max_ops": max_ops,
                "page_size": config.sweep_page_size,
                "deferred": report.deferred,
            },
        )

        for order in cls._iter_escrowed(config.sweep_page_size, now):
            report.checked += 1
            if not order.is_past_deadline(now):
                continue

            report.due += 1
            if ops >= max_ops:
                report.capped = True
                break
            ops += 1

            cls._settle(order, now, report)

        logger.info("Release sweep complete", extra=report.to_dict())
        return report

    @staticmethod
    def _iter_escrowed(page_size: int, now: datetime):
        """Yield escrowed orders not backed off, page by page, oldest first."""
        base = Order.objects.escrowed().settle_ready(now).order_by("created_at", "id")
        cursor = None
        while True:
            page_qs = base
            if cursor is not None:
                created_at, order_id = cursor
                page_qs = page_qs.filter(
                    Q(created_at__gt=created_at) | Q(created_at=created_at, id__gt=order_id)
                )
            page = list(page_qs[:page_size])
            if not page:
                return
            yield from page
            if len(page) < page_size:
                return
            cursor = (page[-1].created_at, page[-1].id)

    @classmethod
    def _settle(cls, order: Order, now: datetime, report: SweepReport) -> None:
        # Import here to avoid circular imports
        from escrow.services import EscrowService

        log_context = {
            "order_id": str(order.id),
            "payment_intent_id": order.stripe_payment_intent_id,
            "current_status": order.status,
        }
        on_hold = order.status == OrderStatus.ON_HOLD

        try:
            if on_hold:
                result = EscrowService.auto_cancel(str(order.id), now=now)
            else:
                result = EscrowService.auto_release(str(order.id), now=now)
        except StripeError as e:
            report.errors += 1
            cls._defer(order, now)
            logger.error(
                f"Release sweep settlement failed: {e.message}",
                extra={**log_context, "error_code": e.error_code, "is_retryable": e.is_retryable},
            )
            return
        except Exception:
            report.errors += 1
            cls._defer(order, now)
            logger.exception("Unexpected error during release sweep", extra=log_context)
            return

        if not result.success:
            report.skipped += 1
            cls._defer(order, now)
            logger.info(
                "Order skipped by release sweep",
                extra={**log_context, "error_code": result.error_code},
            )
            return

        if result.data.was_noop:
            report.skipped += 1
            report.already_final += 1
        elif on_hold:
            report.canceled += 1
        else:
            report.captured += 1

    @staticmethod
    def _defer(order: Order, now: datetime) -> None:
        failures = order.settle_failures + 1
        retry_at = now + settle_retry_delay(failures)
        Order.objects.filter(pk=order.pk).update(
            settle_failures=failures,
            next_settle_attempt_at=retry_at,
        )
        logger.info(
            "Order backed off by release sweep",
            extra={
                "order_id": str(order.id),
                "settle_failures": failures,
                "next_settle_attempt_at": retry_at.isoformat(),
            },
        )


# =============================================================================
# Celery Task
# =============================================================================


@shared_task(bind=True, acks_late=True)
def run_release_sweep(self, max_ops: int | None = None) -> dict:
    """
    Periodic release sweep (celery-beat, every 15 minutes).

    Per-order failures are counted, logged and backed off; the task itself
    succeeds so the next scheduled run picks up whatever was left.
    """
    return ReleaseScheduler.sweep(max_ops=max_ops).to_dict()


__all__ = ["ReleaseScheduler", "SweepReport", "run_release_sweep"]
