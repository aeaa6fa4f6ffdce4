"""
Settlement executor: performs the money movement for an escrow decision.

Capture releases the buyer's held funds to the platform and is followed by
the seller payout transfer. Cancel releases the authorization back to the
buyer. The executor never decides *whether* to settle; EscrowService checks
preconditions and holds the order row lock while calling it, so two
concurrent settlements of the same order are serialized and only one
reaches Stripe.

Idempotency keys are derived from the PaymentIntent ID:
    capture:{pi}   cancel:{pi}   transfer:{pi}
A timed-out call retried later reuses the same key, so Stripe performs
the operation at most once. A transfer that Stripe definitively rejected
created nothing, so its next attempt gets a fresh key (transfer:{pi}:{n})
instead of replaying the stored rejection.

If Stripe reports the PaymentIntent already went the other way (captured
when we wanted to cancel, or canceled when we wanted to capture) the order
follows Stripe and the result is flagged as reconciled.

Usage:
    from escrow.workers.settlement_executor import SettlementExecutor

    with transaction.atomic():
        order = Order.objects.select_for_update().get(id=order_id)
        result = SettlementExecutor.execute(order, SettlementDecision.CAPTURE)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from escrow.adapters import PaymentIntentResult, StripeAdapter
from escrow.exceptions import (
    ListingNotFoundError,
    SettlementConflictError,
    StripeError,
    StripeUnexpectedStateError,
)
from escrow.inventory import InventoryService
from escrow.models import Order
from escrow.state_machines import OrderStatus, SettlementDecision, TransferStatus

logger = logging.getLogger(__name__)


# Stripe accepts only a fixed set of cancellation reasons.
STRIPE_CANCELLATION_REASONS = {
    "buyer_canceled": "requested_by_customer",
    "dispute_expired": "abandoned",
}

# Failed transfers back off exponentially so the last attempts land past
# Stripe's 24 hour idempotency replay window.
TRANSFER_RETRY_BASE_DELAY = timedelta(minutes=30)
TRANSFER_RETRY_MAX_DELAY = timedelta(hours=24)


def capture_idempotency_key(payment_intent_id: str) -> str:
    return f"capture:{payment_intent_id}"


def cancel_idempotency_key(payment_intent_id: str) -> str:
    return f"cancel:{payment_intent_id}"


def transfer_idempotency_key(payment_intent_id: str, attempt: int | None = None) -> str:
    if attempt:
        return f"transfer:{payment_intent_id}:{attempt}"
    return f"transfer:{payment_intent_id}"


def transfer_retry_delay(attempts: int) -> timedelta:
    """30m, 2h, 8h, then 24h between transfer attempts."""
    delay = TRANSFER_RETRY_BASE_DELAY * (4 ** max(attempts - 1, 0))
    return min(delay, TRANSFER_RETRY_MAX_DELAY)


@dataclass
class SettlementResult:
    """
    Outcome of a capture or cancel.

    Attributes:
        decision: What actually happened (capture or cancel)
        payment_intent_status: PaymentIntent status reported by Stripe
        amount_captured_cents: Amount captured (capture only)
        charge_id: Charge created by the capture
        transfer_id: Seller transfer ID if the payout succeeded
        reconciled: Stripe had already settled the other way and the order
            was updated to match instead of performing the decision
        warnings: Non-fatal problems (failed transfer, missing listing)
    """

    decision: str
    payment_intent_status: str | None = None
    amount_captured_cents: int | None = None
    charge_id: str | None = None
    transfer_id: str | None = None
    reconciled: bool = False
    warnings: list[str] = field(default_factory=list)


class SettlementExecutor:
    """
    Executes capture/cancel against Stripe and records the result on the Order.

    The order passed in must be locked with select_for_update() inside the
    caller's transaction. If Stripe raises a transient error the exception
    propagates, the caller's transaction rolls back and the order keeps its
    previous status.
    """

    @classmethod
    def execute(
        cls,
        order: Order,
        decision: str,
        *,
        reason: str | None = None,
        amount_to_capture: int | None = None,
    ) -> SettlementResult:
        """
        Capture or cancel the order's PaymentIntent.

        Raises:
            SettlementConflictError: PaymentIntent is in a state the order
                cannot follow (neither captured nor canceled)
            StripeError: Stripe call failed (retryable errors keep the order
                unchanged)
        """
        if not order.stripe_payment_intent_id:
            raise SettlementConflictError(
                "Order has no PaymentIntent to settle",
                details={"current_status": order.status, "order_id": str(order.id)},
            )

        if decision == SettlementDecision.CAPTURE:
            return cls._capture(order, amount_to_capture)
        if decision == SettlementDecision.CANCEL:
            return cls._cancel(order, reason or "")
        raise ValueError(f"Unknown settlement decision: {decision}")

    # =========================================================================
    # Capture
    # =========================================================================

    @classmethod
    def _capture(cls, order: Order, amount_to_capture: int | None) -> SettlementResult:
        pi_id = order.stripe_payment_intent_id
        capture_kwargs = {}
        if amount_to_capture is not None:
            capture_kwargs["amount_to_capture"] = amount_to_capture

        try:
            intent = StripeAdapter.capture_payment_intent(
                payment_intent_id=pi_id,
                idempotency_key=capture_idempotency_key(pi_id),
                **capture_kwargs,
            )
        except StripeUnexpectedStateError as e:
            intent = cls._resolve_unexpected_state(order, e)
            if intent.canceled:
                order.record_cancellation()
                order.save()
                return cls._after_cancel(order, intent, reconciled=True)

        order.capture(
            amount_captured_cents=intent.amount_received_cents or None,
            charge_id=intent.latest_charge or "",
        )
        order.save()
        return cls._after_capture(order, intent)

    @classmethod
    def _after_capture(
        cls,
        order: Order,
        intent: PaymentIntentResult,
        reconciled: bool = False,
    ) -> SettlementResult:
        pi_id = order.stripe_payment_intent_id
        log_context = {"order_id": str(order.id), "payment_intent_id": pi_id}

        logger.info(
            "Order captured",
            extra={
                **log_context,
                "amount_captured_cents": intent.amount_received_cents,
                "reconciled": reconciled,
            },
        )

        result = SettlementResult(
            decision=SettlementDecision.CAPTURE,
            payment_intent_status=intent.status,
            amount_captured_cents=intent.amount_received_cents,
            charge_id=intent.latest_charge,
            reconciled=reconciled,
        )

        if order.transfer_status == TransferStatus.PENDING:
            warning = cls.transfer_payout(order)
            if warning:
                result.warnings.append(warning)
            result.transfer_id = order.stripe_transfer_id or None

        try:
            InventoryService.decrement_for_order(order)
        except ListingNotFoundError:
            logger.warning("Listing missing, inventory not decremented", extra=log_context)
            result.warnings.append("listing_not_found")

        cls.schedule_mirror_update(
            pi_id,
            {"fep_status": OrderStatus.CAPTURED.value, "fep_captured_at": _epoch_now()},
        )
        return result

    @classmethod
    def transfer_payout(cls, order: Order) -> str | None:
        """
        Transfer the seller payout for a captured order.

        Failure never undoes the capture: the error is recorded on the
        order (transfer_status=failed) together with the earliest retry
        time, and returned as a warning for retry_failed_transfers.

        The key of the next attempt depends on how this one failed. When
        the outcome is unknown (retryable error) it is kept, so a transfer
        that did go through is replayed rather than duplicated. A
        definitive rejection created no transfer, and the key is rotated.

        Returns:
            None on success, otherwise a warning string
        """
        pi_id = order.stripe_payment_intent_id
        idempotency_key = order.transfer_idempotency_key or transfer_idempotency_key(pi_id)
        order.transfer_attempts += 1
        try:
            transfer = StripeAdapter.create_transfer(
                amount_cents=order.payout_due_cents,
                destination_account=order.seller_account_id,
                idempotency_key=idempotency_key,
                currency=order.currency,
                source_transaction=order.stripe_charge_id or None,
                metadata={
                    "order_id": str(order.id),
                    "payment_intent_id": pi_id,
                    "listing_id": order.listing_id,
                },
            )
        except StripeError as e:
            order.transfer_status = TransferStatus.FAILED
            order.transfer_error = str(e)
            order.next_transfer_attempt_at = timezone.now() + transfer_retry_delay(
                order.transfer_attempts
            )
            if e.is_retryable:
                order.transfer_idempotency_key = idempotency_key
            else:
                order.transfer_idempotency_key = transfer_idempotency_key(
                    pi_id, order.transfer_attempts
                )
            order.save(
                update_fields=[
                    "transfer_status",
                    "transfer_error",
                    "transfer_attempts",
                    "transfer_idempotency_key",
                    "next_transfer_attempt_at",
                    "version",
                    "updated_at",
                ]
            )
            logger.warning(
                "Seller transfer failed",
                extra={
                    "order_id": str(order.id),
                    "payment_intent_id": pi_id,
                    "idempotency_key": idempotency_key,
                    "error_code": e.error_code,
                    "is_retryable": e.is_retryable,
                    "transfer_attempts": order.transfer_attempts,
                },
            )
            return f"transfer_failed: {e.message}"

        order.transfer_status = TransferStatus.SUCCEEDED
        order.stripe_transfer_id = transfer.id
        order.transfer_error = ""
        order.transfer_idempotency_key = idempotency_key
        order.next_transfer_attempt_at = None
        order.save(
            update_fields=[
                "transfer_status",
                "stripe_transfer_id",
                "transfer_error",
                "transfer_attempts",
                "transfer_idempotency_key",
                "next_transfer_attempt_at",
                "version",
                "updated_at",
            ]
        )
        logger.info(
            "Seller transfer created",
            extra={
                "order_id": str(order.id),
                "payment_intent_id": pi_id,
                "transfer_id": transfer.id,
                "amount_cents": transfer.amount_cents,
            },
        )
        return None

    # =========================================================================
    # Cancel
    # =========================================================================

    @classmethod
    def _cancel(cls, order: Order, reason: str) -> SettlementResult:
        pi_id = order.stripe_payment_intent_id

        try:
            intent = StripeAdapter.cancel_payment_intent(
                payment_intent_id=pi_id,
                idempotency_key=cancel_idempotency_key(pi_id),
                reason=STRIPE_CANCELLATION_REASONS.get(reason),
            )
        except StripeUnexpectedStateError as e:
            intent = cls._resolve_unexpected_state(order, e)
            if intent.captured:
                order.record_capture(
                    amount_captured_cents=intent.amount_received_cents or None,
                    charge_id=intent.latest_charge or "",
                )
                order.save()
                return cls._after_capture(order, intent, reconciled=True)

        order.cancel(reason=reason)
        order.save()
        return cls._after_cancel(order, intent)

    @classmethod
    def _after_cancel(
        cls,
        order: Order,
        intent: PaymentIntentResult,
        reconciled: bool = False,
    ) -> SettlementResult:
        pi_id = order.stripe_payment_intent_id
        logger.info(
            "Order canceled",
            extra={
                "order_id": str(order.id),
                "payment_intent_id": pi_id,
                "reason": order.cancel_reason,
                "reconciled": reconciled,
            },
        )

        cls.schedule_mirror_update(
            pi_id,
            {"fep_status": OrderStatus.CANCELED.value, "fep_canceled_at": _epoch_now()},
        )
        return SettlementResult(
            decision=SettlementDecision.CANCEL,
            payment_intent_status=intent.status,
            reconciled=reconciled,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _resolve_unexpected_state(
        cls,
        order: Order,
        error: StripeUnexpectedStateError,
    ) -> PaymentIntentResult:
        """
        Stripe refused the call because the PaymentIntent is not in the
        state we expected. Return it if it is already captured or canceled
        (by an earlier attempt, the dashboard or an expired authorization);
        anything else cannot be mapped onto the order.
        """
        intent = StripeAdapter.retrieve_payment_intent(order.stripe_payment_intent_id)
        if intent.captured or intent.canceled:
            logger.info(
                "PaymentIntent already settled at Stripe",
                extra={
                    "order_id": str(order.id),
                    "payment_intent_id": intent.id,
                    "status": intent.status,
                },
            )
            return intent

        raise SettlementConflictError(
            "PaymentIntent is not in a settleable state",
            details={
                "current_status": order.status,
                "payment_intent_status": intent.status,
            },
        ) from error

    @classmethod
    def schedule_mirror_update(cls, payment_intent_id: str, metadata: dict[str, str]) -> None:
        """Update the Stripe metadata mirror once the transaction commits."""
        transaction.on_commit(
            lambda: cls.update_mirror(payment_intent_id, metadata),
        )

    @classmethod
    def update_mirror(cls, payment_intent_id: str, metadata: dict[str, str]) -> None:
        """Best-effort metadata mirror update; failures are only logged."""
        try:
            StripeAdapter.update_payment_intent_metadata(payment_intent_id, metadata)
        except StripeError as e:
            logger.warning(
                "Failed to update PaymentIntent metadata mirror",
                extra={
                    "payment_intent_id": payment_intent_id,
                    "error_code": e.error_code,
                },
            )


def _epoch_now() -> str:
    return str(int(timezone.now().timestamp()))
