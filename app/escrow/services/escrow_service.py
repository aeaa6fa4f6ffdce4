"""
Escrow service: the order state machine and its operations.

Every state-changing operation follows the same shape:

    1. Open a transaction and lock the order row (select_for_update)
    2. Re-check the status observed under the lock
    3. Return an idempotent success if the order already reached the
       requested state, or a failure carrying details.current_status if
       the precondition does not hold
    4. Otherwise apply the transition (and the Stripe settlement, which
       runs while the lock is held)

Expected failures (validation, missing order, state preconditions) are
returned as ServiceResult.failure. Stripe errors are raised so that API
callers and Celery tasks can decide whether to retry.

Usage:
    from escrow.services import EscrowService

    result = EscrowService.confirm_receipt("pi_123")
    if result.success and result.data.already_captured:
        ...
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult
from escrow.adapters import CreateCheckoutSessionParams, StripeAdapter
from escrow.config import EscrowConfig
from escrow.exceptions import (
    DeadlineExpiredError,
    EscrowConfigurationError,
    EscrowValidationError,
    InvalidCaptureAmountError,
    InvalidStateTransitionError,
    ListingNotFoundError,
    OrderMarkedSentError,
    OrderNotFoundError,
    OrderOnHoldError,
    SettlementConflictError,
    StripeError,
)
from escrow.fees import check_price_cap, compute_fees
from escrow.inventory import InventoryService
from escrow.models import Order
from escrow.services.types import CheckoutResult, OrderStatusView, TransitionResult
from escrow.state_machines import OrderStatus, SettlementDecision
from escrow.workers.settlement_executor import SettlementExecutor, SettlementResult

if TYPE_CHECKING:
    from escrow.fees import FeeBreakdown
    from escrow.inventory import Listing


class EscrowService(BaseService):
    """
    Operations on escrowed ticket orders.

    State Flow:
        authorize            -> PENDING
        record_authorization   PENDING -> AUTHORIZED
        report_issue           AUTHORIZED -> ON_HOLD
        confirm_receipt        AUTHORIZED -> CAPTURED     (buyer, before deadline)
        buyer_cancel           AUTHORIZED -> CANCELED     (before tickets are sent)
        auto_release           AUTHORIZED -> CAPTURED     (scheduler, after deadline)
        auto_cancel            ON_HOLD -> CANCELED        (scheduler, after deadline)
        mark_sent              AUTHORIZED, sets sent_at
        operator_capture       AUTHORIZED -> CAPTURED     (operator, full or partial)

    All operations accept an order reference: PaymentIntent ID (pi_...),
    Checkout Session ID (cs_...) or order UUID.
    """

    # =========================================================================
    # Checkout
    # =========================================================================

    @classmethod
    def authorize(
        cls,
        listing_id: str,
        quantity: int,
        base_url: str | None,
        buyer_email: str | None = None,
        config: EscrowConfig | None = None,
    ) -> ServiceResult[CheckoutResult]:
        """
        Start a purchase: price-check, freeze fees and open a Checkout Session.

        The Order is created in PENDING with confirm_deadline = now + window.
        It becomes AUTHORIZED once Stripe reports the card hold (webhook or
        status sync).

        Raises:
            EscrowConfigurationError: No base URL for checkout redirects
            StripeError: Checkout Session creation failed
        """
        config = config or EscrowConfig.from_settings()
        logger = cls.get_logger()

        try:
            listing = InventoryService.get_listing(listing_id)
            check_price_cap(listing.price_cents, listing.face_value_cents, config)
            fees = compute_fees(listing.price_cents, quantity, config)
        except (ListingNotFoundError, EscrowValidationError) as e:
            return cls.handle_exception(e, "Checkout rejected")

        if not base_url:
            raise EscrowConfigurationError("Missing APP_BASE_URL / origin for redirects")

        order_id = uuid.uuid4()
        deadline = timezone.now() + config.escrow_window
        session = StripeAdapter.create_checkout_session(
            cls._checkout_params(
                order_id=order_id,
                listing=listing,
                fees=fees,
                deadline=deadline,
                base_url=base_url,
                buyer_email=buyer_email,
                config=config,
            )
        )

        order = Order.objects.create(
            id=order_id,
            stripe_checkout_session_id=session.id,
            listing_id=listing.listing_id,
            quantity=fees.quantity,
            unit_price_cents=fees.unit_price_cents,
            face_value_cents=listing.face_value_cents,
            currency=config.currency,
            buyer_fee_cents=fees.buyer_fee_cents,
            seller_fee_per_ticket_cents=fees.seller_fee_per_ticket_cents,
            seller_fee_cents=fees.seller_fee_cents,
            gross_amount_cents=fees.gross_amount_cents,
            platform_take_cents=fees.platform_take_cents,
            seller_payout_cents=fees.seller_payout_cents,
            seller_account_id=listing.seller_account_id,
            buyer_email=buyer_email or "",
            seller_email=listing.seller_email,
            confirm_deadline=deadline,
            metadata={
                "listing_title": listing.title,
                "fees_clamped": fees.clamped,
            },
        )

        logger.info(
            "Checkout created",
            extra={
                "order_id": str(order.id),
                "checkout_session_id": session.id,
                "listing_id": listing.listing_id,
                "quantity": fees.quantity,
                "gross_amount_cents": fees.gross_amount_cents,
            },
        )

        return ServiceResult.success(
            CheckoutResult(
                order=order,
                session_id=session.id,
                checkout_url=session.url,
                fees=fees,
            )
        )

    @staticmethod
    def _checkout_params(
        order_id: uuid.UUID,
        listing: Listing,
        fees: FeeBreakdown,
        deadline: datetime,
        base_url: str,
        buyer_email: str | None,
        config: EscrowConfig,
    ) -> CreateCheckoutSessionParams:
        deadline_epoch = str(int(deadline.timestamp()))
        face = "" if listing.face_value_cents is None else str(listing.face_value_cents)
        fee_snapshot = {
            "listingId": listing.listing_id,
            "sellerAccountId": listing.seller_account_id,
            "qty": str(fees.quantity),
            "price": str(fees.unit_price_cents),
            "face": face,
            "buyer_fee_cents_per_ticket": str(fees.buyer_fee_per_ticket_cents),
            "buyer_fee_total_cents": str(fees.buyer_fee_cents),
            "seller_fee_per_ticket_cents": str(fees.seller_fee_per_ticket_cents),
            "seller_fee_total_cents": str(fees.seller_fee_cents),
            "fep_confirm_deadline": deadline_epoch,
        }
        description = " • ".join(
            part for part in (listing.event_date, listing.city, listing.seat_info) if part
        )
        return CreateCheckoutSessionParams(
            ticket_name=listing.title or "Ticket",
            ticket_description=description,
            unit_amount_cents=fees.unit_price_cents,
            quantity=fees.quantity,
            buyer_fee_per_ticket_cents=fees.buyer_fee_per_ticket_cents,
            currency=config.currency,
            base_url=base_url,
            idempotency_key=f"checkout:{order_id}",
            customer_email=buyer_email or None,
            metadata={"order_id": str(order_id), **fee_snapshot},
            payment_intent_metadata={
                "fep": "1",
                "fep_status": OrderStatus.AUTHORIZED.value,
                "order_id": str(order_id),
                **fee_snapshot,
            },
        )

    @classmethod
    def record_authorization(
        cls,
        reference: str,
        payment_intent_id: str | None = None,
        config: EscrowConfig | None = None,
    ) -> ServiceResult[TransitionResult]:
        """
        Mark a pending order AUTHORIZED once Stripe holds the funds.

        Attaches the PaymentIntent ID and sets the confirmation deadline
        only if none was recorded at checkout. Repeats are no-ops.
        """
        config = config or EscrowConfig.from_settings()

        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                if order.status == OrderStatus.PENDING:
                    order.authorize(
                        payment_intent_id=payment_intent_id or "",
                        deadline=timezone.now() + config.escrow_window,
                    )
                    order.save()
                    cls.get_logger().info(
                        "Order authorized",
                        extra={
                            "order_id": str(order.id),
                            "payment_intent_id": order.stripe_payment_intent_id,
                            "confirm_deadline": order.confirm_deadline.isoformat(),
                        },
                    )
                    return ServiceResult.success(TransitionResult(order=order))

                if order.status == OrderStatus.CANCELED:
                    raise InvalidStateTransitionError(
                        "Order was canceled before payment was authorized",
                        details={"current_status": order.status},
                    )

                if payment_intent_id and not order.stripe_payment_intent_id:
                    order.stripe_payment_intent_id = payment_intent_id
                    order.save(update_fields=["stripe_payment_intent_id", "version", "updated_at"])
                return ServiceResult.success(
                    TransitionResult(order=order, already_authorized=True)
                )
        except BaseApplicationError as e:
            return cls.handle_exception(e, "record_authorization")

    # =========================================================================
    # Buyer Operations
    # =========================================================================

    @classmethod
    def report_issue(
        cls,
        reference: str,
        reason: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[TransitionResult]:
        """
        Put an authorized order on hold (dispute).

        ON_HOLD blocks confirmation and release; the scheduler cancels the
        order once the deadline passes.
        """
        now = now or timezone.now()

        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                if order.status == OrderStatus.ON_HOLD:
                    return ServiceResult.success(
                        TransitionResult(order=order, already_on_hold=True)
                    )
                if order.status == OrderStatus.CANCELED:
                    return ServiceResult.success(
                        TransitionResult(order=order, already_canceled=True)
                    )
                cls._require_status(order, OrderStatus.AUTHORIZED, "report an issue")
                if order.confirm_deadline is not None and now >= order.confirm_deadline:
                    raise DeadlineExpiredError(
                        "Confirmation window has closed",
                        details=cls._state_details(order),
                    )

                order.hold()
                if reason:
                    order.metadata = {**(order.metadata or {}), "issue_reason": reason[:500]}
                order.save()
                SettlementExecutor.schedule_mirror_update(
                    order.stripe_payment_intent_id,
                    {"fep_status": OrderStatus.ON_HOLD.value},
                )
        except BaseApplicationError as e:
            return cls.handle_exception(e, "report_issue")

        cls.get_logger().info(
            "Order placed on hold",
            extra={"order_id": str(order.id), "payment_intent_id": order.stripe_payment_intent_id},
        )
        return ServiceResult.success(TransitionResult(order=order))

    @classmethod
    def confirm_receipt(
        cls,
        reference: str,
        now: datetime | None = None,
    ) -> ServiceResult[TransitionResult]:
        """
        Buyer confirms the tickets arrived; capture the held funds.

        Raises:
            StripeError: Capture failed at Stripe (order unchanged)
        """
        now = now or timezone.now()

        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                if order.status == OrderStatus.CAPTURED:
                    return ServiceResult.success(
                        TransitionResult(order=order, already_captured=True)
                    )
                if order.status == OrderStatus.ON_HOLD:
                    raise OrderOnHoldError(
                        "Order is on hold pending dispute review",
                        details=cls._state_details(order),
                    )
                cls._require_status(order, OrderStatus.AUTHORIZED, "confirm receipt")
                if order.is_past_deadline(now):
                    raise DeadlineExpiredError(
                        "Confirmation window has closed",
                        details=cls._state_details(order),
                    )

                settlement = SettlementExecutor.execute(order, SettlementDecision.CAPTURE)
        except BaseApplicationError as e:
            if isinstance(e, StripeError):
                raise
            return cls.handle_exception(e, "confirm_receipt")

        if settlement.reconciled:
            return cls._settled_elsewhere(order, settlement, "confirm_receipt")
        return ServiceResult.success(
            TransitionResult(order=order, warnings=settlement.warnings)
        )

    @classmethod
    def buyer_cancel(cls, reference: str) -> ServiceResult[TransitionResult]:
        """
        Buyer cancels before the seller sends the tickets; release the hold.

        Raises:
            StripeError: Cancel failed at Stripe (order unchanged)
        """
        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                if order.status == OrderStatus.CANCELED:
                    return ServiceResult.success(
                        TransitionResult(order=order, already_canceled=True)
                    )
                if order.status == OrderStatus.ON_HOLD:
                    raise OrderOnHoldError(
                        "Order is on hold pending dispute review",
                        details=cls._state_details(order),
                    )
                cls._require_status(order, OrderStatus.AUTHORIZED, "cancel")
                if order.is_sent:
                    raise OrderMarkedSentError(
                        "Seller already sent the tickets",
                        details=cls._state_details(order),
                    )

                settlement = SettlementExecutor.execute(
                    order, SettlementDecision.CANCEL, reason="buyer_canceled"
                )
        except BaseApplicationError as e:
            if isinstance(e, StripeError):
                raise
            return cls.handle_exception(e, "buyer_cancel")

        if settlement.reconciled:
            return cls._settled_elsewhere(order, settlement, "buyer_cancel")
        return ServiceResult.success(TransitionResult(order=order))

    # =========================================================================
    # Scheduler Operations
    # =========================================================================

    @classmethod
    def auto_release(
        cls,
        reference: str,
        now: datetime | None = None,
    ) -> ServiceResult[TransitionResult]:
        """
        Capture an authorized order whose confirmation window has closed.

        Raises:
            StripeError: Capture failed at Stripe (order unchanged)
        """
        now = now or timezone.now()

        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                finished = cls._already_final(order)
                if finished is not None:
                    return finished
                if order.status == OrderStatus.ON_HOLD:
                    raise OrderOnHoldError(
                        "Order is on hold and cannot be released",
                        details=cls._state_details(order),
                    )
                cls._require_status(order, OrderStatus.AUTHORIZED, "release")
                cls._require_past_deadline(order, now)

                settlement = SettlementExecutor.execute(order, SettlementDecision.CAPTURE)
        except BaseApplicationError as e:
            if isinstance(e, StripeError):
                raise
            return cls.handle_exception(e, "auto_release")

        if settlement.reconciled:
            return cls._already_final(order)
        return ServiceResult.success(
            TransitionResult(order=order, warnings=settlement.warnings)
        )

    @classmethod
    def auto_cancel(
        cls,
        reference: str,
        now: datetime | None = None,
    ) -> ServiceResult[TransitionResult]:
        """
        Cancel an on-hold order whose confirmation window has closed.

        Raises:
            StripeError: Cancel failed at Stripe (order unchanged)
        """
        now = now or timezone.now()

        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                finished = cls._already_final(order)
                if finished is not None:
                    return finished
                cls._require_status(order, OrderStatus.ON_HOLD, "auto-cancel")
                cls._require_past_deadline(order, now)

                settlement = SettlementExecutor.execute(
                    order, SettlementDecision.CANCEL, reason="dispute_expired"
                )
        except BaseApplicationError as e:
            if isinstance(e, StripeError):
                raise
            return cls.handle_exception(e, "auto_cancel")

        if settlement.reconciled:
            return cls._already_final(order)
        return ServiceResult.success(TransitionResult(order=order))

    # =========================================================================
    # Operator Operations
    # =========================================================================

    @classmethod
    def operator_capture(
        cls,
        reference: str,
        amount_to_capture: int | None = None,
    ) -> ServiceResult[TransitionResult]:
        """
        Capture an authorized order on an operator's decision, optionally
        for less than the authorized amount.

        The confirmation window does not apply. A partial capture is checked
        against the amount Stripe still holds; the shortfall is taken from
        the seller payout (Order.payout_due_cents). Inventory is decremented
        for the full quantity.

        Raises:
            StripeError: Capture failed at Stripe (order unchanged)
        """
        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                if order.status == OrderStatus.CAPTURED:
                    return ServiceResult.success(
                        TransitionResult(order=order, already_captured=True)
                    )
                if order.status == OrderStatus.ON_HOLD:
                    raise OrderOnHoldError(
                        "Order is on hold pending dispute review",
                        details=cls._state_details(order),
                    )
                cls._require_status(order, OrderStatus.AUTHORIZED, "capture")
                if amount_to_capture is not None:
                    cls._check_capture_amount(order, amount_to_capture)

                settlement = SettlementExecutor.execute(
                    order,
                    SettlementDecision.CAPTURE,
                    amount_to_capture=amount_to_capture,
                )
        except BaseApplicationError as e:
            if isinstance(e, StripeError):
                raise
            return cls.handle_exception(e, "operator_capture")

        if settlement.reconciled:
            return cls._settled_elsewhere(order, settlement, "operator_capture")

        cls.get_logger().info(
            "Order captured by operator",
            extra={
                "order_id": str(order.id),
                "payment_intent_id": order.stripe_payment_intent_id,
                "amount_captured_cents": order.amount_captured_cents,
                "payout_due_cents": order.payout_due_cents,
            },
        )
        return ServiceResult.success(
            TransitionResult(order=order, warnings=settlement.warnings)
        )

    @staticmethod
    def _check_capture_amount(order: Order, amount_to_capture: int) -> None:
        if amount_to_capture <= 0:
            raise InvalidCaptureAmountError(
                "amount_to_capture must be a positive number of cents",
                details={"amount_to_capture": amount_to_capture},
            )
        if not order.stripe_payment_intent_id:
            return
        intent = StripeAdapter.retrieve_payment_intent(order.stripe_payment_intent_id)
        capturable = intent.amount_capturable_cents if intent.requires_capture else 0
        if amount_to_capture > capturable:
            raise InvalidCaptureAmountError(
                "amount_to_capture exceeds the amount capturable",
                details={
                    "amount_to_capture": amount_to_capture,
                    "amount_capturable": capturable,
                    "payment_intent_status": intent.status,
                },
            )

    # =========================================================================
    # Seller Operations
    # =========================================================================

    @classmethod
    def mark_sent(
        cls,
        reference: str,
        now: datetime | None = None,
    ) -> ServiceResult[TransitionResult]:
        """Seller marks the tickets as sent. Blocks buyer cancellation."""
        now = now or timezone.now()

        try:
            with cls.atomic():
                order = cls._lock_order(reference)

                if order.status == OrderStatus.ON_HOLD:
                    raise OrderOnHoldError(
                        "Order is on hold pending dispute review",
                        details=cls._state_details(order),
                    )
                cls._require_status(order, OrderStatus.AUTHORIZED, "mark as sent")
                if order.is_sent:
                    return ServiceResult.success(
                        TransitionResult(order=order, already_sent=True)
                    )

                order.sent_at = now
                order.save(update_fields=["sent_at", "version", "updated_at"])
                SettlementExecutor.schedule_mirror_update(
                    order.stripe_payment_intent_id,
                    {"fep_status": "sent", "fep_sent_at": str(int(now.timestamp()))},
                )
        except BaseApplicationError as e:
            return cls.handle_exception(e, "mark_sent")

        cls.get_logger().info(
            "Order marked as sent",
            extra={"order_id": str(order.id), "payment_intent_id": order.stripe_payment_intent_id},
        )
        return ServiceResult.success(TransitionResult(order=order))

    # =========================================================================
    # Read
    # =========================================================================

    @classmethod
    def get_status(
        cls,
        reference: str,
        sync: bool = False,
        now: datetime | None = None,
    ) -> ServiceResult[OrderStatusView]:
        """
        Read an order's escrow status.

        With sync=True a still-pending order is checked against its Checkout
        Session, so a buyer returning from checkout sees AUTHORIZED even if
        the webhook has not arrived yet.
        """
        now = now or timezone.now()
        order = Order.objects.by_reference(reference).first()
        if order is None:
            return cls.handle_exception(cls._not_found(reference), "get_status")

        if sync and order.status == OrderStatus.PENDING:
            order = cls._sync_pending(order)

        return ServiceResult.success(OrderStatusView(order=order, now=now))

    @classmethod
    def _sync_pending(cls, order: Order) -> Order:
        try:
            session = StripeAdapter.retrieve_checkout_session(order.stripe_checkout_session_id)
        except StripeError as e:
            cls.get_logger().warning(
                "Checkout status sync failed",
                extra={"order_id": str(order.id), "error_code": e.error_code},
            )
            return order

        if session.payment_status != "paid" or not session.payment_intent_id:
            return order

        result = cls.record_authorization(str(order.id), session.payment_intent_id)
        return result.data.order if result.success else order

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _lock_order(cls, reference: str) -> Order:
        """Load and row-lock an order. Must run inside a transaction."""
        order = Order.objects.select_for_update().by_reference(reference).first()
        if order is None:
            raise cls._not_found(reference)
        return order

    @staticmethod
    def _not_found(reference: str) -> OrderNotFoundError:
        return OrderNotFoundError("Order not found", details={"reference": reference})

    @staticmethod
    def _state_details(order: Order) -> dict:
        details = {"current_status": order.status}
        if order.confirm_deadline:
            details["confirm_deadline"] = order.confirm_deadline.isoformat()
        return details

    @classmethod
    def _require_status(cls, order: Order, status: str, action: str) -> None:
        if order.status != status:
            raise InvalidStateTransitionError(
                f"Cannot {action} an order in status '{order.status}'",
                details=cls._state_details(order),
            )

    @classmethod
    def _require_past_deadline(cls, order: Order, now: datetime) -> None:
        if not order.is_past_deadline(now):
            raise InvalidStateTransitionError(
                "Confirmation window is still open",
                details=cls._state_details(order),
            )

    @staticmethod
    def _already_final(order: Order) -> ServiceResult[TransitionResult] | None:
        """Idempotent success for orders finalized by someone else."""
        if order.status == OrderStatus.CAPTURED:
            return ServiceResult.success(TransitionResult(order=order, already_captured=True))
        if order.status == OrderStatus.CANCELED:
            return ServiceResult.success(TransitionResult(order=order, already_canceled=True))
        return None

    @classmethod
    def _settled_elsewhere(
        cls,
        order: Order,
        settlement: SettlementResult,
        context: str,
    ) -> ServiceResult[TransitionResult]:
        """
        The order was brought in line with Stripe, which had already settled
        it the other way. The caller's action did not happen.
        """
        error = SettlementConflictError(
            "Payment was already resolved at Stripe",
            details={
                **cls._state_details(order),
                "payment_intent_status": settlement.payment_intent_status,
            },
        )
        return cls.handle_exception(error, context)


