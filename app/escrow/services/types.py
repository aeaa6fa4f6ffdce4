"""
Result types returned by EscrowService operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from escrow.state_machines import OrderStatus

if TYPE_CHECKING:
    from escrow.fees import FeeBreakdown
    from escrow.models import Order


@dataclass
class CheckoutResult:
    """
    Result of authorize(): a pending Order and its Checkout Session.

    Attributes:
        order: The newly created pending Order
        session_id: Stripe Checkout Session ID
        checkout_url: Hosted checkout URL the buyer is sent to
        fees: Fee breakdown frozen onto the order
    """

    order: Order
    session_id: str
    checkout_url: str | None
    fees: FeeBreakdown


@dataclass
class TransitionResult:
    """
    Result of a state-changing escrow operation.

    The already_* flags mark idempotent repeats: the order was already in
    the requested state and no side effect was performed.
    """

    order: Order
    already_captured: bool = False
    already_canceled: bool = False
    already_on_hold: bool = False
    already_sent: bool = False
    already_authorized: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def was_noop(self) -> bool:
        return (
            self.already_captured
            or self.already_canceled
            or self.already_on_hold
            or self.already_sent
            or self.already_authorized
        )


@dataclass
class OrderStatusView:
    """Read-only snapshot of an order for buyers and sellers."""

    order: Order
    now: datetime

    @property
    def seconds_remaining(self) -> int | None:
        if self.order.confirm_deadline is None:
            return None
        return max(int((self.order.confirm_deadline - self.now).total_seconds()), 0)

    @property
    def is_past_deadline(self) -> bool:
        return self.order.is_past_deadline(self.now)

    @property
    def can_confirm(self) -> bool:
        return self.order.status == OrderStatus.AUTHORIZED and not self.is_past_deadline

    @property
    def can_report_issue(self) -> bool:
        deadline = self.order.confirm_deadline
        return self.order.status == OrderStatus.AUTHORIZED and (
            deadline is None or self.now < deadline
        )

    @property
    def can_cancel(self) -> bool:
        return self.order.status == OrderStatus.AUTHORIZED and not self.order.is_sent

    def to_dict(self) -> dict[str, Any]:
        order = self.order
        return {
            "order_id": str(order.id),
            "status": order.status,
            "payment_intent_id": order.stripe_payment_intent_id,
            "checkout_session_id": order.stripe_checkout_session_id,
            "listing_id": order.listing_id,
            "quantity": order.quantity,
            "currency": order.currency,
            "unit_price_cents": order.unit_price_cents,
            "gross_amount_cents": order.gross_amount_cents,
            "buyer_fee_cents": order.buyer_fee_cents,
            "seller_fee_cents": order.seller_fee_cents,
            "platform_take_cents": order.platform_take_cents,
            "seller_payout_cents": order.seller_payout_cents,
            "amount_captured_cents": order.amount_captured_cents,
            "confirm_deadline": order.confirm_deadline,
            "seconds_remaining": self.seconds_remaining,
            "is_past_deadline": self.is_past_deadline,
            "sent": order.is_sent,
            "sent_at": order.sent_at,
            "on_hold": order.status == OrderStatus.ON_HOLD,
            "can_confirm": self.can_confirm,
            "can_report_issue": self.can_report_issue,
            "can_cancel": self.can_cancel,
            "transfer_status": order.transfer_status,
            "version": order.version,
        }
