"""
Order model for the escrowed ticket purchase lifecycle.

The Order row is the source of truth for escrow state. Stripe metadata on
the PaymentIntent is only a mirror for display and debugging.

Usage:
    from escrow.models import Order
    from escrow.state_machines import OrderStatus

    order = Order.objects.create(
        stripe_checkout_session_id="cs_test_123",
        listing_id="lst_42",
        quantity=2,
        unit_price_cents=5000,
        ...
    )

    # State transitions using django-fsm
    order.authorize(payment_intent_id="pi_123", deadline=now + window)
    order.save()

    # Lookup by any reference a client may hold
    order = Order.objects.by_reference("pi_123").first()
"""

from __future__ import annotations

import uuid
from datetime import datetime

from django.db import models
from django.db.models import F
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from escrow.state_machines import OrderStatus, TransferStatus


class OrderQuerySet(models.QuerySet):
    """QuerySet helpers for addressing and sweeping orders."""

    def by_reference(self, reference: str) -> OrderQuerySet:
        """
        Filter by a client-facing reference.

        Accepts a PaymentIntent id (pi_...), a Checkout Session id (cs_...)
        or the order UUID. Anything else matches nothing.
        """
        reference = (reference or "").strip()
        if reference.startswith("pi_"):
            return self.filter(stripe_payment_intent_id=reference)
        if reference.startswith("cs_"):
            return self.filter(stripe_checkout_session_id=reference)
        try:
            return self.filter(id=uuid.UUID(reference))
        except ValueError:
            return self.none()

    def escrowed(self) -> OrderQuerySet:
        """Orders whose funds are held (authorized or on hold)."""
        return self.filter(status__in=OrderStatus.escrowed())

    def past_deadline(self, now: datetime) -> OrderQuerySet:
        return self.filter(confirm_deadline__lt=now)

    def settle_deferred(self, now: datetime) -> OrderQuerySet:
        """Orders the release sweep backs off from after failed settlements."""
        return self.filter(next_settle_attempt_at__gt=now)

    def settle_ready(self, now: datetime) -> OrderQuerySet:
        return self.filter(
            models.Q(next_settle_attempt_at__isnull=True)
            | models.Q(next_settle_attempt_at__lte=now)
        )


class Order(UUIDPrimaryKeyMixin, BaseModel):
    """
    One buyer's purchase of tickets from one listing, held in escrow.

    State Flow:
        PENDING -> AUTHORIZED -> CAPTURED         (confirm / auto-release)
        PENDING -> AUTHORIZED -> CANCELED         (buyer cancel)
        PENDING -> AUTHORIZED -> ON_HOLD -> CANCELED (dispute, auto-cancel)
        PENDING -> CANCELED                       (checkout expired)

    Fees are computed once at checkout and frozen on the row; payout is
    derived from the frozen values only. The confirmation deadline is set
    once and never moves.

    Note:
        The version field is auto-incremented on every update and is
        exposed to API clients for change detection.
    """

    # ==========================================================================
    # Stripe References
    # ==========================================================================

    stripe_checkout_session_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Checkout Session ID (cs_xxx)",
    )

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx), known once the buyer pays",
    )

    stripe_charge_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Charge ID of the captured payment (ch_xxx)",
    )

    # ==========================================================================
    # Listing & Quantity
    # ==========================================================================

    listing_id = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Identifier of the listing the tickets come from",
    )

    quantity = models.PositiveSmallIntegerField(
        help_text="Number of tickets purchased",
    )

    unit_price_cents = models.PositiveIntegerField(
        help_text="Ticket price per unit in cents",
    )

    face_value_cents = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Printed face value per ticket in cents, if known",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Frozen Fees
    # ==========================================================================

    buyer_fee_cents = models.PositiveIntegerField(
        help_text="Total buyer service fee",
    )

    seller_fee_per_ticket_cents = models.PositiveIntegerField(
        help_text="Seller fee per ticket",
    )

    seller_fee_cents = models.PositiveIntegerField(
        help_text="Total seller fee",
    )

    gross_amount_cents = models.PositiveIntegerField(
        help_text="Amount authorized on the buyer's card",
    )

    platform_take_cents = models.PositiveIntegerField(
        help_text="Amount kept by the platform",
    )

    seller_payout_cents = models.PositiveIntegerField(
        help_text="Amount transferred to the seller after capture",
    )

    # ==========================================================================
    # Parties
    # ==========================================================================

    seller_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Connect account receiving the payout (acct_xxx)",
    )

    buyer_email = models.EmailField(
        blank=True,
        default="",
        help_text="Buyer email from checkout, informational",
    )

    seller_email = models.EmailField(
        blank=True,
        default="",
        help_text="Seller email from the listing, informational",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=OrderStatus.PENDING,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current escrow state (managed by FSM)",
    )

    confirm_deadline = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Buyer must confirm or dispute before this time; set once",
    )

    sent_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the seller marked the tickets as sent",
    )

    cancel_reason = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Why the order was canceled",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    authorized_at = models.DateTimeField(null=True, blank=True)
    on_hold_at = models.DateTimeField(null=True, blank=True)
    captured_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    last_transition_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the status last changed",
    )

    amount_captured_cents = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Amount Stripe reports as captured",
    )

    # ==========================================================================
    # Seller Transfer
    # ==========================================================================

    transfer_status = models.CharField(
        max_length=20,
        choices=TransferStatus.choices,
        default=TransferStatus.NOT_REQUIRED,
        db_index=True,
        help_text="Status of the payout transfer to the seller",
    )

    stripe_transfer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Transfer ID (tr_xxx)",
    )

    transfer_error = models.TextField(
        blank=True,
        default="",
        help_text="Last transfer failure message",
    )

    transfer_attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of transfer attempts",
    )

    transfer_idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Key for the next transfer attempt; rotated after a definitive failure",
    )

    next_transfer_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="A failed transfer is not retried before this time",
    )

    # ==========================================================================
    # Release Sweep Backoff
    # ==========================================================================

    settle_failures = models.PositiveSmallIntegerField(
        default=0,
        help_text="Consecutive release sweep settlements that failed",
    )

    next_settle_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="The release sweep skips the order until this time",
    )

    # ==========================================================================
    # Concurrency Control & Metadata
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata (listing snapshot, seat assignment)",
    )

    objects = OrderQuerySet.as_manager()

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["status", "confirm_deadline"], name="escrow_ord_status_dl_idx"),
            models.Index(fields=["status", "created_at", "id"], name="escrow_ord_sweep_idx"),
            models.Index(fields=["transfer_status", "captured_at"], name="escrow_ord_transfer_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="escrow_order_quantity_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.gross_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Order({self.id}, {self.status}, {amount_display})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment on update."""
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in OrderStatus.terminal()

    @property
    def is_sent(self) -> bool:
        return self.sent_at is not None

    @property
    def payout_due_cents(self) -> int:
        """
        Seller payout for what was actually captured.

        A partial capture comes out of the seller's share first: the
        platform keeps its frozen take and the payout shrinks by the
        uncaptured amount, never below zero.
        """
        captured = self.amount_captured_cents
        if captured is None or captured >= self.gross_amount_cents:
            return self.seller_payout_cents
        shortfall = self.gross_amount_cents - captured
        return max(self.seller_payout_cents - shortfall, 0)

    def is_past_deadline(self, now: datetime | None = None) -> bool:
        """True once the confirmation window has closed."""
        if self.confirm_deadline is None:
            return False
        return (now or timezone.now()) > self.confirm_deadline

    def set_confirm_deadline_if_missing(self, deadline: datetime) -> bool:
        """
        Set the confirmation deadline unless one is already recorded.

        Returns True if the deadline was set. Does not save.
        """
        if self.confirm_deadline is not None:
            return False
        self.confirm_deadline = deadline
        return True

    def _touch(self) -> datetime:
        now = timezone.now()
        self.last_transition_at = now
        return now

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=OrderStatus.PENDING,
        target=OrderStatus.AUTHORIZED,
    )
    def authorize(self, payment_intent_id: str, deadline: datetime) -> None:
        """
        Record that the buyer's funds are held.

        Transition: PENDING -> AUTHORIZED
        """
        self.authorized_at = self._touch()
        if payment_intent_id and not self.stripe_payment_intent_id:
            self.stripe_payment_intent_id = payment_intent_id
        self.set_confirm_deadline_if_missing(deadline)

    @transition(
        field=status,
        source=OrderStatus.AUTHORIZED,
        target=OrderStatus.ON_HOLD,
    )
    def hold(self) -> None:
        """
        Buyer reported an issue; blocks confirmation and release.

        Transition: AUTHORIZED -> ON_HOLD
        """
        self.on_hold_at = self._touch()

    @transition(
        field=status,
        source=OrderStatus.AUTHORIZED,
        target=OrderStatus.CAPTURED,
    )
    def capture(self, amount_captured_cents: int | None = None, charge_id: str = "") -> None:
        """
        Funds captured by buyer confirmation or auto-release.

        Transition: AUTHORIZED -> CAPTURED
        """
        self._mark_captured(amount_captured_cents, charge_id)

    @transition(
        field=status,
        source=[OrderStatus.AUTHORIZED, OrderStatus.ON_HOLD],
        target=OrderStatus.CANCELED,
    )
    def cancel(self, reason: str = "") -> None:
        """
        Authorization released by buyer cancel or dispute expiry.

        Transition: AUTHORIZED/ON_HOLD -> CANCELED
        """
        self._mark_canceled(reason)

    @transition(
        field=status,
        source=OrderStatus.PENDING,
        target=OrderStatus.CANCELED,
    )
    def expire_checkout(self) -> None:
        """
        Buyer never completed checkout.

        Transition: PENDING -> CANCELED
        """
        self._mark_canceled("checkout_expired")

    @transition(
        field=status,
        source=[OrderStatus.PENDING, OrderStatus.AUTHORIZED, OrderStatus.ON_HOLD],
        target=OrderStatus.CAPTURED,
    )
    def record_capture(self, amount_captured_cents: int | None = None, charge_id: str = "") -> None:
        """
        Mirror a capture Stripe reports that this service did not perform.

        Used by webhook reconciliation and by the settlement executor when
        Stripe reports the PaymentIntent was already captured. Stripe is the
        authority on what already happened to the money.
        """
        self._mark_captured(amount_captured_cents, charge_id)

    @transition(
        field=status,
        source=[OrderStatus.PENDING, OrderStatus.AUTHORIZED, OrderStatus.ON_HOLD],
        target=OrderStatus.CANCELED,
    )
    def record_cancellation(self, reason: str = "") -> None:
        """Mirror a cancellation Stripe reports (webhooks, settlement conflicts)."""
        self._mark_canceled(reason or "canceled_at_provider")

    def _mark_captured(self, amount_captured_cents: int | None, charge_id: str) -> None:
        self.captured_at = self._touch()
        if amount_captured_cents is not None:
            self.amount_captured_cents = amount_captured_cents
        if charge_id:
            self.stripe_charge_id = charge_id
        if self.seller_account_id and self.payout_due_cents > 0:
            self.transfer_status = TransferStatus.PENDING
        else:
            self.transfer_status = TransferStatus.NOT_REQUIRED

    def _mark_canceled(self, reason: str) -> None:
        self.canceled_at = self._touch()
        self.cancel_reason = reason or ""
