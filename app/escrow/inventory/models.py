"""
Inventory models: listings and the decrement ledger.

Listings are managed through Django admin. The escrow flow only reads a
listing at checkout and decrements it once per captured order.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Listing(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tickets a seller offers for one event.

    Fields:
        listing_id: Public identifier used by the marketplace front end
        price_cents / face_value_cents: Asking price and printed face value
        seller_account_id: Stripe Connect payout destination, may be empty
        remaining / sold: Inventory counters, remaining never goes below zero
        seat_numbers / assigned_seats: Optional seat labels and those handed out
    """

    # ==========================================================================
    # Identification & Event
    # ==========================================================================

    listing_id = models.CharField(
        max_length=100,
        unique=True,
        help_text="Public listing identifier",
    )

    title = models.CharField(
        max_length=255,
        help_text="Event title shown at checkout",
    )

    event_date = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Event date as displayed to buyers",
    )

    city = models.CharField(max_length=100, blank=True, default="")

    seat_info = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Section/row description shown at checkout",
    )

    # ==========================================================================
    # Pricing
    # ==========================================================================

    price_cents = models.PositiveIntegerField(
        help_text="Asking price per ticket in cents",
    )

    face_value_cents = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Printed face value per ticket in cents",
    )

    # ==========================================================================
    # Seller
    # ==========================================================================

    seller_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Connect account ID (acct_xxx)",
    )

    seller_email = models.EmailField(blank=True, default="")

    # ==========================================================================
    # Inventory
    # ==========================================================================

    remaining = models.PositiveIntegerField(
        default=0,
        help_text="Tickets still available",
    )

    sold = models.PositiveIntegerField(
        default=0,
        help_text="Tickets sold through captured orders",
    )

    seat_numbers = models.JSONField(
        default=list,
        blank=True,
        help_text="Seat labels available for assignment, in order",
    )

    assigned_seats = models.JSONField(
        default=list,
        blank=True,
        help_text="Seat labels already assigned to buyers",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Listing"
        verbose_name_plural = "Listings"

    def __str__(self) -> str:
        return f"Listing({self.listing_id}, {self.title})"


class ProcessedOrder(UUIDPrimaryKeyMixin, BaseModel):
    """
    Ledger row proving an order's inventory was already decremented.

    Written in the same transaction as the decrement, so a redelivered
    webhook or a retried capture cannot decrement twice.
    """

    order = models.OneToOneField(
        "escrow.Order",
        on_delete=models.PROTECT,
        related_name="inventory_record",
        help_text="Order whose tickets were taken from inventory",
    )

    listing_id = models.CharField(max_length=100, db_index=True)

    quantity = models.PositiveSmallIntegerField()

    assigned_seats = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Processed Order"
        verbose_name_plural = "Processed Orders"

    def __str__(self) -> str:
        return f"ProcessedOrder({self.order_id}, {self.listing_id} x{self.quantity})"
