"""
Inventory service: listing lookup and decrement-exactly-once.

Usage:
    from escrow.inventory import InventoryService

    listing = InventoryService.get_listing("lst_42")
    result = InventoryService.decrement_for_order(order)
    if result.already_processed:
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService
from escrow.exceptions import ListingNotFoundError
from escrow.inventory.models import Listing, ProcessedOrder
from escrow.inventory.types import DecrementResult

if TYPE_CHECKING:
    from escrow.models import Order


class InventoryService(BaseService):
    """Reads listings and takes sold tickets out of inventory."""

    @classmethod
    def get_listing(cls, listing_id: str) -> Listing:
        """
        Load a listing by its public identifier.

        Raises:
            ListingNotFoundError: No listing with that identifier
        """
        listing = Listing.objects.filter(listing_id=listing_id).first()
        if listing is None:
            raise ListingNotFoundError(
                "Listing not found",
                details={"listing_id": listing_id},
            )
        return listing

    @classmethod
    def decrement_for_order(cls, order: Order) -> DecrementResult:
        """
        Take the order's tickets out of its listing, at most once per order.

        Remaining is clamped at zero, sold is incremented by the full
        quantity, and seats are assigned from the listing's free seat
        labels in order. The ProcessedOrder row is written in the same
        transaction as the counters.

        Raises:
            ListingNotFoundError: The order's listing no longer exists
        """
        logger = cls.get_logger()

        with cls.atomic():
            existing = ProcessedOrder.objects.filter(order_id=order.pk).first()
            if existing is not None:
                logger.info(
                    "Inventory already decremented for order",
                    extra={"order_id": str(order.pk), "listing_id": order.listing_id},
                )
                listing = Listing.objects.filter(listing_id=order.listing_id).first()
                return DecrementResult(
                    listing_id=order.listing_id,
                    quantity=existing.quantity,
                    new_remaining=listing.remaining if listing else 0,
                    sold=listing.sold if listing else 0,
                    assigned_seats=list(existing.assigned_seats or []),
                    already_processed=True,
                )

            listing = (
                Listing.objects.select_for_update()
                .filter(listing_id=order.listing_id)
                .first()
            )
            if listing is None:
                raise ListingNotFoundError(
                    "Listing not found",
                    details={"listing_id": order.listing_id, "order_id": str(order.pk)},
                )

            quantity = order.quantity
            listing.remaining = max(listing.remaining - quantity, 0)
            listing.sold = listing.sold + quantity

            taken = set(listing.assigned_seats or [])
            free_seats = [s for s in (listing.seat_numbers or []) if s not in taken]
            seats = free_seats[:quantity]
            if seats:
                listing.assigned_seats = list(listing.assigned_seats or []) + seats

            listing.save(update_fields=["remaining", "sold", "assigned_seats", "updated_at"])
            ProcessedOrder.objects.create(
                order=order,
                listing_id=order.listing_id,
                quantity=quantity,
                assigned_seats=seats,
            )

        logger.info(
            "Inventory decremented",
            extra={
                "order_id": str(order.pk),
                "listing_id": order.listing_id,
                "quantity": quantity,
                "new_remaining": listing.remaining,
                "assigned_seats": seats,
            },
        )

        return DecrementResult(
            listing_id=order.listing_id,
            quantity=quantity,
            new_remaining=listing.remaining,
            sold=listing.sold,
            assigned_seats=seats,
        )
