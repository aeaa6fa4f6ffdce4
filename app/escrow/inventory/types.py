"""
Data types for inventory operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DecrementResult:
    """
    Outcome of decrementing a listing for a captured order.

    Attributes:
        listing_id: Listing that was decremented
        quantity: Tickets requested by the order
        new_remaining: Remaining tickets after the decrement (never negative)
        sold: Total sold count after the decrement
        assigned_seats: Seat labels handed to this order, if the listing has seats
        already_processed: True if this order had already been decremented
    """

    listing_id: str
    quantity: int
    new_remaining: int
    sold: int
    assigned_seats: list[str] = field(default_factory=list)
    already_processed: bool = False
