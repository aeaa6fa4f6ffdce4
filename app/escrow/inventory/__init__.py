"""
Inventory - listings and the decrement-once ledger.

Public API:
    Models:
        Listing - Tickets offered for one event
        ProcessedOrder - Proof an order's tickets were taken from inventory

    Service:
        InventoryService - get_listing, decrement_for_order

    Types:
        DecrementResult - Outcome of a decrement

Usage:
    from escrow.inventory import InventoryService

    result = InventoryService.decrement_for_order(order)
"""

from escrow.inventory.models import Listing, ProcessedOrder
from escrow.inventory.services import InventoryService
from escrow.inventory.types import DecrementResult

__all__ = [
    "DecrementResult",
    "InventoryService",
    "Listing",
    "ProcessedOrder",
]
