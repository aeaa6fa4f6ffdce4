"""
Escrow domain models.

- Order: One escrowed ticket purchase and its lifecycle
- WebhookEvent: Stored Stripe events for idempotent processing
- Listing, ProcessedOrder: Inventory (defined in escrow.inventory)
"""

from escrow.inventory.models import Listing, ProcessedOrder
from escrow.models.order import Order, OrderQuerySet
from escrow.models.webhook_event import WebhookEvent

__all__ = [
    "Listing",
    "Order",
    "OrderQuerySet",
    "ProcessedOrder",
    "WebhookEvent",
]
