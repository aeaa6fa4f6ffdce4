"""
Escrow services.

Usage:
    from escrow.services import EscrowService

    result = EscrowService.confirm_receipt(reference)
"""

from escrow.services.escrow_service import EscrowService
from escrow.services.types import CheckoutResult, OrderStatusView, TransitionResult

__all__ = [
    "CheckoutResult",
    "EscrowService",
    "OrderStatusView",
    "TransitionResult",
]
