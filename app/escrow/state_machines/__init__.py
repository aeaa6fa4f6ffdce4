"""
State machine enums for escrow models.
"""

from escrow.state_machines.states import (
    OrderStatus,
    SettlementDecision,
    TransferStatus,
    WebhookEventStatus,
)

__all__ = [
    "OrderStatus",
    "SettlementDecision",
    "TransferStatus",
    "WebhookEventStatus",
]
