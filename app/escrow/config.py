"""
Immutable escrow configuration.

EscrowConfig is built once from Django settings and passed explicitly into
the fee calculator, escrow service, settlement executor and release
scheduler. Core escrow logic never reads settings directly, which keeps it
testable with plain dataclass instances.

Usage:
    from escrow.config import EscrowConfig

    config = EscrowConfig.from_settings()
    fees = compute_fees(unit_price_cents=2000, quantity=3, config=config)

    # In tests
    config = EscrowConfig(fee_overflow_policy=FeeOverflowPolicy.REJECT)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from django.conf import settings

from escrow.exceptions import EscrowConfigurationError


class FeeOverflowPolicy:
    """What to do when fees would consume the whole order amount."""

    CLAMP = "clamp"
    REJECT = "reject"

    ALL = (CLAMP, REJECT)


@dataclass(frozen=True)
class EscrowConfig:
    """
    Fee, window and sweep parameters for the escrow flow.

    Attributes:
        buyer_fee_per_ticket_cents: Flat service fee charged to the buyer per ticket
        seller_fee_percent: Seller fee as a fraction of the ticket price
        seller_fee_fixed_cents: Fixed seller fee per ticket
        escrow_window: Time the buyer has to confirm or dispute
        max_quantity: Maximum tickets per order
        price_cap_multiplier: Resale cap relative to face value
        require_face_value: Reject listings without a face value
        fee_overflow_policy: FeeOverflowPolicy.CLAMP or FeeOverflowPolicy.REJECT
        currency: ISO 4217 currency code (lowercase)
        max_ops_per_sweep: Settlement operations allowed per release sweep
        sweep_page_size: Orders loaded per sweep page
    """

    buyer_fee_per_ticket_cents: int = 350
    seller_fee_percent: Decimal = Decimal("0.05")
    seller_fee_fixed_cents: int = 75
    escrow_window: timedelta = timedelta(hours=72)
    max_quantity: int = 10
    price_cap_multiplier: Decimal = Decimal("1.15")
    require_face_value: bool = False
    fee_overflow_policy: str = FeeOverflowPolicy.CLAMP
    currency: str = "usd"
    max_ops_per_sweep: int = 200
    sweep_page_size: int = 100

    def __post_init__(self) -> None:
        if self.fee_overflow_policy not in FeeOverflowPolicy.ALL:
            raise EscrowConfigurationError(
                f"Unknown fee overflow policy: {self.fee_overflow_policy}",
                details={"allowed": list(FeeOverflowPolicy.ALL)},
            )
        if self.max_quantity < 1:
            raise EscrowConfigurationError("max_quantity must be at least 1")
        if self.escrow_window <= timedelta(0):
            raise EscrowConfigurationError("escrow_window must be positive")
        if self.seller_fee_percent < 0 or self.buyer_fee_per_ticket_cents < 0:
            raise EscrowConfigurationError("Fees must not be negative")

    @classmethod
    def from_settings(cls) -> EscrowConfig:
        """Build the configuration from ESCROW_* Django settings."""
        return cls(
            buyer_fee_per_ticket_cents=int(settings.ESCROW_BUYER_FEE_CENTS),
            seller_fee_percent=Decimal(str(settings.ESCROW_SELLER_FEE_PERCENT)),
            seller_fee_fixed_cents=int(settings.ESCROW_SELLER_FEE_FIXED_CENTS),
            escrow_window=timedelta(hours=int(settings.ESCROW_WINDOW_HOURS)),
            max_quantity=int(settings.ESCROW_MAX_QUANTITY),
            price_cap_multiplier=Decimal(str(settings.ESCROW_PRICE_CAP_MULTIPLIER)),
            require_face_value=bool(settings.ESCROW_REQUIRE_FACE_VALUE),
            fee_overflow_policy=str(settings.ESCROW_FEE_OVERFLOW_POLICY).lower(),
            currency=str(settings.ESCROW_CURRENCY).lower(),
            max_ops_per_sweep=int(settings.ESCROW_RELEASE_MAX_OPS_PER_RUN),
            sweep_page_size=int(settings.ESCROW_RELEASE_PAGE_SIZE),
        )
