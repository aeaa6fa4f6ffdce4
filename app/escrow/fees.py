"""
Fee calculation for escrowed ticket orders.

Pure functions, no database or Stripe access. All amounts are integer
cents; fractional cents are rounded half-up, so a 5% fee on 1010 cents
is 51 cents, not 50.

Fee model:
    seller_fee_per_ticket = round(unit_price * seller_fee_percent) + seller_fee_fixed
    seller_fee_total      = seller_fee_per_ticket * quantity
    buyer_fee_total       = buyer_fee_per_ticket * quantity
    gross                 = unit_price * quantity + buyer_fee_total   (buyer pays)
    platform_take         = buyer_fee_total + seller_fee_total
    seller_payout         = gross - platform_take

Usage:
    from escrow.config import EscrowConfig
    from escrow.fees import check_price_cap, compute_fees

    config = EscrowConfig.from_settings()
    check_price_cap(unit_price_cents=2300, face_value_cents=2000, config=config)
    fees = compute_fees(unit_price_cents=2000, quantity=3, config=config)
    fees.platform_take_cents  # 1575
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

from escrow.config import EscrowConfig, FeeOverflowPolicy
from escrow.exceptions import (
    EscrowValidationError,
    FaceValueRequiredError,
    FeeConfigurationError,
    InvalidQuantityError,
    PriceCapExceededError,
)


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Fees for one order, frozen onto the Order at checkout.

    Attributes:
        unit_price_cents: Ticket price per unit
        quantity: Number of tickets
        subtotal_cents: unit_price_cents * quantity
        buyer_fee_per_ticket_cents: Buyer service fee per ticket
        buyer_fee_cents: Buyer service fee total
        seller_fee_per_ticket_cents: Seller fee per ticket
        seller_fee_cents: Seller fee total
        gross_amount_cents: Amount charged to the buyer
        platform_take_cents: Amount kept by the platform
        seller_payout_cents: Amount transferred to the seller
        clamped: True if platform_take was reduced to keep the payout positive
    """

    unit_price_cents: int
    quantity: int
    subtotal_cents: int
    buyer_fee_per_ticket_cents: int
    buyer_fee_cents: int
    seller_fee_per_ticket_cents: int
    seller_fee_cents: int
    gross_amount_cents: int
    platform_take_cents: int
    seller_payout_cents: int
    clamped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_quantity(quantity: int, config: EscrowConfig) -> int:
    """
    Ensure 1 <= quantity <= config.max_quantity.

    Out-of-range quantities are rejected rather than clamped so the buyer
    is never charged for a different number of tickets than requested.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(
            "Quantity must be a whole number",
            details={"quantity": quantity},
        )
    if quantity < 1 or quantity > config.max_quantity:
        raise InvalidQuantityError(
            f"Quantity must be between 1 and {config.max_quantity}",
            details={"quantity": quantity, "max_quantity": config.max_quantity},
        )
    return quantity


def max_price_for_face_value(face_value_cents: int, config: EscrowConfig) -> int:
    """Highest allowed unit price for a given face value."""
    return round_half_up(Decimal(face_value_cents) * config.price_cap_multiplier)


def check_price_cap(
    unit_price_cents: int,
    face_value_cents: int | None,
    config: EscrowConfig,
) -> None:
    """
    Enforce the resale price cap.

    Raises:
        PriceCapExceededError: unit price above round(face * multiplier)
        FaceValueRequiredError: face value missing and config requires it
    """
    if not face_value_cents or face_value_cents <= 0:
        if config.require_face_value:
            raise FaceValueRequiredError(
                "Listing has no face value; resale cap cannot be verified",
            )
        return

    max_per_ticket = max_price_for_face_value(face_value_cents, config)
    if unit_price_cents > max_per_ticket:
        cap_percent = round_half_up((config.price_cap_multiplier - 1) * 100)
        raise PriceCapExceededError(
            f"Price exceeds +{cap_percent}% cap",
            details={
                "max_per_ticket_cents": max_per_ticket,
                "unit_price_cents": unit_price_cents,
                "face_value_cents": face_value_cents,
            },
        )


def compute_fees(
    unit_price_cents: int,
    quantity: int,
    config: EscrowConfig,
) -> FeeBreakdown:
    """
    Compute buyer fee, seller fee, platform take and seller payout.

    Raises:
        InvalidQuantityError: quantity outside 1..max_quantity
        FeeConfigurationError: fees >= gross under the reject policy
    """
    validate_quantity(quantity, config)
    if unit_price_cents < 0:
        raise EscrowValidationError(
            "Unit price must not be negative",
            error_code="INVALID_PRICE",
            details={"unit_price_cents": unit_price_cents},
        )

    seller_fee_per_ticket = (
        round_half_up(Decimal(unit_price_cents) * config.seller_fee_percent)
        + config.seller_fee_fixed_cents
    )
    seller_fee_total = seller_fee_per_ticket * quantity
    buyer_fee_total = config.buyer_fee_per_ticket_cents * quantity
    subtotal = unit_price_cents * quantity
    gross = subtotal + buyer_fee_total
    platform_take = buyer_fee_total + seller_fee_total

    clamped = False
    if platform_take >= gross:
        if config.fee_overflow_policy == FeeOverflowPolicy.REJECT:
            raise FeeConfigurationError(
                "Fees would consume the entire order amount",
                details={
                    "gross_amount_cents": gross,
                    "platform_take_cents": platform_take,
                },
            )
        platform_take = max(gross - 1, 0)
        clamped = True

    return FeeBreakdown(
        unit_price_cents=unit_price_cents,
        quantity=quantity,
        subtotal_cents=subtotal,
        buyer_fee_per_ticket_cents=config.buyer_fee_per_ticket_cents,
        buyer_fee_cents=buyer_fee_total,
        seller_fee_per_ticket_cents=seller_fee_per_ticket,
        seller_fee_cents=seller_fee_total,
        gross_amount_cents=gross,
        platform_take_cents=platform_take,
        seller_payout_cents=max(gross - platform_take, 0),
        clamped=clamped,
    )
