"""
Tests for EscrowConfig.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.test import override_settings

from escrow.config import EscrowConfig, FeeOverflowPolicy
from escrow.exceptions import EscrowConfigurationError


class TestEscrowConfig:
    def test_defaults(self):
        config = EscrowConfig()

        assert config.buyer_fee_per_ticket_cents == 350
        assert config.seller_fee_percent == Decimal("0.05")
        assert config.escrow_window == timedelta(hours=72)
        assert config.fee_overflow_policy == FeeOverflowPolicy.CLAMP

    def test_is_immutable(self):
        config = EscrowConfig()

        with pytest.raises(AttributeError):
            config.max_quantity = 20

    def test_unknown_overflow_policy_rejected(self):
        with pytest.raises(EscrowConfigurationError):
            EscrowConfig(fee_overflow_policy="refund")

    def test_non_positive_window_rejected(self):
        with pytest.raises(EscrowConfigurationError):
            EscrowConfig(escrow_window=timedelta(0))

    @override_settings(
        ESCROW_BUYER_FEE_CENTS=200,
        ESCROW_SELLER_FEE_PERCENT="0.10",
        ESCROW_WINDOW_HOURS=24,
        ESCROW_FEE_OVERFLOW_POLICY="REJECT",
        ESCROW_REQUIRE_FACE_VALUE=True,
    )
    def test_from_settings(self):
        config = EscrowConfig.from_settings()

        assert config.buyer_fee_per_ticket_cents == 200
        assert config.seller_fee_percent == Decimal("0.10")
        assert config.escrow_window == timedelta(hours=24)
        assert config.fee_overflow_policy == FeeOverflowPolicy.REJECT
        assert config.require_face_value is True
