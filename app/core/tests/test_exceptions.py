"""
Tests for the application exception hierarchy.
"""

from core.exceptions import (
    BaseApplicationError,
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from escrow.exceptions import (
    DeadlineExpiredError,
    OrderOnHoldError,
    PriceCapExceededError,
    StripeCardDeclinedError,
    StripeTimeoutError,
)


class TestBaseApplicationError:
    def test_to_dict(self):
        exc = BaseApplicationError("Broken", error_code="BROKEN", details={"a": 1})

        assert exc.to_dict() == {"error": "Broken", "error_code": "BROKEN", "details": {"a": 1}}
        assert str(exc) == "[BROKEN] Broken"

    def test_default_codes(self):
        assert ValidationError("x").error_code == "VALIDATION_ERROR"
        assert NotFoundError("x").error_code == "NOT_FOUND"
        assert ConflictError("x").error_code == "CONFLICT"
        assert ExternalServiceError("x").error_code == "EXTERNAL_SERVICE_ERROR"
        assert ConfigurationError("x").error_code == "CONFIGURATION_ERROR"

    def test_to_dict_omits_empty_details(self):
        assert "details" not in NotFoundError("x").to_dict()


class TestEscrowErrorHierarchy:
    def test_state_errors_are_conflicts(self):
        assert isinstance(OrderOnHoldError("x"), ConflictError)
        assert isinstance(DeadlineExpiredError("x"), ConflictError)

    def test_price_cap_is_validation(self):
        assert isinstance(PriceCapExceededError("x"), ValidationError)

    def test_stripe_retryability(self):
        assert StripeTimeoutError("x").is_retryable
        assert not StripeCardDeclinedError("x").is_retryable

    def test_stripe_codes_in_details(self):
        exc = StripeCardDeclinedError("Declined", stripe_code="card_declined", decline_code="insufficient_funds")

        assert exc.details == {"stripe_code": "card_declined", "decline_code": "insufficient_funds"}
        assert isinstance(exc, ExternalServiceError)
