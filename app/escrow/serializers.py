"""
DRF serializers for the escrow API.

Request serializers only check the shape of the input. Business rules
(quantity bounds, price cap, order state) are enforced by EscrowService so
they produce the same error codes no matter who calls the service.

Usage:
    serializer = CheckoutRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    result = EscrowService.authorize(**serializer.validated_data, base_url=...)
"""

from __future__ import annotations

from rest_framework import serializers

from escrow.state_machines import OrderStatus, TransferStatus


# =============================================================================
# Requests
# =============================================================================


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Start an escrowed checkout.

    Fields:
        listing_id: Public listing identifier
        quantity: Number of tickets (bounds checked by the service)
        buyer_email: Prefills the Checkout page and the order record
    """

    listing_id = serializers.CharField(max_length=100)
    quantity = serializers.IntegerField(default=1)
    buyer_email = serializers.EmailField(required=False, allow_blank=True)


class ReportIssueRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(
        required=False,
        allow_blank=True,
        max_length=500,
        default="",
    )


class OperatorCaptureRequestSerializer(serializers.Serializer):
    """Omit amount_to_capture to capture the full authorized amount."""

    amount_to_capture = serializers.IntegerField(required=False, allow_null=True, default=None)


# =============================================================================
# Responses
# =============================================================================


class FeeBreakdownSerializer(serializers.Serializer):
    """Frozen fee snapshot, all amounts in integer cents."""

    unit_price_cents = serializers.IntegerField()
    quantity = serializers.IntegerField()
    subtotal_cents = serializers.IntegerField()
    buyer_fee_per_ticket_cents = serializers.IntegerField()
    buyer_fee_cents = serializers.IntegerField()
    seller_fee_per_ticket_cents = serializers.IntegerField()
    seller_fee_cents = serializers.IntegerField()
    gross_amount_cents = serializers.IntegerField()
    platform_take_cents = serializers.IntegerField()
    seller_payout_cents = serializers.IntegerField()
    clamped = serializers.BooleanField()


class CheckoutResponseSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    session_id = serializers.CharField()
    checkout_url = serializers.URLField(allow_null=True)
    quantity = serializers.IntegerField()
    fees = FeeBreakdownSerializer()


class OrderStatusSerializer(serializers.Serializer):
    """
    Buyer/seller facing view of an order.

    Built from OrderStatusView.to_dict(); the can_* flags tell the client
    which actions are currently allowed.
    """

    order_id = serializers.UUIDField()
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    payment_intent_id = serializers.CharField(allow_null=True)
    checkout_session_id = serializers.CharField()
    listing_id = serializers.CharField()
    quantity = serializers.IntegerField()
    currency = serializers.CharField()
    unit_price_cents = serializers.IntegerField()
    buyer_fee_cents = serializers.IntegerField()
    seller_fee_cents = serializers.IntegerField()
    gross_amount_cents = serializers.IntegerField()
    platform_take_cents = serializers.IntegerField()
    seller_payout_cents = serializers.IntegerField()
    amount_captured_cents = serializers.IntegerField(allow_null=True)
    confirm_deadline = serializers.DateTimeField(allow_null=True)
    seconds_remaining = serializers.IntegerField(allow_null=True)
    is_past_deadline = serializers.BooleanField()
    sent = serializers.BooleanField()
    sent_at = serializers.DateTimeField(allow_null=True)
    on_hold = serializers.BooleanField()
    can_confirm = serializers.BooleanField()
    can_report_issue = serializers.BooleanField()
    can_cancel = serializers.BooleanField()
    transfer_status = serializers.ChoiceField(choices=TransferStatus.choices)
    version = serializers.IntegerField()


class TransitionResponseSerializer(serializers.Serializer):
    """Outcome of confirm / report-issue / cancel / mark-sent."""

    order_id = serializers.UUIDField()
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    already_captured = serializers.BooleanField()
    already_canceled = serializers.BooleanField()
    already_on_hold = serializers.BooleanField()
    already_sent = serializers.BooleanField()
    warnings = serializers.ListField(child=serializers.CharField())
    version = serializers.IntegerField()


class SweepReportSerializer(serializers.Serializer):
    checked = serializers.IntegerField()
    due = serializers.IntegerField()
    captured = serializers.IntegerField()
    canceled = serializers.IntegerField()
    skipped = serializers.IntegerField()
    errors = serializers.IntegerField()
    deferred = serializers.IntegerField()
    already_final = serializers.IntegerField()
    capped = serializers.BooleanField()


class ErrorResponseSerializer(serializers.Serializer):
    """Error body shared by every escrow endpoint."""

    error = serializers.CharField()
    error_code = serializers.CharField()
    details = serializers.DictField(required=False)
    retryable = serializers.BooleanField(required=False)
