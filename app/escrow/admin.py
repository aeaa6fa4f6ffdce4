"""
Escrow admin configuration.

Registers orders and webhook events, and pulls in the inventory admin
(listings and the decrement ledger).

Order state is changed through EscrowService, never from the admin: the
status field is FSM-protected and all money-related fields are read-only.
"""

from django.contrib import admin

from escrow.inventory.admin import ListingAdmin, ProcessedOrderAdmin
from escrow.models import Order, WebhookEvent

__all__ = [
    "ListingAdmin",
    "ProcessedOrderAdmin",
    "OrderAdmin",
    "WebhookEventAdmin",
]


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Admin configuration for Order.

    Provides visibility into escrow state, frozen fees and seller payout.
    """

    list_display = [
        "id",
        "listing_id",
        "quantity",
        "amount_display",
        "status",
        "confirm_deadline",
        "transfer_status",
        "created_at",
    ]
    list_filter = ["status", "transfer_status", "currency", "created_at"]
    search_fields = [
        "id",
        "stripe_checkout_session_id",
        "stripe_payment_intent_id",
        "listing_id",
        "buyer_email",
        "seller_email",
    ]
    readonly_fields = [
        "id",
        "status",
        "stripe_checkout_session_id",
        "stripe_payment_intent_id",
        "stripe_charge_id",
        "unit_price_cents",
        "face_value_cents",
        "buyer_fee_cents",
        "seller_fee_per_ticket_cents",
        "seller_fee_cents",
        "gross_amount_cents",
        "platform_take_cents",
        "seller_payout_cents",
        "amount_captured_cents",
        "confirm_deadline",
        "authorized_at",
        "on_hold_at",
        "captured_at",
        "canceled_at",
        "last_transition_at",
        "sent_at",
        "stripe_transfer_id",
        "transfer_attempts",
        "transfer_idempotency_key",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "status", "listing_id", "quantity", "cancel_reason"),
            },
        ),
        (
            "Stripe",
            {
                "fields": (
                    "stripe_checkout_session_id",
                    "stripe_payment_intent_id",
                    "stripe_charge_id",
                ),
            },
        ),
        (
            "Fees (frozen at checkout)",
            {
                "fields": (
                    "currency",
                    "unit_price_cents",
                    "face_value_cents",
                    "buyer_fee_cents",
                    "seller_fee_per_ticket_cents",
                    "seller_fee_cents",
                    "gross_amount_cents",
                    "platform_take_cents",
                    "seller_payout_cents",
                    "amount_captured_cents",
                ),
            },
        ),
        (
            "Parties",
            {
                "fields": ("buyer_email", "seller_email", "seller_account_id"),
            },
        ),
        (
            "Timeline",
            {
                "fields": (
                    "confirm_deadline",
                    "authorized_at",
                    "sent_at",
                    "on_hold_at",
                    "captured_at",
                    "canceled_at",
                    "last_transition_at",
                ),
            },
        ),
        (
            "Seller Transfer",
            {
                "fields": (
                    "transfer_status",
                    "stripe_transfer_id",
                    "transfer_attempts",
                    "transfer_error",
                    "transfer_idempotency_key",
                    "next_transfer_attempt_at",
                ),
            },
        ),
        (
            "Release Sweep",
            {
                "fields": ("settle_failures", "next_settle_attempt_at"),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version", "created_at", "updated_at"),
                "classes": ("collapse",),
            },
        ),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Order) -> str:
        return f"{obj.gross_amount_cents / 100:.2f} {obj.currency.upper()}"


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "order_reference",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type", "order_reference"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "order_reference",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "stripe_event_id", "event_type", "order_reference", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("retry_count", "error_message", "processed_at"),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )
