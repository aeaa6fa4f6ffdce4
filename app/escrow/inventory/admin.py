"""
Admin configuration for inventory models.

Listings are created and edited here; there is no listing API.
"""

from django.contrib import admin

from escrow.inventory.models import Listing, ProcessedOrder


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = [
        "listing_id",
        "title",
        "event_date",
        "price_cents",
        "face_value_cents",
        "remaining",
        "sold",
        "seller_account_id",
    ]
    search_fields = ["listing_id", "title", "city", "seller_email"]
    readonly_fields = ["id", "sold", "assigned_seats", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(ProcessedOrder)
class ProcessedOrderAdmin(admin.ModelAdmin):
    """Read-only view of the decrement ledger."""

    list_display = ["order", "listing_id", "quantity", "created_at"]
    search_fields = ["listing_id", "order__id"]
    readonly_fields = ["id", "order", "listing_id", "quantity", "assigned_seats", "created_at"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
