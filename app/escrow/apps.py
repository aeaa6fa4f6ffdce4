"""
Escrow app configuration.

This app provides the ticket escrow lifecycle:
- Checkout with a held (authorized, uncaptured) Stripe payment
- Buyer confirmation, disputes and cancellation
- Automatic release after the confirmation window
- Stripe webhook reconciliation and listing inventory
"""

from django.apps import AppConfig


class EscrowAppConfig(AppConfig):
    """Configuration for the escrow application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "escrow"
    verbose_name = "Ticket Escrow"
