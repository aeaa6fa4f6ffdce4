"""
State enums for escrow models.

These are Django TextChoices for database storage and admin integration.

Order States:
    pending → authorized → captured          (buyer confirms, or window expires)
    pending → authorized → canceled          (buyer cancels before tickets are sent)
    pending → authorized → on_hold → canceled (dispute unresolved at expiry)
    pending → canceled                       (checkout abandoned or expired)

    captured and canceled are terminal. There is no refund path.

Transfer Status (seller payout after capture):
    not_required | pending → succeeded
                   pending → failed → succeeded (retry)

WebhookEvent Status:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    States for the escrow Order lifecycle.

    PENDING is "checkout created, buyer has not authorized funds yet" and is
    never touched by the release sweep.
    """

    PENDING = "pending", "Pending"
    AUTHORIZED = "authorized", "Authorized"
    ON_HOLD = "on_hold", "On Hold"
    CAPTURED = "captured", "Captured"
    CANCELED = "canceled", "Canceled"

    @classmethod
    def terminal(cls) -> frozenset[str]:
        return frozenset({cls.CAPTURED, cls.CANCELED})

    @classmethod
    def escrowed(cls) -> frozenset[str]:
        """States in which funds are held and the sweep may act."""
        return frozenset({cls.AUTHORIZED, cls.ON_HOLD})


class TransferStatus(models.TextChoices):
    """Status of the seller transfer that follows a capture."""

    NOT_REQUIRED = "not_required", "Not Required"
    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class SettlementDecision(models.TextChoices):
    """Financial action the settlement executor performs."""

    CAPTURE = "capture", "Capture"
    CANCEL = "cancel", "Cancel"


class WebhookEventStatus(models.TextChoices):
    """Processing status for stored Stripe webhook events."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
