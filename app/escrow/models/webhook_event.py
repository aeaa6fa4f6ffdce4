"""
WebhookEvent model for Stripe webhook event tracking.

Every verified event is stored before processing. The unique
stripe_event_id makes redelivered events detectable, and the stored
payload lets failed events be retried without Stripe resending them.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from escrow.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A verified Stripe event and its processing status.

    Processing Flow:
        1. Webhook arrives, Stripe signature verified
        2. Event types without a handler are acknowledged, not stored;
           others are get_or_create'd by stripe_event_id with the order
           reference taken from the payload
        3. Already PROCESSED -> acknowledge without reprocessing
        4. Queue process_webhook_event task
        5. Task marks PROCESSING, dispatches, marks PROCESSED or FAILED
        6. FAILED events are retried by retry_failed_webhooks
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx), unique for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'checkout.session.completed')",
    )

    payload = models.JSONField(
        help_text="Full event payload from Stripe",
    )

    order_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Order the event refers to (pi_xxx, cs_xxx or order UUID)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="escrow_wh_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="escrow_wh_status_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return (
            self.status == WebhookEventStatus.FAILED
            and self.retry_count < MAX_WEBHOOK_RETRIES
        )

    # ==========================================================================
    # Helper Methods (do not save; caller must save)
    # ==========================================================================

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_object(self) -> dict:
        """Return payload.data.object, or an empty dict if malformed."""
        try:
            obj = self.payload.get("data", {}).get("object", {})
        except (AttributeError, TypeError):
            return {}
        return obj if isinstance(obj, dict) else {}

    def get_object_id(self) -> str | None:
        return self.get_object().get("id")

    @staticmethod
    def reference_from_payload(event_data: dict) -> str:
        """
        Order reference carried by a raw Stripe event.

        Escrow events are about a Checkout Session or a PaymentIntent, both
        of which are valid order references. The order_id written into
        metadata at checkout is the fallback.
        """
        try:
            obj = event_data.get("data", {}).get("object", {})
        except (AttributeError, TypeError):
            return ""
        if not isinstance(obj, dict):
            return ""

        object_id = str(obj.get("id") or "")
        if object_id.startswith(("pi_", "cs_")):
            return object_id
        metadata = obj.get("metadata") or {}
        return str(metadata.get("order_id") or "")
