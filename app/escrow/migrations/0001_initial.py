import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Listing",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "listing_id",
                    models.CharField(
                        help_text="Public listing identifier",
                        max_length=100,
                        unique=True,
                    ),
                ),
                (
                    "title",
                    models.CharField(
                        help_text="Event title shown at checkout", max_length=255
                    ),
                ),
                (
                    "event_date",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Event date as displayed to buyers",
                        max_length=100,
                    ),
                ),
                ("city", models.CharField(blank=True, default="", max_length=100)),
                (
                    "seat_info",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Section/row description shown at checkout",
                        max_length=255,
                    ),
                ),
                (
                    "price_cents",
                    models.PositiveIntegerField(
                        help_text="Asking price per ticket in cents"
                    ),
                ),
                (
                    "face_value_cents",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Printed face value per ticket in cents",
                        null=True,
                    ),
                ),
                (
                    "seller_account_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Connect account ID (acct_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "seller_email",
                    models.EmailField(blank=True, default="", max_length=254),
                ),
                (
                    "remaining",
                    models.PositiveIntegerField(
                        default=0, help_text="Tickets still available"
                    ),
                ),
                (
                    "sold",
                    models.PositiveIntegerField(
                        default=0, help_text="Tickets sold through captured orders"
                    ),
                ),
                (
                    "seat_numbers",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Seat labels available for assignment, in order",
                    ),
                ),
                (
                    "assigned_seats",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Seat labels already assigned to buyers",
                    ),
                ),
            ],
            options={
                "verbose_name": "Listing",
                "verbose_name_plural": "Listings",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "stripe_checkout_session_id",
                    models.CharField(
                        help_text="Stripe Checkout Session ID (cs_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent ID (pi_xxx), known once the buyer pays",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "stripe_charge_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Charge ID of the captured payment (ch_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "listing_id",
                    models.CharField(
                        db_index=True,
                        help_text="Identifier of the listing the tickets come from",
                        max_length=100,
                    ),
                ),
                (
                    "quantity",
                    models.PositiveSmallIntegerField(
                        help_text="Number of tickets purchased"
                    ),
                ),
                (
                    "unit_price_cents",
                    models.PositiveIntegerField(
                        help_text="Ticket price per unit in cents"
                    ),
                ),
                (
                    "face_value_cents",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Printed face value per ticket in cents, if known",
                        null=True,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "buyer_fee_cents",
                    models.PositiveIntegerField(help_text="Total buyer service fee"),
                ),
                (
                    "seller_fee_per_ticket_cents",
                    models.PositiveIntegerField(help_text="Seller fee per ticket"),
                ),
                (
                    "seller_fee_cents",
                    models.PositiveIntegerField(help_text="Total seller fee"),
                ),
                (
                    "gross_amount_cents",
                    models.PositiveIntegerField(
                        help_text="Amount authorized on the buyer's card"
                    ),
                ),
                (
                    "platform_take_cents",
                    models.PositiveIntegerField(help_text="Amount kept by the platform"),
                ),
                (
                    "seller_payout_cents",
                    models.PositiveIntegerField(
                        help_text="Amount transferred to the seller after capture"
                    ),
                ),
                (
                    "seller_account_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Connect account receiving the payout (acct_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "buyer_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Buyer email from checkout, informational",
                        max_length=254,
                    ),
                ),
                (
                    "seller_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Seller email from the listing, informational",
                        max_length=254,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("authorized", "Authorized"),
                            ("on_hold", "On Hold"),
                            ("captured", "Captured"),
                            ("canceled", "Canceled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current escrow state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "confirm_deadline",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Buyer must confirm or dispute before this time; set once",
                        null=True,
                    ),
                ),
                (
                    "sent_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the seller marked the tickets as sent",
                        null=True,
                    ),
                ),
                (
                    "cancel_reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Why the order was canceled",
                        max_length=50,
                    ),
                ),
                ("authorized_at", models.DateTimeField(blank=True, null=True)),
                ("on_hold_at", models.DateTimeField(blank=True, null=True)),
                ("captured_at", models.DateTimeField(blank=True, null=True)),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "last_transition_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the status last changed",
                        null=True,
                    ),
                ),
                (
                    "amount_captured_cents",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Amount Stripe reports as captured",
                        null=True,
                    ),
                ),
                (
                    "transfer_status",
                    models.CharField(
                        choices=[
                            ("not_required", "Not Required"),
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="not_required",
                        help_text="Status of the payout transfer to the seller",
                        max_length=20,
                    ),
                ),
                (
                    "stripe_transfer_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Transfer ID (tr_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "transfer_error",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Last transfer failure message",
                    ),
                ),
                (
                    "transfer_attempts",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of transfer attempts"
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Incremented on each save"
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata (listing snapshot, seat assignment)",
                    ),
                ),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "confirm_deadline"],
                        name="escrow_ord_status_dl_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at", "id"],
                        name="escrow_ord_sweep_idx",
                    ),
                    models.Index(
                        fields=["transfer_status", "captured_at"],
                        name="escrow_ord_transfer_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gte", 1)),
                        name="escrow_order_quantity_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedOrder",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("listing_id", models.CharField(db_index=True, max_length=100)),
                ("quantity", models.PositiveSmallIntegerField()),
                ("assigned_seats", models.JSONField(blank=True, default=list)),
                (
                    "order",
                    models.OneToOneField(
                        help_text="Order whose tickets were taken from inventory",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_record",
                        to="escrow.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Processed Order",
                "verbose_name_plural": "Processed Orders",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx), unique for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'checkout.session.completed')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full event payload from Stripe"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="escrow_wh_status_created_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="escrow_wh_status_retry_idx",
                    ),
                ],
            },
        ),
    ]
