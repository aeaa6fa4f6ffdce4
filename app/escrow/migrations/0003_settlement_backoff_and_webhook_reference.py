from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0002_add_escrow_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="order",
            name="transfer_idempotency_key",
            field=models.CharField(
                blank=True,
                default="",
                help_text="Key for the next transfer attempt; rotated after a definitive failure",
                max_length=255,
            ),
        ),
        migrations.AddField(
            model_name="order",
            name="next_transfer_attempt_at",
            field=models.DateTimeField(
                blank=True,
                help_text="A failed transfer is not retried before this time",
                null=True,
            ),
        ),
        migrations.AddField(
            model_name="order",
            name="settle_failures",
            field=models.PositiveSmallIntegerField(
                default=0,
                help_text="Consecutive release sweep settlements that failed",
            ),
        ),
        migrations.AddField(
            model_name="order",
            name="next_settle_attempt_at",
            field=models.DateTimeField(
                blank=True,
                db_index=True,
                help_text="The release sweep skips the order until this time",
                null=True,
            ),
        ),
        migrations.AddField(
            model_name="webhookevent",
            name="order_reference",
            field=models.CharField(
                blank=True,
                db_index=True,
                default="",
                help_text="Order the event refers to (pi_xxx, cs_xxx or order UUID)",
                max_length=255,
            ),
        ),
    ]
