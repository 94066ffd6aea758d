import django.db.models.deletion
import shared.infrastructure.fields
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("kind", models.CharField(choices=[("organizer_payment", "Organizer payment"), ("platform_fee", "Platform fee"), ("provider_payout", "Provider payout"), ("provider_adjustment", "Provider adjustment"), ("refund", "Refund")], max_length=32)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("cancelled", "Cancelled")], default="pending", max_length=20)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="KES", max_length=3)),
                ("external_ref", models.CharField(blank=True, help_text="Reference of the payment, transfer or refund at the provider.", max_length=100)),
                ("idempotency_key", models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ("attempt", models.PositiveSmallIntegerField(default=1)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("actor", models.ForeignKey(blank=True, help_text="User the money is paid to or collected from.", null=True, on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to=settings.AUTH_USER_MODEL)),
                ("booking", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="bookings.booking")),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["booking", "kind", "status"], name="finances_tr_booking_5e7a21_idx"),
                    models.Index(fields=["status", "lease_expires_at"], name="finances_tr_status_9b3c40_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("kind__in", ["organizer_payment", "provider_payout", "provider_adjustment", "refund"]),
                            ("status__in", ["pending", "completed"]),
                        ),
                        fields=("booking", "kind"),
                        name="transaction_one_live_per_booking_kind",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", Decimal("0")), ("kind", "platform_fee"), _connector="OR"),
                        name="transaction_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="KES", max_length=3)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("completed", "Completed"), ("failed", "Failed")], default="pending", max_length=20)),
                ("transfer_reference", models.CharField(blank=True, max_length=100)),
                ("transfer_code", models.CharField(blank=True, max_length=100)),
                ("recipient_code", models.CharField(blank=True, max_length=100)),
                ("destination_account", shared.infrastructure.fields.EncryptedCharField(blank=True, max_length=32)),
                ("gateway_payload", models.JSONField(blank=True, default=dict)),
                ("failure_reason", models.TextField(blank=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("booking", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payouts", to="bookings.booking")),
                ("provider", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payouts", to=settings.AUTH_USER_MODEL)),
                ("transaction", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="payout", to="finances.transaction")),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "ordering": ["-created_at"],
            },
        ),
    ]
