import django.db.models.deletion
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_ref", models.CharField(blank=True, help_text="Identifier of the organizer's event.", max_length=64)),
                ("event_title", models.CharField(blank=True, max_length=255)),
                ("status", models.CharField(choices=[("pending", "Awaiting provider"), ("accepted", "Accepted"), ("declined", "Declined"), ("in_progress", "In progress"), ("completed", "Completed"), ("cancelled", "Cancelled"), ("disputed", "Disputed"), ("resolved_organizer", "Resolved for organizer"), ("resolved_provider", "Resolved for provider"), ("resolved_partial", "Resolved partially")], default="pending", max_length=32)),
                ("gross_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("platform_fee", models.DecimalField(blank=True, decimal_places=2, help_text="Set when the booking completes or a dispute is resolved.", max_digits=12, null=True)),
                ("recipient_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("currency", models.CharField(default="KES", max_length=3)),
                ("is_paid_out", models.BooleanField(default=False)),
                ("notes", models.TextField(blank=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("proposed_at", models.DateTimeField(auto_now_add=True)),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("organizer", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="organized_bookings", to=settings.AUTH_USER_MODEL)),
                ("provider", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="provided_bookings", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Booking",
                "verbose_name_plural": "Bookings",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="bookings_bo_status_8a1f3e_idx"),
                    models.Index(fields=["status", "is_paid_out"], name="bookings_bo_status_4c2d9b_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("gross_amount__gt", Decimal("0"))), name="booking_gross_positive"),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("platform_fee__isnull", True),
                            ("recipient_amount__isnull", True),
                            ("gross_amount", models.F("platform_fee") + models.F("recipient_amount")),
                            _connector="OR",
                        ),
                        name="booking_split_adds_up",
                    ),
                ],
            },
        ),
    ]
