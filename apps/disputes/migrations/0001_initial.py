import django.db.models.deletion
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
            name="Dispute",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("reason", models.CharField(choices=[("talent_no_show", "Talent did not show up"), ("service_not_as_described", "Service not as described"), ("unprofessional_conduct", "Unprofessional conduct"), ("organizer_unresponsive", "Organizer unresponsive"), ("scope_disagreement", "Disagreement about scope"), ("unsafe_environment", "Unsafe environment"), ("other", "Other")], max_length=40)),
                ("explanation", models.TextField()),
                ("status", models.CharField(choices=[("open", "Open"), ("under_review", "Under review"), ("resolved_organizer", "Resolved for organizer"), ("resolved_provider", "Resolved for provider"), ("resolved_partial", "Resolved partially")], default="open", max_length=32)),
                ("resolution_notes", models.TextField(blank=True)),
                ("refund_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("payout_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("dispute_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("booking", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="disputes", to="bookings.booking")),
                ("raised_by", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="raised_disputes", to=settings.AUTH_USER_MODEL)),
                ("resolved_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="resolved_disputes", to=settings.AUTH_USER_MODEL)),
                ("reviewed_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="reviewed_disputes", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Dispute",
                "verbose_name_plural": "Disputes",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="disputes_di_status_0d6f12_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["open", "under_review"])),
                        fields=("booking",),
                        name="dispute_one_open_per_booking",
                    ),
                ],
            },
        ),
    ]
