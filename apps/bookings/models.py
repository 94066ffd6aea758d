"""Booking models for the talent marketplace."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Booking(models.Model):
    """A request from an event organizer to book a talent."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Awaiting provider")
        ACCEPTED = "accepted", _("Accepted")
        DECLINED = "declined", _("Declined")
        IN_PROGRESS = "in_progress", _("In progress")
        COMPLETED = "completed", _("Completed")
        CANCELLED = "cancelled", _("Cancelled")
        DISPUTED = "disputed", _("Disputed")
        RESOLVED_ORGANIZER = "resolved_organizer", _("Resolved for organizer")
        RESOLVED_PROVIDER = "resolved_provider", _("Resolved for provider")
        RESOLVED_PARTIAL = "resolved_partial", _("Resolved partially")

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="organized_bookings",
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="provided_bookings",
    )
    event_ref = models.CharField(
        max_length=64,
        blank=True,
        help_text=_("Identifier of the organizer's event."),
    )
    event_title = models.CharField(max_length=255, blank=True)
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.PENDING,
    )
    gross_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Set when the booking completes or a dispute is resolved."),
    )
    recipient_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, default="KES")
    is_paid_out = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=0)
    proposed_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(gross_amount__gt=Decimal("0")),
                name="booking_gross_positive",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(platform_fee__isnull=True)
                    | models.Q(recipient_amount__isnull=True)
                    | models.Q(gross_amount=models.F("platform_fee") + models.F("recipient_amount"))
                ),
                name="booking_split_adds_up",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="bookings_bo_status_8a1f3e_idx"),
            models.Index(fields=["status", "is_paid_out"], name="bookings_bo_status_4c2d9b_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} ({self.status})"

    def delete(self, *args, **kwargs):  # type: ignore
        raise models.ProtectedError("Bookings are never deleted.", {self})
