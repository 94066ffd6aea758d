"""Dispute model."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Dispute(models.Model):
    """A complaint about a completed booking awaiting an admin decision."""

    class Status(models.TextChoices):
        OPEN = "open", _("Open")
        UNDER_REVIEW = "under_review", _("Under review")
        RESOLVED_ORGANIZER = "resolved_organizer", _("Resolved for organizer")
        RESOLVED_PROVIDER = "resolved_provider", _("Resolved for provider")
        RESOLVED_PARTIAL = "resolved_partial", _("Resolved partially")

    class Reason(models.TextChoices):
        # Raised by organizers
        TALENT_NO_SHOW = "talent_no_show", _("Talent did not show up")
        SERVICE_NOT_AS_DESCRIBED = "service_not_as_described", _("Service not as described")
        UNPROFESSIONAL_CONDUCT = "unprofessional_conduct", _("Unprofessional conduct")
        # Raised by talents
        ORGANIZER_UNRESPONSIVE = "organizer_unresponsive", _("Organizer unresponsive")
        SCOPE_DISAGREEMENT = "scope_disagreement", _("Disagreement about scope")
        UNSAFE_ENVIRONMENT = "unsafe_environment", _("Unsafe environment")
        OTHER = "other", _("Other")

    OPEN_STATUSES = (Status.OPEN, Status.UNDER_REVIEW)
    RESOLVED_STATUSES = (Status.RESOLVED_ORGANIZER, Status.RESOLVED_PROVIDER, Status.RESOLVED_PARTIAL)

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    raised_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="raised_disputes",
    )
    reason = models.CharField(max_length=40, choices=Reason.choices)
    explanation = models.TextField()
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.OPEN)
    resolution_notes = models.TextField(blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    payout_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    dispute_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_disputes",
    )
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_disputes",
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Dispute")
        verbose_name_plural = _("Disputes")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=models.Q(status__in=["open", "under_review"]),
                name="dispute_one_open_per_booking",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="disputes_di_status_0d6f12_idx"),
        ]

    def __str__(self) -> str:
        return f"Dispute #{self.pk} on booking {self.booking_id} ({self.status})"

    @property
    def is_open(self) -> bool:
        return self.status in self.OPEN_STATUSES
