"""Ledger models for booking settlement."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.infrastructure.fields import EncryptedCharField


class Transaction(models.Model):
    """
    One money movement attached to a booking.

    Rows are append-only apart from their status, which only moves
    forward from PENDING. At most one live (PENDING or COMPLETED) row per
    booking exists for each settlement kind; a FAILED or CANCELLED row
    frees the slot for the next attempt.
    """

    class Kind(models.TextChoices):
        ORGANIZER_PAYMENT = "organizer_payment", _("Organizer payment")
        PLATFORM_FEE = "platform_fee", _("Platform fee")
        PROVIDER_PAYOUT = "provider_payout", _("Provider payout")
        PROVIDER_ADJUSTMENT = "provider_adjustment", _("Provider adjustment")
        REFUND = "refund", _("Refund")

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")
        CANCELLED = "cancelled", _("Cancelled")

    SETTLEMENT_KINDS = (
        Kind.ORGANIZER_PAYMENT,
        Kind.PROVIDER_PAYOUT,
        Kind.PROVIDER_ADJUSTMENT,
        Kind.REFUND,
    )
    LIVE_STATUSES = (Status.PENDING, Status.COMPLETED)

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        help_text=_("User the money is paid to or collected from."),
    )
    kind = models.CharField(max_length=32, choices=Kind.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="KES")
    external_ref = models.CharField(
        max_length=100,
        blank=True,
        help_text=_("Reference of the payment, transfer or refund at the provider."),
    )
    idempotency_key = models.CharField(max_length=100, unique=True, null=True, blank=True)
    attempt = models.PositiveSmallIntegerField(default=1)
    lease_expires_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Transaction")
        verbose_name_plural = _("Transactions")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "kind"],
                condition=models.Q(
                    kind__in=[
                        "organizer_payment",
                        "provider_payout",
                        "provider_adjustment",
                        "refund",
                    ],
                    status__in=["pending", "completed"],
                ),
                name="transaction_one_live_per_booking_kind",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=Decimal("0")) | models.Q(kind="platform_fee"),
                name="transaction_amount_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["booking", "kind", "status"], name="finances_tr_booking_5e7a21_idx"),
            models.Index(fields=["status", "lease_expires_at"], name="finances_tr_status_9b3c40_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.kind} {self.amount} {self.currency} for booking {self.booking_id} ({self.status})"

    @property
    def is_live(self) -> bool:
        return self.status in self.LIVE_STATUSES


class Payout(models.Model):
    """Transfer record for a provider payout or adjustment."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        PROCESSING = "processing", _("Processing")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")

    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    transaction = models.OneToOneField(
        Transaction,
        on_delete=models.PROTECT,
        related_name="payout",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="KES")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    transfer_reference = models.CharField(max_length=100, blank=True)
    transfer_code = models.CharField(max_length=100, blank=True)
    recipient_code = models.CharField(max_length=100, blank=True)
    destination_account = EncryptedCharField(max_length=32, blank=True)
    gateway_payload = models.JSONField(default=dict, blank=True)
    failure_reason = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payout")
        verbose_name_plural = _("Payouts")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Payout {self.amount} {self.currency} to {self.provider_id} ({self.status})"

    def mark_completed(self, transfer_code: str = "", payload: dict | None = None) -> None:
        self.status = self.Status.COMPLETED
        if transfer_code:
            self.transfer_code = transfer_code
        if payload is not None:
            self.gateway_payload = payload
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "transfer_code", "gateway_payload", "completed_at", "updated_at"])

    def mark_failed(self, reason: str, payload: dict | None = None) -> None:
        self.status = self.Status.FAILED
        self.failure_reason = reason
        if payload is not None:
            self.gateway_payload = payload
        self.save(update_fields=["status", "failure_reason", "gateway_payload", "updated_at"])

    def mark_processing(self, transfer_code: str = "", payload: dict | None = None) -> None:
        self.status = self.Status.PROCESSING
        if transfer_code:
            self.transfer_code = transfer_code
        if payload is not None:
            self.gateway_payload = payload
        self.save(update_fields=["status", "transfer_code", "gateway_payload", "updated_at"])
