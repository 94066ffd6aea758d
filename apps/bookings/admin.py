"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "event_title",
        "organizer",
        "provider",
        "status",
        "gross_amount",
        "platform_fee",
        "recipient_amount",
        "is_paid_out",
        "created_at",
    )
    list_filter = ("status", "is_paid_out", "currency")
    search_fields = ("event_title", "event_ref", "organizer__email", "provider__email")
    # Status and amounts only change through the booking lifecycle
    readonly_fields = (
        "status",
        "gross_amount",
        "platform_fee",
        "recipient_amount",
        "currency",
        "is_paid_out",
        "version",
        "proposed_at",
        "accepted_at",
        "started_at",
        "completed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    )

    def has_delete_permission(self, request, obj=None):  # type: ignore
        return False
