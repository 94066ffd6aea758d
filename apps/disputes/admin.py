"""Admin registration for disputes."""

from __future__ import annotations

from django.contrib import admin

from .models import Dispute


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "raised_by", "reason", "status", "refund_amount", "payout_amount", "created_at")
    list_filter = ("status", "reason")
    search_fields = ("booking__id", "raised_by__email", "explanation")
    readonly_fields = (
        "booking",
        "raised_by",
        "reason",
        "explanation",
        "status",
        "refund_amount",
        "payout_amount",
        "dispute_fee",
        "reviewed_by",
        "resolved_by",
        "resolved_at",
        "created_at",
        "updated_at",
    )
