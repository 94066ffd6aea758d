"""Admin registration for the settlement ledger."""

from __future__ import annotations

from django.contrib import admin

from .models import Payout, Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "booking",
        "kind",
        "status",
        "amount",
        "currency",
        "attempt",
        "idempotency_key",
        "created_at",
    )
    list_filter = ("kind", "status", "currency")
    search_fields = ("idempotency_key", "external_ref", "booking__id")
    readonly_fields = [field.name for field in Transaction._meta.fields]

    def has_add_permission(self, request):  # type: ignore
        return False

    def has_delete_permission(self, request, obj=None):  # type: ignore
        return False


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "provider", "amount", "status", "transfer_reference", "completed_at")
    list_filter = ("status",)
    search_fields = ("transfer_reference", "transfer_code", "provider__email")
    exclude = ("destination_account",)
    readonly_fields = (
        "provider",
        "booking",
        "transaction",
        "amount",
        "currency",
        "status",
        "transfer_reference",
        "transfer_code",
        "recipient_code",
        "gateway_payload",
        "failure_reason",
        "completed_at",
        "created_at",
        "updated_at",
    )

    def has_add_permission(self, request):  # type: ignore
        return False

    def has_delete_permission(self, request, obj=None):  # type: ignore
        return False
