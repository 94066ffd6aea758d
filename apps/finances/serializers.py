"""Serializers for the finance domain (ledger and payouts)."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from shared.infrastructure.encryption import mask_account

from .models import Payout, Transaction


class TransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Transaction
        fields = [
            "id",
            "booking",
            "actor",
            "kind",
            "status",
            "amount",
            "currency",
            "external_ref",
            "idempotency_key",
            "attempt",
            "failure_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PayoutSerializer(serializers.ModelSerializer):
    """Payout with the destination shown masked."""

    destination = serializers.SerializerMethodField()
    kind = serializers.ReadOnlyField(source="transaction.kind")

    class Meta:
        model = Payout
        fields = [
            "id",
            "booking",
            "provider",
            "kind",
            "amount",
            "currency",
            "status",
            "transfer_reference",
            "transfer_code",
            "destination",
            "failure_reason",
            "completed_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_destination(self, obj) -> str:  # type: ignore
        return mask_account(obj.destination_account)


class PaymentVerificationSerializer(serializers.Serializer):
    reference = serializers.CharField(max_length=100)
