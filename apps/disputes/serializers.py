"""Serializers for disputes."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .application.resolver import Outcome
from .models import Dispute


class DisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dispute
        fields = [
            "id",
            "booking",
            "raised_by",
            "reason",
            "explanation",
            "status",
            "resolution_notes",
            "refund_amount",
            "payout_amount",
            "dispute_fee",
            "reviewed_by",
            "resolved_by",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields


class FileDisputeSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=Dispute.Reason.choices)
    explanation = serializers.CharField(max_length=5000)


class ResolveDisputeSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=[outcome.value for outcome in Outcome])
    notes = serializers.CharField(max_length=5000)
    refund_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    payout_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
