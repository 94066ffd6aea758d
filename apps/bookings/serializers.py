"""Serializers for the booking domain."""

from __future__ import annotations

from decimal import Decimal

from django.contrib.auth import get_user_model  # type: ignore
from rest_framework import serializers  # type: ignore

from .domain.entities import BookingAction
from .models import Booking

User = get_user_model()


class BookingCreateSerializer(serializers.Serializer):
    """Booking request from an organizer."""

    provider = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    gross_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    event_ref = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    event_title = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_provider(self, provider):  # type: ignore
        if not provider.is_talent():
            raise serializers.ValidationError("Bookings can only be made with talents.")
        request = self.context.get("request")
        if request and provider.pk == request.user.pk:
            raise serializers.ValidationError("You cannot book yourself.")
        return provider


class BookingSerializer(serializers.ModelSerializer):
    """Booking detail."""

    class Meta:
        model = Booking
        fields = [
            "id",
            "organizer",
            "provider",
            "event_ref",
            "event_title",
            "status",
            "gross_amount",
            "platform_fee",
            "recipient_amount",
            "currency",
            "is_paid_out",
            "notes",
            "version",
            "proposed_at",
            "accepted_at",
            "started_at",
            "completed_at",
            "cancelled_at",
            "updated_at",
        ]
        read_only_fields = fields


class TransitionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=[action.value for action in BookingAction])
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
