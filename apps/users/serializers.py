"""Serializers for user-related API endpoints."""

from __future__ import annotations

from django.contrib.auth import get_user_model  # type: ignore
from rest_framework import serializers  # type: ignore

from shared.infrastructure.encryption import mask_account

from .models import PHONE_VALIDATOR

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Profile of the current user; the M-Pesa number is only ever shown masked."""

    mpesa_phone = serializers.CharField(write_only=True, required=False, allow_blank=True)
    mpesa_phone_masked = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "username",
            "first_name",
            "last_name",
            "role",
            "kyc_status",
            "mpesa_phone",
            "mpesa_phone_masked",
            "created_at",
        ]
        read_only_fields = ["id", "email", "role", "kyc_status", "created_at"]

    def get_mpesa_phone_masked(self, obj) -> str:  # type: ignore
        return mask_account(obj.mpesa_phone)

    def validate_mpesa_phone(self, value: str) -> str:
        value = User.objects.normalize_phone(value)
        if value:
            PHONE_VALIDATOR(value)
        return value
