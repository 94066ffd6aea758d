"""User domain models for the talent marketplace.

The platform differentiates three roles (event organizer, talent and
platform admin). Talents must pass KYC before they can receive payouts,
and store the M-Pesa number payouts are sent to; the number is encrypted
at rest.
"""

from __future__ import annotations

from typing import Any

from django.contrib.auth.models import AbstractUser, BaseUserManager  # type: ignore
from django.core.validators import RegexValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.infrastructure.fields import EncryptedCharField


PHONE_VALIDATOR = RegexValidator(
    regex=r"^\+?\d{9,15}$",
    message=_("Invalid phone number. Use the international format without spaces."),
)


class CustomUserManager(BaseUserManager):
    """User manager that uses email as the login."""

    use_in_migrations = True

    def _create_user(self, email: str, password: str | None, **extra_fields: Any):
        if not email:
            raise ValueError("Email is required to create a user.")
        email = self.normalize_email(email)

        phone = extra_fields.get("mpesa_phone")
        if phone:
            extra_fields["mpesa_phone"] = self.normalize_phone(phone)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_user(self, email: str, password: str | None = None, **extra_fields: Any):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        extra_fields.setdefault("role", CustomUser.RoleChoices.ORGANIZER)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email: str, password: str | None = None, **extra_fields: Any):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", CustomUser.RoleChoices.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self._create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_phone(phone: str) -> str:
        """Strip spaces and dashes so numbers are stored uniformly."""
        return phone.replace(" ", "").replace("-", "")


class CustomUser(AbstractUser):
    """Marketplace user with a role and KYC state."""

    class RoleChoices(models.TextChoices):
        ORGANIZER = "organizer", _("Organizer")
        TALENT = "talent", _("Talent")
        ADMIN = "admin", _("Admin")

    class KycStatus(models.TextChoices):
        UNVERIFIED = "unverified", _("Not submitted")
        PENDING = "pending", _("Under review")
        VERIFIED = "verified", _("Verified")
        REJECTED = "rejected", _("Rejected")

    username = models.CharField(
        _("Display name"),
        max_length=150,
        blank=True,
        help_text=_("Optional, shown in notifications and on payouts."),
    )
    email = models.EmailField(_("Email"), unique=True)
    role = models.CharField(
        _("Role"),
        max_length=20,
        choices=RoleChoices.choices,
        default=RoleChoices.ORGANIZER,
    )
    kyc_status = models.CharField(
        _("KYC status"),
        max_length=20,
        choices=KycStatus.choices,
        default=KycStatus.UNVERIFIED,
    )
    kyc_verified_at = models.DateTimeField(_("KYC verified at"), null=True, blank=True)
    mpesa_phone = EncryptedCharField(
        _("M-Pesa number"),
        max_length=20,
        blank=True,
        validators=[PHONE_VALIDATOR],
        help_text=_("Payout destination for talents."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CustomUserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["username"]

    class Meta:
        verbose_name = _("User")
        verbose_name_plural = _("Users")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.email} ({self.get_role_display()})"

    @property
    def display_name(self) -> str:
        return self.username or self.get_full_name() or self.email

    # --- Domain helpers ------------------------------------------------------
    def is_organizer(self) -> bool:
        return self.role == self.RoleChoices.ORGANIZER

    def is_talent(self) -> bool:
        return self.role == self.RoleChoices.TALENT

    def is_platform_admin(self) -> bool:
        return self.role == self.RoleChoices.ADMIN or self.is_superuser

    @property
    def is_kyc_verified(self) -> bool:
        return self.kyc_status == self.KycStatus.VERIFIED

    def mark_kyc_verified(self) -> None:
        self.kyc_status = self.KycStatus.VERIFIED
        self.kyc_verified_at = timezone.now()
        self.save(update_fields=["kyc_status", "kyc_verified_at", "updated_at"])


# Alias used by tests and services
User = CustomUser
