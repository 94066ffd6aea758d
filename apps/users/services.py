"""KYC and payout-destination lookups consulted by settlement guards."""

from __future__ import annotations

from dataclasses import dataclass

from shared.infrastructure.encryption import mask_account

from .models import CustomUser


@dataclass(frozen=True)
class PayoutDestination:
    """Where a recipient's money goes at the transfer provider."""

    account_number: str
    account_name: str
    type: str = "mobile_money"
    bank_code: str = "MPESA"

    @property
    def masked(self) -> str:
        return mask_account(self.account_number)


def format_mpesa_number(phone: str) -> str:
    """
    Normalize an M-Pesa number to the local ``07XXXXXXXX`` form the
    transfer provider expects.

    ``+254712345678`` and ``254712345678`` both become ``0712345678``;
    numbers already starting with ``0`` are left untouched.
    """
    number = CustomUser.objects.normalize_phone(phone or "")
    if number.startswith("+254"):
        return "0" + number[4:]
    if number.startswith("254"):
        return "0" + number[3:]
    return number


def is_verified(user: CustomUser) -> bool:
    return bool(user and user.is_active and user.is_kyc_verified)


def payout_destination(user: CustomUser) -> PayoutDestination | None:
    if not user or not user.mpesa_phone:
        return None
    return PayoutDestination(
        account_number=format_mpesa_number(user.mpesa_phone),
        account_name=user.display_name,
    )
