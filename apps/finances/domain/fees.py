"""
Fee Calculator

Splits a booking's gross amount between the platform and the provider.

- STANDARD: 10% platform fee, applied when a booking completes
- DISPUTE_RESOLVED: 5% platform fee, applied when a dispute is resolved

The fee is rounded half-up to the currency minor unit and the recipient
amount is always the remainder, so ``fee + recipient_amount == gross``
holds exactly for every input.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from shared.domain.base import ValueObject
from shared.domain.value_objects import Money, quantize


class FeeMode(Enum):
    STANDARD = 'standard'
    DISPUTE_RESOLVED = 'dispute_resolved'


FEE_RATES = {
    FeeMode.STANDARD: Decimal('0.10'),
    FeeMode.DISPUTE_RESOLVED: Decimal('0.05'),
}


@dataclass(frozen=True)
class FeeSplit(ValueObject):
    """Result of a fee computation"""
    fee: Money
    recipient_amount: Money
    mode: FeeMode

    @property
    def gross(self) -> Money:
        return self.fee + self.recipient_amount


def fee_for(gross: Money, mode: FeeMode) -> Money:
    return Money(quantize(gross.amount * FEE_RATES[mode]), gross.currency)


def split(gross: Money, mode: FeeMode = FeeMode.STANDARD) -> FeeSplit:
    """
    Split ``gross`` into platform fee and recipient amount

    Callers reject non-positive amounts before getting here.
    """
    fee = fee_for(gross, mode)
    return FeeSplit(fee=fee, recipient_amount=gross - fee, mode=mode)
