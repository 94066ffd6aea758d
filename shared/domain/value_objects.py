"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents monetary amounts with currency, rounded to the minor unit
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from shared.domain.base import ValueObject

MINOR_UNIT = Decimal('0.01')
SUPPORTED_CURRENCIES = ('KES', 'NGN', 'GHS', 'ZAR', 'USD')


def quantize(amount) -> Decimal:
    """Round half-up to the currency minor unit."""
    return Decimal(str(amount)).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a non-negative monetary amount with currency.
    Amounts are always held at minor-unit precision.
    """
    amount: Decimal
    currency: str = 'KES'

    def __post_init__(self):
        object.__setattr__(self, 'amount', quantize(self.amount))
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {self.currency}")

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only subtract Money from Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract different currencies: {self.currency} and {other.currency}")
        return Money(self.amount - other.amount, self.currency)

    @property
    def minor_units(self) -> int:
        """Amount in the smallest currency unit (cents, kobo) as gateways expect it."""
        return int((self.amount * 100).to_integral_value(rounding=ROUND_HALF_UP))

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"
