"""
Booking Domain Entities

Core business entities for the booking domain:
- Booking: Immutable snapshot of a booking row
- BookingStatus: FSM states for the booking lifecycle
- BookingAction: Actions actors request against a booking
- ActorRole: Role an actor holds for a given request
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from shared.domain.base import Entity
from shared.domain.value_objects import Money


class BookingStatus(str, Enum):
    """
    Booking Status Finite State Machine

    State transitions:
    - PENDING -> ACCEPTED / DECLINED (provider answers the request)
    - ACCEPTED -> IN_PROGRESS (event started)
    - ACCEPTED / IN_PROGRESS -> COMPLETED (service delivered)
    - ACCEPTED / IN_PROGRESS -> CANCELLED
    - COMPLETED -> DISPUTED (a party filed a dispute)
    - DISPUTED -> RESOLVED_ORGANIZER / RESOLVED_PROVIDER / RESOLVED_PARTIAL
    """
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    DISPUTED = 'disputed'
    RESOLVED_ORGANIZER = 'resolved_organizer'
    RESOLVED_PROVIDER = 'resolved_provider'
    RESOLVED_PARTIAL = 'resolved_partial'


class BookingAction(str, Enum):
    ACCEPT = 'accept'
    DECLINE = 'decline'
    START = 'start'
    COMPLETE = 'complete'
    CANCEL = 'cancel'
    DISPUTE = 'dispute'
    RESOLVE_ORGANIZER = 'resolve_organizer'
    RESOLVE_PROVIDER = 'resolve_provider'
    RESOLVE_PARTIAL = 'resolve_partial'


class ActorRole(str, Enum):
    ORGANIZER = 'organizer'
    PROVIDER = 'provider'
    ADMIN = 'admin'
    SYSTEM = 'system'


RESOLVED_STATUSES = frozenset({
    BookingStatus.RESOLVED_ORGANIZER,
    BookingStatus.RESOLVED_PROVIDER,
    BookingStatus.RESOLVED_PARTIAL,
})

TERMINAL_STATUSES = frozenset({
    BookingStatus.DECLINED,
    BookingStatus.CANCELLED,
}) | RESOLVED_STATUSES

# Only these states may run the settlement orchestrator
SETTLEMENT_STATUSES = frozenset({BookingStatus.COMPLETED}) | RESOLVED_STATUSES


@dataclass(frozen=True, kw_only=True)
class Booking(Entity):
    """
    Booking snapshot

    Key invariants:
    - gross_amount is positive
    - gross_amount == platform_fee + recipient_amount once a split is applied
    - is_paid_out only ever moves from False to True
    """
    status: BookingStatus = BookingStatus.PENDING
    organizer_id: Any = None
    provider_id: Any = None

    gross_amount: Money
    platform_fee: Money | None = None
    recipient_amount: Money | None = None

    event_ref: str = ''
    event_title: str = ''
    notes: str = ''
    is_paid_out: bool = False

    proposed_at: datetime | None = None
    accepted_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    def __post_init__(self):
        if self.gross_amount.amount <= 0:
            raise ValueError("Gross amount must be positive")
        if self.platform_fee is not None and self.recipient_amount is not None:
            if self.platform_fee + self.recipient_amount != self.gross_amount:
                raise ValueError("Platform fee and recipient amount must add up to the gross amount")

    @property
    def currency(self) -> str:
        return self.gross_amount.currency

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_settleable(self) -> bool:
        return self.status in SETTLEMENT_STATUSES

    def involves(self, user_id) -> bool:
        return user_id is not None and user_id in (self.organizer_id, self.provider_id)

    def evolve(self, **changes) -> 'Booking':
        """Return a copy with ``changes`` applied"""
        return replace(self, **changes)

    def __str__(self):
        return f"Booking {self.id} ({self.status.value})"
