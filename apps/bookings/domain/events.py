"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from typing import Any

from shared.domain.base import DomainEvent


@dataclass(frozen=True, kw_only=True)
class BookingTransitioned(DomainEvent):
    """
    Event: A booking moved from one status to another

    Triggers:
    - Notify the counter-party
    """
    booking_id: Any
    action: str
    from_status: str
    to_status: str
    actor_id: Any = None
    actor_role: str = ''


@dataclass(frozen=True, kw_only=True)
class SettlementRequested(DomainEvent):
    """
    Event: A booking entered COMPLETED or a RESOLVED_* state

    Triggers:
    - Run the settlement orchestrator (Celery task)
    """
    booking_id: Any
    status: str
    fee_mode: str
