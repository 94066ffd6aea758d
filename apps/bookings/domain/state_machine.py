"""
Booking State Machine

Pure transition function over Booking snapshots. The permission table is
the only place that says which role may perform which action; views and
handlers never re-implement it.
"""

from datetime import datetime

from shared.domain.base import utcnow
from shared.domain.exceptions import AlreadyTerminal, Forbidden, InvalidTransition
from apps.bookings.domain.entities import (
    ActorRole,
    Booking,
    BookingAction,
    BookingStatus,
    SETTLEMENT_STATUSES,
)
from apps.bookings.domain.events import BookingTransitioned, SettlementRequested
from apps.finances.domain.fees import FeeMode, split

S = BookingStatus
A = BookingAction
R = ActorRole

# action -> (allowed source states, target state)
TRANSITIONS = {
    A.ACCEPT: (frozenset({S.PENDING}), S.ACCEPTED),
    A.DECLINE: (frozenset({S.PENDING}), S.DECLINED),
    A.START: (frozenset({S.ACCEPTED}), S.IN_PROGRESS),
    A.COMPLETE: (frozenset({S.ACCEPTED, S.IN_PROGRESS}), S.COMPLETED),
    A.CANCEL: (frozenset({S.ACCEPTED, S.IN_PROGRESS}), S.CANCELLED),
    A.DISPUTE: (frozenset({S.COMPLETED}), S.DISPUTED),
    A.RESOLVE_ORGANIZER: (frozenset({S.DISPUTED}), S.RESOLVED_ORGANIZER),
    A.RESOLVE_PROVIDER: (frozenset({S.DISPUTED}), S.RESOLVED_PROVIDER),
    A.RESOLVE_PARTIAL: (frozenset({S.DISPUTED}), S.RESOLVED_PARTIAL),
}

PERMISSIONS = {
    A.ACCEPT: frozenset({R.PROVIDER}),
    A.DECLINE: frozenset({R.PROVIDER}),
    A.START: frozenset({R.PROVIDER, R.ORGANIZER, R.ADMIN}),
    A.COMPLETE: frozenset({R.PROVIDER, R.ORGANIZER, R.ADMIN}),
    A.CANCEL: frozenset({R.ORGANIZER, R.PROVIDER, R.ADMIN}),
    A.DISPUTE: frozenset({R.ORGANIZER, R.PROVIDER}),
    A.RESOLVE_ORGANIZER: frozenset({R.ADMIN}),
    A.RESOLVE_PROVIDER: frozenset({R.ADMIN}),
    A.RESOLVE_PARTIAL: frozenset({R.ADMIN}),
}

# Timestamp column stamped when a state is entered
_STAMPS = {
    S.ACCEPTED: 'accepted_at',
    S.IN_PROGRESS: 'started_at',
    S.COMPLETED: 'completed_at',
    S.CANCELLED: 'cancelled_at',
}


def allowed_actions(booking: Booking, actor_role: ActorRole) -> list:
    """Actions ``actor_role`` could request right now, ownership aside"""
    if booking.is_terminal:
        return []
    return [
        action for action, (sources, _) in TRANSITIONS.items()
        if booking.status in sources and actor_role in PERMISSIONS[action]
    ]


def apply(
    booking: Booking,
    action: BookingAction,
    actor_role: ActorRole,
    *,
    actor_id=None,
    at: datetime | None = None,
    notes: str | None = None,
):
    """
    Apply ``action`` to ``booking``

    Returns the new snapshot and the events the transition emitted. The
    input snapshot is never modified.

    Raises:
        AlreadyTerminal: booking is DECLINED, CANCELLED or RESOLVED_*
        InvalidTransition: action not allowed from the current state
        Forbidden: role may not perform the action, or a party acts on
            a booking that is not theirs
    """
    action = BookingAction(action)
    actor_role = ActorRole(actor_role)

    if booking.is_terminal:
        raise AlreadyTerminal(
            f"Booking is {booking.status.value} and can no longer change.",
            booking_id=booking.id,
            action=action.value,
        )

    sources, target = TRANSITIONS[action]
    if booking.status not in sources:
        raise InvalidTransition(
            f"Cannot {action.value} a booking that is {booking.status.value}.",
            booking_id=booking.id,
            action=action.value,
        )

    if actor_role not in PERMISSIONS[action]:
        raise Forbidden(
            f"Role {actor_role.value} may not {action.value} a booking.",
            booking_id=booking.id,
        )

    if actor_role == R.PROVIDER and actor_id != booking.provider_id:
        raise Forbidden("Only the booked provider may act on this booking.", booking_id=booking.id)
    if actor_role == R.ORGANIZER and actor_id != booking.organizer_id:
        raise Forbidden("Only the booking organizer may act on this booking.", booking_id=booking.id)

    at = at or utcnow()
    changes = {'status': target}
    if target in _STAMPS:
        changes[_STAMPS[target]] = at
    if notes:
        changes['notes'] = notes

    fee_mode = None
    if target in SETTLEMENT_STATUSES:
        fee_mode = FeeMode.STANDARD if target == S.COMPLETED else FeeMode.DISPUTE_RESOLVED
        fee_split = split(booking.gross_amount, fee_mode)
        changes['platform_fee'] = fee_split.fee
        changes['recipient_amount'] = fee_split.recipient_amount

    updated = booking.evolve(**changes)

    events = [
        BookingTransitioned(
            aggregate_id=booking.id,
            booking_id=booking.id,
            action=action.value,
            from_status=booking.status.value,
            to_status=target.value,
            actor_id=actor_id,
            actor_role=actor_role.value,
        )
    ]
    if fee_mode is not None:
        events.append(
            SettlementRequested(
                aggregate_id=booking.id,
                booking_id=booking.id,
                status=target.value,
                fee_mode=fee_mode.value,
            )
        )
    return updated, events
