"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate domain operations within transactions.

Commands:
- CreateBookingCommand: An organizer requests a talent
- RequestTransitionCommand: Any actor moves a booking through its lifecycle
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
import logging

from django.conf import settings

from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import ConcurrentUpdate
from shared.domain.value_objects import Money
from apps.activity.services import record
from apps.bookings.domain import state_machine
from apps.bookings.domain.entities import ActorRole, Booking, BookingAction
from apps.bookings.infrastructure.repositories import DjangoBookingRepository
from apps.notifications.services import emit

logger = logging.getLogger(__name__)


def booking_state(booking: Booking) -> dict:
    """Audit representation of a booking snapshot"""
    return {
        'status': booking.status.value,
        'gross_amount': str(booking.gross_amount.amount),
        'platform_fee': str(booking.platform_fee.amount) if booking.platform_fee else None,
        'recipient_amount': str(booking.recipient_amount.amount) if booking.recipient_amount else None,
        'is_paid_out': booking.is_paid_out,
        'version': booking.version,
    }


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    """Command to request a talent for an event"""
    organizer: Any
    provider: Any
    gross_amount: Decimal
    event_ref: str = ''
    event_title: str = ''
    notes: str = ''
    currency: str = ''


@dataclass
class RequestTransitionCommand:
    """
    Command to apply a lifecycle action to a booking

    ``actor`` is the acting user, or None for system actions.
    """
    booking_id: Any
    action: BookingAction
    actor_role: ActorRole
    actor: Any = None
    notes: str | None = None


# ===== Command Handlers =====

class CreateBookingHandler:
    """
    Handler for CreateBooking command

    Raises:
        ValueError: gross amount is not positive
    """

    def __init__(self, booking_repo=None):
        self.booking_repo = booking_repo or DjangoBookingRepository()

    def handle(self, command: CreateBookingCommand) -> Booking:
        currency = command.currency or settings.SETTLEMENT_CURRENCY
        gross = Money(command.gross_amount, currency)
        if gross.amount <= 0:
            raise ValueError("Gross amount must be positive")

        draft = Booking(
            organizer_id=command.organizer.pk,
            provider_id=command.provider.pk,
            gross_amount=gross,
            event_ref=command.event_ref,
            event_title=command.event_title,
            notes=command.notes,
        )

        with DjangoUnitOfWork():
            booking = self.booking_repo.add(draft)
            record(command.organizer, 'booking.create', None, booking_state(booking), booking)

        logger.info(
            f"Booking {booking.id} requested by organizer {command.organizer.pk} "
            f"for provider {command.provider.pk}: {gross}"
        )
        emit(command.provider, 'booking_requested', {
            'booking_id': booking.id,
            'event_title': booking.event_title,
            'amount': str(gross.amount),
            'currency': gross.currency,
        })
        return booking


class RequestTransitionHandler:
    """
    Handler for RequestTransition command

    Per-booking serialization:
    1. Lock the booking row (SELECT FOR UPDATE)
    2. Apply the action to the snapshot (pure state machine)
    3. Save with an optimistic version check
    4. Record the audit entry and collect events
    5. Publish events after commit

    Where the database ignores row locks, two racing requests can both pass
    step 2. The loser's save fails the version check; it reloads and
    re-evaluates, which turns into InvalidTransition or AlreadyTerminal.
    """

    MAX_ATTEMPTS = 3

    def __init__(self, booking_repo=None):
        self.booking_repo = booking_repo or DjangoBookingRepository()

    def handle(self, command: RequestTransitionCommand) -> Booking:
        actor_id = getattr(command.actor, 'pk', None)

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                with DjangoUnitOfWork() as uow:
                    booking = self.booking_repo.get(command.booking_id, lock=True)
                    updated, events = state_machine.apply(
                        booking,
                        command.action,
                        command.actor_role,
                        actor_id=actor_id,
                        notes=command.notes,
                    )
                    saved = self.booking_repo.save(updated, expected_version=booking.version)
                    record(
                        command.actor,
                        f'booking.{BookingAction(command.action).value}',
                        booking_state(booking),
                        booking_state(saved),
                        saved,
                    )
                    uow.collect(events)
            except ConcurrentUpdate:
                if attempt == self.MAX_ATTEMPTS:
                    raise
                logger.info(
                    f"Concurrent update on booking {command.booking_id}, "
                    f"re-evaluating (attempt {attempt})"
                )
                continue

            logger.info(
                f"Booking {saved.id}: {booking.status.value} -> {saved.status.value} "
                f"by {ActorRole(command.actor_role).value} {actor_id}"
            )
            return saved

        raise ConcurrentUpdate(booking_id=command.booking_id)


def create_booking(organizer, provider, gross_amount, event_ref='', event_title='', notes='') -> Booking:
    return CreateBookingHandler().handle(CreateBookingCommand(
        organizer=organizer,
        provider=provider,
        gross_amount=gross_amount,
        event_ref=event_ref,
        event_title=event_title,
        notes=notes,
    ))


def request_transition(booking_id, action, actor, actor_role, notes=None) -> Booking:
    return RequestTransitionHandler().handle(RequestTransitionCommand(
        booking_id=booking_id,
        action=BookingAction(action),
        actor_role=ActorRole(actor_role),
        actor=actor,
        notes=notes,
    ))
