"""
Booking Repository

Maps Booking rows to immutable domain snapshots and back. Saves use an
optimistic version check, so a writer that loaded a stale snapshot loses
instead of overwriting a concurrent change.
"""

import logging

from django.db.models import F
from django.utils import timezone

from shared.domain.exceptions import BookingNotFound, ConcurrentUpdate
from shared.domain.value_objects import Money
from apps.bookings.domain.entities import Booking, BookingStatus
from apps.bookings.models import Booking as BookingModel

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = (
    'status',
    'notes',
    'accepted_at',
    'started_at',
    'completed_at',
    'cancelled_at',
)


class DjangoBookingRepository:
    """Booking persistence backed by the Django ORM"""

    def get(self, booking_id, lock: bool = False) -> Booking:
        """
        Load a booking snapshot

        With ``lock=True`` the row is locked (SELECT FOR UPDATE) until the
        surrounding transaction ends.
        """
        qs = BookingModel.objects.all()
        if lock:
            qs = qs.select_for_update()
        try:
            row = qs.get(pk=booking_id)
        except BookingModel.DoesNotExist:
            raise BookingNotFound(booking_id=booking_id)
        return self.to_entity(row)

    def add(self, booking: Booking) -> Booking:
        row = BookingModel.objects.create(
            organizer_id=booking.organizer_id,
            provider_id=booking.provider_id,
            status=booking.status.value,
            gross_amount=booking.gross_amount.amount,
            currency=booking.currency,
            event_ref=booking.event_ref,
            event_title=booking.event_title,
            notes=booking.notes,
        )
        return self.to_entity(row)

    def save(self, booking: Booking, expected_version: int) -> Booking:
        """
        Persist ``booking`` if the row is still at ``expected_version``

        ``is_paid_out`` is never written here; see mark_paid_out.

        Raises:
            ConcurrentUpdate: the row changed since the snapshot was loaded
        """
        values = {name: getattr(booking, name) for name in _MUTABLE_FIELDS}
        values['status'] = booking.status.value
        values['platform_fee'] = booking.platform_fee.amount if booking.platform_fee else None
        values['recipient_amount'] = booking.recipient_amount.amount if booking.recipient_amount else None

        updated = BookingModel.objects.filter(
            pk=booking.id,
            version=expected_version,
        ).update(version=F('version') + 1, updated_at=timezone.now(), **values)

        if not updated:
            logger.info(f"Version check failed for booking {booking.id} at version {expected_version}")
            raise ConcurrentUpdate(booking_id=booking.id)

        return booking.evolve(version=expected_version + 1)

    def mark_paid_out(self, booking_id) -> bool:
        """Flip is_paid_out to True. Returns False if it already was."""
        return bool(
            BookingModel.objects.filter(pk=booking_id, is_paid_out=False).update(
                is_paid_out=True,
                version=F('version') + 1,
            )
        )

    @staticmethod
    def to_entity(row: BookingModel) -> Booking:
        currency = row.currency

        def money(value):
            return Money(value, currency) if value is not None else None

        return Booking(
            id=row.pk,
            version=row.version,
            status=BookingStatus(row.status),
            organizer_id=row.organizer_id,
            provider_id=row.provider_id,
            gross_amount=Money(row.gross_amount, currency),
            platform_fee=money(row.platform_fee),
            recipient_amount=money(row.recipient_amount),
            event_ref=row.event_ref,
            event_title=row.event_title,
            notes=row.notes,
            is_paid_out=row.is_paid_out,
            proposed_at=row.proposed_at,
            accepted_at=row.accepted_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            cancelled_at=row.cancelled_at,
        )
