"""Event handlers that turn booking events into notifications."""

from __future__ import annotations

import logging

from apps.bookings.domain.events import BookingTransitioned

from .services import emit

logger = logging.getLogger(__name__)

# to_status -> notification kind
_KINDS = {
    "accepted": "booking_accepted",
    "declined": "booking_declined",
    "in_progress": "booking_started",
    "completed": "booking_completed",
    "cancelled": "booking_cancelled",
    "disputed": "booking_disputed",
    "resolved_organizer": "booking_resolved",
    "resolved_provider": "booking_resolved",
    "resolved_partial": "booking_resolved",
}


def notify_counterparty(event: BookingTransitioned) -> None:
    """
    Tell the other side of the booking what happened

    Admin and system actions notify both parties.
    """
    from apps.bookings.models import Booking

    booking = Booking.objects.select_related("organizer", "provider").filter(pk=event.booking_id).first()
    if booking is None:
        logger.warning(f"Booking {event.booking_id} vanished before notification")
        return

    kind = _KINDS.get(event.to_status)
    if kind is None:
        return

    recipients = [
        user for user in (booking.organizer, booking.provider)
        if user.pk != event.actor_id
    ]
    payload = {
        "booking_id": booking.pk,
        "from_status": event.from_status,
        "to_status": event.to_status,
        "action": event.action,
    }
    for user in recipients:
        emit(user, kind, payload)
