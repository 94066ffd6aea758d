"""Event handlers that hand settlement over to Celery."""

from __future__ import annotations

import logging

from apps.bookings.domain.events import SettlementRequested

logger = logging.getLogger(__name__)


def enqueue_settlement(event: SettlementRequested) -> None:
    from .tasks import process_settlement

    logger.info(f"Queueing settlement of booking {event.booking_id} ({event.status}, {event.fee_mode} fee)")
    process_settlement.delay(event.booking_id)
