"""
Unit of Work

Wraps a command in ``transaction.atomic`` and holds back the domain
events it produces until the outermost transaction commits. If the block
raises, the events are dropped together with the database changes, so a
handler never sees a booking state that was rolled back.
"""

from typing import Iterable, List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class DjangoUnitOfWork:
    """
    Transaction boundary for one command

    Usage:
        with DjangoUnitOfWork() as uow:
            booking = repository.get(booking_id, lock=True)
            updated, events = apply_action(booking, action, actor)
            repository.save(updated, expected_version=booking.version)
            uow.collect(events)

    Nesting is allowed: an inner unit becomes a savepoint and its events
    are still deferred to the outer commit by ``transaction.on_commit``.
    """

    def __init__(self, using=None):
        self._atomic = transaction.atomic(using=using)
        self._using = using
        self._pending: List[DomainEvent] = []

    def __enter__(self):
        self._atomic.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self._schedule_publish()
        elif self._pending:
            logger.warning(
                f"Discarding {len(self._pending)} events after "
                f"{exc_type.__name__} in unit of work"
            )
            self._pending.clear()
        return self._atomic.__exit__(exc_type, exc_val, exc_tb)

    def collect(self, events: Iterable[DomainEvent]):
        """Queue events for publishing once the transaction commits"""
        batch = list(events)
        self._pending.extend(batch)
        if batch:
            logger.debug(f"Queued {', '.join(type(e).__name__ for e in batch)}")

    def _schedule_publish(self):
        if not self._pending:
            return
        events, self._pending = self._pending, []
        transaction.on_commit(lambda: _publish(events), using=self._using)


def _publish(events: List[DomainEvent]):
    from shared.application.message_bus import message_bus

    logger.info(f"Publishing {len(events)} domain events after commit")
    try:
        message_bus.publish_events(events)
    except Exception:
        # The rows are already committed; the settlement sweep picks up
        # whatever a failed handler left behind.
        logger.exception("Error publishing domain events")
