"""Celery tasks for booking settlement."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore
from celery.utils.time import get_exponential_backoff_interval  # type: ignore
from django.conf import settings  # type: ignore
from django.db.models import Exists, F, OuterRef, Q, Subquery  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.exceptions import DomainError

from .application.settlement import SettlementOrchestrator, SettlementStatus
from .models import Transaction

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="finances.process_settlement", max_retries=None)
def process_settlement(self, booking_id: int) -> dict:
    """
    Settle a booking after it completed or its dispute was resolved.

    The first run starts settlement; later runs resume a PENDING
    reservation with the same idempotency key. While the gateway's answer
    is unknown the task retries with exponential backoff.
    """
    orchestrator = SettlementOrchestrator()
    try:
        if self.request.retries:
            results = orchestrator.retry_settlement(booking_id)
        else:
            results = orchestrator.settle(booking_id)
    except DomainError as e:
        # Guard failures need an operator (KYC, destination); retrying won't help
        logger.warning(f"Settlement of booking {booking_id} not started: {e.code} {e.message}")
        return {"booking_id": booking_id, "error": e.code, "detail": e.message}

    payload = {"booking_id": booking_id, "results": [result.to_dict() for result in results]}
    if any(result.status == SettlementStatus.PROCESSING for result in results):
        if self.request.retries >= settings.SETTLEMENT_TASK_MAX_RETRIES:
            logger.error(f"Settlement of booking {booking_id} still processing, leaving it to the sweep")
            return payload
        countdown = get_exponential_backoff_interval(
            factor=30,
            retries=self.request.retries,
            maximum=3600,
            full_jitter=True,
        )
        logger.info(f"Settlement of booking {booking_id} processing, retrying in {countdown}s")
        raise self.retry(countdown=countdown)
    return payload


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

def _attempts(kind: str, status: str | None = None):
    attempts = Transaction.objects.filter(booking=OuterRef("pk"), kind=kind)
    if status:
        attempts = attempts.filter(status=status)
    return attempts


def lost_settlements():
    """
    Bookings that owe money but have no settlement attempt at all

    These are bookings whose SettlementRequested event never reached a
    worker. A kind with any earlier attempt is left alone: FAILED attempts
    wait for an operator and PENDING ones are resumed by the lease sweep.
    """
    from apps.bookings.models import Booking
    from apps.disputes.models import Dispute

    Kind = Transaction.Kind

    completed = Booking.objects.filter(
        status=Booking.Status.COMPLETED,
        is_paid_out=False,
    ).exclude(Exists(_attempts(Kind.PROVIDER_PAYOUT)))

    decision = Dispute.objects.filter(
        booking=OuterRef("pk"),
        status__in=Dispute.RESOLVED_STATUSES,
    ).order_by("-resolved_at")
    paid = _attempts(Kind.PROVIDER_PAYOUT, Transaction.Status.COMPLETED)
    resolved = Booking.objects.filter(
        status__in=(
            Booking.Status.RESOLVED_ORGANIZER,
            Booking.Status.RESOLVED_PROVIDER,
            Booking.Status.RESOLVED_PARTIAL,
        ),
    ).annotate(
        owed_payout=Subquery(decision.values("payout_amount")[:1]),
        owed_refund=Subquery(decision.values("refund_amount")[:1]),
        paid_amount=Subquery(paid.values("amount")[:1]),
        payout_tried=Exists(_attempts(Kind.PROVIDER_PAYOUT)),
        adjustment_tried=Exists(_attempts(Kind.PROVIDER_ADJUSTMENT)),
        refund_tried=Exists(_attempts(Kind.REFUND)),
        payment_recorded=Exists(_attempts(Kind.ORGANIZER_PAYMENT, Transaction.Status.COMPLETED)),
    )
    # Payout before any transfer, or an adjustment on top of an earlier payout
    payout_owed = Q(owed_payout__gt=0, adjustment_tried=False) & (
        Q(payout_tried=False) | Q(paid_amount__lt=F("owed_payout"))
    )
    refund_owed = Q(owed_refund__gt=0, refund_tried=False, payment_recorded=True)
    resolved = resolved.filter(payout_owed | refund_owed)

    return set(completed.values_list("pk", flat=True)) | set(resolved.values_list("pk", flat=True))


@shared_task(name="finances.retry_pending_settlements")
def retry_pending_settlements() -> dict[str, int]:
    """
    Sweep for settlements nobody is driving any more.

    Picks up PENDING reservations whose lease expired or was released,
    and completed or resolved bookings that still owe a payout, an
    adjustment or a refund but were never attempted (a lost
    SettlementRequested event). Runs every 5 minutes.
    """
    now = timezone.now()
    stale = Transaction.objects.filter(
        status=Transaction.Status.PENDING,
        kind__in=(
            Transaction.Kind.PROVIDER_PAYOUT,
            Transaction.Kind.PROVIDER_ADJUSTMENT,
            Transaction.Kind.REFUND,
        ),
    ).filter(Q(lease_expires_at__isnull=True) | Q(lease_expires_at__lte=now))
    booking_ids = set(stale.values_list("booking_id", flat=True))
    booking_ids.update(lost_settlements())

    orchestrator = SettlementOrchestrator()
    counts = {"checked": len(booking_ids), "completed": 0, "processing": 0, "failed": 0, "errors": 0}
    for booking_id in sorted(booking_ids):
        try:
            results = orchestrator.retry_settlement(booking_id)
        except DomainError as e:
            counts["errors"] += 1
            logger.warning(f"Sweep could not settle booking {booking_id}: {e.code} {e.message}")
            continue
        except Exception as e:
            counts["errors"] += 1
            logger.error(f"Sweep failed on booking {booking_id}: {e}", exc_info=True)
            continue
        for result in results:
            if result.status.value in counts:
                counts[result.status.value] += 1

    if booking_ids:
        logger.info(f"Settlement sweep: {counts}")
    return counts
