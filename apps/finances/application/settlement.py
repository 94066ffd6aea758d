"""
Settlement Orchestrator

Pays a booking's money out exactly once, tolerating retries and partial
gateway failure.

For every settlement operation a booking needs (provider payout, payout
adjustment, organizer refund) the orchestrator:

1. Checks guards without side effects
2. Reserves a PENDING Transaction; the partial unique constraint on
   (booking, kind) admits one live row, so a losing racer gets an
   IntegrityError and stops
3. Derives a deterministic idempotency key from booking, kind and attempt
4. Resolves or creates the gateway recipient
5. Initiates the transfer with the idempotency key as its reference
6. Verifies the transfer
7. Commits the verified outcome under the booking row lock
8. Notifies the recipient and records an audit entry

Anything that leaves the gateway's answer unknown (timeouts, 5xx) keeps
the Transaction PENDING. Re-running the whole algorithm is safe because
the reservation already exists and the key is deterministic.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q, Sum
from django.utils import timezone

from shared.domain.exceptions import (
    AlreadyPaidOut,
    BookingNotFound,
    GatewayRejected,
    GatewayUnavailable,
    NoDestination,
    NotEligible,
    RecipientNotVerified,
)
from shared.domain.value_objects import Money
from apps.activity.services import record
from apps.bookings.domain.entities import BookingStatus, SETTLEMENT_STATUSES
from apps.bookings.infrastructure.repositories import DjangoBookingRepository
from apps.bookings.models import Booking
from apps.finances.gateway import TransferGateway, get_gateway
from apps.finances.models import Payout, Transaction
from apps.notifications.services import emit
from apps.users.services import is_verified, payout_destination

logger = logging.getLogger(__name__)

Kind = Transaction.Kind
TxStatus = Transaction.Status

TRANSFER_KINDS = (Kind.PROVIDER_PAYOUT, Kind.PROVIDER_ADJUSTMENT)

_KEY_PREFIXES = {
    Kind.PROVIDER_PAYOUT: 'payout',
    Kind.PROVIDER_ADJUSTMENT: 'adjustment',
    Kind.REFUND: 'refund',
}

_NOTIFICATION_PREFIXES = {
    Kind.PROVIDER_PAYOUT: 'payout',
    Kind.PROVIDER_ADJUSTMENT: 'payout',
    Kind.REFUND: 'refund',
}


def idempotency_key(kind: str, booking_id, attempt: int) -> str:
    """``payout-<booking id>-<attempt>``, stable across retries of one attempt"""
    return f"{_KEY_PREFIXES[kind]}-{booking_id}-{attempt}"


class SettlementStatus(str, Enum):
    COMPLETED = 'completed'
    FAILED = 'failed'
    PROCESSING = 'processing'
    SKIPPED = 'skipped'


@dataclass(frozen=True)
class SettlementResult:
    booking_id: Any
    kind: str
    status: SettlementStatus
    transaction_id: Any = None
    amount: Decimal | None = None
    message: str = ''

    def to_dict(self) -> dict:
        return {
            'booking_id': self.booking_id,
            'kind': str(self.kind),
            'status': self.status.value,
            'transaction_id': self.transaction_id,
            'amount': str(self.amount) if self.amount is not None else None,
            'message': self.message,
        }


@dataclass
class _Plan:
    """One settlement operation the booking still needs"""
    kind: str
    amount: Money
    recipient: Any
    pending: Transaction | None = None
    payment_reference: str = ''
    extra: dict = field(default_factory=dict)


class SettlementOrchestrator:
    """
    Usage:
        orchestrator = SettlementOrchestrator()
        results = orchestrator.settle(booking_id)
    """

    def __init__(self, gateway: TransferGateway | None = None, lease_seconds: int | None = None):
        self.gateway = gateway or get_gateway()
        self.lease = timedelta(seconds=lease_seconds or settings.SETTLEMENT_LEASE_SECONDS)
        self.bookings = DjangoBookingRepository()

    # ===== Entry points =====

    def settle(self, booking_id, actor=None, resume: bool = False) -> list[SettlementResult]:
        """
        Run settlement for a booking

        With ``resume=False`` a PENDING reservation found for an operation
        means another worker is on it and the operation is SKIPPED. With
        ``resume=True`` the reservation is claimed and driven to an outcome
        with its original idempotency key.

        Raises:
            BookingNotFound, NotEligible, AlreadyPaidOut,
            RecipientNotVerified, NoDestination: guard failures, raised
            before anything is written or sent
        """
        booking = self._load(booking_id)
        plans = self._plan(booking)
        self._check_recipient(booking, plans)

        results = []
        for plan in plans:
            if plan.pending is not None:
                if not resume:
                    results.append(self._skipped(booking, plan, plan.pending, 'Settlement already in progress.'))
                    continue
                if not self._claim(plan.pending):
                    results.append(self._skipped(booking, plan, plan.pending, 'Another worker holds this settlement.'))
                    continue
                row = plan.pending
                logger.info(f"Resuming {row.kind} {row.idempotency_key} for booking {booking.pk}")
            else:
                row = self._reserve(booking, plan, actor)
                if row is None:
                    results.append(self._skipped(booking, plan, None, 'Settlement already reserved by another worker.'))
                    continue

            results.append(self._execute(booking, row, plan, actor))
        return results

    def retry_settlement(self, booking_id, actor=None) -> list[SettlementResult]:
        """Resume a PENDING reservation, or start a new attempt if none is live"""
        return self.settle(booking_id, actor=actor, resume=True)

    def confirm_transfer(self, reference: str, event: str = '') -> SettlementResult | None:
        """
        Webhook entry point for ``transfer.success`` / ``transfer.failed`` /
        ``transfer.reversed``

        The event body is not trusted for the outcome; the transfer is
        verified with the gateway before committing.
        """
        row = (
            Transaction.objects.select_related('booking', 'booking__provider', 'booking__organizer')
            .filter(idempotency_key=reference, kind__in=TRANSFER_KINDS)
            .first()
        )
        if row is None:
            logger.warning(f"Transfer webhook {event} for unknown reference {reference}")
            return None

        booking = row.booking
        if row.status != TxStatus.PENDING:
            logger.info(f"Transfer {reference} already {row.status}, ignoring {event}")
            return SettlementResult(
                booking_id=booking.pk,
                kind=row.kind,
                status=SettlementStatus.SKIPPED,
                transaction_id=row.pk,
                amount=row.amount,
                message=f'Transaction already {row.status}.',
            )

        plan = _Plan(kind=row.kind, amount=Money(row.amount, row.currency), recipient=booking.provider)
        payout = self._payout_for(booking, row, payout_destination(booking.provider))
        result = self.gateway.verify_transfer(reference)
        logger.info(f"Transfer {reference} verified as {result.gateway_status} after {event}")
        return self._apply_transfer(booking, row, plan, payout, result, actor=None)

    def record_organizer_payment(self, booking_id, reference: str, actor=None) -> Transaction:
        """
        Verify the organizer's payment with the gateway and record it

        Refunds are issued against this payment. Recording the same
        reference twice returns the existing row.

        Raises:
            NotEligible: payment did not succeed or does not cover the booking
        """
        booking = self._load(booking_id)
        gross = Money(booking.gross_amount, booking.currency)

        existing = Transaction.objects.filter(
            booking=booking,
            kind=Kind.ORGANIZER_PAYMENT,
            status__in=Transaction.LIVE_STATUSES,
        ).first()
        if existing is not None:
            if existing.external_ref == reference:
                return existing
            raise NotEligible('A payment is already recorded for this booking.', booking_id=booking.pk)

        result = self.gateway.verify_payment(reference)
        if not result.succeeded:
            raise NotEligible(
                f'Payment {reference} has not succeeded ({result.gateway_status}).',
                booking_id=booking.pk,
            )
        if result.amount_minor is not None and result.amount_minor < gross.minor_units:
            raise NotEligible(
                f'Payment {reference} does not cover the booking amount.',
                booking_id=booking.pk,
            )

        try:
            with transaction.atomic():
                row = Transaction.objects.create(
                    booking=booking,
                    actor=booking.organizer,
                    kind=Kind.ORGANIZER_PAYMENT,
                    status=TxStatus.COMPLETED,
                    amount=gross.amount,
                    currency=gross.currency,
                    external_ref=reference,
                    idempotency_key=f'payment-{reference}',
                    metadata={'gateway_status': result.gateway_status},
                )
                record(actor, 'settlement.organizer_payment', None, transaction_state(row), row)
        except IntegrityError:
            row = Transaction.objects.filter(
                booking=booking,
                kind=Kind.ORGANIZER_PAYMENT,
                status__in=Transaction.LIVE_STATUSES,
            ).first()
            if row is None or row.external_ref != reference:
                raise NotEligible('A payment is already recorded for this booking.', booking_id=booking.pk)
            return row

        logger.info(f"Recorded organizer payment {reference} for booking {booking.pk}")
        return row

    # ===== Guards =====

    def _load(self, booking_id) -> Booking:
        try:
            return Booking.objects.select_related('organizer', 'provider').get(pk=booking_id)
        except Booking.DoesNotExist:
            raise BookingNotFound(booking_id=booking_id)

    def _live_transactions(self, booking: Booking) -> dict:
        """Live (PENDING or COMPLETED) settlement rows by kind"""
        rows = Transaction.objects.filter(
            booking=booking,
            kind__in=Transaction.SETTLEMENT_KINDS,
            status__in=Transaction.LIVE_STATUSES,
        )
        return {row.kind: row for row in rows}

    def _plan(self, booking: Booking) -> list:
        from apps.disputes.models import Dispute

        status = BookingStatus(booking.status)
        if status not in SETTLEMENT_STATUSES:
            raise NotEligible(
                f'Booking is {booking.status}; only completed or resolved bookings settle.',
                booking_id=booking.pk,
            )
        if Dispute.objects.filter(booking=booking, status__in=Dispute.OPEN_STATUSES).exists():
            raise NotEligible('Booking has an open dispute.', booking_id=booking.pk)

        live = self._live_transactions(booking)
        currency = booking.currency
        wanted = []

        if status == BookingStatus.COMPLETED:
            if booking.is_paid_out:
                raise AlreadyPaidOut(booking_id=booking.pk)
            wanted.append(_Plan(
                kind=Kind.PROVIDER_PAYOUT,
                amount=Money(booking.recipient_amount, currency),
                recipient=booking.provider,
            ))
        else:
            dispute = (
                Dispute.objects.filter(booking=booking, status__in=Dispute.RESOLVED_STATUSES)
                .order_by('-resolved_at')
                .first()
            )
            if dispute is None:
                raise NotEligible('Booking has no resolved dispute to settle.', booking_id=booking.pk)
            wanted.extend(self._dispute_plans(booking, dispute, live))

        plans = []
        for plan in wanted:
            row = live.get(plan.kind)
            if row is None:
                plans.append(plan)
            elif row.status == TxStatus.PENDING:
                plan.pending = row
                plans.append(plan)
            elif status == BookingStatus.COMPLETED:
                raise AlreadyPaidOut(booking_id=booking.pk)

        if not plans:
            raise AlreadyPaidOut('Nothing is left to settle for this booking.', booking_id=booking.pk)
        return plans

    def _dispute_plans(self, booking: Booking, dispute, live: dict) -> list:
        currency = booking.currency
        plans = []

        payout_target = dispute.payout_amount or Decimal('0')
        if payout_target > 0:
            payout_row = live.get(Kind.PROVIDER_PAYOUT)
            if payout_row is None or payout_row.status == TxStatus.PENDING:
                plans.append(_Plan(
                    kind=Kind.PROVIDER_PAYOUT,
                    amount=Money(payout_target, currency),
                    recipient=booking.provider,
                ))
            else:
                difference = payout_target - payout_row.amount
                if difference > 0:
                    plans.append(_Plan(
                        kind=Kind.PROVIDER_ADJUSTMENT,
                        amount=Money(difference, currency),
                        recipient=booking.provider,
                        extra={'dispute_id': dispute.pk, 'paid': str(payout_row.amount)},
                    ))

        refund_target = dispute.refund_amount or Decimal('0')
        if refund_target > 0:
            payment = (
                Transaction.objects.filter(
                    booking=booking,
                    kind=Kind.ORGANIZER_PAYMENT,
                    status=TxStatus.COMPLETED,
                )
                .exclude(external_ref='')
                .first()
            )
            if payment is None and Kind.REFUND not in live:
                raise NotEligible(
                    'No completed organizer payment to refund against.',
                    booking_id=booking.pk,
                )
            plans.append(_Plan(
                kind=Kind.REFUND,
                amount=Money(refund_target, currency),
                recipient=booking.organizer,
                payment_reference=payment.external_ref if payment else '',
                extra={'dispute_id': dispute.pk},
            ))
        return plans

    def _check_recipient(self, booking: Booking, plans: list) -> None:
        if not any(plan.kind in TRANSFER_KINDS for plan in plans):
            return
        provider = booking.provider
        if not is_verified(provider):
            raise RecipientNotVerified(booking_id=booking.pk, provider_id=provider.pk)
        if payout_destination(provider) is None:
            raise NoDestination(booking_id=booking.pk, provider_id=provider.pk)

    # ===== Reservation =====

    def _reserve(self, booking: Booking, plan: _Plan, actor) -> Transaction | None:
        attempt = Transaction.objects.filter(
            booking=booking,
            kind=plan.kind,
            status=TxStatus.FAILED,
        ).count() + 1
        key = idempotency_key(plan.kind, booking.pk, attempt)

        try:
            with transaction.atomic():
                row = Transaction.objects.create(
                    booking=booking,
                    actor=plan.recipient,
                    kind=plan.kind,
                    status=TxStatus.PENDING,
                    amount=plan.amount.amount,
                    currency=plan.amount.currency,
                    idempotency_key=key,
                    attempt=attempt,
                    lease_expires_at=timezone.now() + self.lease,
                    metadata=dict(plan.extra),
                )
        except IntegrityError:
            logger.info(f"{plan.kind} for booking {booking.pk} already reserved, skipping")
            return None

        record(actor, f'settlement.{plan.kind}.reserved', None, transaction_state(row), row)
        logger.info(f"Reserved {plan.kind} {key} for {plan.amount}")
        return row

    def _claim(self, row: Transaction) -> bool:
        """Take the lease on a PENDING row nobody else is working"""
        now = timezone.now()
        claimed = Transaction.objects.filter(pk=row.pk, status=TxStatus.PENDING).filter(
            Q(lease_expires_at__isnull=True) | Q(lease_expires_at__lte=now)
        ).update(lease_expires_at=now + self.lease, updated_at=now)
        if claimed:
            row.refresh_from_db()
        return bool(claimed)

    # ===== Execution =====

    def _execute(self, booking: Booking, row: Transaction, plan: _Plan, actor) -> SettlementResult:
        if row.kind == Kind.REFUND:
            return self._execute_refund(booking, row, plan, actor)
        return self._execute_transfer(booking, row, plan, actor)

    def _payout_for(self, booking: Booking, row: Transaction, destination) -> Payout:
        payout, _ = Payout.objects.get_or_create(
            transaction=row,
            defaults={
                'provider': booking.provider,
                'booking': booking,
                'amount': row.amount,
                'currency': row.currency,
                'transfer_reference': row.idempotency_key,
                'destination_account': destination.account_number if destination else '',
            },
        )
        return payout

    def _execute_transfer(self, booking: Booking, row: Transaction, plan: _Plan, actor) -> SettlementResult:
        destination = payout_destination(booking.provider)
        payout = self._payout_for(booking, row, destination)
        amount = Money(row.amount, row.currency)

        try:
            recipient = self.gateway.resolve_recipient(destination, row.currency)
            if payout.recipient_code != recipient.recipient_code:
                payout.recipient_code = recipient.recipient_code
                payout.save(update_fields=['recipient_code', 'updated_at'])

            initiated = self.gateway.initiate_transfer(
                reference=row.idempotency_key,
                amount=amount,
                recipient_code=recipient.recipient_code,
                reason=f'Booking #{booking.pk} {_KEY_PREFIXES[row.kind]}',
            )
            logger.info(f"Transfer {row.idempotency_key} initiated: {initiated.gateway_status}")
            result = self.gateway.verify_transfer(row.idempotency_key)
        except GatewayUnavailable as e:
            return self._processing(booking, row, plan, payout, e.message, actor)
        except GatewayRejected as e:
            return self._failed(booking, row, plan, payout, e.message, e.payload, actor)

        return self._apply_transfer(booking, row, plan, payout, result, actor)

    def _apply_transfer(self, booking, row, plan, payout, result, actor) -> SettlementResult:
        if result.succeeded:
            return self._completed(
                booking, row, plan, payout,
                external_ref=result.reference,
                payload=result.payload,
                transfer_code=result.transfer_code,
                actor=actor,
            )
        if result.failed:
            reason = result.reason or f'Transfer {result.gateway_status}.'
            return self._failed(booking, row, plan, payout, reason, result.payload, actor)
        return self._processing(
            booking, row, plan, payout,
            f'Transfer is {result.gateway_status}.',
            actor,
            transfer_code=result.transfer_code,
            payload=result.payload,
        )

    def _execute_refund(self, booking: Booking, row: Transaction, plan: _Plan, actor) -> SettlementResult:
        try:
            if row.external_ref:
                result = self.gateway.verify_refund(row.external_ref)
            else:
                initiated = self.gateway.initiate_refund(
                    payment_reference=plan.payment_reference,
                    amount=Money(row.amount, row.currency),
                    note=f'Booking #{booking.pk} dispute refund',
                )
                Transaction.objects.filter(pk=row.pk).update(external_ref=initiated.refund_id)
                row.external_ref = initiated.refund_id
                result = self.gateway.verify_refund(initiated.refund_id)
        except GatewayUnavailable as e:
            return self._processing(booking, row, plan, None, e.message, actor)
        except GatewayRejected as e:
            return self._failed(booking, row, plan, None, e.message, e.payload, actor)

        if result.succeeded:
            return self._completed(
                booking, row, plan, None,
                external_ref=result.refund_id,
                payload=result.payload,
                actor=actor,
            )
        if result.failed:
            return self._failed(booking, row, plan, None, result.reason or 'Refund failed.', result.payload, actor)
        return self._processing(booking, row, plan, None, f'Refund is {result.gateway_status}.', actor)

    # ===== Outcomes =====

    def _completed(self, booking, row, plan, payout, *, external_ref, payload, actor, transfer_code='') -> SettlementResult:
        before = transaction_state(row)
        now = timezone.now()
        with transaction.atomic():
            Booking.objects.select_for_update().filter(pk=booking.pk).first()
            committed = Transaction.objects.filter(pk=row.pk, status=TxStatus.PENDING).update(
                status=TxStatus.COMPLETED,
                external_ref=external_ref or row.external_ref,
                lease_expires_at=None,
                metadata={**row.metadata, 'gateway': _compact(payload)},
                updated_at=now,
            )
            if not committed:
                row.refresh_from_db()
                return self._skipped(booking, plan, row, f'Transaction already {row.status}.')

            row.refresh_from_db()
            if payout is not None:
                payout.mark_completed(transfer_code=transfer_code, payload=payload)
            if row.kind == Kind.PROVIDER_PAYOUT:
                self.bookings.mark_paid_out(booking.pk)
            self._reconcile_platform_fee(booking)
            record(actor, f'settlement.{row.kind}.completed', before, transaction_state(row), row)

        logger.info(f"{row.kind} {row.idempotency_key} completed for {row.amount} {row.currency}")
        self._notify(plan, row, SettlementStatus.COMPLETED)
        return SettlementResult(
            booking_id=booking.pk,
            kind=row.kind,
            status=SettlementStatus.COMPLETED,
            transaction_id=row.pk,
            amount=row.amount,
            message='Settlement completed.',
        )

    def _failed(self, booking, row, plan, payout, reason, payload, actor) -> SettlementResult:
        before = transaction_state(row)
        with transaction.atomic():
            updated = Transaction.objects.filter(pk=row.pk, status=TxStatus.PENDING).update(
                status=TxStatus.FAILED,
                failure_reason=reason,
                lease_expires_at=None,
                metadata={**row.metadata, 'gateway': _compact(payload)},
                updated_at=timezone.now(),
            )
            row.refresh_from_db()
            if not updated:
                return self._skipped(booking, plan, row, f'Transaction already {row.status}.')
            if payout is not None:
                payout.mark_failed(reason, payload=payload)
            record(actor, f'settlement.{row.kind}.failed', before, transaction_state(row), row)

        logger.error(f"{row.kind} {row.idempotency_key} failed: {reason}")
        self._notify(plan, row, SettlementStatus.FAILED, reason=reason)
        return SettlementResult(
            booking_id=booking.pk,
            kind=row.kind,
            status=SettlementStatus.FAILED,
            transaction_id=row.pk,
            amount=row.amount,
            message=reason,
        )

    def _processing(self, booking, row, plan, payout, note, actor, transfer_code='', payload=None) -> SettlementResult:
        # Unknown outcome: keep PENDING, drop the lease so a retry can resume
        Transaction.objects.filter(pk=row.pk, status=TxStatus.PENDING).update(
            lease_expires_at=None,
            metadata={**row.metadata, 'last_error': note},
            updated_at=timezone.now(),
        )
        if payout is not None:
            payout.mark_processing(transfer_code=transfer_code, payload=payload)
        record(actor, f'settlement.{row.kind}.processing', None, {**transaction_state(row), 'note': note}, row)

        logger.warning(f"{row.kind} {row.idempotency_key} still processing: {note}")
        self._notify(plan, row, SettlementStatus.PROCESSING)
        return SettlementResult(
            booking_id=booking.pk,
            kind=row.kind,
            status=SettlementStatus.PROCESSING,
            transaction_id=row.pk,
            amount=row.amount,
            message=note,
        )

    @staticmethod
    def _skipped(booking, plan, row, message) -> SettlementResult:
        return SettlementResult(
            booking_id=booking.pk,
            kind=plan.kind,
            status=SettlementStatus.SKIPPED,
            transaction_id=row.pk if row is not None else None,
            amount=row.amount if row is not None else plan.amount.amount,
            message=message,
        )

    def _reconcile_platform_fee(self, booking: Booking) -> Transaction | None:
        """
        Bring recorded PLATFORM_FEE rows in line with what the platform kept

        Kept = gross - completed payouts/adjustments - completed refunds.
        Runs only once nothing is in flight; a negative row reverses fee
        recognized under earlier terms.
        """
        rows = Transaction.objects.filter(booking=booking)
        if rows.filter(kind__in=Transaction.SETTLEMENT_KINDS, status=TxStatus.PENDING).exists():
            return None

        def total(*kinds):
            return rows.filter(kind__in=kinds, status=TxStatus.COMPLETED).aggregate(
                total=Sum('amount')
            )['total'] or Decimal('0')

        kept = booking.gross_amount - total(*TRANSFER_KINDS) - total(Kind.REFUND)
        difference = kept - total(Kind.PLATFORM_FEE)
        if difference == 0:
            return None

        fee_row = Transaction.objects.create(
            booking=booking,
            kind=Kind.PLATFORM_FEE,
            status=TxStatus.COMPLETED,
            amount=difference,
            currency=booking.currency,
            metadata={'recognized_total': str(kept)},
        )
        logger.info(f"Platform fee {difference} {booking.currency} recorded for booking {booking.pk}")
        return fee_row

    def _notify(self, plan: _Plan, row: Transaction, status: SettlementStatus, reason: str = '') -> None:
        emit(plan.recipient, f'{_NOTIFICATION_PREFIXES[row.kind]}_{status.value}', {
            'booking_id': row.booking_id,
            'transaction_id': row.pk,
            'kind': row.kind,
            'amount': str(row.amount),
            'currency': row.currency,
            'reason': reason,
        })


def transaction_state(row: Transaction) -> dict:
    """Audit representation of a transaction"""
    return {
        'kind': row.kind,
        'status': row.status,
        'amount': str(row.amount),
        'currency': row.currency,
        'idempotency_key': row.idempotency_key,
        'attempt': row.attempt,
        'external_ref': row.external_ref,
    }


def _compact(payload: dict | None) -> dict:
    """Keep ledger metadata small; full payloads live on the Payout"""
    payload = payload or {}
    return {key: payload[key] for key in ('status', 'reference', 'transfer_code', 'id', 'message') if key in payload}


def settle(booking_id, actor=None) -> list[SettlementResult]:
    return SettlementOrchestrator().settle(booking_id, actor=actor)


def retry_settlement(booking_id, actor=None) -> list[SettlementResult]:
    return SettlementOrchestrator().retry_settlement(booking_id, actor=actor)
