"""
Dispute Resolver

Use cases for disputes:
- file_dispute: a party of a completed booking contests it
- start_review: an admin picks the dispute up
- resolve: an admin decides; the booking is re-termed with the dispute
  fee and settlement of the new terms is requested

Reconciliation with a payout already made under standard terms: if the
provider was paid P and the decision pays them at least P, settlement
transfers the difference as a PROVIDER_ADJUSTMENT. Decisions paying less
than P are rejected, as are decisions while a payout is still in flight.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
import logging

from django.db import IntegrityError
from django.db.models import Sum
from django.utils import timezone

from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import (
    DisputeAlreadyOpen,
    DisputeNotFound,
    Forbidden,
    InvalidDispute,
    InvalidSplit,
    InvalidTransition,
    NotEligible,
)
from shared.domain.value_objects import Money, quantize
from apps.activity.services import record
from apps.bookings.application.command_handlers import booking_state
from apps.bookings.domain import state_machine
from apps.bookings.domain.entities import ActorRole, BookingAction
from apps.bookings.infrastructure.repositories import DjangoBookingRepository
from apps.disputes.models import Dispute
from apps.finances.domain.fees import FeeMode, split
from apps.finances.models import Transaction
from apps.notifications.services import emit, emit_to_admins

logger = logging.getLogger(__name__)

Reason = Dispute.Reason

ORGANIZER_REASONS = frozenset({
    Reason.TALENT_NO_SHOW,
    Reason.SERVICE_NOT_AS_DESCRIBED,
    Reason.UNPROFESSIONAL_CONDUCT,
    Reason.OTHER,
})

TALENT_REASONS = frozenset({
    Reason.ORGANIZER_UNRESPONSIVE,
    Reason.SCOPE_DISAGREEMENT,
    Reason.UNSAFE_ENVIRONMENT,
    Reason.OTHER,
})


class Outcome(str, Enum):
    ORGANIZER_FAVOR = 'organizer_favor'
    PROVIDER_FAVOR = 'provider_favor'
    PARTIAL = 'partial'


OUTCOME_TRANSITIONS = {
    Outcome.ORGANIZER_FAVOR: (BookingAction.RESOLVE_ORGANIZER, Dispute.Status.RESOLVED_ORGANIZER),
    Outcome.PROVIDER_FAVOR: (BookingAction.RESOLVE_PROVIDER, Dispute.Status.RESOLVED_PROVIDER),
    Outcome.PARTIAL: (BookingAction.RESOLVE_PARTIAL, Dispute.Status.RESOLVED_PARTIAL),
}


@dataclass(frozen=True)
class DisputeTerms:
    refund: Money
    payout: Money
    fee: Money


def _amount(value, field_name: str) -> Decimal:
    if value in (None, ''):
        return Decimal('0')
    try:
        amount = quantize(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidSplit(f'{field_name} is not a valid amount.')
    if amount < 0:
        raise InvalidSplit(f'{field_name} cannot be negative.')
    return amount


def dispute_terms(gross: Money, outcome: Outcome, refund_amount=None, payout_amount=None) -> DisputeTerms:
    """
    Money each side receives under ``outcome``

    The dispute fee is always taken; what remains goes to the provider
    (PROVIDER_FAVOR) or back to the organizer (ORGANIZER_FAVOR). PARTIAL
    amounts are chosen by the admin and must fit in what remains.

    Raises:
        InvalidSplit: PARTIAL amounts are negative, both zero, or exceed
            gross minus the dispute fee
    """
    outcome = Outcome(outcome)
    fee_split = split(gross, FeeMode.DISPUTE_RESOLVED)
    zero = Money(0, gross.currency)

    if outcome == Outcome.PROVIDER_FAVOR:
        return DisputeTerms(refund=zero, payout=fee_split.recipient_amount, fee=fee_split.fee)
    if outcome == Outcome.ORGANIZER_FAVOR:
        return DisputeTerms(refund=fee_split.recipient_amount, payout=zero, fee=fee_split.fee)

    refund = _amount(refund_amount, 'Refund amount')
    payout = _amount(payout_amount, 'Payout amount')
    if refund == 0 and payout == 0:
        raise InvalidSplit('A partial resolution needs a refund or a payout.')
    if refund + payout + fee_split.fee.amount > gross.amount:
        raise InvalidSplit(
            refund_amount=refund,
            payout_amount=payout,
            available=fee_split.recipient_amount.amount,
        )
    return DisputeTerms(
        refund=Money(refund, gross.currency),
        payout=Money(payout, gross.currency),
        fee=fee_split.fee,
    )


class DisputeResolver:
    """
    Usage:
        resolver = DisputeResolver()
        dispute = resolver.file_dispute(booking_id, user, reason, explanation)
        resolver.resolve(dispute.pk, admin, Outcome.PROVIDER_FAVOR, notes)
    """

    def __init__(self, booking_repo=None):
        self.booking_repo = booking_repo or DjangoBookingRepository()

    def file_dispute(self, booking_id, raised_by, reason: str, explanation: str) -> Dispute:
        """
        Open a dispute and move the booking to DISPUTED

        Raises:
            Forbidden: raiser is not a party of the booking
            InvalidDispute: reason not available to the raiser, or no explanation
            DisputeAlreadyOpen: the booking already has an open dispute
            InvalidTransition: booking is not COMPLETED
        """
        explanation = (explanation or '').strip()

        with DjangoUnitOfWork() as uow:
            booking = self.booking_repo.get(booking_id, lock=True)

            if raised_by.pk == booking.provider_id:
                role, allowed = ActorRole.PROVIDER, TALENT_REASONS
            elif raised_by.pk == booking.organizer_id:
                role, allowed = ActorRole.ORGANIZER, ORGANIZER_REASONS
            else:
                raise Forbidden('Only the organizer or the provider can dispute a booking.', booking_id=booking.id)

            if reason not in allowed:
                raise InvalidDispute(f'Reason {reason!r} is not available to the {role.value}.', reason=reason)
            if not explanation:
                raise InvalidDispute('Please explain what went wrong.')

            if Dispute.objects.filter(booking_id=booking.id, status__in=Dispute.OPEN_STATUSES).exists():
                raise DisputeAlreadyOpen(booking_id=booking.id)

            updated, events = state_machine.apply(
                booking,
                BookingAction.DISPUTE,
                role,
                actor_id=raised_by.pk,
            )
            saved = self.booking_repo.save(updated, expected_version=booking.version)

            try:
                dispute = Dispute.objects.create(
                    booking_id=booking.id,
                    raised_by=raised_by,
                    reason=reason,
                    explanation=explanation,
                )
            except IntegrityError:
                raise DisputeAlreadyOpen(booking_id=booking.id)

            record(raised_by, 'dispute.file', booking_state(booking), booking_state(saved), dispute)
            uow.collect(events)

        logger.info(f"Dispute {dispute.pk} filed on booking {booking.id} by {role.value} {raised_by.pk}")

        payload = {'booking_id': booking.id, 'dispute_id': dispute.pk, 'reason': dispute.get_reason_display()}
        other = dispute.booking.organizer if role == ActorRole.PROVIDER else dispute.booking.provider
        emit(other, 'dispute_filed', payload)
        emit_to_admins('dispute_filed', payload)
        return dispute

    def start_review(self, dispute_id, reviewer) -> Dispute:
        """Admin takes an OPEN dispute under review"""
        if not reviewer.is_platform_admin():
            raise Forbidden('Only platform admins review disputes.')

        with DjangoUnitOfWork():
            dispute = self._get_locked(dispute_id)
            if dispute.status != Dispute.Status.OPEN:
                raise InvalidTransition(f'Dispute is {dispute.status}, not open.', dispute_id=dispute.pk)
            before = {'status': dispute.status}
            dispute.status = Dispute.Status.UNDER_REVIEW
            dispute.reviewed_by = reviewer
            dispute.save(update_fields=['status', 'reviewed_by', 'updated_at'])
            record(reviewer, 'dispute.review', before, {'status': dispute.status}, dispute)

        logger.info(f"Dispute {dispute.pk} under review by {reviewer.pk}")
        return dispute

    def resolve(
        self,
        dispute_id,
        resolver,
        outcome,
        notes: str,
        refund_amount=None,
        payout_amount=None,
    ) -> Dispute:
        """
        Decide a dispute

        Raises:
            Forbidden: resolver is not a platform admin
            InvalidTransition: dispute is already resolved
            InvalidDispute: no resolution notes
            InvalidSplit: PARTIAL amounts do not fit the booking
            NotEligible: decision conflicts with a payout already made or
                still in flight
        """
        if not resolver.is_platform_admin():
            raise Forbidden('Only platform admins resolve disputes.')
        try:
            outcome = Outcome(outcome)
        except ValueError:
            raise InvalidDispute(f'Unknown outcome {outcome!r}.')
        notes = (notes or '').strip()
        if not notes:
            raise InvalidDispute('Resolution notes are required.')

        action, dispute_status = OUTCOME_TRANSITIONS[outcome]

        with DjangoUnitOfWork() as uow:
            dispute = self._get_locked(dispute_id)
            if not dispute.is_open:
                raise InvalidTransition(f'Dispute is already {dispute.status}.', dispute_id=dispute.pk)

            booking = self.booking_repo.get(dispute.booking_id, lock=True)
            terms = dispute_terms(booking.gross_amount, outcome, refund_amount, payout_amount)
            self._check_prior_payout(dispute, terms)

            updated, events = state_machine.apply(
                booking,
                action,
                ActorRole.ADMIN,
                actor_id=resolver.pk,
                notes=notes,
            )
            saved = self.booking_repo.save(updated, expected_version=booking.version)

            before = {'status': dispute.status}
            dispute.status = dispute_status
            dispute.refund_amount = terms.refund.amount
            dispute.payout_amount = terms.payout.amount
            dispute.dispute_fee = terms.fee.amount
            dispute.resolution_notes = notes
            dispute.resolved_by = resolver
            dispute.resolved_at = timezone.now()
            dispute.save()

            record(resolver, 'dispute.resolve', before, {
                'status': dispute.status,
                'outcome': outcome.value,
                'refund_amount': str(terms.refund.amount),
                'payout_amount': str(terms.payout.amount),
                'dispute_fee': str(terms.fee.amount),
            }, dispute)
            record(resolver, f'booking.{action.value}', booking_state(booking), booking_state(saved), saved)
            uow.collect(events)

        logger.info(
            f"Dispute {dispute.pk} resolved {outcome.value}: refund {terms.refund}, "
            f"payout {terms.payout}, fee {terms.fee}"
        )

        payload = {
            'booking_id': dispute.booking_id,
            'dispute_id': dispute.pk,
            'outcome': dispute.get_status_display(),
            'refund_amount': str(terms.refund.amount),
            'payout_amount': str(terms.payout.amount),
        }
        emit(dispute.booking.organizer, 'dispute_resolved', payload)
        emit(dispute.booking.provider, 'dispute_resolved', payload)
        return dispute

    @staticmethod
    def _get_locked(dispute_id) -> Dispute:
        try:
            return Dispute.objects.select_for_update().select_related(
                'booking', 'booking__organizer', 'booking__provider'
            ).get(pk=dispute_id)
        except Dispute.DoesNotExist:
            raise DisputeNotFound(dispute_id=dispute_id)

    @staticmethod
    def _check_prior_payout(dispute: Dispute, terms: DisputeTerms) -> None:
        transfers = Transaction.objects.filter(
            booking_id=dispute.booking_id,
            kind__in=(Transaction.Kind.PROVIDER_PAYOUT, Transaction.Kind.PROVIDER_ADJUSTMENT),
        )
        if transfers.filter(status=Transaction.Status.PENDING).exists():
            raise NotEligible(
                'A payout for this booking is still processing; resolve once it settles.',
                booking_id=dispute.booking_id,
            )
        paid = transfers.filter(status=Transaction.Status.COMPLETED).aggregate(
            total=Sum('amount')
        )['total'] or Decimal('0')
        if paid > terms.payout.amount:
            raise NotEligible(
                f'The provider was already paid {paid}; a decision paying less cannot be settled.',
                booking_id=dispute.booking_id,
                paid=paid,
            )
