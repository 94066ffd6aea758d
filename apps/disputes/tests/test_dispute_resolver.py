"""Tests for filing, reviewing and resolving disputes and settling the outcome."""

from __future__ import annotations

from decimal import Decimal

from django.db.models import Sum
from django.test import SimpleTestCase, TestCase

from apps.bookings.application.command_handlers import create_booking, request_transition
from apps.bookings.domain.entities import ActorRole, BookingAction
from apps.bookings.models import Booking
from apps.disputes.application.resolver import DisputeResolver, Outcome, dispute_terms
from apps.disputes.models import Dispute
from apps.finances.application.settlement import SettlementOrchestrator, SettlementStatus
from apps.finances.gateway import SandboxTransferGateway
from apps.finances.models import Transaction
from apps.notifications.models import Notification
from apps.users.models import User
from shared.domain.exceptions import (
    AlreadyPaidOut,
    DisputeAlreadyOpen,
    Forbidden,
    InvalidDispute,
    InvalidSplit,
    InvalidTransition,
    NotEligible,
)
from shared.domain.value_objects import Money

GROSS = Money(Decimal("100000"))


class DisputeTermsTests(SimpleTestCase):
    def test_provider_favor_pays_gross_minus_dispute_fee(self) -> None:
        terms = dispute_terms(GROSS, Outcome.PROVIDER_FAVOR)

        self.assertEqual(terms.payout.amount, Decimal("95000.00"))
        self.assertEqual(terms.refund.amount, Decimal("0.00"))
        self.assertEqual(terms.fee.amount, Decimal("5000.00"))

    def test_organizer_favor_refunds_gross_minus_dispute_fee(self) -> None:
        terms = dispute_terms(GROSS, Outcome.ORGANIZER_FAVOR)

        self.assertEqual(terms.refund.amount, Decimal("95000.00"))
        self.assertEqual(terms.payout.amount, Decimal("0.00"))

    def test_partial_within_available(self) -> None:
        terms = dispute_terms(GROSS, Outcome.PARTIAL, Decimal("35000"), Decimal("60000"))

        self.assertEqual(terms.refund.amount, Decimal("35000.00"))
        self.assertEqual(terms.payout.amount, Decimal("60000.00"))
        self.assertEqual(terms.fee.amount, Decimal("5000.00"))

    def test_partial_exceeding_available_is_invalid(self) -> None:
        with self.assertRaises(InvalidSplit):
            dispute_terms(GROSS, Outcome.PARTIAL, Decimal("60000"), Decimal("40000"))

    def test_partial_with_negative_or_empty_amounts_is_invalid(self) -> None:
        with self.assertRaises(InvalidSplit):
            dispute_terms(GROSS, Outcome.PARTIAL, Decimal("-1"), Decimal("1000"))
        with self.assertRaises(InvalidSplit):
            dispute_terms(GROSS, Outcome.PARTIAL, None, None)
        with self.assertRaises(InvalidSplit):
            dispute_terms(GROSS, Outcome.PARTIAL, "abc", "10")


class DisputeResolverTests(TestCase):
    def setUp(self) -> None:
        self.organizer = User.objects.create_user(
            email="organizer@example.com",
            password="OrganizerPass123",
            role=User.RoleChoices.ORGANIZER,
        )
        self.talent = User.objects.create_user(
            email="talent@example.com",
            password="TalentPass123",
            role=User.RoleChoices.TALENT,
            mpesa_phone="0712345678",
        )
        self.talent.mark_kyc_verified()
        self.admin = User.objects.create_user(
            email="admin@example.com",
            password="AdminPass123",
            role=User.RoleChoices.ADMIN,
        )
        self.outsider = User.objects.create_user(
            email="outsider@example.com",
            password="OutsiderPass123",
        )
        self.resolver = DisputeResolver()
        self.gateway = SandboxTransferGateway()
        self.orchestrator = SettlementOrchestrator(gateway=self.gateway)

        booking = create_booking(self.organizer, self.talent, Decimal("100000"))
        request_transition(booking.id, BookingAction.ACCEPT, self.talent, ActorRole.PROVIDER)
        request_transition(booking.id, BookingAction.COMPLETE, self.organizer, ActorRole.ORGANIZER)
        self.booking_id = booking.id

    def _file(self, user=None, reason=Dispute.Reason.TALENT_NO_SHOW) -> Dispute:
        return self.resolver.file_dispute(self.booking_id, user or self.organizer, reason, "Nobody showed up.")

    def _fee_total(self) -> Decimal:
        return Transaction.objects.filter(
            booking_id=self.booking_id,
            kind=Transaction.Kind.PLATFORM_FEE,
        ).aggregate(total=Sum("amount"))["total"]

    # --- Filing --------------------------------------------------------------

    def test_filing_moves_booking_to_disputed(self) -> None:
        dispute = self._file()

        self.assertEqual(dispute.status, Dispute.Status.OPEN)
        self.assertEqual(Booking.objects.get(pk=self.booking_id).status, Booking.Status.DISPUTED)
        self.assertTrue(Notification.objects.filter(user=self.talent, kind="dispute_filed").exists())
        self.assertTrue(Notification.objects.filter(user=self.admin, kind="dispute_filed").exists())

    def test_talent_may_not_use_organizer_reason(self) -> None:
        with self.assertRaises(InvalidDispute):
            self._file(self.talent, Dispute.Reason.TALENT_NO_SHOW)

        dispute = self._file(self.talent, Dispute.Reason.ORGANIZER_UNRESPONSIVE)
        self.assertEqual(dispute.raised_by, self.talent)

    def test_outsider_may_not_file(self) -> None:
        with self.assertRaises(Forbidden):
            self._file(self.outsider)

    def test_explanation_is_required(self) -> None:
        with self.assertRaises(InvalidDispute):
            self.resolver.file_dispute(self.booking_id, self.organizer, Dispute.Reason.OTHER, "   ")

    def test_only_one_open_dispute(self) -> None:
        self._file()

        with self.assertRaises(DisputeAlreadyOpen):
            self._file(self.talent, Dispute.Reason.OTHER)
        self.assertEqual(Dispute.objects.count(), 1)

    def test_booking_must_be_completed(self) -> None:
        booking = create_booking(self.organizer, self.talent, Decimal("5000"))

        with self.assertRaises(InvalidTransition):
            self.resolver.file_dispute(booking.id, self.organizer, Dispute.Reason.OTHER, "Too early.")

    # --- Review and resolution -----------------------------------------------

    def test_review_by_admin_only(self) -> None:
        dispute = self._file()

        with self.assertRaises(Forbidden):
            self.resolver.start_review(dispute.pk, self.organizer)

        reviewed = self.resolver.start_review(dispute.pk, self.admin)
        self.assertEqual(reviewed.status, Dispute.Status.UNDER_REVIEW)
        self.assertEqual(reviewed.reviewed_by, self.admin)

        with self.assertRaises(InvalidTransition):
            self.resolver.start_review(dispute.pk, self.admin)

    def test_resolve_requires_admin_and_notes(self) -> None:
        dispute = self._file()

        with self.assertRaises(Forbidden):
            self.resolver.resolve(dispute.pk, self.talent, Outcome.PROVIDER_FAVOR, "I win")
        with self.assertRaises(InvalidDispute):
            self.resolver.resolve(dispute.pk, self.admin, Outcome.PROVIDER_FAVOR, "")
        with self.assertRaises(InvalidDispute):
            self.resolver.resolve(dispute.pk, self.admin, "split_the_baby", "notes")

    def test_invalid_partial_split_changes_nothing(self) -> None:
        dispute = self._file()

        with self.assertRaises(InvalidSplit):
            self.resolver.resolve(
                dispute.pk,
                self.admin,
                Outcome.PARTIAL,
                "Both at fault",
                refund_amount=Decimal("60000"),
                payout_amount=Decimal("40000"),
            )

        dispute.refresh_from_db()
        self.assertTrue(dispute.is_open)
        self.assertEqual(Booking.objects.get(pk=self.booking_id).status, Booking.Status.DISPUTED)

    def test_resolved_dispute_cannot_be_resolved_again(self) -> None:
        dispute = self._file()
        self.resolver.resolve(dispute.pk, self.admin, Outcome.PROVIDER_FAVOR, "Talent performed")

        with self.assertRaises(InvalidTransition):
            self.resolver.resolve(dispute.pk, self.admin, Outcome.ORGANIZER_FAVOR, "Changed my mind")

    def test_provider_favor_before_payout_pays_single_transfer(self) -> None:
        dispute = self._file()

        resolved = self.resolver.resolve(dispute.pk, self.admin, Outcome.PROVIDER_FAVOR, "Talent performed")

        self.assertEqual(resolved.status, Dispute.Status.RESOLVED_PROVIDER)
        self.assertEqual(resolved.payout_amount, Decimal("95000.00"))
        self.assertEqual(resolved.dispute_fee, Decimal("5000.00"))
        booking = Booking.objects.get(pk=self.booking_id)
        self.assertEqual(booking.status, Booking.Status.RESOLVED_PROVIDER)
        self.assertEqual(booking.platform_fee, Decimal("5000.00"))
        self.assertEqual(booking.recipient_amount, Decimal("95000.00"))

        results = self.orchestrator.settle(self.booking_id)

        self.assertEqual([r.status for r in results], [SettlementStatus.COMPLETED])
        payout = Transaction.objects.get(booking_id=self.booking_id, kind=Transaction.Kind.PROVIDER_PAYOUT)
        self.assertEqual(payout.amount, Decimal("95000.00"))
        self.assertEqual(self.gateway.transfer_count, 1)
        self.assertEqual(self._fee_total(), Decimal("5000.00"))
        self.assertTrue(Booking.objects.get(pk=self.booking_id).is_paid_out)

    def test_provider_favor_after_payout_transfers_the_difference(self) -> None:
        self.orchestrator.settle(self.booking_id)
        self.assertEqual(self._fee_total(), Decimal("10000.00"))
        dispute = self._file()

        self.resolver.resolve(dispute.pk, self.admin, Outcome.PROVIDER_FAVOR, "Talent performed")
        results = self.orchestrator.settle(self.booking_id)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].kind, Transaction.Kind.PROVIDER_ADJUSTMENT)
        self.assertEqual(results[0].status, SettlementStatus.COMPLETED)
        adjustment = Transaction.objects.get(booking_id=self.booking_id, kind=Transaction.Kind.PROVIDER_ADJUSTMENT)
        self.assertEqual(adjustment.amount, Decimal("5000.00"))
        self.assertEqual(adjustment.idempotency_key, f"adjustment-{self.booking_id}-1")
        self.assertEqual(self.gateway.transfer_count, 2)
        self.assertEqual(self._fee_total(), Decimal("5000.00"))

        with self.assertRaises(AlreadyPaidOut):
            self.orchestrator.settle(self.booking_id)

    def test_decision_paying_less_than_paid_is_rejected(self) -> None:
        self.orchestrator.settle(self.booking_id)
        dispute = self._file()

        with self.assertRaises(NotEligible):
            self.resolver.resolve(dispute.pk, self.admin, Outcome.ORGANIZER_FAVOR, "Talent no-show")
        with self.assertRaises(NotEligible):
            self.resolver.resolve(
                dispute.pk,
                self.admin,
                Outcome.PARTIAL,
                "Half",
                refund_amount=Decimal("10000"),
                payout_amount=Decimal("50000"),
            )

        dispute.refresh_from_db()
        self.assertTrue(dispute.is_open)

    def test_decision_while_payout_in_flight_is_rejected(self) -> None:
        Transaction.objects.create(
            booking_id=self.booking_id,
            actor=self.talent,
            kind=Transaction.Kind.PROVIDER_PAYOUT,
            status=Transaction.Status.PENDING,
            amount=Decimal("90000.00"),
            idempotency_key=f"payout-{self.booking_id}-1",
        )
        dispute = self._file()

        with self.assertRaises(NotEligible):
            self.resolver.resolve(dispute.pk, self.admin, Outcome.PROVIDER_FAVOR, "Talent performed")

    def test_organizer_favor_refunds_recorded_payment(self) -> None:
        self.orchestrator.record_organizer_payment(self.booking_id, "PSK_pay_1", actor=self.organizer)
        dispute = self._file()

        self.resolver.resolve(dispute.pk, self.admin, Outcome.ORGANIZER_FAVOR, "Talent no-show")
        results = self.orchestrator.settle(self.booking_id)

        self.assertEqual([(r.kind, r.status) for r in results], [(Transaction.Kind.REFUND, SettlementStatus.COMPLETED)])
        refund = Transaction.objects.get(booking_id=self.booking_id, kind=Transaction.Kind.REFUND)
        self.assertEqual(refund.amount, Decimal("95000.00"))
        self.assertEqual(refund.actor, self.organizer)
        self.assertTrue(refund.external_ref)
        self.assertEqual(self.gateway.transfer_count, 0)
        self.assertEqual(len(self.gateway.refunds), 1)
        self.assertEqual(self._fee_total(), Decimal("5000.00"))
        self.assertTrue(Notification.objects.filter(user=self.organizer, kind="refund_completed").exists())
        self.assertFalse(Booking.objects.get(pk=self.booking_id).is_paid_out)

    def test_refund_without_recorded_payment_is_not_eligible(self) -> None:
        dispute = self._file()
        self.resolver.resolve(dispute.pk, self.admin, Outcome.ORGANIZER_FAVOR, "Talent no-show")

        with self.assertRaises(NotEligible):
            self.orchestrator.settle(self.booking_id)

    def test_partial_settles_refund_and_payout(self) -> None:
        self.orchestrator.record_organizer_payment(self.booking_id, "PSK_pay_2")
        dispute = self._file()

        self.resolver.resolve(
            dispute.pk,
            self.admin,
            Outcome.PARTIAL,
            "Late start",
            refund_amount=Decimal("35000"),
            payout_amount=Decimal("60000"),
        )
        results = self.orchestrator.settle(self.booking_id)

        self.assertEqual(
            sorted((r.kind, r.amount) for r in results),
            [(Transaction.Kind.PROVIDER_PAYOUT, Decimal("60000.00")), (Transaction.Kind.REFUND, Decimal("35000.00"))],
        )
        self.assertTrue(all(r.status == SettlementStatus.COMPLETED for r in results))
        self.assertEqual(self._fee_total(), Decimal("5000.00"))

    def test_settlement_waits_for_open_dispute(self) -> None:
        self._file()

        with self.assertRaises(NotEligible):
            self.orchestrator.settle(self.booking_id)
