"""Tests for the settlement orchestrator against the sandbox gateway."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.db.models import Sum
from django.test import TestCase

from apps.activity.models import ActivityLog
from apps.bookings.application.command_handlers import create_booking, request_transition
from apps.bookings.domain.entities import ActorRole, BookingAction
from apps.bookings.models import Booking
from apps.finances.application.settlement import SettlementOrchestrator, SettlementStatus, idempotency_key
from apps.finances.gateway import PaystackTransferGateway, SandboxTransferGateway
from apps.finances.models import Payout, Transaction
from apps.notifications.models import Notification
from apps.users.models import User
from shared.domain.exceptions import (
    AlreadyPaidOut,
    GatewayRejected,
    GatewayUnavailable,
    NoDestination,
    NotEligible,
    RecipientNotVerified,
)
from shared.domain.value_objects import Money


def fake_response(body: dict) -> MagicMock:
    response = MagicMock(status_code=200, ok=True)
    response.json.return_value = body
    return response


class SettlementTestMixin:
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
            username="DJ Talent",
            mpesa_phone="+254712345678",
        )
        self.talent.mark_kyc_verified()
        self.gateway = SandboxTransferGateway()
        self.orchestrator = SettlementOrchestrator(gateway=self.gateway)

    def completed_booking(self, gross: str = "100000") -> int:
        booking = create_booking(self.organizer, self.talent, Decimal(gross))
        request_transition(booking.id, BookingAction.ACCEPT, self.talent, ActorRole.PROVIDER)
        request_transition(booking.id, BookingAction.COMPLETE, self.organizer, ActorRole.ORGANIZER)
        return booking.id

    def rows(self, booking_id: int, kind: str):
        return Transaction.objects.filter(booking_id=booking_id, kind=kind)

    def fee_total(self, booking_id: int) -> Decimal:
        return self.rows(booking_id, Transaction.Kind.PLATFORM_FEE).aggregate(total=Sum("amount"))["total"]


class PayoutTests(SettlementTestMixin, TestCase):
    def test_completed_booking_pays_provider_once(self) -> None:
        booking_id = self.completed_booking()

        results = self.orchestrator.settle(booking_id)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].status, SettlementStatus.COMPLETED)
        self.assertEqual(results[0].amount, Decimal("90000.00"))

        payout = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertEqual(payout.status, Transaction.Status.COMPLETED)
        self.assertEqual(payout.amount, Decimal("90000.00"))
        self.assertEqual(payout.idempotency_key, f"payout-{booking_id}-1")
        self.assertEqual(payout.actor, self.talent)
        self.assertIsNone(payout.lease_expires_at)

        self.assertEqual(self.fee_total(booking_id), Decimal("10000.00"))
        self.assertTrue(Booking.objects.get(pk=booking_id).is_paid_out)

        self.assertEqual(self.gateway.transfer_count, 1)
        transfer = self.gateway.transfers[f"payout-{booking_id}-1"]
        self.assertEqual(transfer["amount"], 9000000)
        self.assertEqual(transfer["currency"], "KES")

        record = Payout.objects.get(transaction=payout)
        self.assertEqual(record.status, Payout.Status.COMPLETED)
        self.assertEqual(record.destination_account, "0712345678")
        self.assertTrue(record.transfer_code.startswith("TRF_"))
        self.assertIsNotNone(record.completed_at)

        self.assertTrue(Notification.objects.filter(user=self.talent, kind="payout_completed").exists())
        self.assertTrue(ActivityLog.objects.filter(action="settlement.provider_payout.completed").exists())

    def test_second_settle_is_already_paid_out(self) -> None:
        booking_id = self.completed_booking()
        self.orchestrator.settle(booking_id)

        with self.assertRaises(AlreadyPaidOut):
            self.orchestrator.settle(booking_id)
        with self.assertRaises(AlreadyPaidOut):
            self.orchestrator.retry_settlement(booking_id)

        self.assertEqual(self.gateway.transfer_count, 1)
        self.assertEqual(self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).count(), 1)

    def test_racing_worker_is_skipped(self) -> None:
        booking_id = self.completed_booking()
        Transaction.objects.create(
            booking_id=booking_id,
            actor=self.talent,
            kind=Transaction.Kind.PROVIDER_PAYOUT,
            status=Transaction.Status.PENDING,
            amount=Decimal("90000.00"),
            idempotency_key=idempotency_key(Transaction.Kind.PROVIDER_PAYOUT, booking_id, 1),
        )

        # Pre-check ran before the other worker's reservation landed
        with patch.object(SettlementOrchestrator, "_live_transactions", return_value={}):
            results = self.orchestrator.settle(booking_id)

        self.assertEqual(results[0].status, SettlementStatus.SKIPPED)
        self.assertEqual(self.gateway.transfer_count, 0)
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).count(), 1)

    def test_pending_reservation_is_skipped_without_resume(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.fail_next("initiate_transfer", GatewayUnavailable())
        self.orchestrator.settle(booking_id)

        results = self.orchestrator.settle(booking_id)

        self.assertEqual(results[0].status, SettlementStatus.SKIPPED)
        self.assertEqual(self.gateway.transfer_count, 0)

    def test_timeout_after_transfer_is_resumed_with_same_key(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.fail_next("initiate_transfer", GatewayUnavailable("read timed out"), after=True)

        first = self.orchestrator.settle(booking_id)

        self.assertEqual(first[0].status, SettlementStatus.PROCESSING)
        row = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertEqual(row.status, Transaction.Status.PENDING)
        self.assertIsNone(row.lease_expires_at)
        self.assertFalse(Booking.objects.get(pk=booking_id).is_paid_out)
        self.assertEqual(Payout.objects.get(transaction=row).status, Payout.Status.PROCESSING)

        second = self.orchestrator.retry_settlement(booking_id)

        self.assertEqual(second[0].status, SettlementStatus.COMPLETED)
        self.assertEqual(self.gateway.transfer_count, 1)
        keys = [key for operation, key in self.gateway.calls if operation == "initiate_transfer"]
        self.assertEqual(keys, [f"payout-{booking_id}-1", f"payout-{booking_id}-1"])
        row.refresh_from_db()
        self.assertEqual(row.status, Transaction.Status.COMPLETED)
        self.assertEqual(Payout.objects.filter(transaction=row).count(), 1)
        self.assertTrue(Booking.objects.get(pk=booking_id).is_paid_out)

    def test_leased_reservation_is_not_claimed(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.fail_next("initiate_transfer", GatewayUnavailable())
        self.orchestrator.settle(booking_id)
        row = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertTrue(self.orchestrator._claim(row))

        results = self.orchestrator.retry_settlement(booking_id)

        self.assertEqual(results[0].status, SettlementStatus.SKIPPED)
        self.assertEqual(self.gateway.transfer_count, 0)

    def test_rejected_transfer_fails_and_retry_uses_next_attempt(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.fail_next("initiate_transfer", GatewayRejected("Insufficient balance", payload={"status": False}))

        results = self.orchestrator.settle(booking_id)

        self.assertEqual(results[0].status, SettlementStatus.FAILED)
        self.assertEqual(results[0].message, "Insufficient balance")
        failed = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertEqual(failed.status, Transaction.Status.FAILED)
        self.assertEqual(failed.failure_reason, "Insufficient balance")
        self.assertEqual(Payout.objects.get(transaction=failed).status, Payout.Status.FAILED)
        self.assertFalse(Booking.objects.get(pk=booking_id).is_paid_out)
        self.assertFalse(self.rows(booking_id, Transaction.Kind.PLATFORM_FEE).exists())
        self.assertTrue(Notification.objects.filter(user=self.talent, kind="payout_failed").exists())

        retried = self.orchestrator.retry_settlement(booking_id)

        self.assertEqual(retried[0].status, SettlementStatus.COMPLETED)
        latest = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get(status=Transaction.Status.COMPLETED)
        self.assertEqual(latest.idempotency_key, f"payout-{booking_id}-2")
        self.assertEqual(latest.attempt, 2)
        self.assertTrue(Booking.objects.get(pk=booking_id).is_paid_out)

    def test_transfer_reported_failed_by_provider(self) -> None:
        orchestrator = SettlementOrchestrator(gateway=SandboxTransferGateway(transfer_status="failed"))
        booking_id = self.completed_booking()

        results = orchestrator.settle(booking_id)

        self.assertEqual(results[0].status, SettlementStatus.FAILED)
        self.assertEqual(results[0].message, "Transfer failed.")
        failed = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertEqual(failed.failure_reason, "Transfer failed.")
        self.assertNotIn("Booking #", failed.failure_reason)
        self.assertFalse(Booking.objects.get(pk=booking_id).is_paid_out)

    def test_provider_failure_cause_reaches_ledger_and_recipient(self) -> None:
        gateway = SandboxTransferGateway(transfer_status="pending")
        orchestrator = SettlementOrchestrator(gateway=gateway)
        booking_id = self.completed_booking()
        orchestrator.settle(booking_id)

        reference = f"payout-{booking_id}-1"
        gateway.settle_transfer(reference, "failed", gateway_response="Recipient M-Pesa account is inactive")
        result = orchestrator.confirm_transfer(reference, "transfer.failed")

        self.assertEqual(result.status, SettlementStatus.FAILED)
        self.assertEqual(result.message, "Recipient M-Pesa account is inactive")
        row = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertEqual(row.failure_reason, "Recipient M-Pesa account is inactive")
        notification = Notification.objects.get(user=self.talent, kind="payout_failed")
        self.assertIn("Recipient M-Pesa account is inactive", notification.message)

    def test_unreadable_provider_answer_keeps_reservation_pending(self) -> None:
        gateway = PaystackTransferGateway(secret_key="sk_test_123")
        gateway.session.request = MagicMock(side_effect=[
            fake_response({"status": True, "data": []}),
            fake_response({"status": True, "data": {"recipient_code": "RCP_1"}}),
            fake_response({"status": True, "message": "Transfer has been queued"}),
        ])
        booking_id = self.completed_booking()

        results = SettlementOrchestrator(gateway=gateway).settle(booking_id)

        self.assertEqual(results[0].status, SettlementStatus.PROCESSING)
        row = self.rows(booking_id, Transaction.Kind.PROVIDER_PAYOUT).get()
        self.assertEqual(row.status, Transaction.Status.PENDING)
        self.assertIsNone(row.lease_expires_at)
        self.assertFalse(Booking.objects.get(pk=booking_id).is_paid_out)

    def test_in_flight_transfer_confirmed_by_webhook(self) -> None:
        gateway = SandboxTransferGateway(transfer_status="pending")
        orchestrator = SettlementOrchestrator(gateway=gateway)
        booking_id = self.completed_booking()

        results = orchestrator.settle(booking_id)
        self.assertEqual(results[0].status, SettlementStatus.PROCESSING)
        self.assertTrue(Notification.objects.filter(user=self.talent, kind="payout_processing").exists())

        reference = f"payout-{booking_id}-1"
        gateway.settle_transfer(reference, "success")
        confirmed = orchestrator.confirm_transfer(reference, "transfer.success")

        self.assertEqual(confirmed.status, SettlementStatus.COMPLETED)
        self.assertTrue(Booking.objects.get(pk=booking_id).is_paid_out)
        self.assertEqual(gateway.transfer_count, 1)

        again = orchestrator.confirm_transfer(reference, "transfer.success")
        self.assertEqual(again.status, SettlementStatus.SKIPPED)
        self.assertIsNone(orchestrator.confirm_transfer("payout-unknown-1", "transfer.success"))


class SettlementGuardTests(SettlementTestMixin, TestCase):
    def test_booking_not_completed(self) -> None:
        booking = create_booking(self.organizer, self.talent, Decimal("100000"))
        request_transition(booking.id, BookingAction.ACCEPT, self.talent, ActorRole.PROVIDER)

        with self.assertRaises(NotEligible):
            self.orchestrator.settle(booking.id)
        self.assertFalse(Transaction.objects.exists())

    def test_recipient_without_kyc(self) -> None:
        self.talent.kyc_status = User.KycStatus.PENDING
        self.talent.save()
        booking_id = self.completed_booking()

        with self.assertRaises(RecipientNotVerified):
            self.orchestrator.settle(booking_id)
        self.assertFalse(Transaction.objects.exists())
        self.assertEqual(self.gateway.calls, [])

    def test_recipient_without_destination(self) -> None:
        self.talent.mpesa_phone = ""
        self.talent.save()
        booking_id = self.completed_booking()

        with self.assertRaises(NoDestination):
            self.orchestrator.settle(booking_id)
        self.assertFalse(Transaction.objects.exists())


class OrganizerPaymentTests(SettlementTestMixin, TestCase):
    def test_payment_is_recorded_once(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.register_payment("PSK_ref_1", Money(Decimal("100000")))

        first = self.orchestrator.record_organizer_payment(booking_id, "PSK_ref_1", actor=self.organizer)
        second = self.orchestrator.record_organizer_payment(booking_id, "PSK_ref_1")

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.kind, Transaction.Kind.ORGANIZER_PAYMENT)
        self.assertEqual(first.status, Transaction.Status.COMPLETED)
        self.assertEqual(first.amount, Decimal("100000.00"))
        self.assertEqual(first.idempotency_key, "payment-PSK_ref_1")

    def test_failed_payment_is_rejected(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.register_payment("PSK_ref_2", Money(Decimal("100000")), status="failed")

        with self.assertRaises(NotEligible):
            self.orchestrator.record_organizer_payment(booking_id, "PSK_ref_2")

    def test_short_payment_is_rejected(self) -> None:
        booking_id = self.completed_booking()
        self.gateway.register_payment("PSK_ref_3", Money(Decimal("50000")))

        with self.assertRaises(NotEligible):
            self.orchestrator.record_organizer_payment(booking_id, "PSK_ref_3")

    def test_second_reference_is_rejected(self) -> None:
        booking_id = self.completed_booking()
        self.orchestrator.record_organizer_payment(booking_id, "PSK_ref_4")

        with self.assertRaises(NotEligible):
            self.orchestrator.record_organizer_payment(booking_id, "PSK_ref_5")
