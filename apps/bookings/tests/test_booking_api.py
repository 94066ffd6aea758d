"""Integration tests for booking API endpoints."""

from __future__ import annotations

from decimal import Decimal

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.models import Booking
from apps.finances.gateway import get_gateway
from apps.finances.models import Transaction
from apps.notifications.models import Notification
from apps.users.models import User


class BookingAPITests(APITestCase):
    """Covers requesting bookings, lifecycle transitions and settlement on completion."""

    def setUp(self) -> None:
        get_gateway.cache_clear()
        self.addCleanup(get_gateway.cache_clear)
        self.organizer = User.objects.create_user(
            email="organizer@example.com",
            password="OrganizerPass123",
            role=User.RoleChoices.ORGANIZER,
        )
        self.talent = User.objects.create_user(
            email="talent@example.com",
            password="TalentPass123",
            role=User.RoleChoices.TALENT,
            mpesa_phone="254712345678",
        )
        self.talent.mark_kyc_verified()
        self.other_organizer = User.objects.create_user(
            email="other@example.com",
            password="OtherPass123",
            role=User.RoleChoices.ORGANIZER,
        )
        self.client.force_authenticate(self.organizer)
        self.list_url = reverse("booking-list")

    def _create(self, gross: str = "100000.00") -> dict:
        response = self.client.post(
            self.list_url,
            {"provider": self.talent.pk, "gross_amount": gross, "event_title": "Launch party"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def _transition(self, booking_id: int, action: str, user: User):
        self.client.force_authenticate(user)
        return self.client.post(
            reverse("booking-transition", args=[booking_id]),
            {"action": action},
            format="json",
        )

    def test_organizer_can_request_booking(self) -> None:
        data = self._create()

        self.assertEqual(data["status"], "pending")
        self.assertEqual(Decimal(data["gross_amount"]), Decimal("100000.00"))
        self.assertIsNone(data["platform_fee"])
        booking = Booking.objects.get(pk=data["id"])
        self.assertEqual(booking.organizer, self.organizer)
        self.assertEqual(booking.provider, self.talent)

    def test_talent_cannot_request_booking(self) -> None:
        self.client.force_authenticate(self.talent)

        response = self.client.post(
            self.list_url,
            {"provider": self.talent.pk, "gross_amount": "100.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Booking.objects.count(), 0)

    def test_invalid_amount_and_provider_are_rejected(self) -> None:
        response = self.client.post(self.list_url, {"provider": self.talent.pk, "gross_amount": "0"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(
            self.list_url,
            {"provider": self.other_organizer.pk, "gross_amount": "100.00"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("provider", response.data)

    def test_provider_accepts(self) -> None:
        booking_id = self._create()["id"]

        response = self._transition(booking_id, "accept", self.talent)

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], "accepted")

    def test_organizer_cannot_accept(self) -> None:
        booking_id = self._create()["id"]

        response = self._transition(booking_id, "accept", self.organizer)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["code"], "forbidden")

    def test_illegal_transition_is_conflict(self) -> None:
        booking_id = self._create()["id"]

        response = self._transition(booking_id, "complete", self.organizer)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertEqual(Booking.objects.get(pk=booking_id).status, Booking.Status.PENDING)

    def test_terminal_booking_reports_already_terminal(self) -> None:
        booking_id = self._create()["id"]
        self._transition(booking_id, "decline", self.talent)

        response = self._transition(booking_id, "accept", self.talent)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "already_terminal")

    def test_outsider_cannot_see_booking(self) -> None:
        booking_id = self._create()["id"]

        response = self._transition(booking_id, "cancel", self.other_organizer)

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.client.force_authenticate(self.other_organizer)
        self.assertEqual(self.client.get(self.list_url).data, [])

    def test_completion_triggers_settlement(self) -> None:
        booking_id = self._create()["id"]
        self._transition(booking_id, "accept", self.talent)

        with self.captureOnCommitCallbacks(execute=True):
            response = self._transition(booking_id, "complete", self.organizer)

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking = Booking.objects.get(pk=booking_id)
        self.assertEqual(booking.platform_fee, Decimal("10000.00"))
        self.assertEqual(booking.recipient_amount, Decimal("90000.00"))
        self.assertTrue(booking.is_paid_out)
        payout = Transaction.objects.get(booking=booking, kind=Transaction.Kind.PROVIDER_PAYOUT)
        self.assertEqual(payout.amount, Decimal("90000.00"))
        self.assertEqual(payout.status, Transaction.Status.COMPLETED)
        self.assertTrue(Notification.objects.filter(user=self.talent, kind="booking_completed").exists())
        self.assertFalse(Notification.objects.filter(user=self.organizer, kind="booking_completed").exists())

    def test_filter_by_status(self) -> None:
        first = self._create()["id"]
        self._create()
        self._transition(first, "accept", self.talent)

        self.client.force_authenticate(self.organizer)
        response = self.client.get(self.list_url, {"status": "accepted"})

        self.assertEqual([item["id"] for item in response.data], [first])

    def test_party_files_dispute(self) -> None:
        booking_id = self._create()["id"]
        self._transition(booking_id, "accept", self.talent)
        self._transition(booking_id, "complete", self.talent)

        self.client.force_authenticate(self.organizer)
        response = self.client.post(
            reverse("booking-dispute", args=[booking_id]),
            {"reason": "service_not_as_described", "explanation": "Played half the set."},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], "open")
        self.assertEqual(Booking.objects.get(pk=booking_id).status, Booking.Status.DISPUTED)
