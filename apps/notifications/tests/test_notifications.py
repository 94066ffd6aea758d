"""Tests for notification delivery and the notification endpoints."""

from __future__ import annotations

from unittest.mock import patch

from django.core import mail
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.domain.events import BookingTransitioned
from apps.notifications.handlers import notify_counterparty
from apps.notifications.models import Notification
from apps.notifications.services import emit, emit_to_admins, render
from apps.users.models import User


class NotificationServiceTests(APITestCase):
    def setUp(self) -> None:
        self.organizer = User.objects.create_user(email="organizer@example.com", password="OrganizerPass123")
        self.talent = User.objects.create_user(
            email="talent@example.com",
            password="TalentPass123",
            role=User.RoleChoices.TALENT,
        )

    def test_render_fills_template(self) -> None:
        title, message = render("payout_completed", {"amount": "90000.00", "currency": "KES", "booking_id": 7})

        self.assertEqual(title, "Payout sent")
        self.assertEqual(message, "90000.00 KES for booking #7 has been sent.")

    def test_render_tolerates_missing_keys_and_unknown_kinds(self) -> None:
        self.assertEqual(render("payout_failed", {"booking_id": 7})[1], "Your payout for booking #7 failed: ")
        self.assertEqual(render("something_new", {})[0], "Something new")

    def test_emit_creates_record_and_email(self) -> None:
        notification = emit(self.talent, "booking_requested", {"booking_id": 3})

        self.assertEqual(notification.kind, "booking_requested")
        self.assertEqual(notification.payload, {"booking_id": 3})
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["talent@example.com"])

    def test_emit_failure_is_swallowed(self) -> None:
        with patch.object(Notification.objects, "create", side_effect=RuntimeError("db down")):
            self.assertIsNone(emit(self.talent, "booking_requested", {"booking_id": 3}))
        self.assertEqual(len(mail.outbox), 0)

    def test_emit_to_admins(self) -> None:
        User.objects.create_user(email="admin@example.com", password="AdminPass123", role=User.RoleChoices.ADMIN)

        self.assertEqual(emit_to_admins("dispute_filed", {"booking_id": 1, "reason": "Other"}), 1)

    def test_counterparty_is_notified(self) -> None:
        from decimal import Decimal

        from apps.bookings.application.command_handlers import create_booking

        booking = create_booking(self.organizer, self.talent, Decimal("100"))
        Notification.objects.all().delete()

        notify_counterparty(BookingTransitioned(
            booking_id=booking.id,
            action="accept",
            from_status="pending",
            to_status="accepted",
            actor_id=self.talent.pk,
            actor_role="provider",
        ))

        self.assertEqual(list(Notification.objects.values_list("user_id", "kind")), [(self.organizer.pk, "booking_accepted")])


class NotificationAPITests(APITestCase):
    def setUp(self) -> None:
        self.user = User.objects.create_user(email="user@example.com", password="UserPass123")
        self.other = User.objects.create_user(email="other@example.com", password="OtherPass123")
        self.mine = emit(self.user, "booking_accepted", {"booking_id": 1})
        emit(self.user, "booking_started", {"booking_id": 1})
        emit(self.other, "booking_accepted", {"booking_id": 2})
        self.client.force_authenticate(self.user)

    def test_lists_own_notifications(self) -> None:
        response = self.client.get(reverse("notification-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

    def test_mark_read(self) -> None:
        response = self.client.post(reverse("notification-mark-read", args=[self.mine.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.mine.refresh_from_db()
        self.assertTrue(self.mine.is_read)
        self.assertIsNotNone(self.mine.read_at)

    def test_mark_all_read(self) -> None:
        response = self.client.post(reverse("notification-mark-all-read"))

        self.assertEqual(response.data, {"updated": 2})
        self.assertFalse(Notification.objects.filter(user=self.other, is_read=True).exists())
