"""Tests for audit entries."""

from __future__ import annotations

from decimal import Decimal

from django.test import TestCase

from apps.activity.models import ActivityLog
from apps.activity.services import record
from apps.bookings.application.command_handlers import create_booking
from apps.users.models import User


class RecordTests(TestCase):
    def setUp(self) -> None:
        self.organizer = User.objects.create_user(email="organizer@example.com", password="OrganizerPass123")
        self.talent = User.objects.create_user(
            email="talent@example.com",
            password="TalentPass123",
            role=User.RoleChoices.TALENT,
        )

    def test_records_model_instance(self) -> None:
        entry = record(self.organizer, "user.kyc_verified", {"kyc_status": "pending"}, {"kyc_status": "verified"}, self.talent)

        self.assertEqual(entry.actor, self.organizer)
        self.assertEqual(entry.object_type, "customuser")
        self.assertEqual(entry.object_id, str(self.talent.pk))
        self.assertEqual(entry.after_state, {"kyc_status": "verified"})

    def test_records_domain_snapshot(self) -> None:
        booking = create_booking(self.organizer, self.talent, Decimal("500"))

        entry = ActivityLog.objects.get(action="booking.create")

        self.assertEqual(entry.object_type, "booking")
        self.assertEqual(entry.object_id, str(booking.id))
        self.assertEqual(entry.before_state, {})

    def test_system_actor_is_stored_as_null(self) -> None:
        entry = record(None, "settlement.sweep", None, None, self.talent)

        self.assertIsNone(entry.actor)
        self.assertEqual(str(entry).split(" - ")[0], "system")
