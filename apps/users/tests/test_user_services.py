"""Tests for KYC and payout destination lookups and the profile endpoint."""

from __future__ import annotations

from django.db import connection
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.users.models import User
from apps.users.services import format_mpesa_number, is_verified, payout_destination


class PayoutDestinationTests(TestCase):
    def setUp(self) -> None:
        self.talent = User.objects.create_user(
            email="talent@example.com",
            password="TalentPass123",
            role=User.RoleChoices.TALENT,
            username="MC Talent",
            mpesa_phone="+254-712 345 678",
        )

    def test_format_mpesa_number(self) -> None:
        self.assertEqual(format_mpesa_number("+254712345678"), "0712345678")
        self.assertEqual(format_mpesa_number("254712345678"), "0712345678")
        self.assertEqual(format_mpesa_number("0712 345 678"), "0712345678")
        self.assertEqual(format_mpesa_number(""), "")

    def test_phone_is_normalized_and_encrypted_at_rest(self) -> None:
        self.talent.refresh_from_db()
        self.assertEqual(self.talent.mpesa_phone, "+254712345678")

        with connection.cursor() as cursor:
            cursor.execute("SELECT mpesa_phone FROM users_customuser WHERE id = %s", [self.talent.pk])
            raw = cursor.fetchone()[0]
        self.assertNotIn("712345678", raw)

    def test_destination(self) -> None:
        destination = payout_destination(self.talent)

        self.assertEqual(destination.account_number, "0712345678")
        self.assertEqual(destination.account_name, "MC Talent")
        self.assertEqual(destination.masked, "******5678")

    def test_no_destination_without_number(self) -> None:
        self.talent.mpesa_phone = ""
        self.talent.save()

        self.assertIsNone(payout_destination(self.talent))

    def test_verification_needs_kyc_and_active_account(self) -> None:
        self.assertFalse(is_verified(self.talent))

        self.talent.mark_kyc_verified()
        self.assertTrue(is_verified(self.talent))
        self.assertIsNotNone(self.talent.kyc_verified_at)

        self.talent.is_active = False
        self.assertFalse(is_verified(self.talent))


class ProfileAPITests(APITestCase):
    def setUp(self) -> None:
        self.talent = User.objects.create_user(
            email="talent@example.com",
            password="TalentPass123",
            role=User.RoleChoices.TALENT,
        )
        self.client.force_authenticate(self.talent)
        self.url = reverse("user-me")

    def test_number_is_write_only_and_shown_masked(self) -> None:
        response = self.client.patch(self.url, {"mpesa_phone": "+254 700 111 222"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertNotIn("mpesa_phone", response.data)
        self.assertEqual(response.data["mpesa_phone_masked"], "*********1222")
        self.talent.refresh_from_db()
        self.assertEqual(self.talent.mpesa_phone, "+254700111222")

    def test_role_cannot_be_changed(self) -> None:
        response = self.client.patch(self.url, {"role": "admin"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.talent.refresh_from_db()
        self.assertEqual(self.talent.role, User.RoleChoices.TALENT)

    def test_invalid_number_is_rejected(self) -> None:
        response = self.client.patch(self.url, {"mpesa_phone": "not-a-number"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
