"""URL routing for the finance domain."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import PayoutViewSet, TransactionViewSet, paystack_webhook, retry_settlement, verify_payment

router = DefaultRouter()
router.register(r"transactions", TransactionViewSet, basename="transaction")
router.register(r"payouts", PayoutViewSet, basename="payout")

urlpatterns = [
    path("", include(router.urls)),
    path("settlements/<int:booking_id>/retry/", retry_settlement, name="settlement-retry"),
    path("payments/<int:booking_id>/verify/", verify_payment, name="payment-verify"),
    path("webhooks/paystack/", paystack_webhook, name="paystack-webhook"),
]
