"""API views for the settlement ledger.

Read access to transactions and payouts, operator retry of a settlement,
verification of an organizer's payment and the Paystack webhook.
"""

from __future__ import annotations

import json
import logging

from django.db.models import Q  # type: ignore
from django.shortcuts import get_object_or_404  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.decorators import api_view, authentication_classes, permission_classes  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.domain.exceptions import DomainError, Forbidden, GatewayUnavailable
from apps.bookings.models import Booking
from apps.bookings.permissions import IsPlatformAdmin

from .application.settlement import SettlementOrchestrator
from .gateway import verify_webhook_signature
from .models import Payout, Transaction
from .serializers import PaymentVerificationSerializer, PayoutSerializer, TransactionSerializer

logger = logging.getLogger(__name__)

TRANSFER_EVENTS = ("transfer.success", "transfer.failed", "transfer.reversed")


class TransactionViewSet(viewsets.ReadOnlyModelViewSet):
    """Ledger rows for bookings the user is a party to; admins see all."""

    serializer_class = TransactionSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["booking", "kind", "status"]

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = Transaction.objects.select_related("booking").all()
        if user.is_platform_admin():
            return qs
        return qs.filter(Q(booking__organizer=user) | Q(booking__provider=user))


class PayoutViewSet(viewsets.ReadOnlyModelViewSet):
    """Payouts to the authenticated provider; admins see all."""

    serializer_class = PayoutSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["booking", "status"]

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = Payout.objects.select_related("transaction").all()
        if user.is_platform_admin():
            return qs
        return qs.filter(provider=user)


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def retry_settlement(request, booking_id: int):
    """Operator retry: resume a stuck settlement or start a new attempt."""
    try:
        results = SettlementOrchestrator().retry_settlement(booking_id, actor=request.user)
    except DomainError as exc:
        return Response(exc.to_dict(), status=exc.http_status)
    return Response({"booking_id": booking_id, "results": [result.to_dict() for result in results]})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def verify_payment(request, booking_id: int):
    """Record the organizer's payment for a booking after verifying it with Paystack."""
    booking = get_object_or_404(Booking, pk=booking_id)
    user = request.user
    if not (user.is_platform_admin() or booking.organizer_id == user.pk):
        exc = Forbidden("Only the organizer can submit a payment for this booking.")
        return Response(exc.to_dict(), status=exc.http_status)

    serializer = PaymentVerificationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    try:
        row = SettlementOrchestrator().record_organizer_payment(
            booking_id,
            serializer.validated_data["reference"],
            actor=user,
        )
    except DomainError as exc:
        return Response(exc.to_dict(), status=exc.http_status)
    return Response(TransactionSerializer(row).data, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([permissions.AllowAny])
def paystack_webhook(request):
    """
    Paystack event callback.

    Transfer events are re-verified with Paystack before anything is
    committed. Answering non-2xx makes Paystack redeliver the event.
    """
    signature = request.META.get("HTTP_X_PAYSTACK_SIGNATURE", "")
    if not verify_webhook_signature(request.body, signature):
        logger.warning("Rejected Paystack webhook with a bad signature")
        return Response({"detail": "Invalid signature."}, status=status.HTTP_401_UNAUTHORIZED)

    try:
        body = json.loads(request.body)
    except ValueError:
        return Response({"detail": "Invalid JSON."}, status=status.HTTP_400_BAD_REQUEST)

    event = body.get("event", "")
    data = body.get("data") or {}
    orchestrator = SettlementOrchestrator()

    try:
        if event in TRANSFER_EVENTS:
            result = orchestrator.confirm_transfer(data.get("reference", ""), event)
            return Response({"status": "ok", "result": result.to_dict() if result else None})

        booking_id = (data.get("metadata") or {}).get("booking_id")
        if event == "charge.success" and booking_id:
            orchestrator.record_organizer_payment(booking_id, data.get("reference", ""))
            return Response({"status": "ok"})
    except GatewayUnavailable as exc:
        return Response(exc.to_dict(), status=exc.http_status)
    except DomainError as exc:
        # Acknowledge so Paystack stops redelivering an event we cannot use
        logger.warning(f"Paystack {event} not applied: {exc.code} {exc.message}")
        return Response({"status": "ignored", **exc.to_dict()})

    logger.info(f"Ignoring Paystack event {event}")
    return Response({"status": "ignored"})
