"""API views for disputes."""

from __future__ import annotations

from django.db.models import Q  # type: ignore
from rest_framework import permissions, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.domain.exceptions import DomainError
from apps.bookings.permissions import IsPlatformAdmin

from .application.resolver import DisputeResolver
from .models import Dispute
from .serializers import DisputeSerializer, ResolveDisputeSerializer


class DisputeViewSet(viewsets.ReadOnlyModelViewSet):
    """Disputes of the user's bookings; admins see and decide all of them."""

    serializer_class = DisputeSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "booking"]

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = Dispute.objects.select_related("booking").all()
        if user.is_platform_admin():
            return qs
        return qs.filter(Q(booking__organizer=user) | Q(booking__provider=user))

    @action(detail=True, methods=["post"], permission_classes=[IsPlatformAdmin])
    def review(self, request, pk=None):  # type: ignore
        try:
            dispute = DisputeResolver().start_review(pk, request.user)
        except DomainError as exc:
            return Response(exc.to_dict(), status=exc.http_status)
        return Response(DisputeSerializer(dispute).data)

    @action(detail=True, methods=["post"], permission_classes=[IsPlatformAdmin])
    def resolve(self, request, pk=None):  # type: ignore
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            dispute = DisputeResolver().resolve(
                pk,
                request.user,
                data["outcome"],
                data["notes"],
                refund_amount=data.get("refund_amount"),
                payout_amount=data.get("payout_amount"),
            )
        except DomainError as exc:
            return Response(exc.to_dict(), status=exc.http_status)
        return Response(DisputeSerializer(dispute).data)
