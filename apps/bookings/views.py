"""API views for the booking domain."""

from __future__ import annotations

from django.db.models import Q  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.domain.exceptions import DomainError, Forbidden
from apps.disputes.application.resolver import DisputeResolver
from apps.disputes.serializers import DisputeSerializer, FileDisputeSerializer

from .application.command_handlers import create_booking, request_transition
from .models import Booking
from .permissions import IsBookingParty, actor_role_for
from .serializers import BookingCreateSerializer, BookingSerializer, TransitionSerializer


class BookingViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Viewset for requesting bookings and moving them through their lifecycle."""

    queryset = Booking.objects.select_related("organizer", "provider").all()
    permission_classes = [permissions.IsAuthenticated, IsBookingParty]
    filterset_fields = ["status", "is_paid_out"]

    def get_serializer_class(self):  # type: ignore
        if self.action == "create":
            return BookingCreateSerializer
        return BookingSerializer

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = super().get_queryset()
        if user.is_platform_admin():
            return qs
        return qs.filter(Q(organizer=user) | Q(provider=user))

    def create(self, request, *args, **kwargs):  # type: ignore
        if not (request.user.is_organizer() or request.user.is_platform_admin()):
            exc = Forbidden("Only organizers can request bookings.")
            return Response(exc.to_dict(), status=exc.http_status)

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = create_booking(
            organizer=request.user,
            provider=data["provider"],
            gross_amount=data["gross_amount"],
            event_ref=data["event_ref"],
            event_title=data["event_title"],
            notes=data["notes"],
        )
        instance = Booking.objects.get(pk=booking.id)
        return Response(BookingSerializer(instance).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def transition(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            request_transition(
                booking.pk,
                serializer.validated_data["action"],
                request.user,
                actor_role_for(request.user, booking),
                notes=serializer.validated_data.get("notes") or None,
            )
        except DomainError as exc:
            return Response(exc.to_dict(), status=exc.http_status)
        booking.refresh_from_db()
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        serializer = FileDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            dispute = DisputeResolver().file_dispute(
                booking.pk,
                request.user,
                serializer.validated_data["reason"],
                serializer.validated_data["explanation"],
            )
        except DomainError as exc:
            return Response(exc.to_dict(), status=exc.http_status)
        return Response(DisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)
