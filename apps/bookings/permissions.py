"""Mapping from authenticated users to booking actor roles."""

from __future__ import annotations

from rest_framework import permissions  # type: ignore

from apps.bookings.domain.entities import ActorRole


def actor_role_for(user, booking=None) -> ActorRole:
    """
    Role ``user`` acts in

    Platform admins act as ADMIN. Otherwise the user's relation to the
    booking decides, falling back to the account role; the state machine
    rejects parties acting on bookings that are not theirs.
    """
    if user.is_platform_admin():
        return ActorRole.ADMIN
    if booking is not None:
        if booking.provider_id == user.pk:
            return ActorRole.PROVIDER
        if booking.organizer_id == user.pk:
            return ActorRole.ORGANIZER
    if user.is_talent():
        return ActorRole.PROVIDER
    return ActorRole.ORGANIZER


class IsBookingParty(permissions.BasePermission):
    """Organizer, provider and platform admins can see a booking."""

    def has_object_permission(self, request, view, obj):  # type: ignore
        user = request.user
        if not user.is_authenticated:
            return False
        if user.is_platform_admin():
            return True
        return user.pk in (obj.organizer_id, obj.provider_id)


class IsPlatformAdmin(permissions.BasePermission):
    def has_permission(self, request, view):  # type: ignore
        user = request.user
        return bool(user and user.is_authenticated and user.is_platform_admin())
