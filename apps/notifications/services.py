"""Notification services: in-app records and email copies."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore
from django.db import transaction  # type: ignore

from .models import Notification

if TYPE_CHECKING:  # pragma: no cover
    from apps.users.models import CustomUser

logger = logging.getLogger(__name__)


# kind -> (title, message template)
MESSAGES = {
    "booking_accepted": ("Booking accepted", "Your booking #{booking_id} was accepted."),
    "booking_declined": ("Booking declined", "Your booking #{booking_id} was declined."),
    "booking_started": ("Booking started", "Booking #{booking_id} is now in progress."),
    "booking_completed": ("Booking completed", "Booking #{booking_id} was marked completed."),
    "booking_cancelled": ("Booking cancelled", "Booking #{booking_id} was cancelled."),
    "booking_disputed": ("Booking disputed", "A dispute was filed on booking #{booking_id}."),
    "booking_resolved": ("Dispute resolved", "The dispute on booking #{booking_id} was resolved."),
    "booking_requested": ("New booking request", "You have a new booking request #{booking_id}."),
    "payout_completed": ("Payout sent", "{amount} {currency} for booking #{booking_id} has been sent."),
    "payout_processing": ("Payout processing", "Your payout for booking #{booking_id} is being processed."),
    "payout_failed": ("Payout failed", "Your payout for booking #{booking_id} failed: {reason}"),
    "refund_completed": ("Refund issued", "{amount} {currency} for booking #{booking_id} has been refunded."),
    "refund_processing": ("Refund processing", "Your refund for booking #{booking_id} is being processed."),
    "refund_failed": ("Refund failed", "Your refund for booking #{booking_id} failed: {reason}"),
    "dispute_filed": ("Dispute filed", "A dispute was filed on booking #{booking_id}: {reason}"),
    "dispute_resolved": ("Dispute resolved", "The dispute on booking #{booking_id} was resolved: {outcome}"),
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def render(kind: str, payload: dict) -> tuple[str, str]:
    title, template = MESSAGES.get(kind, (kind.replace("_", " ").capitalize(), ""))
    return title, template.format_map(_Defaults(payload))


def emit(user: "CustomUser", kind: str, payload: dict | None = None) -> Notification | None:
    """
    Notify ``user`` about ``kind``

    Fire-and-forget: failures are logged and None is returned, so a
    notification problem never undoes a booking change or settlement.
    """
    payload = payload or {}
    try:
        title, message = render(kind, payload)
        with transaction.atomic():
            notification = Notification.objects.create(
                user=user,
                kind=kind,
                title=title,
                message=message,
                payload=payload,
            )
    except Exception as e:
        logger.error(f"Failed to create notification {kind} for user {getattr(user, 'pk', None)}: {e}", exc_info=True)
        return None

    if user.email:
        send_email_notification(user.email, title, message)
    return notification


def emit_to_admins(kind: str, payload: dict | None = None) -> int:
    """Notify every active platform admin. Returns the number notified."""
    from apps.users.models import CustomUser

    admins = CustomUser.objects.filter(is_active=True, role=CustomUser.RoleChoices.ADMIN)
    return sum(1 for admin in admins if emit(admin, kind, payload))


def send_email_notification(recipient_email: str, subject: str, message: str) -> bool:
    """Send a plain-text email. Returns True if the backend accepted it."""
    try:
        send_mail(
            subject=subject,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            fail_silently=False,
        )
        logger.info(f"Email sent successfully to {recipient_email}: {subject}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)
        return False
