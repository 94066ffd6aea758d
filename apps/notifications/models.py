"""In-app notifications.

Rows are written by ``apps.notifications.services.emit`` when a booking
changes state, a payout or refund settles, or a dispute moves. The
payload keeps the raw values (booking id, amount, reason) so clients can
render their own text.
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore


class NotificationQuerySet(models.QuerySet):
    def unread(self):
        return self.filter(read_at__isnull=True)

    def mark_read(self) -> int:
        return self.unread().update(is_read=True, read_at=timezone.now())


class Notification(models.Model):
    user = models.ForeignKey(
        'users.CustomUser', on_delete=models.CASCADE, related_name='notifications'
    )
    kind = models.CharField(max_length=50, db_index=True)
    title = models.CharField(max_length=255)
    message = models.TextField()
    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = NotificationQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f"{self.kind} -> {self.user_id}"

    def mark_read(self) -> None:
        if self.read_at:
            return
        self.is_read = True
        self.read_at = timezone.now()
        self.save(update_fields=['is_read', 'read_at'])
