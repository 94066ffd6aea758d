"""Audit trail for actions taken on bookings, payouts and disputes."""

from __future__ import annotations

from django.conf import settings  # type: ignore
from django.core.serializers.json import DjangoJSONEncoder  # type: ignore
from django.db import models  # type: ignore


class ActivityLog(models.Model):
    """One recorded action with the state before and after it."""

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activity_logs",
    )
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=50)  # 'booking', 'transaction', 'dispute'
    object_id = models.CharField(max_length=64)
    before_state = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    after_state = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["actor", "created_at"], name="activity_ac_actor_i_3f8e2a_idx"),
            models.Index(fields=["action", "created_at"], name="activity_ac_action_7c1b94_idx"),
            models.Index(fields=["object_type", "object_id"], name="activity_ac_object__5a0d63_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.actor_id or 'system'} - {self.action} - {self.created_at}"
