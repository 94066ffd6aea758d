"""Recording of audit entries."""

from __future__ import annotations

import logging
from typing import Any

from .models import ActivityLog

logger = logging.getLogger(__name__)


def record(actor, action: str, before: dict | None, after: dict | None, obj: Any) -> ActivityLog:
    """
    Write an audit entry for ``action`` on ``obj``

    ``obj`` is a model instance or a domain snapshot; both expose ``id``.
    ``actor`` may be None for system actions (sweeps, webhooks).
    """
    entry = ActivityLog.objects.create(
        actor=actor if getattr(actor, "pk", None) else None,
        action=action,
        object_type=_object_type(obj),
        object_id=str(obj.id),
        before_state=before or {},
        after_state=after or {},
    )
    logger.debug(f"Recorded {action} on {entry.object_type} {entry.object_id}")
    return entry


def _object_type(obj: Any) -> str:
    meta = getattr(obj, "_meta", None)
    if meta is not None:
        return meta.model_name
    return obj.__class__.__name__.lower()
