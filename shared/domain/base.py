"""
Domain building blocks

Entities here are frozen snapshots of a persisted row. A domain
operation takes a snapshot and returns a new one plus the events the
change produced; repositories persist the snapshot and the unit of work
publishes the events after commit.
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class Entity(ABC):
    """Snapshot with identity and an optimistic-locking version."""
    id: Any = None
    version: int = 0


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable, identity-less, compared by value."""


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    Something that happened to an aggregate.

    Subclasses add their own keyword-only fields; ``aggregate_id`` is the
    primary key of the row the event is about.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)
    aggregate_id: Any = None
