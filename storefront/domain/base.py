"""Base classes for the domain layer.

Provides the building blocks shared by the order aggregate, its value
objects and the events it emits.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID, uuid4

# A clock returns the current, timezone-aware UTC time. Components that
# reason about time accept one so tests can pin "now".
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (e.g. read back from SQLite).

    Args:
        value: Datetime that may lack tzinfo.

    Returns:
        Timezone-aware datetime in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Value Object Base
# ============================================================================


@dataclass(frozen=True)
class ValueObject(ABC):
    """Base class for value objects.

    Value objects are immutable and compared by their attributes.
    Order snapshots (cart lines, shipping data, totals) are value objects
    so that nothing downstream can mutate what the customer agreed to.
    """

    pass


# ============================================================================
# Entity Base
# ============================================================================


T = TypeVar("T")


@dataclass
class Entity(ABC, Generic[T]):
    """Base class for entities.

    Two entities are equal if they have the same identity, regardless
    of their other attributes.

    Attributes:
        id: Unique identifier for this entity.
    """

    id: T

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


# ============================================================================
# Aggregate Root Base
# ============================================================================


@dataclass(kw_only=True)
class AggregateRoot(Entity[T], Generic[T]):
    """Base class for aggregate roots.

    Attributes:
        version: Optimistic concurrency counter, bumped on every mutation.
            Stores compare it on save to detect lost updates.
        created_at: Creation timestamp, never changed afterwards.
        updated_at: Timestamp of the last mutation.
    """

    version: int = field(default=1, compare=False)
    created_at: datetime = field(default_factory=utc_now, compare=False)
    updated_at: datetime = field(default_factory=utc_now, compare=False)
    _events: list["DomainEvent"] = field(
        default_factory=list,
        init=False,
        repr=False,
        compare=False,
    )

    def _record_event(self, event: "DomainEvent") -> None:
        """Record a domain event to be published after persistence."""
        self._events.append(event)

    def collect_events(self) -> list["DomainEvent"]:
        """Collect and clear recorded events.

        Returns:
            Events recorded since the last collection, oldest first.
        """
        events = self._events.copy()
        self._events.clear()
        return events

    def _touch(self, now: datetime | None = None) -> None:
        """Bump updated_at and version after a mutation."""
        self.updated_at = now or utc_now()
        self.version += 1


# ============================================================================
# Domain Event Base
# ============================================================================


@dataclass(frozen=True)
class DomainEvent(ABC):
    """Base class for domain events.

    Attributes:
        event_id: Unique identifier for this event instance.
        event_type: Dotted event name (set by subclass).
        occurred_at: When the event occurred.
        aggregate_id: ID of the aggregate that emitted this event.
    """

    event_type: ClassVar[str]

    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utc_now)
    aggregate_id: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        """Convert event to a JSON-serializable dictionary."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
            "aggregate_id": self.aggregate_id,
            "payload": self._payload(),
        }

    @abstractmethod
    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload data."""
        pass
