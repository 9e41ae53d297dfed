"""
Base Domain Classes

Foundational building blocks shared by every app:
- ValueObject: Immutable objects compared by value
- DomainEvent: Events that represent something that happened
- EventRecorder: Mixin that lets an aggregate (plain object or Django model)
  collect domain events until the unit of work publishes them
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List
from uuid import UUID, uuid4


@dataclass(frozen=True)
class ValueObject(ABC):
    """
    Base class for value objects

    Value objects are immutable and have no identity.
    Two value objects are equal if all their attributes are equal.
    """
    pass


@dataclass
class DomainEvent:
    """
    Base class for domain events

    Domain events represent something that happened in the domain.
    They are published only after the surrounding transaction commits.
    """
    event_id: UUID = field(default_factory=uuid4, kw_only=True)
    occurred_at: datetime = field(default_factory=datetime.now, kw_only=True)
    aggregate_id: Any = field(default=None, kw_only=True)

    def to_dict(self) -> dict:
        """Convert event to dictionary for serialization"""
        return {
            'event_id': str(self.event_id),
            'event_type': self.__class__.__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id is not None else None,
        }


class EventRecorder:
    """
    Collects domain events on an aggregate root

    Works for Django models too: the list lives in the instance __dict__
    and is never persisted. The unit of work drains it after the aggregate
    is saved.
    """

    def add_event(self, event: DomainEvent):
        """Add a domain event to be published"""
        self.__dict__.setdefault('_pending_events', []).append(event)

    def clear_events(self):
        """Clear all collected events (called after collection)"""
        self.__dict__['_pending_events'] = []

    @property
    def events(self) -> List[DomainEvent]:
        """Get copy of collected events"""
        return list(self.__dict__.get('_pending_events', []))
