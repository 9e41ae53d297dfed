"""
Unit of Work Pattern

Wraps one request-scoped business operation in a single database
transaction. Domain events collected from aggregates are handed to the
message bus only after the transaction commits; a rollback discards them.
"""

from abc import ABC, abstractmethod
from typing import List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    """Abstract Unit of Work pattern"""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        """Commit the transaction"""

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""

    @abstractmethod
    def collect_events(self, *aggregates):
        """Collect events from aggregate roots"""


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Usage:
        with DjangoUnitOfWork() as uow:
            equipment = lock_equipment(equipment_id)
            booking = Booking.objects.select_for_update().get(pk=booking_id)

            booking.confirm(payment)
            booking.save()

            uow.collect_events(booking)
            # Transaction commits here
        # Events are published after commit

    Nesting is allowed: an inner unit of work becomes a savepoint and its
    events are still published only once the outermost transaction commits,
    because transaction.on_commit() defers to the outermost block.
    """

    def __init__(self):
        self._events: List[DomainEvent] = []
        self._transaction = None

    def __enter__(self):
        self._transaction = transaction.atomic()
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._transaction:
                self._transaction.__exit__(exc_type, exc_val, exc_tb)

    def commit(self):
        """Schedule publication of collected events for after the commit"""
        events = self._events.copy()
        self._events.clear()
        logger.debug("Committing unit of work with %d events", len(events))

        if events:
            transaction.on_commit(lambda: self._publish_events(events))

    def rollback(self):
        """Discard events of a failed operation"""
        if self._events:
            logger.warning("Rolling back unit of work, discarding %d events", len(self._events))
        self._events.clear()

    def collect_events(self, *aggregates):
        """Drain domain events from every given aggregate"""
        for aggregate in aggregates:
            self._collect(aggregate)

    def _collect(self, aggregate):
        if aggregate is None or not hasattr(aggregate, 'events'):
            return
        new_events = aggregate.events
        if new_events:
            self._events.extend(new_events)
            aggregate.clear_events()
            logger.debug(
                "Collected %d events from %s (ID: %s)",
                len(new_events), aggregate.__class__.__name__, getattr(aggregate, 'pk', None),
            )

    def _publish_events(self, events: List[DomainEvent]):
        from shared.application.message_bus import message_bus

        logger.info("Publishing %d domain events after commit", len(events))
        message_bus.publish_events(events)
