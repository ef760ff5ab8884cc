"""Filtered binding from a topic to a queue."""
from __future__ import annotations

from enum import Enum
from typing import Iterable

from messaging.queue import Queue
from shared.events import DomainEvent
from shared.logger import get_logger

logger = get_logger(__name__)


def _type_value(event_type: Enum | str) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


class Subscription:
    """
    Forwards events whose type is in `event_types` to `queue`.

    The filter holds type values ("Lead.New"), so enum members and plain
    strings can be mixed. Events that do not match are dropped without
    error. Errors raised by the queue (i.e. a handler failure that outlived
    its retries) propagate to the publisher unchanged.
    """

    def __init__(self, queue: Queue, event_types: Iterable[Enum | str]):
        self.queue = queue
        self.event_types = frozenset(_type_value(t) for t in event_types)
        logger.info(
            "Created subscription to queue %r", queue.name,
            extra={"queue": queue.name, "filter": sorted(self.event_types)},
        )

    def matches(self, event: DomainEvent) -> bool:
        return event.event_type.value in self.event_types

    async def process_event(self, event: DomainEvent) -> bool:
        """Returns True if the event was forwarded to the queue."""
        if not self.matches(event):
            logger.debug(
                "Event type %s does not match filter, ignoring", event.event_type.value,
                extra={"queue": self.queue.name},
            )
            return False

        logger.debug(
            "Forwarding %s to queue %r", event.event_type.value, self.queue.name,
            extra={"queue": self.queue.name, "event_key": event.key},
        )
        await self.queue.send_message(event)
        return True
