"""
Publish/Subscribe Topic
=======================
The SNS half of the pipeline. A topic fans each published event out to its
subscriptions, one at a time, in the order they were registered.

publish() semantics:
  - An optional transport (SnsBridge) is called first. If it fails the topic
    raises PublishError and no subscription sees the event.
  - Each subscription is awaited before the next one starts.
  - A handler failure that outlives its queue's retries propagates out of
    publish() with the handler's own exception, even when the message was
    stored in a DLQ. Subscriptions after the failing one are not invoked.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Iterable, Protocol

from messaging.queue import Queue
from messaging.subscription import Subscription
from shared.events import DomainEvent
from shared.logger import get_logger

logger = get_logger(__name__)


class TopicTransport(Protocol):
    """Raises messaging.errors.PublishError when the event is not accepted."""

    async def publish(self, event: DomainEvent) -> None: ...


class Topic:
    def __init__(
        self,
        name: str,
        publish_delay_ms: int = 0,
        transport: TopicTransport | None = None,
    ):
        self.name = name
        self.publish_delay_ms = publish_delay_ms
        self.transport = transport
        self._subscriptions: list[Subscription] = []

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        return tuple(self._subscriptions)

    def subscribe(self, queue: Queue, event_types: Iterable[Enum | str]) -> Subscription:
        """Register a filtered subscription. Duplicates are delivered twice."""
        subscription = Subscription(queue, event_types)
        self._subscriptions.append(subscription)
        logger.info(
            "Added subscription to queue %r", queue.name,
            extra={"topic": self.name, "queue": queue.name},
        )
        return subscription

    async def publish(self, event: DomainEvent) -> bool:
        logger.info(
            "Publishing %s", event.event_type.value,
            extra={
                "topic": self.name,
                "event_key": event.key,
                "workspace_id": event.metadata.workspace_id,
            },
        )

        if self.publish_delay_ms:
            await asyncio.sleep(self.publish_delay_ms / 1000)

        if self.transport is not None:
            await self.transport.publish(event)

        subscriptions = list(self._subscriptions)
        logger.info(
            "Forwarding event to %d subscription(s)", len(subscriptions),
            extra={"topic": self.name},
        )
        for subscription in subscriptions:
            await subscription.process_event(event)
        return True
