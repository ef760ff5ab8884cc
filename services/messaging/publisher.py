"""
Fire-and-report publishing for producers.

Producers publish after their own write has committed, so a delivery
failure must not fail the caller. publish_event() logs what went wrong and
returns False; by then the event is either in a DLQ or (transport failure)
was never accepted.
"""
from __future__ import annotations

from messaging.errors import PublishError
from messaging.topic import Topic
from shared.events import DomainEvent
from shared.logger import get_logger

logger = get_logger(__name__)


async def publish_event(topic: Topic, event: DomainEvent) -> bool:
    extra = {"topic": topic.name, "event_type": event.event_type.value, "event_key": event.key}
    try:
        await topic.publish(event)
    except PublishError:
        logger.exception("%s was not accepted by the topic", event.event_type.value, extra=extra)
        return False
    except Exception:
        logger.exception(
            "%s delivery failed; check the dead letter queue", event.event_type.value, extra=extra,
        )
        return False

    logger.info("Published %s", event.event_type.value, extra=extra)
    return True
