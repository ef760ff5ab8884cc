"""Exceptions raised by the messaging layer.

Handler failures are not wrapped: whatever a handler raises is what the
publisher sees once retries and dead-lettering are done.
"""
from __future__ import annotations


class MessagingError(Exception):
    """Base class for errors raised by the messaging layer itself."""


class PublishError(MessagingError):
    """The topic could not accept the event. No subscription was invoked."""

    def __init__(self, topic: str, reason: str):
        self.topic = topic
        super().__init__(f"Failed to publish to topic '{topic}': {reason}")


class DeadLetterQueueError(MessagingError):
    """Base class for DLQ inspection / replay errors."""


class DeadLetterQueueEmptyError(DeadLetterQueueError):
    def __init__(self, queue: str):
        super().__init__(f"Dead letter queue '{queue}' is empty")


class InvalidDeadLetterIndexError(DeadLetterQueueError):
    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(
            f"Invalid index: {index}. DLQ has {size} messages (0-{size - 1})"
        )


class DeadLetterMessageNotFoundError(DeadLetterQueueError):
    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        super().__init__(f"No message found in DLQ with id: {entity_id}")
