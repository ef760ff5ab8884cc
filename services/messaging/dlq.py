"""
Dead Letter Queue inspection and replay.

Operators look at what failed, clear it, or push it back through the topic.
Replay takes the selected messages out of the DLQ and republishes them. A
replay that fails inside a queue is dead-lettered afresh by that queue; one
that never reaches a queue is put back. Either way it ends up in a DLQ.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from messaging.errors import (
    DeadLetterMessageNotFoundError,
    DeadLetterQueueEmptyError,
    InvalidDeadLetterIndexError,
)
from messaging.queue import Queue
from messaging.topic import Topic
from shared.audit import AuditSink
from shared.events import DomainEvent, EventMetadata, LeadEvent, LeadEventType, LeadPayload
from shared.logger import get_logger

logger = get_logger(__name__)

OPERATOR = "dev-test-user"


@dataclass
class ReplayResult:
    retried: list[DomainEvent] = field(default_factory=list)
    failed: list[tuple[DomainEvent, str]] = field(default_factory=list)
    # dead-lettered originals returned to the DLQ because their replay reached no queue
    restored: list[DomainEvent] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class DeadLetterService:
    def __init__(self, dlq: Queue, topic: Topic, audit: AuditSink | None = None):
        self.dlq = dlq
        self.topic = topic
        self.audit = audit

    def list_messages(self) -> list[DomainEvent]:
        messages = self.dlq.get_messages()
        self._audit("/dev/dlq", "retrieve DLQ messages", True, f"Retrieved {len(messages)} messages from DLQ")
        return messages

    def clear(self) -> int:
        count = self.dlq.clear_messages()
        self._audit("/dev/dlq", "clear DLQ messages", True, f"Cleared {count} messages from DLQ")
        return count

    async def retry(self, index: int | None = None, entity_id: int | None = None) -> ReplayResult:
        """
        Replay one message by position, every message for an entity id, or
        (with no selector) the whole DLQ.

        A failed replay is restored when the DLQ did not receive a new copy
        while it ran, i.e. the topic transport rejected it or the message was
        dropped. Restored messages go to the end of the DLQ.
        """
        selected = self._select(index, entity_id)
        result = ReplayResult()

        for message in selected:
            replay = message.for_replay()
            stored_before = self.dlq.stats.stored
            try:
                await self.topic.publish(replay)
            except Exception as e:
                result.failed.append((replay, str(e)))
                restored = self.dlq.stats.stored == stored_before
                if restored:
                    self.dlq.add_message(message)
                    result.restored.append(message)
                logger.warning(
                    "Replay failed for %s: %s", replay.key, e,
                    extra={"event_key": replay.key, "restored": restored},
                )
            else:
                result.retried.append(replay)

        details = f"Retried {len(result.retried)} of {len(selected)} messages from DLQ"
        if result.restored:
            details += f"; {len(result.restored)} returned to DLQ undelivered"
        self._audit("/dev/dlq/retry", "retry DLQ messages", result.success, details)
        return result

    def _select(self, index: int | None, entity_id: int | None) -> list[DomainEvent]:
        messages = self.dlq.get_messages()
        if not messages:
            raise DeadLetterQueueEmptyError(self.dlq.name)

        if index is not None:
            if index < 0 or index >= len(messages):
                raise InvalidDeadLetterIndexError(index, len(messages))
            taken = self.dlq.take_messages(lambda i, _: i == index)
        elif entity_id is not None:
            taken = self.dlq.take_messages(lambda _, m: m.entity_id == entity_id)
            if not taken:
                raise DeadLetterMessageNotFoundError(entity_id)
        else:
            taken = self.dlq.take_messages(lambda _, m: True)

        logger.info("Selected %d message(s) for replay", len(taken), extra={"dlq": self.dlq.name})
        return taken

    def inject(
        self,
        lead_id: int,
        name: str = "Test DLQ Lead",
        email: str = "test-dlq@example.com",
        error_message: str = "Simulated error for testing DLQ",
    ) -> LeadEvent:
        """Store a synthetic failed message, as if a Lead.New event had exhausted its retries."""
        original_time = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        message = LeadEvent(
            event_type=LeadEventType.PROCESSING_FAILED,
            lead=LeadPayload(
                id=lead_id,
                name=name,
                email=email,
                status="failed",
                source="dlq-test",
                workspace_id=1,
            ),
            metadata=EventMetadata(
                user_id=OPERATOR,
                workspace_id="1",
                retry_count=3,
                error_message=error_message,
                original_event_time=original_time,
                original_event_type=LeadEventType.NEW.value,
            ),
        )
        self.dlq.add_message(message)
        self._audit("/dev/dlq/add", "add test message to DLQ", True, f"Added test message to DLQ for lead: {lead_id} - {name}")
        return message

    def _audit(self, endpoint: str, action: str, success: bool, details: str) -> None:
        if self.audit is not None:
            self.audit(endpoint, action, success, OPERATOR, "system", details, "event")
