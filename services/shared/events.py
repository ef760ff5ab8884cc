"""
Domain Event Schemas
====================
Every event flowing through a topic is defined here as a Pydantic model.
Producers (lead and insight creation, DLQ replay) and consumers (queue
workers) share this module, so the envelope shape is enforced in one place.

The messaging core only relies on what DomainEvent provides:
  event_type   a str-valued enum member of the concrete event's type enum
  timestamp    publish time, ISO-8601 UTC
  metadata     routing and retry bookkeeping (EventMetadata)
  key          identity of the entity the event is about, e.g. "lead:42"

Events are immutable. A redelivery never edits the event it was given; it builds
a new one through the builder methods below, which only touch the retry and
failure bookkeeping fields in `metadata`.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Domain enums
# ---------------------------------------------------------------------------

class LeadEventType(str, Enum):
    NEW = "Lead.New"
    UPDATED = "Lead.Updated"
    DELETED = "Lead.Deleted"
    PROCESSING_FAILED = "Lead.ProcessingFailed"


class InsightEventType(str, Enum):
    NEW = "Insight.New"
    UPDATED = "Insight.Updated"
    DELETED = "Insight.Deleted"


# ---------------------------------------------------------------------------
# Payloads + metadata
# ---------------------------------------------------------------------------

class LeadPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    phone: str | None = None
    status: str = "new"
    source: str | None = None
    workspace_id: int


class InsightPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    category: str | None = None
    workspace_id: int
    created_by: str


class EventMetadata(BaseModel):
    """
    Routing and bookkeeping data carried next to the payload.

    retry_count:         delivery attempts already made for this logical event
    error_message:       last handler error, set on retry and on dead-lettering
    original_event_time: timestamp of the first publish, kept across replays
    original_event_type: event type value before the event was dead-lettered
    simulate_error:      test flag read by the fault injector, never by handlers
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    workspace_id: str
    retry_count: int = Field(default=0, ge=0)
    error_message: str | None = None
    original_event_time: str | None = None
    original_event_type: str | None = None
    retried_at: str | None = None
    simulate_error: bool = False


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

class DomainEvent(BaseModel):
    """
    Base envelope. Subclasses declare `event_type` (their own enum) and a
    payload field, and set the class-level type hooks:

      initial_event_type  type a replay falls back to when the origin is unknown
      failed_event_type   type written on dead-lettering; None keeps the type
    """
    model_config = ConfigDict(frozen=True)

    entity: ClassVar[str] = "event"
    initial_event_type: ClassVar[Enum]
    failed_event_type: ClassVar[Enum | None] = None

    timestamp: str = Field(default_factory=utc_now_iso)
    metadata: EventMetadata

    @property
    def entity_id(self) -> int:
        raise NotImplementedError

    @property
    def key(self) -> str:
        return f"{self.entity}:{self.entity_id}"

    def _with_metadata(self, **changes: Any) -> EventMetadata:
        return self.metadata.model_copy(update=changes)

    def with_retry(self, error_message: str) -> DomainEvent:
        """Copy for the next delivery attempt."""
        return self.model_copy(update={
            "metadata": self._with_metadata(
                retry_count=self.metadata.retry_count + 1,
                error_message=error_message,
            ),
        })

    def dead_lettered(self, error_message: str) -> DomainEvent:
        """Copy written to a dead letter queue once retries are exhausted."""
        return self.model_copy(update={
            "event_type": self.event_type if self.failed_event_type is None else self.failed_event_type,
            "metadata": self._with_metadata(
                retry_count=self.metadata.retry_count + 1,
                error_message=error_message,
                original_event_time=self.metadata.original_event_time or self.timestamp,
                original_event_type=self.metadata.original_event_type or self.event_type.value,
            ),
        })

    def for_replay(self) -> DomainEvent:
        """
        Copy republished from the DLQ: back to its pre-failure type with a
        fresh retry budget. The simulate_error flag is cleared so a replayed
        test message does not loop straight back into the DLQ.
        """
        origin = self.metadata.original_event_type
        now = utc_now_iso()
        return self.model_copy(update={
            "event_type": type(self.initial_event_type)(origin) if origin else self.initial_event_type,
            "timestamp": now,
            "metadata": self._with_metadata(
                retry_count=0,
                error_message=None,
                simulate_error=False,
                retried_at=now,
            ),
        })

    def to_sns_message(self, topic_arn: str) -> dict:
        """Serialize for the SNS Publish API."""
        return {
            "TopicArn": topic_arn,
            "Message": self.model_dump_json(),
            "MessageAttributes": {
                "event_type": {
                    "DataType": "String",
                    "StringValue": self.event_type.value,
                },
                "workspace_id": {
                    "DataType": "String",
                    "StringValue": self.metadata.workspace_id,
                },
            },
        }


class LeadEvent(DomainEvent):
    entity: ClassVar[str] = "lead"
    initial_event_type: ClassVar[Enum] = LeadEventType.NEW
    failed_event_type: ClassVar[Enum | None] = LeadEventType.PROCESSING_FAILED

    event_type: LeadEventType
    lead: LeadPayload

    @property
    def entity_id(self) -> int:
        return self.lead.id


class InsightEvent(DomainEvent):
    entity: ClassVar[str] = "insight"
    initial_event_type: ClassVar[Enum] = InsightEventType.NEW

    event_type: InsightEventType
    insight: InsightPayload

    @property
    def entity_id(self) -> int:
        return self.insight.id
