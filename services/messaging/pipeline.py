"""
Composition root for the lead event pipeline.

    lead-events (topic) ──[Lead.New]──▶ new-lead-queue ──▶ LeadProcessor
                                              │
                                              └─ retries exhausted ─▶ lead-events-dlq

    insight-events (topic)   no in-process subscribers; mirrored to SNS when configured

Everything is built here and handed to callers; nothing in the messaging
package lives at module scope.
"""
from __future__ import annotations

from dataclasses import dataclass

from lead_processor.faults import FaultInjector, simulate_error_flag
from lead_processor.handler import LeadProcessor
from lead_processor.tasks import SimulatedLeadTasks
from messaging.dlq import DeadLetterService
from messaging.queue import Queue
from messaging.sns_bridge import SnsBridge
from messaging.topic import Topic
from shared.audit import AuditLog
from shared.config import MessagingSettings
from shared.events import LeadEventType

LEAD_TOPIC = "lead-events"
NEW_LEAD_QUEUE = "new-lead-queue"
LEAD_DLQ = "lead-events-dlq"
INSIGHT_TOPIC = "insight-events"


@dataclass
class LeadPipeline:
    topic: Topic
    queue: Queue
    dlq: Queue
    processor: LeadProcessor
    dead_letters: DeadLetterService
    audit: AuditLog
    insight_topic: Topic

    @property
    def queues(self) -> list[Queue]:
        return [self.queue, self.dlq]


def build_lead_pipeline(
    settings: MessagingSettings | None = None,
    audit: AuditLog | None = None,
    processor: LeadProcessor | None = None,
    fault_injector: FaultInjector | None = None,
    sns_client=None,
) -> LeadPipeline:
    settings = settings or MessagingSettings.from_env()
    audit = audit or AuditLog()

    if fault_injector is None and settings.simulate_faults:
        fault_injector = simulate_error_flag

    dlq = Queue.dead_letter(
        LEAD_DLQ,
        "Dead Letter Queue for failed lead event processing",
        audit=audit,
    )
    queue = Queue(
        NEW_LEAD_QUEUE,
        "Queue for processing new lead events",
        dead_letter_queue=dlq,
        retry_delay_ms=settings.retry_delay_ms,
        max_retry_count=settings.max_retry_count,
        handler_timeout_seconds=settings.handler_timeout_seconds,
        audit=audit,
    )

    topic = Topic(
        LEAD_TOPIC,
        publish_delay_ms=settings.publish_delay_ms,
        transport=_sns_transport(settings.sns_topic_arn, sns_client),
    )
    topic.subscribe(queue, [LeadEventType.NEW])

    if processor is None:
        processor = LeadProcessor(
            tasks=SimulatedLeadTasks(latency_scale=settings.task_latency_scale),
            audit=audit,
            fault_injector=fault_injector,
        )
    queue.handle(processor)

    return LeadPipeline(
        topic=topic,
        queue=queue,
        dlq=dlq,
        processor=processor,
        dead_letters=DeadLetterService(dlq, topic, audit),
        audit=audit,
        insight_topic=Topic(
            INSIGHT_TOPIC,
            publish_delay_ms=settings.publish_delay_ms,
            transport=_sns_transport(settings.insight_sns_topic_arn, sns_client),
        ),
    )


def _sns_transport(topic_arn: str | None, sns_client) -> SnsBridge | None:
    if not topic_arn:
        return None
    return SnsBridge(topic_arn, sns_client=sns_client)
