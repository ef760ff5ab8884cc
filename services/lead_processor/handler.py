"""
Lead Processor Worker
=====================
Registered on the new-lead queue. For each Lead.New event it:
  1. sends the welcome email
  2. updates the CRM record
  3. categorizes the lead by source

The handler either completes all three steps or raises. Partial progress is
not tracked: a failure in step 2 means the whole event is redelivered and
step 1 runs again on the next attempt.
"""
from __future__ import annotations

from aws_xray_sdk.core import xray_recorder

from lead_processor.faults import FaultInjector
from lead_processor.tasks import SimulatedLeadTasks
from shared.audit import AuditSink
from shared.events import LeadEvent, LeadEventType
from shared.logger import get_logger

logger = get_logger(__name__)

ENDPOINT = "/events/lead-processor"
ACTION = "process new lead event"


class LeadProcessor:
    def __init__(
        self,
        tasks: SimulatedLeadTasks | None = None,
        audit: AuditSink | None = None,
        fault_injector: FaultInjector | None = None,
    ):
        self.tasks = tasks or SimulatedLeadTasks()
        self.audit = audit
        self.fault_injector = fault_injector

    async def __call__(self, event: LeadEvent) -> None:
        if event.event_type != LeadEventType.NEW:
            logger.warning(
                "Unexpected event type %s, skipping", event.event_type.value,
                extra={"lead_id": event.lead.id},
            )
            return

        lead, metadata = event.lead, event.metadata
        logger.info(
            "Processing new lead",
            extra={"lead_id": lead.id, "retry_count": metadata.retry_count},
        )

        try:
            if self.fault_injector is not None:
                self.fault_injector(event)

            async with xray_recorder.in_subsegment_async("lead_welcome_email"):
                await self.tasks.send_welcome_email(lead)
            async with xray_recorder.in_subsegment_async("lead_crm_update"):
                await self.tasks.update_crm(lead)
            async with xray_recorder.in_subsegment_async("lead_categorize"):
                category = await self.tasks.categorize(lead)
        except Exception as e:
            logger.exception("Failed to process lead %s", lead.id, extra={"lead_id": lead.id})
            self._audit(event, False, f"Error: {e}")
            raise

        self._audit(
            event, True,
            f"Successfully processed event for lead: {lead.id} - {lead.name} ({category})",
        )

    def _audit(self, event: LeadEvent, success: bool, details: str) -> None:
        if self.audit is None:
            return
        self.audit(
            ENDPOINT,
            ACTION,
            success,
            event.metadata.user_id or "system",
            event.metadata.workspace_id or "unknown",
            details,
            "event",
        )
