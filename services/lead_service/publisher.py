"""
Lead event producer.

Called by lead creation right after the row is inserted. The lead already
exists at this point, so a delivery failure is reported, not raised.
"""
from __future__ import annotations

from typing import Any

from messaging.publisher import publish_event
from messaging.topic import Topic
from shared.events import EventMetadata, LeadEvent, LeadEventType, LeadPayload


def build_lead_created_event(lead: dict[str, Any], user_id: str, workspace_id: str) -> LeadEvent:
    return LeadEvent(
        event_type=LeadEventType.NEW,
        lead=LeadPayload(
            id=lead["id"],
            name=lead["name"],
            email=lead["email"],
            phone=lead.get("phone"),
            status=lead.get("status") or "new",
            source=lead.get("source"),
            workspace_id=lead["workspace_id"],
        ),
        metadata=EventMetadata(user_id=user_id, workspace_id=str(workspace_id)),
    )


async def publish_lead_created(
    topic: Topic,
    lead: dict[str, Any],
    user_id: str,
    workspace_id: str,
) -> bool:
    """Publish Lead.New for a freshly inserted lead row. Returns False if delivery failed."""
    return await publish_event(topic, build_lead_created_event(lead, user_id, workspace_id))
