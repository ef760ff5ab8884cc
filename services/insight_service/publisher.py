"""
Insight event producer.

Insight creation publishes Insight.New on its own topic once the row is
stored. Nothing in-process consumes insight events yet; with an SNS topic
configured they are mirrored there for downstream subscribers.
"""
from __future__ import annotations

from typing import Any

from messaging.publisher import publish_event
from messaging.topic import Topic
from shared.events import EventMetadata, InsightEvent, InsightEventType, InsightPayload


def build_insight_created_event(insight: dict[str, Any], user_id: str, workspace_id: str) -> InsightEvent:
    return InsightEvent(
        event_type=InsightEventType.NEW,
        insight=InsightPayload(
            id=insight["id"],
            title=insight["title"],
            category=insight.get("category"),
            workspace_id=insight["workspace_id"],
            created_by=insight.get("created_by") or user_id,
        ),
        metadata=EventMetadata(user_id=user_id, workspace_id=str(workspace_id)),
    )


async def publish_insight_created(
    topic: Topic,
    insight: dict[str, Any],
    user_id: str,
    workspace_id: str,
) -> bool:
    return await publish_event(topic, build_insight_created_event(insight, user_id, workspace_id))
