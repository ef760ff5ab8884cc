"""
Dev / Ops API Lambda Handler
============================
Routes (API Gateway proxy events):
  POST   /dev/sendEvent   → publish a test Lead.New event (optionally failing)
  GET    /dev/dlq         → list dead-lettered messages
  DELETE /dev/dlq         → clear the DLQ
  POST   /dev/dlq/retry   → replay by index, by lead_id, or everything
  POST   /dev/dlq/add     → store a synthetic failed message
  GET    /dev/queues      → per-queue delivery counters

The pipeline is built once per container on first use. `route()` takes the
pipeline explicitly so tests can drive it against their own instance.
"""
from __future__ import annotations

import asyncio
import json
import random
from typing import Any

from pydantic import BaseModel, ValidationError

from lead_processor.faults import simulate_error_flag
from messaging.errors import (
    DeadLetterMessageNotFoundError,
    DeadLetterQueueEmptyError,
    DeadLetterQueueError,
    InvalidDeadLetterIndexError,
    PublishError,
)
from messaging.pipeline import LeadPipeline, build_lead_pipeline
from shared.events import EventMetadata, LeadEvent, LeadEventType, LeadPayload
from shared.logger import get_logger

logger = get_logger(__name__)

DEV_USER = "dev-test-user"

_pipeline: LeadPipeline | None = None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SendEventRequest(BaseModel):
    lead_id: int | None = None
    name: str = "Test Lead"
    email: str = "testlead@example.com"
    phone: str | None = None
    status: str = "new"
    source: str | None = None
    workspace_id: int = 1
    simulate_error: bool = False


class RetryRequest(BaseModel):
    index: int | None = None
    lead_id: int | None = None


class AddToDlqRequest(BaseModel):
    lead_id: int | None = None
    name: str = "Test DLQ Lead"
    email: str = "test-dlq@example.com"
    error_message: str = "Simulated error for testing DLQ"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def handler(event: dict, context) -> dict:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_lead_pipeline(fault_injector=simulate_error_flag)
    return route(_pipeline, event)


def route(pipeline: LeadPipeline, event: dict) -> dict:
    http_method = event.get("httpMethod", "")
    path = event.get("path", "")

    try:
        if http_method == "POST" and path == "/dev/sendEvent":
            return _send_event(pipeline, SendEventRequest(**_body(event)))
        if http_method == "GET" and path == "/dev/dlq":
            return _list_dlq(pipeline)
        if http_method == "DELETE" and path == "/dev/dlq":
            return _clear_dlq(pipeline)
        if http_method == "POST" and path == "/dev/dlq/retry":
            return _retry_dlq(pipeline, RetryRequest(**_body(event)))
        if http_method == "POST" and path == "/dev/dlq/add":
            return _add_to_dlq(pipeline, AddToDlqRequest(**_body(event)))
        if http_method == "GET" and path == "/dev/queues":
            return _queue_stats(pipeline)
        return _response(404, {"error": "Not Found"})
    except ValidationError as e:
        return _response(400, {"error": "Validation failed", "details": e.errors(include_url=False)})
    except json.JSONDecodeError:
        return _response(400, {"error": "Request body must be JSON"})
    except (DeadLetterQueueEmptyError, DeadLetterMessageNotFoundError) as e:
        return _response(404, {"success": False, "message": str(e)})
    except InvalidDeadLetterIndexError as e:
        return _response(400, {"success": False, "message": str(e)})
    except DeadLetterQueueError as e:
        return _response(409, {"success": False, "message": str(e)})
    except Exception:
        logger.exception(
            "Unhandled exception in dev_api handler",
            extra={"http_method": http_method, "path": path},
        )
        return _response(500, {"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _send_event(pipeline: LeadPipeline, request: SendEventRequest) -> dict:
    lead = LeadPayload(
        id=request.lead_id if request.lead_id is not None else random.randint(1, 9999),
        name=request.name,
        email=request.email,
        phone=request.phone,
        status=request.status,
        source=request.source or "Test",
        workspace_id=request.workspace_id,
    )
    lead_event = LeadEvent(
        event_type=LeadEventType.NEW,
        lead=lead,
        metadata=EventMetadata(
            user_id=DEV_USER,
            workspace_id=str(lead.workspace_id),
            simulate_error=request.simulate_error,
        ),
    )

    stored_before = pipeline.dlq.stats.stored
    try:
        asyncio.run(pipeline.topic.publish(lead_event))
    except PublishError as e:
        _audit(pipeline, "/dev/sendEvent", "send test lead event", False, str(lead.workspace_id), f"Error: {e}")
        return _response(502, {"success": False, "message": str(e)})
    except Exception as e:
        dead_lettered = pipeline.dlq.stats.stored > stored_before
        _audit(pipeline, "/dev/sendEvent", "send test lead event", False, str(lead.workspace_id), f"Error: {e}")
        return _response(200, {
            "success": False,
            "message": f"Error sending test event: {e}",
            "dead_lettered": dead_lettered,
            "lead": lead.model_dump(mode="json"),
            "simulated_error": request.simulate_error,
        })

    suffix = " (with simulated error)" if request.simulate_error else ""
    _audit(
        pipeline, "/dev/sendEvent", "send test lead event", True, str(lead.workspace_id),
        f"Published test event for lead: {lead.id} - {lead.name}{suffix}",
    )
    return _response(200, {
        "success": True,
        "message": f"Successfully published Lead.New event for test lead: {lead.id} - {lead.name}{suffix}",
        "lead": lead.model_dump(mode="json"),
        "simulated_error": request.simulate_error,
    })


def _list_dlq(pipeline: LeadPipeline) -> dict:
    messages = pipeline.dead_letters.list_messages()
    return _response(200, {
        "success": True,
        "count": len(messages),
        "messages": [m.model_dump(mode="json") for m in messages],
    })


def _clear_dlq(pipeline: LeadPipeline) -> dict:
    count = pipeline.dead_letters.clear()
    return _response(200, {
        "success": True,
        "message": f"Successfully cleared {count} messages from Dead Letter Queue",
        "count": count,
    })


def _retry_dlq(pipeline: LeadPipeline, request: RetryRequest) -> dict:
    result = asyncio.run(pipeline.dead_letters.retry(index=request.index, entity_id=request.lead_id))
    attempted = len(result.retried) + len(result.failed)
    # 502: some replays never reached a queue and were put back in the DLQ
    return _response(502 if result.restored else 200, {
        "success": result.success,
        "message": f"Retried {len(result.retried)} of {attempted} message(s) from Dead Letter Queue",
        "retried_messages": [m.model_dump(mode="json") for m in result.retried],
        "failed_messages": [
            {"message": m.model_dump(mode="json"), "error": error} for m, error in result.failed
        ],
        "restored_count": len(result.restored),
    })


def _add_to_dlq(pipeline: LeadPipeline, request: AddToDlqRequest) -> dict:
    lead_id = request.lead_id if request.lead_id is not None else random.randint(1, 9999)
    message = pipeline.dead_letters.inject(
        lead_id=lead_id,
        name=request.name,
        email=request.email,
        error_message=request.error_message,
    )
    return _response(200, {
        "success": True,
        "message": f"Successfully added test message to Dead Letter Queue for lead: {lead_id} - {request.name}",
        "lead": message.lead.model_dump(mode="json"),
    })


def _queue_stats(pipeline: LeadPipeline) -> dict:
    return _response(200, {
        "queues": [
            {
                "name": q.name,
                "handlers": q.handler_count,
                "dead_letter_queue": q.dead_letter_queue.name if q.dead_letter_queue else None,
                "messages": len(q.get_messages()),
                **vars(q.stats),
            }
            for q in pipeline.queues
        ],
    })


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _body(event: dict) -> dict[str, Any]:
    return json.loads(event.get("body") or "{}")


def _audit(pipeline: LeadPipeline, endpoint: str, action: str, success: bool, workspace_id: str, details: str) -> None:
    pipeline.audit.log_access_attempt(endpoint, action, success, DEV_USER, workspace_id, details, "event")


def _response(status_code: int, body: dict) -> dict:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }
