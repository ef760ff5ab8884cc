#!/usr/bin/env python3
"""
Demo script: push one Lead.New event through the full in-process pipeline.

  python scripts/send_test_event.py                    # happy path
  python scripts/send_test_event.py --simulate-error   # exhaust retries, land in DLQ
  python scripts/send_test_event.py --simulate-error --replay
"""
import argparse
import asyncio
import json
import os
import random
import sys

os.environ.setdefault("AWS_XRAY_SDK_ENABLED", "false")
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "services"))

from lead_processor.faults import simulate_error_flag  # noqa: E402
from lead_service.publisher import build_lead_created_event, publish_lead_created  # noqa: E402
from messaging.pipeline import build_lead_pipeline  # noqa: E402
from shared.config import MessagingSettings  # noqa: E402

parser = argparse.ArgumentParser()
parser.add_argument("--lead-id", type=int, default=None)
parser.add_argument("--source", default="test")
parser.add_argument("--simulate-error", action="store_true")
parser.add_argument("--replay", action="store_true", help="replay the DLQ after publishing")
parser.add_argument("--retry-delay-ms", type=int, default=None)
args = parser.parse_args()


async def main() -> None:
    settings = MessagingSettings.from_env()
    if args.retry_delay_ms is not None:
        settings = settings.model_copy(update={"retry_delay_ms": args.retry_delay_ms})
    pipeline = build_lead_pipeline(settings, fault_injector=simulate_error_flag)

    lead = {
        "id": args.lead_id or random.randint(1, 9999),
        "name": "Test Lead",
        "email": "test@example.com",
        "phone": "0987654321",
        "status": "new",
        "source": args.source,
        "workspace_id": 1,
    }

    if args.simulate_error:
        # The producer helper has no simulate flag; publish the flagged event directly.
        event = build_lead_created_event(lead, "test-script-user", "1")
        event = event.model_copy(update={
            "metadata": event.metadata.model_copy(update={"simulate_error": True}),
        })
        try:
            await pipeline.topic.publish(event)
            ok = True
        except Exception as e:
            print(f"Publish failed after retries: {e}")
            ok = False
    else:
        ok = await publish_lead_created(pipeline.topic, lead, "test-script-user", "1")

    print(f"Delivered: {ok}")
    print(f"DLQ contents ({len(pipeline.dlq.get_messages())}):")
    for message in pipeline.dlq.get_messages():
        print(json.dumps(message.model_dump(mode="json"), indent=2))

    if args.replay and pipeline.dlq.get_messages():
        result = await pipeline.dead_letters.retry()
        print(f"Replayed {len(result.retried)} message(s), {len(result.failed)} failed")
        print(f"DLQ size after replay: {len(pipeline.dlq.get_messages())}")

    print(json.dumps({q.name: vars(q.stats) for q in pipeline.queues}, indent=2))


asyncio.run(main())
