"""
SNS Bridge
==========
Optional transport for Topic: mirrors every published event to a real SNS
topic before the in-process fan-out runs. Downstream AWS consumers (SQS
subscriptions with filter policies on the `event_type` attribute) see the
same events as the in-process queues.

A rejected publish is a transport failure, reported as PublishError, and
is kept separate from handler failures.
"""
from __future__ import annotations

import asyncio

import boto3
from aws_xray_sdk.core import patch_all
from botocore.exceptions import BotoCoreError, ClientError

from messaging.errors import PublishError
from shared.events import DomainEvent
from shared.logger import get_logger

patch_all()

logger = get_logger(__name__)


class SnsBridge:
    def __init__(self, topic_arn: str, sns_client=None):
        self.topic_arn = topic_arn
        self._client = sns_client or boto3.client("sns")

    async def publish(self, event: DomainEvent) -> None:
        try:
            response = await asyncio.to_thread(
                self._client.publish, **event.to_sns_message(self.topic_arn)
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "SNS publish failed",
                extra={"topic_arn": self.topic_arn, "event_key": event.key, "error": str(e)},
            )
            raise PublishError(self.topic_arn, str(e)) from e

        logger.info(
            "Event mirrored to SNS",
            extra={
                "topic_arn": self.topic_arn,
                "sns_message_id": response.get("MessageId"),
                "event_type": event.event_type.value,
            },
        )
