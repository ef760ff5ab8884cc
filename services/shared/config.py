"""
Messaging configuration.

Values come from the environment and are read when `from_env()` is called,
not at import time, so tests can override them with monkeypatch.
"""
from __future__ import annotations

import os

from pydantic import BaseModel, Field


def _env_bool(key: str, default: bool = False) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_float(key: str) -> float | None:
    raw = os.environ.get(key, "").strip()
    return float(raw) if raw else None


class MessagingSettings(BaseModel):
    max_retry_count: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=500, ge=0)
    publish_delay_ms: int = Field(default=100, ge=0)
    handler_timeout_seconds: float | None = Field(default=None, gt=0)
    task_latency_scale: float = Field(default=1.0, ge=0)
    sns_topic_arn: str | None = None
    insight_sns_topic_arn: str | None = None
    simulate_faults: bool = False

    @classmethod
    def from_env(cls) -> MessagingSettings:
        return cls(
            max_retry_count=int(os.environ.get("LEAD_MAX_RETRY_COUNT", "3")),
            retry_delay_ms=int(os.environ.get("LEAD_RETRY_DELAY_MS", "500")),
            publish_delay_ms=int(os.environ.get("LEAD_PUBLISH_DELAY_MS", "100")),
            handler_timeout_seconds=_env_optional_float("LEAD_HANDLER_TIMEOUT_SECONDS"),
            task_latency_scale=float(os.environ.get("LEAD_TASK_LATENCY_SCALE", "1.0")),
            sns_topic_arn=os.environ.get("LEAD_EVENTS_SNS_TOPIC_ARN") or None,
            insight_sns_topic_arn=os.environ.get("INSIGHT_EVENTS_SNS_TOPIC_ARN") or None,
            simulate_faults=_env_bool("LEAD_SIMULATE_FAULTS"),
        )
