"""
Pytest configuration and shared fixtures.
Everything runs in-process; SNS calls go to moto (AWS mocks in-process).
"""
import os

# Must be set before aws_xray_sdk is imported anywhere: no X-Ray daemon in tests.
os.environ.setdefault("AWS_XRAY_SDK_ENABLED", "false")

import pytest

from shared.audit import AuditLog
from shared.config import MessagingSettings
from shared.events import EventMetadata, LeadEvent, LeadEventType, LeadPayload


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Fake AWS credentials plus fast messaging settings for every test."""
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.setenv("LEAD_RETRY_DELAY_MS", "0")
    monkeypatch.setenv("LEAD_PUBLISH_DELAY_MS", "0")
    monkeypatch.setenv("LEAD_TASK_LATENCY_SCALE", "0")
    monkeypatch.delenv("LEAD_MAX_RETRY_COUNT", raising=False)
    monkeypatch.delenv("LEAD_EVENTS_SNS_TOPIC_ARN", raising=False)
    monkeypatch.delenv("INSIGHT_EVENTS_SNS_TOPIC_ARN", raising=False)
    monkeypatch.delenv("LEAD_HANDLER_TIMEOUT_SECONDS", raising=False)
    monkeypatch.delenv("LEAD_SIMULATE_FAULTS", raising=False)


@pytest.fixture
def settings():
    return MessagingSettings(
        max_retry_count=3,
        retry_delay_ms=0,
        publish_delay_ms=0,
        task_latency_scale=0,
    )


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def make_event():
    """Factory for Lead events with sensible defaults."""
    def _make(
        lead_id: int = 42,
        source: str = "normal",
        event_type: LeadEventType = LeadEventType.NEW,
        simulate_error: bool = False,
        retry_count: int = 0,
    ) -> LeadEvent:
        return LeadEvent(
            event_type=event_type,
            lead=LeadPayload(
                id=lead_id,
                name=f"Lead {lead_id}",
                email=f"lead{lead_id}@example.com",
                status="new",
                source=source,
                workspace_id=1,
            ),
            metadata=EventMetadata(
                user_id="user-1",
                workspace_id="1",
                retry_count=retry_count,
                simulate_error=simulate_error,
            ),
        )
    return _make
