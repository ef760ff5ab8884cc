"""
Access audit trail.

Every delivery outcome and every DLQ operation is recorded as an access
attempt: who (user / workspace), what (endpoint + action), and whether it
worked. Records are kept in a bounded in-memory buffer and also emitted as
structured log lines.
"""
from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from shared.logger import get_logger

logger = get_logger(__name__)


class AuditSink(Protocol):
    def __call__(
        self,
        endpoint: str,
        action: str,
        success: bool,
        user_id: str | None = None,
        workspace_id: str | None = None,
        details: str | None = None,
        api_type: str | None = None,
    ) -> None: ...


@dataclass(frozen=True)
class AuditRecord:
    endpoint: str
    action: str
    success: bool
    user_id: str | None = None
    workspace_id: str | None = None
    details: str | None = None
    api_type: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLog:
    def __init__(self, max_records: int = 1000) -> None:
        self._lock = threading.Lock()
        self._records: deque[AuditRecord] = deque(maxlen=max_records)

    def log_access_attempt(
        self,
        endpoint: str,
        action: str,
        success: bool,
        user_id: str | None = None,
        workspace_id: str | None = None,
        details: str | None = None,
        api_type: str | None = None,
    ) -> None:
        record = AuditRecord(
            endpoint=endpoint,
            action=action,
            success=success,
            user_id=user_id,
            workspace_id=workspace_id,
            details=details,
            api_type=api_type,
        )
        with self._lock:
            self._records.append(record)

        logger.info(
            "[AUDIT] User %s (Workspace %s) %s %s on %s",
            user_id or "unknown",
            workspace_id or "unknown",
            "successfully" if success else "failed to",
            action,
            endpoint,
            extra={
                "audit_endpoint": endpoint,
                "audit_action": action,
                "audit_success": success,
                "api_type": api_type,
                "details": details,
            },
        )

    __call__ = log_access_attempt

    def records(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
