"""
In-process Queue with Retry and Dead-Lettering
==============================================
Mirrors the SQS + redrive-policy shape: a queue delivers each message to its
registered handlers, retries a failing message a bounded number of times with
a fixed delay, and once retries are exhausted moves it to a dead letter queue.

Delivery contract (per message):
  1. No handlers registered   → message is consumed, nothing happens.
  2. All handlers succeed      → done.
  3. A handler raises          → remaining handlers are skipped for this
                                 attempt; the message is rebuilt with
                                 retry_count + 1 and redelivered after
                                 retry_delay_ms, up to max_retry_count times.
  4. Retries exhausted         → the message is annotated (ProcessingFailed)
                                 and stored in the DLQ; without a DLQ it is
                                 dropped. Either way the handler's original
                                 exception is re-raised to the caller.

So `send_message` can raise even though the message is safely parked in the
DLQ. Publishers must treat that as "delivery failed, see DLQ", not as loss.

Retries run in an explicit loop, strictly one attempt after another; the
caller is suspended for the whole retry/backoff window.

The stored messages and the delivery counters share one threading.Lock, so
add_message, take_messages and stats are safe to call from any thread.
"""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

from shared.audit import AuditSink
from shared.events import DomainEvent
from shared.logger import get_logger

logger = get_logger(__name__)

QueueHandler = Callable[[DomainEvent], Awaitable[None]]

DEFAULT_MAX_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY_MS = 500


@dataclass
class QueueStats:
    delivered: int = 0
    failed_attempts: int = 0
    retried: int = 0
    dead_lettered: int = 0
    dropped: int = 0
    stored: int = 0


def _describe(event: DomainEvent) -> str:
    return f"{event.entity} {event.entity_id}"


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class Queue:
    """
    Parameters
    ----------
    name:                    Unique, human-readable queue name
    description:             Free text shown in logs
    dead_letter_queue:       Queue that receives messages once retries are exhausted
    retry_delay_ms:          Fixed wait between attempts
    max_retry_count:         Redeliveries after the first attempt
    handler_timeout_seconds: Per-handler deadline; a timeout counts as a failure
    is_dead_letter:          This queue is a DLQ: failures are never retried
                             and never forwarded
    audit:                   Called once per terminal delivery outcome
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        dead_letter_queue: Queue | None = None,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        max_retry_count: int = DEFAULT_MAX_RETRY_COUNT,
        handler_timeout_seconds: float | None = None,
        is_dead_letter: bool = False,
        audit: AuditSink | None = None,
    ):
        if max_retry_count < 0:
            raise ValueError("max_retry_count must be >= 0")
        if retry_delay_ms < 0:
            raise ValueError("retry_delay_ms must be >= 0")
        if dead_letter_queue is not None and is_dead_letter:
            raise ValueError(f"Dead letter queue '{name}' cannot have its own DLQ")

        self.name = name
        self.description = description
        self.dead_letter_queue = dead_letter_queue
        self.retry_delay_ms = retry_delay_ms
        self.max_retry_count = max_retry_count
        self.handler_timeout_seconds = handler_timeout_seconds
        self.is_dead_letter = is_dead_letter
        self._audit = audit

        self._handlers: list[QueueHandler] = []
        self._messages: list[DomainEvent] = []
        # guards _messages and _stats
        self._lock = threading.Lock()
        self._stats = QueueStats()

        logger.info("Created queue %r - %s", name, description, extra={"queue": name})
        if dead_letter_queue is not None:
            logger.info(
                "Queue %r configured with DLQ %r", name, dead_letter_queue.name,
                extra={"queue": name, "dlq": dead_letter_queue.name},
            )

    @classmethod
    def dead_letter(cls, name: str, description: str = "", audit: AuditSink | None = None) -> Queue:
        return cls(
            name,
            description,
            retry_delay_ms=0,
            max_retry_count=0,
            is_dead_letter=True,
            audit=audit,
        )

    def __repr__(self) -> str:
        return f"Queue(name={self.name!r}, handlers={len(self._handlers)})"

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def handle(self, callback: QueueHandler) -> QueueHandler:
        """Register a handler. Usable as a decorator; returns the callback."""
        self._handlers.append(callback)
        logger.info(
            "Registered handler %s", getattr(callback, "__name__", type(callback).__name__),
            extra={"queue": self.name, "handler_count": len(self._handlers)},
        )
        return callback

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send_message(self, event: DomainEvent) -> None:
        if not self._handlers:
            logger.info(
                "No handlers registered, message consumed",
                extra={"queue": self.name, "event_type": event.event_type.value},
            )
            return

        current = event
        while True:
            retry_count = current.metadata.retry_count
            try:
                await self._dispatch(current)
            except Exception as exc:
                error = _error_message(exc)
                self._count("failed_attempts")
                logger.warning(
                    "Delivery attempt %d failed: %s", retry_count + 1, error,
                    extra={
                        "queue": self.name,
                        "event_key": current.key,
                        "retry_count": retry_count,
                    },
                )

                if retry_count < self.max_retry_count and not self.is_dead_letter:
                    current = current.with_retry(error)
                    self._count("retried")
                    logger.info(
                        "Retry %d/%d in %dms",
                        retry_count + 1, self.max_retry_count, self.retry_delay_ms,
                        extra={"queue": self.name, "event_key": current.key},
                    )
                    await asyncio.sleep(self.retry_delay_ms / 1000)
                    continue

                self._give_up(current, error)
                raise

            self._count("delivered")
            logger.info(
                "Message processed successfully",
                extra={
                    "queue": self.name,
                    "event_key": current.key,
                    "retry_count": retry_count,
                },
            )
            self._record(current, True, f"Delivered {_describe(current)} after {retry_count + 1} attempt(s)")
            return

    async def _dispatch(self, event: DomainEvent) -> None:
        for handler in list(self._handlers):
            if self.handler_timeout_seconds is None:
                await handler(event)
            else:
                await asyncio.wait_for(handler(event), timeout=self.handler_timeout_seconds)

    def _give_up(self, event: DomainEvent, error: str) -> None:
        dlq = self.dead_letter_queue
        if dlq is not None and not self.is_dead_letter:
            dlq.add_message(event.dead_lettered(error))
            self._count("dead_lettered")
            logger.error(
                "Retries exhausted, message moved to DLQ %r", dlq.name,
                extra={
                    "queue": self.name,
                    "dlq": dlq.name,
                    "event_key": event.key,
                    "retry_count": event.metadata.retry_count + 1,
                    "error": error,
                },
            )
            self._record(event, False, f"Dead-lettered {_describe(event)} to {dlq.name}: {error}")
            return

        self._count("dropped")
        logger.error(
            "No DLQ available, message dropped",
            extra={
                "queue": self.name,
                "event_key": event.key,
                "event_type": event.event_type.value,
                "error": error,
            },
        )
        self._record(event, False, f"Dropped {_describe(event)}: {error}")

    def _count(self, counter: str) -> None:
        with self._lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def _record(self, event: DomainEvent, success: bool, details: str) -> None:
        if self._audit is None:
            return
        self._audit(
            f"/queues/{self.name}",
            "deliver message",
            success,
            event.metadata.user_id,
            event.metadata.workspace_id,
            details,
            "event",
        )

    # ------------------------------------------------------------------
    # Message storage (DLQ sink)
    # ------------------------------------------------------------------

    def add_message(self, event: DomainEvent) -> None:
        """Store without invoking handlers."""
        with self._lock:
            self._messages.append(event)
            total = len(self._messages)
            self._stats.stored += 1
        logger.info("Message stored (total: %d)", total, extra={"queue": self.name})

    def get_messages(self) -> list[DomainEvent]:
        with self._lock:
            return list(self._messages)

    def clear_messages(self) -> int:
        with self._lock:
            count = len(self._messages)
            self._messages = []
        logger.info("Cleared %d messages", count, extra={"queue": self.name})
        return count

    def take_messages(self, predicate: Callable[[int, DomainEvent], bool]) -> list[DomainEvent]:
        """Remove and return every stored message for which predicate(index, event) holds."""
        with self._lock:
            taken: list[DomainEvent] = []
            kept: list[DomainEvent] = []
            for index, message in enumerate(self._messages):
                (taken if predicate(index, message) else kept).append(message)
            self._messages = kept
        return taken

    @property
    def stats(self) -> QueueStats:
        with self._lock:
            return replace(self._stats)
