"""
Unit tests for Queue delivery, retry and dead-lettering.

The retry bound is the invariant that matters most here: a permanently
failing handler is called exactly max_retry_count + 1 times, and the copy
stored in the DLQ says so.
"""
import asyncio
import threading
import time

import pytest

from messaging.queue import Queue
from shared.events import LeadEventType


def _pair(max_retry_count=3, retry_delay_ms=0, **kwargs):
    dlq = Queue.dead_letter("test-dlq")
    queue = Queue(
        "test-queue",
        dead_letter_queue=dlq,
        max_retry_count=max_retry_count,
        retry_delay_ms=retry_delay_ms,
        **kwargs,
    )
    return queue, dlq


def _always_fails(calls):
    async def handler(event):
        calls.append(event)
        raise RuntimeError(f"cannot process lead {event.lead.id}")
    return handler


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_handlers_is_a_silent_noop(make_event):
    """A queue with no handlers consumes the message without error."""
    queue, dlq = _pair()
    await queue.send_message(make_event())
    assert dlq.get_messages() == []
    assert queue.stats.delivered == 0
    assert queue.stats.failed_attempts == 0


@pytest.mark.asyncio
async def test_all_handlers_run_in_registration_order(make_event):
    queue, _ = _pair()
    order = []

    async def first(event):
        order.append("first")

    async def second(event):
        order.append("second")

    queue.handle(first)
    queue.handle(second)
    await queue.send_message(make_event())

    assert order == ["first", "second"]
    assert queue.stats.delivered == 1


def test_handle_returns_the_callback():
    queue, _ = _pair()

    async def handler(event):
        pass

    assert queue.handle(handler) is handler
    assert queue.handler_count == 1


# ---------------------------------------------------------------------------
# Retry bound
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_always_failing_handler_hits_retry_bound(make_event):
    """Initial attempt + 3 retries = 4 calls, then the DLQ copy records retry_count 4."""
    queue, dlq = _pair(max_retry_count=3)
    calls = []
    queue.handle(_always_fails(calls))

    with pytest.raises(RuntimeError, match="cannot process lead 7"):
        await queue.send_message(make_event(lead_id=7, source="referral"))

    assert len(calls) == 4
    assert [c.metadata.retry_count for c in calls] == [0, 1, 2, 3]

    dead = dlq.get_messages()
    assert len(dead) == 1
    assert dead[0].event_type == LeadEventType.PROCESSING_FAILED
    assert dead[0].metadata.retry_count == 4
    assert dead[0].metadata.original_event_type == LeadEventType.NEW
    assert dead[0].metadata.error_message == "cannot process lead 7"
    assert queue.stats.dead_lettered == 1
    assert queue.stats.retried == 3


@pytest.mark.asyncio
async def test_retry_bound_is_configurable_per_queue(make_event):
    queue, dlq = _pair(max_retry_count=1)
    calls = []
    queue.handle(_always_fails(calls))

    with pytest.raises(RuntimeError):
        await queue.send_message(make_event())

    assert len(calls) == 2
    assert dlq.get_messages()[0].metadata.retry_count == 2


@pytest.mark.asyncio
async def test_retries_carry_previous_error_message(make_event):
    queue, _ = _pair()
    calls = []
    queue.handle(_always_fails(calls))

    with pytest.raises(RuntimeError):
        await queue.send_message(make_event(lead_id=3))

    assert calls[0].metadata.error_message is None
    assert all(c.metadata.error_message == "cannot process lead 3" for c in calls[1:])


@pytest.mark.asyncio
async def test_success_on_later_attempt_leaves_dlq_empty(make_event):
    """Handler fails twice then succeeds: no DLQ write, no exception."""
    queue, dlq = _pair(max_retry_count=3)
    attempts = []

    async def flaky(event):
        attempts.append(event.metadata.retry_count)
        if len(attempts) < 3:
            raise ConnectionError("CRM timeout")

    queue.handle(flaky)
    await queue.send_message(make_event())

    assert attempts == [0, 1, 2]
    assert dlq.get_messages() == []
    assert queue.stats.delivered == 1


@pytest.mark.asyncio
async def test_success_on_final_allowed_attempt(make_event):
    queue, dlq = _pair(max_retry_count=3)
    attempts = []

    async def flaky(event):
        attempts.append(event.metadata.retry_count)
        if event.metadata.retry_count < 3:
            raise ConnectionError("not yet")

    queue.handle(flaky)
    await queue.send_message(make_event())

    assert len(attempts) == 4
    assert dlq.get_messages() == []


@pytest.mark.asyncio
async def test_failing_handler_stops_later_handlers_for_that_attempt(make_event):
    queue, _ = _pair(max_retry_count=0)
    later = []
    queue.handle(_always_fails([]))

    async def second(event):
        later.append(event)

    queue.handle(second)

    with pytest.raises(RuntimeError):
        await queue.send_message(make_event())
    assert later == []


@pytest.mark.asyncio
async def test_retry_waits_between_attempts(make_event):
    queue, _ = _pair(max_retry_count=2, retry_delay_ms=50)
    queue.handle(_always_fails([]))

    start = time.monotonic()
    with pytest.raises(RuntimeError):
        await queue.send_message(make_event())
    assert time.monotonic() - start >= 0.1


# ---------------------------------------------------------------------------
# No DLQ / DLQ itself
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_dlq_drops_after_bound_and_raises(make_event):
    """Without a DLQ the message is dropped: retries still bounded, error still raised."""
    queue = Queue("orphan-queue", max_retry_count=3, retry_delay_ms=0)
    calls = []
    queue.handle(_always_fails(calls))

    with pytest.raises(RuntimeError):
        await queue.send_message(make_event())

    assert len(calls) == 4
    assert queue.get_messages() == []
    assert queue.stats.dropped == 1
    assert queue.stats.dead_lettered == 0


@pytest.mark.asyncio
async def test_dead_letter_queue_does_not_retry_its_own_handlers(make_event):
    dlq = Queue.dead_letter("lonely-dlq")
    calls = []
    dlq.handle(_always_fails(calls))

    with pytest.raises(RuntimeError):
        await dlq.send_message(make_event())

    assert len(calls) == 1
    assert dlq.get_messages() == []


def test_dead_letter_queue_cannot_chain():
    with pytest.raises(ValueError):
        Queue("dlq", dead_letter_queue=Queue.dead_letter("other"), is_dead_letter=True)


@pytest.mark.asyncio
async def test_add_message_does_not_invoke_handlers(make_event):
    dlq = Queue.dead_letter("inspect-dlq")
    calls = []
    dlq.handle(_always_fails(calls))

    dlq.add_message(make_event())

    assert calls == []
    assert len(dlq.get_messages()) == 1


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_handler_timeout_counts_as_failure(make_event):
    queue, dlq = _pair(max_retry_count=1, handler_timeout_seconds=0.01)

    async def stuck(event):
        await asyncio.sleep(5)

    queue.handle(stuck)

    with pytest.raises(asyncio.TimeoutError):
        await queue.send_message(make_event())

    dead = dlq.get_messages()
    assert len(dead) == 1
    assert dead[0].metadata.error_message == "TimeoutError"


# ---------------------------------------------------------------------------
# Storage / inspection
# ---------------------------------------------------------------------------

def test_get_messages_returns_independent_snapshot(make_event):
    dlq = Queue.dead_letter("snapshot-dlq")
    dlq.add_message(make_event(lead_id=1))

    snapshot = dlq.get_messages()
    snapshot.append(make_event(lead_id=2))
    snapshot.clear()

    assert [m.lead.id for m in dlq.get_messages()] == [1]


def test_clear_returns_exact_count(make_event):
    dlq = Queue.dead_letter("clear-dlq")
    for i in range(3):
        dlq.add_message(make_event(lead_id=i))

    assert dlq.clear_messages() == 3
    assert dlq.get_messages() == []
    assert dlq.clear_messages() == 0


def test_add_get_clear_single_message(make_event):
    dlq = Queue.dead_letter("scenario-dlq")
    message = make_event(lead_id=99).dead_lettered("synthetic")
    dlq.add_message(message)

    assert dlq.get_messages() == [message]
    assert dlq.clear_messages() == 1
    assert dlq.get_messages() == []


def test_take_messages_removes_only_matches(make_event):
    dlq = Queue.dead_letter("take-dlq")
    for lead_id in (1, 2, 1, 3):
        dlq.add_message(make_event(lead_id=lead_id))

    taken = dlq.take_messages(lambda _, m: m.lead.id == 1)

    assert [m.lead.id for m in taken] == [1, 1]
    assert [m.lead.id for m in dlq.get_messages()] == [2, 3]


def test_counters_and_store_consistent_across_threads(make_event):
    """Each thread drives its own event loop against the same queue."""
    dlq = Queue.dead_letter("shared-dlq")
    queue = Queue("shared-queue", dead_letter_queue=dlq, retry_delay_ms=0, max_retry_count=0)

    async def handler(event):
        if event.lead.id % 2:
            raise RuntimeError("odd lead")

    queue.handle(handler)

    def worker(offset):
        for lead_id in range(offset, offset + 50):
            try:
                asyncio.run(queue.send_message(make_event(lead_id=lead_id)))
            except RuntimeError:
                pass

    threads = [threading.Thread(target=worker, args=(i * 50,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert queue.stats.delivered == 200
    assert queue.stats.failed_attempts == 200
    assert queue.stats.dead_lettered == 200
    assert dlq.stats.stored == 200
    assert len(dlq.get_messages()) == 200


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_terminal_outcomes_are_audited(make_event, audit_log):
    dlq = Queue.dead_letter("audit-dlq")
    queue = Queue("audit-queue", dead_letter_queue=dlq, retry_delay_ms=0, max_retry_count=1, audit=audit_log)

    async def ok(event):
        if event.metadata.simulate_error:
            raise RuntimeError("nope")

    queue.handle(ok)
    await queue.send_message(make_event(lead_id=1))
    with pytest.raises(RuntimeError):
        await queue.send_message(make_event(lead_id=2, simulate_error=True))

    records = audit_log.records()
    assert [r.success for r in records] == [True, False]
    assert all(r.endpoint == "/queues/audit-queue" for r in records)
    assert "Dead-lettered lead 2" in records[1].details
