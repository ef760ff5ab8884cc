"""
Injectable failure points for exercising the retry / DLQ path.

A fault injector is called with the event before the processor does any
work and raises to simulate a processing failure. Production pipelines are
built without one.
"""
from __future__ import annotations

from typing import Callable

from shared.events import LeadEvent

FaultInjector = Callable[[LeadEvent], None]


class SimulatedProcessingError(Exception):
    pass


def simulate_error_flag(event: LeadEvent) -> None:
    """Fail every attempt of an event published with metadata.simulate_error."""
    if event.metadata.simulate_error:
        raise SimulatedProcessingError(
            f"Simulated processing error for test lead: {event.lead.id}"
        )


class FailFirst:
    """Fail the first `times` calls, then let everything through."""

    def __init__(self, times: int):
        self.times = times
        self.calls = 0

    def __call__(self, event: LeadEvent) -> None:
        self.calls += 1
        if self.calls <= self.times:
            raise SimulatedProcessingError(
                f"Simulated failure {self.calls}/{self.times} for lead {event.lead.id}"
            )
