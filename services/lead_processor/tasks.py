"""
Simulated lead side effects.

Stand-ins for the email provider, the CRM and the lead scoring service. Each
call sleeps for a fixed latency (scaled by `latency_scale`, 0 in tests) and
records what it did so callers can inspect the effects.

None of these are idempotent: a redelivered lead gets a second welcome email.
That duplicate is accepted under at-least-once delivery.
"""
from __future__ import annotations

import asyncio

from shared.events import LeadPayload
from shared.logger import get_logger

logger = get_logger(__name__)

EMAIL_LATENCY_S = 0.2
CRM_LATENCY_S = 0.15
CATEGORIZE_LATENCY_S = 0.1

CATEGORIES = {
    "website": "Web Lead",
    "referral": "Referral Lead",
    "advertisement": "Marketing Lead",
    "test": "Test Lead",
}
DEFAULT_CATEGORY = "General"


def categorize_source(source: str | None) -> str:
    return CATEGORIES.get(source or "", DEFAULT_CATEGORY)


class SimulatedLeadTasks:
    def __init__(self, latency_scale: float = 1.0):
        self.latency_scale = latency_scale
        self.sent_emails: list[str] = []
        self.crm_updates: list[int] = []
        self.categories: dict[int, str] = {}

    async def _latency(self, seconds: float) -> None:
        if self.latency_scale:
            await asyncio.sleep(seconds * self.latency_scale)

    async def send_welcome_email(self, lead: LeadPayload) -> None:
        await self._latency(EMAIL_LATENCY_S)
        self.sent_emails.append(lead.email)
        logger.info("Welcome email sent", extra={"lead_id": lead.id, "email": lead.email})

    async def update_crm(self, lead: LeadPayload) -> None:
        await self._latency(CRM_LATENCY_S)
        self.crm_updates.append(lead.id)
        logger.info("CRM record updated", extra={"lead_id": lead.id})

    async def categorize(self, lead: LeadPayload) -> str:
        await self._latency(CATEGORIZE_LATENCY_S)
        category = categorize_source(lead.source)
        self.categories[lead.id] = category
        logger.info("Lead categorized", extra={"lead_id": lead.id, "category": category})
        return category
