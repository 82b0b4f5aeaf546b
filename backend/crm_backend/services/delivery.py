"""Simulated message delivery and per-customer template personalization."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Any, Optional

from crm_backend.core.config import settings

SENT = "sent"
FAILED = "failed"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
PERSONALIZATION_FIELDS = ("name", "email", "city", "total_spent", "order_count")


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    status: str
    failure_reason: Optional[str] = None


class SimulatedDelivery:
    """Marks each attempt sent with a fixed probability, failed otherwise."""

    def __init__(
        self,
        *,
        success_rate: float | None = None,
        failure_reason: str | None = None,
        rng: random.Random | None = None,
    ):
        self.success_rate = (
            settings.CAMPAIGN_DELIVERY_SUCCESS_RATE if success_rate is None else success_rate
        )
        self.failure_reason = failure_reason or settings.CAMPAIGN_FAILURE_REASON
        self._rng = rng or random.Random()

    def attempt(self, customer: Any) -> DeliveryOutcome:
        if self._rng.random() < self.success_rate:
            return DeliveryOutcome(SENT)
        return DeliveryOutcome(FAILED, self.failure_reason)


def personalize(text: str, customer: Any) -> str:
    """Fill ``{name}``-style placeholders from the customer; leave unknown ones."""

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in PERSONALIZATION_FIELDS:
            return match.group(0)
        value = getattr(customer, key, None)
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text)
