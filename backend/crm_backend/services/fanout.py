"""Campaign fan-out: resolve the live audience and simulate one send per customer.

Batches run one after another; inside a batch every log write is issued at
once and the batch settles before the next starts, so at most ``batch_size``
writes are ever outstanding. A failed write only counts against that
customer. Anything else that goes wrong moves the campaign to ``failed``
with the error recorded in its stats; logs already written are kept.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Optional, Sequence, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_backend.core.config import settings
from crm_backend.core.errors import NotFoundError
from crm_backend.schemas.campaign import CampaignStatus
from crm_backend.schemas.segment import RuleSet
from crm_backend.services.campaign_state import ensure_transition
from crm_backend.services.delivery import SENT, DeliveryOutcome, SimulatedDelivery, personalize
from crm_backend.services.segment_query import build_segment_query
from crm_backend.services.stores import (
    CampaignStore,
    CommunicationLogStore,
    CustomerStore,
    SegmentStore,
    SqlCampaignStore,
    SqlCommunicationLogStore,
    SqlCustomerStore,
    SqlSegmentStore,
)

T = TypeVar("T")


@dataclass(slots=True)
class FanoutResult:
    campaign_id: int
    status: CampaignStatus
    total_recipients: int = 0
    sent: int = 0
    failed: int = 0
    delivery_rate: float = 0.0
    failure_reason: Optional[str] = None


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def delivery_rate(sent: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(sent / total * 100, 2)


class CampaignFanout:
    def __init__(
        self,
        *,
        customers: CustomerStore,
        segments: SegmentStore,
        campaigns: CampaignStore,
        logs: CommunicationLogStore,
        delivery: SimulatedDelivery | None = None,
        batch_size: int | None = None,
        channel: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._customers = customers
        self._segments = segments
        self._campaigns = campaigns
        self._logs = logs
        self._delivery = delivery or SimulatedDelivery()
        self.batch_size = batch_size or settings.CAMPAIGN_BATCH_SIZE
        self.channel = channel or settings.CAMPAIGN_DEFAULT_CHANNEL
        self._clock = clock or datetime.utcnow

    @classmethod
    def from_session_factory(
        cls, sessions: async_sessionmaker[AsyncSession], **kwargs: Any
    ) -> "CampaignFanout":
        return cls(
            customers=SqlCustomerStore(sessions),
            segments=SqlSegmentStore(sessions),
            campaigns=SqlCampaignStore(sessions),
            logs=SqlCommunicationLogStore(sessions),
            **kwargs,
        )

    async def run(self, campaign_id: int) -> FanoutResult | None:
        """Execute one campaign; returns ``None`` when there is nothing to run."""

        campaign = await self._campaigns.get(campaign_id)
        if campaign is None:
            logger.bind(campaign_id=campaign_id).info("campaign_fanout_skipped_missing")
            return None
        if campaign.status != CampaignStatus.DRAFT.value:
            logger.bind(campaign_id=campaign_id, status=campaign.status).warning(
                "campaign_fanout_skipped_not_draft"
            )
            return None

        log = logger.bind(campaign_id=campaign_id, created_by=campaign.created_by)
        stats: dict[str, Any] = dict(campaign.stats or {})
        current = CampaignStatus.DRAFT
        try:
            processing = ensure_transition(current, CampaignStatus.PROCESSING)
            await self._campaigns.update(
                campaign_id, status=processing.value, started_at=self._clock()
            )
            current = processing

            segment = await self._segments.get(campaign.segment_id)
            if segment is None:
                raise NotFoundError(f"Segment {campaign.segment_id} not found")
            query = build_segment_query(RuleSet.model_validate(segment.rules))
            recipients = list(await self._customers.find(query))

            # The live audience replaces the estimate taken at creation time.
            stats.update(total_recipients=len(recipients), sent=0, failed=0, delivery_rate=0.0)
            await self._campaigns.update(campaign_id, stats=dict(stats))
            log.bind(recipients=len(recipients), batch_size=self.batch_size).info(
                "campaign_fanout_started"
            )

            sent = failed = 0
            for index, batch in enumerate(chunked(recipients, self.batch_size), start=1):
                batch_sent, batch_failed = await self._deliver_batch(campaign, batch)
                sent += batch_sent
                failed += batch_failed
                log.bind(batch=index, size=len(batch), sent=batch_sent, failed=batch_failed).info(
                    "campaign_batch_settled"
                )

            completed = ensure_transition(current, CampaignStatus.COMPLETED)
            stats.update(sent=sent, failed=failed, delivery_rate=delivery_rate(sent, len(recipients)))
            await self._campaigns.update(
                campaign_id, status=completed.value, completed_at=self._clock(), stats=dict(stats)
            )
            current = completed
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            log.bind(error=reason, status=current.value).error("campaign_fanout_failed")
            await self._mark_failed(campaign_id, current, stats, reason)
            return FanoutResult(
                campaign_id=campaign_id,
                status=CampaignStatus.FAILED,
                total_recipients=int(stats.get("total_recipients") or 0),
                failure_reason=reason,
            )

        log.bind(sent=stats["sent"], failed=stats["failed"], delivery_rate=stats["delivery_rate"]).info(
            "campaign_fanout_completed"
        )
        return FanoutResult(
            campaign_id=campaign_id,
            status=CampaignStatus.COMPLETED,
            total_recipients=stats["total_recipients"],
            sent=stats["sent"],
            failed=stats["failed"],
            delivery_rate=stats["delivery_rate"],
        )

    async def _deliver_batch(self, campaign: Any, batch: Sequence[Any]) -> tuple[int, int]:
        outcomes = [self._delivery.attempt(customer) for customer in batch]
        results = await asyncio.gather(
            *(self._record(campaign, customer, outcome) for customer, outcome in zip(batch, outcomes)),
            return_exceptions=True,
        )
        sent = failed = 0
        for customer, result in zip(batch, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.bind(
                    campaign_id=campaign.id, customer_id=customer.id, error=str(result)
                ).warning("campaign_log_write_failed")
            elif result == SENT:
                sent += 1
            else:
                failed += 1
        return sent, failed

    async def _record(self, campaign: Any, customer: Any, outcome: DeliveryOutcome) -> str:
        template = campaign.template or {}
        await self._logs.create(
            campaign_id=campaign.id,
            customer_id=customer.id,
            channel=self.channel,
            status=outcome.status,
            failure_reason=outcome.failure_reason,
            message_metadata={"subject": personalize(template.get("subject", ""), customer)},
            sent_at=self._clock(),
        )
        return outcome.status

    async def _mark_failed(
        self, campaign_id: int, current: CampaignStatus, stats: dict[str, Any], reason: str
    ) -> None:
        if current is not CampaignStatus.PROCESSING:
            # Never left draft; the startup recovery sweep resubmits it.
            return
        stats["failure_reason"] = reason
        try:
            await self._campaigns.update(
                campaign_id,
                status=ensure_transition(current, CampaignStatus.FAILED).value,
                stats=dict(stats),
            )
        except Exception as exc:
            logger.bind(campaign_id=campaign_id, error=str(exc)).error(
                "campaign_failure_not_recorded"
            )
