"""Background execution of campaign fan-outs, detached from the request."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_backend.core.config import settings
from crm_backend.schemas.campaign import CampaignStatus
from crm_backend.services.campaign_state import ensure_transition
from crm_backend.services.fanout import CampaignFanout, FanoutResult
from crm_backend.services.stores import CampaignStore

INTERRUPTED_REASON = "Interrupted before completion"


class CampaignRunner:
    """Owns the asyncio tasks running campaign fan-outs."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        *,
        fanout_factory: Callable[[], CampaignFanout] | None = None,
    ):
        self._fanout_factory = fanout_factory or (
            lambda: CampaignFanout.from_session_factory(sessions)
        )
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, campaign_id: int) -> asyncio.Task:
        task = asyncio.create_task(
            self._run(campaign_id), name=f"campaign-fanout-{campaign_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.bind(campaign_id=campaign_id).info("campaign_fanout_submitted")
        return task

    async def _run(self, campaign_id: int) -> FanoutResult | None:
        try:
            return await self._fanout_factory().run(campaign_id)
        except Exception:
            # No caller to report to; the campaign row keeps its last status.
            logger.bind(campaign_id=campaign_id).exception("campaign_runner_crashed")
            return None

    async def shutdown(self, grace: float | None = None) -> None:
        """Wait for running fan-outs, abandoning any still busy after ``grace``."""

        if not self._tasks:
            return
        grace = settings.CAMPAIGN_SHUTDOWN_GRACE_SEC if grace is None else grace
        _, pending = await asyncio.wait(set(self._tasks), timeout=grace)
        if pending:
            logger.bind(abandoned=len(pending)).warning("campaign_runner_abandoned")
            for task in pending:
                task.cancel()


@dataclass(slots=True)
class RecoverySummary:
    failed: int = 0
    resubmitted: int = 0


async def recover_stalled_campaigns(
    campaigns: CampaignStore, runner: CampaignRunner
) -> RecoverySummary:
    """Settle campaigns a previous process left unfinished.

    ``processing`` campaigns already wrote some logs and cannot be re-run
    without duplicating them, so they are failed. ``draft`` campaigns never
    started and are handed to the runner again.
    """

    summary = RecoverySummary()
    for campaign in await campaigns.list_by_status(CampaignStatus.PROCESSING.value):
        stats = {**(campaign.stats or {}), "failure_reason": INTERRUPTED_REASON}
        await campaigns.update(
            campaign.id,
            status=ensure_transition(campaign.status, CampaignStatus.FAILED).value,
            stats=stats,
        )
        summary.failed += 1
    for campaign in await campaigns.list_by_status(CampaignStatus.DRAFT.value):
        runner.submit(campaign.id)
        summary.resubmitted += 1
    logger.bind(failed=summary.failed, resubmitted=summary.resubmitted).info(
        "campaign_recovery_completed"
    )
    return summary
