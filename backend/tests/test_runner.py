import asyncio

import pytest

from crm_backend.services.runner import (
    INTERRUPTED_REASON,
    CampaignRunner,
    recover_stalled_campaigns,
)
from crm_fakes import FakeCampaignStore, make_campaign


class StubFanout:
    def __init__(self, calls, *, gate=None, error=None):
        self.calls = calls
        self.gate = gate
        self.error = error

    async def run(self, campaign_id):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.calls.append(campaign_id)
        return campaign_id


def _runner(calls, **kwargs):
    return CampaignRunner(None, fanout_factory=lambda: StubFanout(calls, **kwargs))


@pytest.mark.anyio
async def test_submit_runs_in_background_and_forgets_finished_tasks(anyio_backend):
    calls = []
    runner = _runner(calls)

    task = runner.submit(7)
    assert runner.pending == 1
    await task

    assert calls == [7]
    assert runner.pending == 0


@pytest.mark.anyio
async def test_crashing_fanout_does_not_escape(anyio_backend):
    runner = _runner([], error=RuntimeError("boom"))

    assert await runner.submit(3) is None


@pytest.mark.anyio
async def test_shutdown_waits_then_cancels_stragglers(anyio_backend):
    gate = asyncio.Event()
    runner = _runner([], gate=gate)
    task = runner.submit(1)

    await runner.shutdown(grace=0.01)
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()


@pytest.mark.anyio
async def test_shutdown_lets_quick_fanouts_finish(anyio_backend):
    calls = []
    runner = _runner(calls)
    runner.submit(1)
    runner.submit(2)

    await runner.shutdown(grace=1)

    assert sorted(calls) == [1, 2]


@pytest.mark.anyio
async def test_recovery_fails_interrupted_and_resubmits_drafts(anyio_backend):
    campaigns = FakeCampaignStore(
        make_campaign(1, status="processing", stats={"total_recipients": 40}),
        make_campaign(2, status="draft"),
        make_campaign(3, status="completed"),
    )
    calls = []
    runner = _runner(calls)

    summary = await recover_stalled_campaigns(campaigns, runner)
    await runner.shutdown(grace=1)

    assert (summary.failed, summary.resubmitted) == (1, 1)
    assert campaigns.rows[1].status == "failed"
    assert campaigns.rows[1].stats == {"total_recipients": 40, "failure_reason": INTERRUPTED_REASON}
    assert campaigns.rows[3].status == "completed"
    assert calls == [2]
