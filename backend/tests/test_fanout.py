from datetime import datetime

import pytest

from crm_backend.models.crm_campaign import CrmCampaign
from crm_backend.models.crm_segment import CrmSegment
from crm_backend.schemas.campaign import CampaignStatus
from crm_backend.services.delivery import SimulatedDelivery, personalize
from crm_backend.services.fanout import CampaignFanout, chunked, delivery_rate
from crm_backend.services.stores import SqlCampaignStore
from crm_fakes import (
    CyclingRandom,
    FakeCampaignStore,
    FakeCustomerStore,
    FakeLogStore,
    FakeSegmentStore,
    make_campaign,
    make_customer,
    make_segment,
    seed_customers,
    seed_user,
)

FIXED_NOW = datetime(2024, 5, 1, 9, 30)
# four sends out of every five succeed at an 0.8 success rate
FOUR_IN_FIVE = [0.1, 0.2, 0.3, 0.4, 0.9]


def _fanout(customers, campaigns, logs, segments=None, **kwargs):
    return CampaignFanout(
        customers=FakeCustomerStore(customers),
        segments=segments or FakeSegmentStore(make_segment()),
        campaigns=campaigns,
        logs=logs,
        delivery=SimulatedDelivery(success_rate=0.8, rng=CyclingRandom(FOUR_IN_FIVE)),
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


def test_chunked_and_rate_helpers():
    assert [len(b) for b in chunked(list(range(250)), 100)] == [100, 100, 50]
    assert list(chunked([], 100)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))
    assert delivery_rate(200, 250) == 80.0
    assert delivery_rate(1, 3) == 33.33
    assert delivery_rate(0, 0) == 0.0


def test_personalize_fills_known_fields_only():
    customer = make_customer(1, name="Asha", city="Pune")
    assert personalize("Hi {name} from {city}, {coupon}", customer) == "Hi Asha from Pune, {coupon}"


@pytest.mark.anyio
async def test_fanout_reports_sent_failed_and_rate(anyio_backend):
    customers = [make_customer(i) for i in range(1, 251)]
    campaigns = FakeCampaignStore(make_campaign(1))
    logs = FakeLogStore()

    result = await _fanout(customers, campaigns, logs).run(1)

    assert result.status is CampaignStatus.COMPLETED
    assert (result.total_recipients, result.sent, result.failed) == (250, 200, 50)
    assert result.delivery_rate == 80.0

    campaign = campaigns.rows[1]
    assert campaign.status == "completed"
    assert campaign.stats == {
        "total_recipients": 250,
        "sent": 200,
        "failed": 50,
        "delivery_rate": 80.0,
    }
    assert campaign.started_at == FIXED_NOW
    assert campaign.completed_at == FIXED_NOW
    assert campaigns.statuses() == ["processing", "completed"]

    assert len(logs.rows) == 250
    assert sum(1 for row in logs.rows if row.status == "sent") == 200
    failed_rows = [row for row in logs.rows if row.status == "failed"]
    assert all(row.failure_reason for row in failed_rows)
    assert all(row.channel == "email" for row in logs.rows)


@pytest.mark.anyio
async def test_batches_never_overlap(anyio_backend):
    customers = [make_customer(i) for i in range(1, 251)]
    logs = FakeLogStore()

    await _fanout(customers, FakeCampaignStore(make_campaign(1)), logs, batch_size=100).run(1)

    assert logs.max_in_flight == 100
    assert [row.customer_id for row in logs.rows] == list(range(1, 251))
    for first_of_next, last_of_prev in ((101, 100), (201, 200)):
        next_start = logs.events.index(("start", first_of_next))
        settled = [i for i, (kind, cid) in enumerate(logs.events) if kind == "end" and cid <= last_of_prev]
        assert len(settled) == last_of_prev
        assert max(settled) < next_start


@pytest.mark.anyio
async def test_log_write_failure_counts_as_failed_only_for_that_customer(anyio_backend):
    customers = [make_customer(i) for i in range(1, 6)]
    campaigns = FakeCampaignStore(make_campaign(1))
    # customer 1 would have been sent; its write fails
    logs = FakeLogStore(fail_for={1})

    result = await _fanout(customers, campaigns, logs).run(1)

    assert result.status is CampaignStatus.COMPLETED
    assert (result.sent, result.failed) == (3, 2)
    assert len(logs.rows) == 4
    assert campaigns.rows[1].status == "completed"


@pytest.mark.anyio
async def test_empty_audience_completes_with_zero_rate(anyio_backend):
    campaigns = FakeCampaignStore(make_campaign(1))

    result = await _fanout([], campaigns, FakeLogStore()).run(1)

    assert result.status is CampaignStatus.COMPLETED
    assert campaigns.rows[1].stats["total_recipients"] == 0
    assert campaigns.rows[1].stats["delivery_rate"] == 0.0


@pytest.mark.anyio
async def test_messages_are_personalized(anyio_backend):
    logs = FakeLogStore()
    customers = [make_customer(7, name="Ravi")]

    await _fanout(customers, FakeCampaignStore(make_campaign(1)), logs).run(1)

    assert logs.rows[0].message_metadata == {"subject": "Hi Ravi"}
    assert logs.rows[0].sent_at == FIXED_NOW


@pytest.mark.anyio
async def test_missing_segment_marks_campaign_failed(anyio_backend):
    campaigns = FakeCampaignStore(make_campaign(1, segment_id=999))
    logs = FakeLogStore()

    result = await _fanout([make_customer(1)], campaigns, logs).run(1)

    assert result.status is CampaignStatus.FAILED
    campaign = campaigns.rows[1]
    assert campaign.status == "failed"
    assert "999" in campaign.stats["failure_reason"]
    assert campaigns.statuses() == ["processing", "failed"]
    assert logs.rows == []


@pytest.mark.anyio
async def test_failed_processing_write_leaves_draft(anyio_backend):
    campaigns = FakeCampaignStore(make_campaign(1), fail_on={"processing"})

    result = await _fanout([make_customer(1)], campaigns, FakeLogStore()).run(1)

    assert result.status is CampaignStatus.FAILED
    assert campaigns.rows[1].status == "draft"
    assert campaigns.statuses() == []


@pytest.mark.anyio
async def test_failed_completed_write_marks_campaign_failed(anyio_backend):
    campaigns = FakeCampaignStore(make_campaign(1), fail_on={"completed"})

    result = await _fanout([make_customer(1), make_customer(2)], campaigns, FakeLogStore()).run(1)

    assert result.status is CampaignStatus.FAILED
    campaign = campaigns.rows[1]
    assert campaign.status == "failed"
    assert campaign.stats["failure_reason"] == "cannot write status completed"
    assert campaigns.statuses() == ["processing", "failed"]


@pytest.mark.anyio
async def test_missing_or_started_campaigns_are_skipped(anyio_backend):
    campaigns = FakeCampaignStore(make_campaign(2, status="completed"))
    logs = FakeLogStore()
    fanout = _fanout([make_customer(1)], campaigns, logs)

    assert await fanout.run(1) is None
    assert await fanout.run(2) is None
    assert campaigns.updates == []
    assert logs.rows == []


@pytest.mark.anyio
async def test_fanout_against_database(session_factory):
    owner = await seed_user(session_factory)
    await seed_customers(
        session_factory,
        [{"name": "Asha", "city": "Pune"}, {"name": "Meera", "city": "Pune"}, {"city": "Delhi"}],
    )
    async with session_factory() as session:
        segment = CrmSegment(
            name="Pune",
            rules={"combinator": "AND", "rules": [{"field": "city", "operator": "==", "value": "Pune"}]},
            estimated_count=2,
            created_by=owner.id,
        )
        session.add(segment)
        await session.flush()
        campaign = CrmCampaign(
            name="Pune promo",
            segment_id=segment.id,
            template={"subject": "Hi {name}", "body": "Hello"},
            stats={"total_recipients": 2},
            created_by=owner.id,
        )
        session.add(campaign)
        await session.commit()

    fanout = CampaignFanout.from_session_factory(
        session_factory, delivery=SimulatedDelivery(success_rate=1.0)
    )
    result = await fanout.run(campaign.id)

    assert (result.status, result.sent, result.failed) == (CampaignStatus.COMPLETED, 2, 0)
    stored = await SqlCampaignStore(session_factory).get(campaign.id)
    assert stored.status == "completed"
    assert stored.stats["delivery_rate"] == 100.0
    assert stored.completed_at is not None
