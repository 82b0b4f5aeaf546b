import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from crm_backend.core.db import get_session_factory
from crm_backend.core.deps import get_campaign_runner, get_current_user
from crm_backend.core.errors import InvalidRuleSetError, ZeroMatchSegmentError
from crm_backend.main import app
from crm_backend.models.crm_campaign import CrmCampaign
from crm_backend.models.crm_communication_log import CrmCommunicationLog
from crm_backend.models.crm_segment import CrmSegment
from crm_backend.schemas.campaign import CampaignCreate
from crm_backend.services.campaigns import create_campaign
from crm_backend.services.stores import SqlCustomerStore
from crm_fakes import seed_customers, seed_user

TEMPLATE = {"subject": "Hi {name}", "body": "Thanks for shopping in {city}"}


class RecordingRunner:
    def __init__(self):
        self.submitted: list[int] = []

    def submit(self, campaign_id: int):
        self.submitted.append(campaign_id)


async def _add_segment(session_factory, owner_id: int, name: str, rules: dict) -> int:
    async with session_factory() as session:
        segment = CrmSegment(name=name, rules=rules, estimated_count=0, created_by=owner_id)
        session.add(segment)
        await session.commit()
        return segment.id


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.fixture
async def world(session_factory):
    owner = await seed_user(session_factory)
    await seed_customers(
        session_factory,
        [{"city": "Pune", "total_spent": 150}, {"city": "Delhi", "total_spent": 40}],
    )
    matching = await _add_segment(
        session_factory,
        owner.id,
        "Pune",
        {"combinator": "AND", "rules": [{"field": "city", "operator": "==", "value": "Pune"}]},
    )
    empty = await _add_segment(
        session_factory,
        owner.id,
        "Nobody",
        {"combinator": "AND", "rules": [{"field": "city", "operator": "==", "value": "Atlantis"}]},
    )
    return owner, matching, empty


@pytest.mark.anyio
async def test_zero_match_segment_creates_nothing(session_factory, world):
    owner, _, empty = world
    payload = CampaignCreate.model_validate({"name": "Ghost", "segmentId": empty, "template": TEMPLATE})

    async with session_factory() as session:
        with pytest.raises(ZeroMatchSegmentError) as ctx:
            await create_campaign(session, SqlCustomerStore(session_factory), owner.id, payload)

    assert ctx.value.status_code == 400
    assert await _count(session_factory, CrmCampaign) == 0
    assert await _count(session_factory, CrmCommunicationLog) == 0


@pytest.mark.anyio
async def test_segment_without_rules_is_rejected(session_factory, world):
    owner, _, _ = world
    bare = await _add_segment(session_factory, owner.id, "Bare", {"combinator": "AND", "rules": []})
    payload = CampaignCreate.model_validate({"name": "Bare", "segmentId": bare, "template": TEMPLATE})

    async with session_factory() as session:
        with pytest.raises(InvalidRuleSetError):
            await create_campaign(session, SqlCustomerStore(session_factory), owner.id, payload)


@pytest.mark.anyio
async def test_campaign_starts_as_draft_with_live_count(session_factory, world):
    owner, matching, _ = world
    payload = CampaignCreate.model_validate({"name": "Pune promo", "segmentId": matching, "template": TEMPLATE})

    async with session_factory() as session:
        campaign = await create_campaign(session, SqlCustomerStore(session_factory), owner.id, payload)
        await session.commit()

    assert campaign.status == "draft"
    assert campaign.stats["total_recipients"] == 1
    assert campaign.template["subject"] == "Hi {name}"


@pytest.fixture
async def client(session_factory, world):
    owner, _, _ = world
    runner = RecordingRunner()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = lambda: owner
    app.dependency_overrides[get_campaign_runner] = lambda: runner
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http, runner
    app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_create_campaign_endpoint_rejects_zero_match(client, world, session_factory):
    http, runner = client
    _, _, empty = world

    response = await http.post(
        "/api/user/create-campaign",
        json={"name": "Ghost", "segmentId": empty, "template": TEMPLATE},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "0 customers" in body["message"]
    assert runner.submitted == []
    assert await _count(session_factory, CrmCampaign) == 0


@pytest.mark.anyio
async def test_create_campaign_endpoint_submits_fanout(client, world):
    http, runner = client
    _, matching, _ = world

    response = await http.post(
        "/api/user/create-campaign",
        json={"name": "Pune promo", "segmentId": matching, "template": TEMPLATE},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "draft"
    assert data["stats"]["total_recipients"] == 1
    assert runner.submitted == [data["id"]]


@pytest.mark.anyio
async def test_estimate_endpoint_errors_are_rendered(client):
    http, _ = client

    empty = await http.post("/api/user/estimate-segment", json={"rules": {"rules": []}})
    assert empty.status_code == 400
    assert empty.json() == {"success": False, "message": "At least one rule is required"}

    unsupported = await http.post(
        "/api/user/estimate-segment",
        json={"rules": {"rules": [{"field": "city", "operator": "exists"}]}},
    )
    assert unsupported.status_code == 400
    assert "not supported" in unsupported.json()["message"]

    unknown = await http.post(
        "/api/user/estimate-segment",
        json={"rules": {"rules": [{"field": "nickname", "operator": "==", "value": "x"}]}},
    )
    assert unknown.status_code == 422
    assert unknown.json()["message"] == "Validation failed"


@pytest.mark.anyio
async def test_estimate_endpoint_counts(client):
    http, _ = client

    response = await http.post(
        "/api/user/estimate-segment",
        json={"rules": {"condition": "or", "rules": [
            {"field": "city", "operator": "==", "value": "Pune"},
            {"field": "city", "operator": "==", "value": "Delhi"},
        ]}},
    )

    assert response.status_code == 200
    assert response.json()["data"] == {"count": 2}
