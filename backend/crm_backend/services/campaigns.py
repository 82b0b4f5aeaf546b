"""Campaign creation: validate the audience before any record exists."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.errors import InvalidRuleSetError, ZeroMatchSegmentError
from crm_backend.models.crm_campaign import CrmCampaign
from crm_backend.schemas.campaign import CampaignCreate, CampaignStats, CampaignStatus
from crm_backend.schemas.segment import RuleSet
from crm_backend.services.segment_query import estimate_segment
from crm_backend.services.segments import get_owned_segment
from crm_backend.services.stores import CustomerStore


async def create_campaign(
    session: AsyncSession, customers: CustomerStore, user_id: int, payload: CampaignCreate
) -> CrmCampaign:
    segment = await get_owned_segment(session, user_id, payload.segment_id)
    rule_set = RuleSet.model_validate(segment.rules or {})
    if not rule_set.rules:
        raise InvalidRuleSetError("Segment has no rules defined")

    matched = await estimate_segment(customers, rule_set)
    if matched == 0:
        raise ZeroMatchSegmentError("Segment matches 0 customers - cannot create campaign")

    campaign = CrmCampaign(
        name=payload.name,
        segment_id=segment.id,
        template=payload.template.model_dump(),
        status=CampaignStatus.DRAFT.value,
        stats=CampaignStats(total_recipients=matched).model_dump(exclude_none=True),
        created_by=user_id,
    )
    session.add(campaign)
    await session.flush()
    return campaign
