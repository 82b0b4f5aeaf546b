from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.audit import log_audit
from crm_backend.core.db import get_session
from crm_backend.core.deps import get_campaign_runner, get_current_user, get_customer_store
from crm_backend.core.errors import NotFoundError
from crm_backend.models.crm_campaign import CrmCampaign
from crm_backend.models.crm_communication_log import CrmCommunicationLog
from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_segment import CrmSegment
from crm_backend.models.crm_user import CrmUser
from crm_backend.schemas.campaign import (
    CampaignCreate,
    CampaignOut,
    CampaignSegmentRef,
    CommunicationLogCustomer,
    CommunicationLogOut,
)
from crm_backend.schemas.common import ApiResponse
from crm_backend.services.campaigns import create_campaign
from crm_backend.services.runner import CampaignRunner
from crm_backend.services.stores import CustomerStore

router = APIRouter(prefix="/user", tags=["campaigns"])


def _campaign_out(campaign: CrmCampaign, segment: Optional[CrmSegment]) -> CampaignOut:
    out = CampaignOut.model_validate(campaign)
    if segment is not None:
        out.segment = CampaignSegmentRef.model_validate(segment)
    return out


async def _get_owned_campaign(
    session: AsyncSession, user_id: int, campaign_id: int
) -> tuple[CrmCampaign, Optional[CrmSegment]]:
    row = (
        await session.execute(
            select(CrmCampaign, CrmSegment)
            .outerjoin(CrmSegment, CrmSegment.id == CrmCampaign.segment_id)
            .where(CrmCampaign.id == campaign_id, CrmCampaign.created_by == user_id)
        )
    ).first()
    if row is None:
        raise NotFoundError("Campaign not found or access denied")
    return row[0], row[1]


@router.post(
    "/create-campaign",
    response_model=ApiResponse[CampaignOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_campaign_route(
    payload: CampaignCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    customers: CustomerStore = Depends(get_customer_store),
    runner: CampaignRunner = Depends(get_campaign_runner),
    user: CrmUser = Depends(get_current_user),
):
    campaign = await create_campaign(session, customers, user.id, payload)
    await log_audit(
        session,
        user.id,
        "campaign",
        campaign.id,
        "CREATE",
        details={"segment_id": campaign.segment_id, "stats": campaign.stats},
        remote_addr=(request.client.host if request.client else None),
    )
    await session.commit()
    await session.refresh(campaign)

    # The draft row is committed before the fan-out can look it up.
    runner.submit(campaign.id)
    logger.bind(campaign_id=campaign.id, segment_id=campaign.segment_id).info(
        "campaign_created"
    )
    return ApiResponse(
        data=_campaign_out(campaign, None),
        message="Campaign created and processing started",
    )


@router.get("/get-campaign", response_model=ApiResponse[List[CampaignOut]])
async def list_campaigns(
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    rows = (
        await session.execute(
            select(CrmCampaign, CrmSegment)
            .outerjoin(CrmSegment, CrmSegment.id == CrmCampaign.segment_id)
            .where(CrmCampaign.created_by == user.id)
            .order_by(CrmCampaign.created_at.desc(), CrmCampaign.id.desc())
        )
    ).all()
    return ApiResponse(data=[_campaign_out(c, s) for c, s in rows])


@router.get("/campaigns/{campaign_id}", response_model=ApiResponse[CampaignOut])
async def get_campaign(
    campaign_id: int,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    campaign, segment = await _get_owned_campaign(session, user.id, campaign_id)
    return ApiResponse(data=_campaign_out(campaign, segment))


@router.get("/get-log", response_model=ApiResponse[List[CommunicationLogOut]])
async def list_communication_logs(
    campaign_id: int = Query(..., alias="campaignId"),
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    await _get_owned_campaign(session, user.id, campaign_id)
    rows = (
        await session.execute(
            select(CrmCommunicationLog, CrmCustomer)
            .outerjoin(CrmCustomer, CrmCustomer.id == CrmCommunicationLog.customer_id)
            .where(CrmCommunicationLog.campaign_id == campaign_id)
            .order_by(CrmCommunicationLog.sent_at.desc(), CrmCommunicationLog.id.desc())
        )
    ).all()
    logs = [
        CommunicationLogOut(
            id=log.id,
            campaign_id=log.campaign_id,
            customer=(
                CommunicationLogCustomer(
                    id=customer.id,
                    name=customer.name,
                    email=customer.email,
                    phone=customer.phone,
                    city=customer.city,
                )
                if customer is not None
                else None
            ),
            channel=log.channel,
            status=log.status,
            failure_reason=log.failure_reason,
            message_metadata=log.message_metadata,
            sent_at=log.sent_at,
        )
        for log, customer in rows
    ]
    return ApiResponse(data=logs)
