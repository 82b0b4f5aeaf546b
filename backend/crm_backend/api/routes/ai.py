from fastapi import APIRouter, Depends, Request
from loguru import logger

from crm_backend.core.config import settings
from crm_backend.core.deps import get_current_user
from crm_backend.core.rate_limit import limiter
from crm_backend.models.crm_user import CrmUser
from crm_backend.schemas.ai import CampaignContentRequest, CustomerInsightsRequest
from crm_backend.schemas.common import ApiResponse
from crm_backend.services.ai_client import (
    generate_campaign_content,
    generate_customer_insights,
)

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/generate-campaign-content", response_model=ApiResponse[str])
@limiter.limit(settings.AI_RATE)
async def campaign_content(
    payload: CampaignContentRequest,
    request: Request,
    user: CrmUser = Depends(get_current_user),
):
    """Draft campaign copy for the audience described by ``segmentRules``."""

    content = await generate_campaign_content(payload.segmentRules)
    logger.bind(rules=len(payload.segmentRules.rules), chars=len(content)).info(
        "ai_campaign_content_generated"
    )
    return ApiResponse(data=content)


@router.post("/generate-customer-insights", response_model=ApiResponse[str])
@limiter.limit(settings.AI_RATE)
async def customer_insights(
    payload: CustomerInsightsRequest,
    request: Request,
    user: CrmUser = Depends(get_current_user),
):
    insights = await generate_customer_insights(payload.customerData)
    logger.bind(records=len(payload.customerData), chars=len(insights)).info(
        "ai_customer_insights_generated"
    )
    return ApiResponse(data=insights)
