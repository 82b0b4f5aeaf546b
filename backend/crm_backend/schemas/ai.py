from typing import Any, List

from pydantic import BaseModel, Field

from crm_backend.schemas.segment import RuleSet


class CampaignContentRequest(BaseModel):
    segmentRules: RuleSet


class CustomerInsightsRequest(BaseModel):
    customerData: List[Any] = Field(...)
