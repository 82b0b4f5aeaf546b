"""Pydantic models for campaign endpoints and the campaign state machine."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CampaignTemplate(BaseModel):
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    variables: List[str] = Field(default_factory=list)


class CampaignStats(BaseModel):
    total_recipients: int = 0
    sent: int = 0
    failed: int = 0
    delivery_rate: float = 0
    failure_reason: Optional[str] = None


class CampaignCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255)
    segment_id: int = Field(..., validation_alias=AliasChoices("segmentId", "segment_id"))
    template: CampaignTemplate


class CampaignSegmentRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    estimated_count: int


class CampaignOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    segment_id: int
    segment: Optional[CampaignSegmentRef] = None
    template: CampaignTemplate
    status: CampaignStatus
    stats: CampaignStats
    created_by: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class CommunicationLogCustomer(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    city: Optional[str] = None


class CommunicationLogOut(BaseModel):
    id: int
    campaign_id: int
    customer: Optional[CommunicationLogCustomer] = None
    channel: str
    status: str
    failure_reason: Optional[str] = None
    message_metadata: Optional[dict] = None
    sent_at: Optional[datetime] = None
