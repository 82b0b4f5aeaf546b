from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from crm_backend.models.base import Base


class CrmCommunicationLog(Base):
    __tablename__ = "crm_communication_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(
        ForeignKey("crm_campaigns.id"), nullable=False, index=True
    )
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("crm_customers.id"), nullable=False, index=True
    )
    channel: Mapped[str] = mapped_column(String(10), nullable=False, default="email")  # email/sms/push
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued", index=True
    )  # queued/sent/delivered/opened/clicked/failed
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255))
    message_metadata: Mapped[Optional[dict]] = mapped_column(JSON)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
