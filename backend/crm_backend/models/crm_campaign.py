"""Campaign model: one segment, one template, one fan-out run."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from crm_backend.models.base import Base


class CrmCampaign(Base):
    __tablename__ = "crm_campaigns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    segment_id: Mapped[int] = mapped_column(
        ForeignKey("crm_segments.id"), nullable=False, index=True
    )
    # {"subject": str, "body": str, "variables": [str]}
    template: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="draft", index=True
    )  # draft/processing/completed/failed
    # {"total_recipients", "sent", "failed", "delivery_rate", "failure_reason"}
    stats: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[int] = mapped_column(
        ForeignKey("crm_users.id"), nullable=False, index=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
