"""Segment model holding a user-authored rule set and its cached size."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from crm_backend.models.base import Base


class CrmSegment(Base):
    __tablename__ = "crm_segments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # {"combinator": "AND"|"OR", "rules": [{field, operator, value, value_type}]}
    rules: Mapped[dict] = mapped_column(JSON, nullable=False)
    # Derived from ``rules``; recomputed on every save that changes them.
    estimated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[int] = mapped_column(
        ForeignKey("crm_users.id"), nullable=False, index=True
    )
    is_dynamic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
