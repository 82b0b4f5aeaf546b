"""Customer records that segments are evaluated against."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from crm_backend.models.base import Base


class CrmCustomer(Base):
    __tablename__ = "crm_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))

    # Address
    street: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip: Mapped[Optional[str]] = mapped_column(String(20))
    country: Mapped[Optional[str]] = mapped_column(String(100), default="India")

    # Demographics
    age: Mapped[Optional[int]] = mapped_column(Integer)
    gender: Mapped[Optional[str]] = mapped_column(String(20))
    occupation: Mapped[Optional[str]] = mapped_column(String(100))

    # Purchase stats, maintained by order writes
    total_spent: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, default=0
    )
    order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_purchase: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_purchase: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    average_order_value: Mapped[Optional[float]] = mapped_column(
        Numeric(18, 2, asdecimal=False)
    )

    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
