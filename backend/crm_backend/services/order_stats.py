"""Keep a customer's purchase stats in step with their orders."""

from __future__ import annotations

from sqlalchemy import case, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_order import CrmOrder


async def _recompute_average(session: AsyncSession, customer_id: int) -> None:
    # Separate statement: MySQL evaluates SET clauses left to right.
    await session.execute(
        update(CrmCustomer)
        .where(CrmCustomer.id == customer_id)
        .values(
            average_order_value=case(
                (CrmCustomer.order_count > 0, CrmCustomer.total_spent / CrmCustomer.order_count),
                else_=None,
            )
        )
    )


async def apply_order_created(session: AsyncSession, order: CrmOrder) -> None:
    await session.execute(
        update(CrmCustomer)
        .where(CrmCustomer.id == order.customer_id)
        .values(
            order_count=CrmCustomer.order_count + 1,
            total_spent=CrmCustomer.total_spent + order.total,
            last_purchase=order.created_at,
            first_purchase=func.coalesce(CrmCustomer.first_purchase, order.created_at),
        )
    )
    await _recompute_average(session, order.customer_id)


async def apply_order_deleted(session: AsyncSession, order: CrmOrder) -> None:
    await session.execute(
        update(CrmCustomer)
        .where(CrmCustomer.id == order.customer_id)
        .values(
            order_count=case(
                (CrmCustomer.order_count > 0, CrmCustomer.order_count - 1), else_=0
            ),
            total_spent=CrmCustomer.total_spent - order.total,
        )
    )
    await _recompute_average(session, order.customer_id)
