from datetime import datetime

import pytest

from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_order import CrmOrder
from crm_backend.services.order_stats import apply_order_created, apply_order_deleted
from crm_fakes import seed_customers


async def _place_order(session, customer_id, total, created_at):
    order = CrmOrder(
        order_id=f"ORD-{customer_id}-{int(total)}",
        customer_id=customer_id,
        items=[{"name": "Tea", "quantity": 1, "price": total, "discount": 0}],
        subtotal=total,
        total=total,
        created_at=created_at,
    )
    session.add(order)
    await session.flush()
    await apply_order_created(session, order)
    await session.commit()
    return order


@pytest.mark.anyio
async def test_orders_roll_up_into_customer_stats(session_factory):
    (customer,) = await seed_customers(session_factory, [{"name": "Asha"}])
    first_at = datetime(2024, 1, 5, 10, 0)
    second_at = datetime(2024, 2, 9, 18, 30)

    async with session_factory() as session:
        await _place_order(session, customer.id, 100.0, first_at)
        second = await _place_order(session, customer.id, 300.0, second_at)

    async with session_factory() as session:
        stored = await session.get(CrmCustomer, customer.id)
        assert stored.order_count == 2
        assert stored.total_spent == 400.0
        assert stored.average_order_value == 200.0
        assert stored.first_purchase == first_at
        assert stored.last_purchase == second_at

    async with session_factory() as session:
        await apply_order_deleted(session, second)
        await session.commit()

    async with session_factory() as session:
        stored = await session.get(CrmCustomer, customer.id)
        assert stored.order_count == 1
        assert stored.total_spent == 100.0
        assert stored.average_order_value == 100.0


@pytest.mark.anyio
async def test_order_count_never_goes_negative(session_factory):
    (customer,) = await seed_customers(session_factory, [{"name": "Ravi"}])
    ghost = CrmOrder(order_id="ORD-ghost", customer_id=customer.id, items=[], total=0.0)

    async with session_factory() as session:
        await apply_order_deleted(session, ghost)
        await session.commit()

    async with session_factory() as session:
        stored = await session.get(CrmCustomer, customer.id)
        assert stored.order_count == 0
        assert stored.average_order_value is None
