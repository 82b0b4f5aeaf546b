from datetime import datetime
import random
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.api.listing import order_by_clause
from crm_backend.core.audit import log_audit
from crm_backend.core.db import get_session
from crm_backend.core.deps import get_current_user
from crm_backend.core.errors import DuplicateError, NotFoundError
from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_order import CrmOrder
from crm_backend.models.crm_user import CrmUser
from crm_backend.schemas.common import ApiResponse, build_pagination
from crm_backend.schemas.order import OrderCreate, OrderOut, OrderStatus, OrderUpdate
from crm_backend.services.order_stats import apply_order_created, apply_order_deleted

router = APIRouter(prefix="/order", tags=["orders"])

SORTABLE = ("created_at", "updated_at", "total", "status", "order_id")
DUPLICATE_ORDER_ID = "Order ID already exists - please try again"


def _remote(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def generate_order_id() -> str:
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999)}"


async def _get_order(session: AsyncSession, order_pk: int) -> CrmOrder:
    obj = await session.get(CrmOrder, order_pk)
    if not obj:
        raise NotFoundError("Order not found")
    return obj


@router.post(
    "/create",
    response_model=ApiResponse[OrderOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    payload: OrderCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    customer_id = await session.scalar(
        select(CrmCustomer.id).where(CrmCustomer.id == payload.customer_id)
    )
    if not customer_id:
        raise NotFoundError("Customer not found")

    data = payload.model_dump(mode="json")
    data["order_id"] = data.get("order_id") or generate_order_id()
    if data.get("subtotal") is None:
        data["subtotal"] = sum(
            item["price"] * item["quantity"] - item["discount"] for item in data["items"]
        )
    exists = await session.scalar(
        select(CrmOrder.id).where(CrmOrder.order_id == data["order_id"])
    )
    if exists:
        raise DuplicateError(DUPLICATE_ORDER_ID)

    obj = CrmOrder(**data)
    session.add(obj)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise DuplicateError(DUPLICATE_ORDER_ID)

    await apply_order_created(session, obj)
    await log_audit(
        session,
        user.id,
        "order",
        obj.order_id,
        "CREATE",
        details={"customer_id": obj.customer_id, "total": obj.total},
        remote_addr=_remote(request),
    )
    await session.commit()
    await session.refresh(obj)
    return ApiResponse(data=OrderOut.model_validate(obj), message="Order created successfully")


@router.get("", response_model=ApiResponse[List[OrderOut]])
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    customer_id: Optional[int] = None,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    sort: str = "-created_at",
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    conds = []
    if customer_id is not None:
        conds.append(CrmOrder.customer_id == customer_id)
    if order_status is not None:
        conds.append(CrmOrder.status == order_status.value)

    stmt = select(CrmOrder)
    count_stmt = select(func.count()).select_from(CrmOrder)
    if conds:
        c = and_(*conds)
        stmt = stmt.where(c)
        count_stmt = count_stmt.where(c)

    total = (await session.execute(count_stmt)).scalar_one()
    result = await session.execute(
        stmt.order_by(order_by_clause(CrmOrder, sort, SORTABLE, "-created_at"))
        .limit(limit)
        .offset((page - 1) * limit)
    )
    items = [OrderOut.model_validate(o) for o in result.scalars().all()]
    return ApiResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{order_pk}", response_model=ApiResponse[OrderOut])
async def get_order(
    order_pk: int,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    obj = await _get_order(session, order_pk)
    return ApiResponse(data=OrderOut.model_validate(obj))


@router.put("/{order_pk}", response_model=ApiResponse[OrderOut])
async def update_order(
    order_pk: int,
    payload: OrderUpdate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    await _get_order(session, order_pk)

    # customer_id, order_id and created_at are not part of OrderUpdate
    data = payload.model_dump(mode="json", exclude_unset=True)
    if data:
        await session.execute(
            update(CrmOrder)
            .where(CrmOrder.id == order_pk)
            .values(**data, updated_at=datetime.utcnow())
        )
        await log_audit(
            session,
            user.id,
            "order",
            order_pk,
            "UPDATE",
            details=data,
            remote_addr=_remote(request),
        )
    await session.commit()

    obj = await _get_order(session, order_pk)
    await session.refresh(obj)
    return ApiResponse(data=OrderOut.model_validate(obj), message="Order updated successfully")


@router.delete("/{order_pk}", response_model=ApiResponse[None])
async def delete_order(
    order_pk: int,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    obj = await _get_order(session, order_pk)
    details = {"customer_id": obj.customer_id, "total": obj.total}
    order_ref = obj.order_id
    await apply_order_deleted(session, obj)
    await session.execute(delete(CrmOrder).where(CrmOrder.id == order_pk))
    await log_audit(
        session,
        user.id,
        "order",
        order_ref,
        "DELETE",
        details=details,
        remote_addr=_remote(request),
    )
    await session.commit()
    return ApiResponse(message="Order deleted successfully")
