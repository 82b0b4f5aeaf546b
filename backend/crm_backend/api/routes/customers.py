from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.api.listing import order_by_clause
from crm_backend.core.audit import log_audit
from crm_backend.core.db import get_session
from crm_backend.core.deps import get_current_user
from crm_backend.core.errors import DuplicateError, NotFoundError
from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_user import CrmUser
from crm_backend.schemas.common import ApiResponse, build_pagination
from crm_backend.schemas.customer import CustomerCreate, CustomerOut, CustomerUpdate

router = APIRouter(prefix="/customer", tags=["customers"])

SORTABLE = (
    "created_at",
    "updated_at",
    "name",
    "email",
    "city",
    "total_spent",
    "order_count",
    "last_purchase",
)


def _remote(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _get_customer(session: AsyncSession, customer_id: int) -> CrmCustomer:
    obj = await session.get(CrmCustomer, customer_id)
    if not obj:
        raise NotFoundError("Customer not found")
    return obj


@router.post(
    "/create",
    response_model=ApiResponse[CustomerOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_customer(
    payload: CustomerCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    exists = await session.scalar(
        select(CrmCustomer.id).where(CrmCustomer.email == payload.email)
    )
    if exists:
        raise DuplicateError("Email already exists")

    data = payload.model_dump()
    obj = CrmCustomer(**data)
    session.add(obj)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise DuplicateError("Email already exists")

    await log_audit(
        session,
        user.id,
        "customer",
        obj.id,
        "CREATE",
        details={"email": payload.email},
        remote_addr=_remote(request),
    )
    await session.commit()
    await session.refresh(obj)
    return ApiResponse(data=CustomerOut.model_validate(obj), message="Customer created successfully")


@router.get("", response_model=ApiResponse[List[CustomerOut]])
async def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=100),
    search: str = "",
    sort: str = "-created_at",
    city: str = "",
    gender: str = "",
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    conds = []
    term = search.strip()
    if term:
        like = f"%{term}%"
        conds.append(or_(CrmCustomer.name.ilike(like), CrmCustomer.email.ilike(like)))
    if city:
        conds.append(CrmCustomer.city.ilike(f"%{city}%"))
    if gender:
        conds.append(CrmCustomer.gender == gender.lower())

    stmt = select(CrmCustomer)
    count_stmt = select(func.count()).select_from(CrmCustomer)
    if conds:
        c = and_(*conds)
        stmt = stmt.where(c)
        count_stmt = count_stmt.where(c)

    total = (await session.execute(count_stmt)).scalar_one()
    result = await session.execute(
        stmt.order_by(order_by_clause(CrmCustomer, sort, SORTABLE, "-created_at"))
        .limit(limit)
        .offset((page - 1) * limit)
    )
    items = [CustomerOut.model_validate(c) for c in result.scalars().all()]
    return ApiResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/get", response_model=ApiResponse[List[CustomerOut]])
async def list_all_customers(
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    result = await session.execute(select(CrmCustomer).order_by(CrmCustomer.created_at.desc()))
    return ApiResponse(data=[CustomerOut.model_validate(c) for c in result.scalars().all()])


@router.get("/{customer_id}", response_model=ApiResponse[CustomerOut])
async def get_customer(
    customer_id: int,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    obj = await _get_customer(session, customer_id)
    return ApiResponse(data=CustomerOut.model_validate(obj))


@router.put("/{customer_id}", response_model=ApiResponse[CustomerOut])
async def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    await _get_customer(session, customer_id)

    data = payload.model_dump(exclude_unset=True)
    # email identifies the customer and never changes
    data.pop("email", None)
    if data:
        await session.execute(
            update(CrmCustomer)
            .where(CrmCustomer.id == customer_id)
            .values(**data, updated_at=datetime.utcnow())
        )
        await log_audit(
            session,
            user.id,
            "customer",
            customer_id,
            "UPDATE",
            details=data,
            remote_addr=_remote(request),
        )
    await session.commit()

    obj = await _get_customer(session, customer_id)
    await session.refresh(obj)
    return ApiResponse(data=CustomerOut.model_validate(obj), message="Customer updated successfully")


@router.delete("/{customer_id}", response_model=ApiResponse[None])
async def deactivate_customer(
    customer_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    await _get_customer(session, customer_id)
    await session.execute(
        update(CrmCustomer)
        .where(CrmCustomer.id == customer_id)
        .values(is_active=False, updated_at=datetime.utcnow())
    )
    await log_audit(
        session,
        user.id,
        "customer",
        customer_id,
        "DEACTIVATE",
        remote_addr=_remote(request),
    )
    await session.commit()
    return ApiResponse(message="Customer deactivated successfully")
