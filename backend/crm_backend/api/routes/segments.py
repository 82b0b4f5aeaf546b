from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.audit import log_audit
from crm_backend.core.db import get_session
from crm_backend.core.deps import get_current_user, get_customer_store
from crm_backend.models.crm_segment import CrmSegment
from crm_backend.models.crm_user import CrmUser
from crm_backend.schemas.common import ApiResponse
from crm_backend.schemas.segment import (
    SegmentCreate,
    SegmentEstimateOut,
    SegmentEstimateRequest,
    SegmentOut,
    SegmentUpdate,
)
from crm_backend.services.segment_query import estimate_segment
from crm_backend.services.segments import (
    create_segment,
    get_owned_segment,
    refresh_segment_estimate,
    update_segment,
)
from crm_backend.services.stores import CustomerStore

router = APIRouter(prefix="/user", tags=["segments"])


def _remote(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post(
    "/create-segment",
    response_model=ApiResponse[SegmentOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_segment_route(
    payload: SegmentCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    customers: CustomerStore = Depends(get_customer_store),
    user: CrmUser = Depends(get_current_user),
):
    segment = await create_segment(session, customers, user.id, payload)
    await log_audit(
        session,
        user.id,
        "segment",
        segment.id,
        "CREATE",
        details={"name": segment.name, "estimated_count": segment.estimated_count},
        remote_addr=_remote(request),
    )
    await session.commit()
    await session.refresh(segment)
    return ApiResponse(data=SegmentOut.model_validate(segment), message="Segment created successfully")


@router.get("/get-segment", response_model=ApiResponse[SegmentOut])
async def get_segment(
    segment_id: int = Query(..., alias="id"),
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    segment = await get_owned_segment(session, user.id, segment_id)
    return ApiResponse(data=SegmentOut.model_validate(segment))


@router.get("/segments", response_model=ApiResponse[List[SegmentOut]])
async def list_segments(
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    result = await session.execute(
        select(CrmSegment)
        .where(CrmSegment.created_by == user.id)
        .order_by(CrmSegment.created_at.desc(), CrmSegment.id.desc())
    )
    return ApiResponse(data=[SegmentOut.model_validate(s) for s in result.scalars().all()])


@router.put("/segments/{segment_id}", response_model=ApiResponse[SegmentOut])
async def update_segment_route(
    segment_id: int,
    payload: SegmentUpdate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    customers: CustomerStore = Depends(get_customer_store),
    user: CrmUser = Depends(get_current_user),
):
    segment = await update_segment(session, customers, user.id, segment_id, payload)
    await log_audit(
        session,
        user.id,
        "segment",
        segment.id,
        "UPDATE",
        details=payload.model_dump(mode="json", exclude_unset=True),
        remote_addr=_remote(request),
    )
    await session.commit()
    await session.refresh(segment)
    return ApiResponse(data=SegmentOut.model_validate(segment), message="Segment updated successfully")


@router.post("/segments/{segment_id}/refresh-estimate", response_model=ApiResponse[SegmentOut])
async def refresh_estimate(
    segment_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session),
    customers: CustomerStore = Depends(get_customer_store),
    user: CrmUser = Depends(get_current_user),
):
    segment = await refresh_segment_estimate(session, customers, user.id, segment_id)
    await log_audit(
        session,
        user.id,
        "segment",
        segment.id,
        "REFRESH_ESTIMATE",
        details={"estimated_count": segment.estimated_count},
        remote_addr=_remote(request),
    )
    await session.commit()
    await session.refresh(segment)
    return ApiResponse(data=SegmentOut.model_validate(segment))


@router.post("/estimate-segment", response_model=ApiResponse[SegmentEstimateOut])
async def estimate_segment_route(
    payload: SegmentEstimateRequest,
    customers: CustomerStore = Depends(get_customer_store),
    user: CrmUser = Depends(get_current_user),
):
    count = await estimate_segment(customers, payload.rules)
    return ApiResponse(data=SegmentEstimateOut(count=count))
