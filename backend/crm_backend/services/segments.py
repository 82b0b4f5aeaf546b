"""Segment persistence rules: ownership, unique names and a fresh estimate per save."""

from __future__ import annotations

from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.errors import DuplicateError, NotFoundError
from crm_backend.models.crm_segment import CrmSegment
from crm_backend.schemas.segment import RuleSet, SegmentCreate, SegmentUpdate
from crm_backend.services.segment_query import estimate_segment
from crm_backend.services.stores import CustomerStore

DUPLICATE_NAME = "Segment name already exists"


async def _ensure_name_available(
    session: AsyncSession, name: str, exclude_id: Optional[int] = None
) -> None:
    stmt = select(CrmSegment.id).where(CrmSegment.name == name)
    if exclude_id is not None:
        stmt = stmt.where(CrmSegment.id != exclude_id)
    if (await session.execute(stmt)).first() is not None:
        raise DuplicateError(DUPLICATE_NAME)


async def _flush(session: AsyncSession) -> None:
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateError(DUPLICATE_NAME) from exc


async def get_owned_segment(session: AsyncSession, user_id: int, segment_id: int) -> CrmSegment:
    segment = (
        await session.execute(
            select(CrmSegment).where(
                CrmSegment.id == segment_id, CrmSegment.created_by == user_id
            )
        )
    ).scalar_one_or_none()
    if segment is None:
        raise NotFoundError("Segment not found or access denied")
    return segment


async def create_segment(
    session: AsyncSession, customers: CustomerStore, user_id: int, payload: SegmentCreate
) -> CrmSegment:
    estimated = await estimate_segment(customers, payload.rules)
    await _ensure_name_available(session, payload.name)
    segment = CrmSegment(
        name=payload.name,
        description=payload.description,
        rules=payload.rules.model_dump(mode="json"),
        estimated_count=estimated,
        created_by=user_id,
        is_dynamic=True,
    )
    session.add(segment)
    await _flush(session)
    return segment


async def update_segment(
    session: AsyncSession,
    customers: CustomerStore,
    user_id: int,
    segment_id: int,
    payload: SegmentUpdate,
) -> CrmSegment:
    """Apply an edit; a change to the rules recomputes ``estimated_count``."""

    segment = await get_owned_segment(session, user_id, segment_id)
    if payload.name is not None and payload.name != segment.name:
        await _ensure_name_available(session, payload.name, exclude_id=segment.id)
        segment.name = payload.name
    if "description" in payload.model_fields_set:
        segment.description = payload.description
    if payload.rules is not None:
        new_rules = payload.rules.model_dump(mode="json")
        if new_rules != segment.rules:
            segment.estimated_count = await estimate_segment(customers, payload.rules)
            segment.rules = new_rules
            logger.bind(segment_id=segment.id, estimated_count=segment.estimated_count).info(
                "segment_estimate_refreshed"
            )
    await _flush(session)
    return segment


async def refresh_segment_estimate(
    session: AsyncSession, customers: CustomerStore, user_id: int, segment_id: int
) -> CrmSegment:
    segment = await get_owned_segment(session, user_id, segment_id)
    segment.estimated_count = await estimate_segment(
        customers, RuleSet.model_validate(segment.rules)
    )
    logger.bind(segment_id=segment.id, estimated_count=segment.estimated_count).info(
        "segment_estimate_refreshed"
    )
    await _flush(session)
    return segment
