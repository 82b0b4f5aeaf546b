"""Storage ports used by the segmentation engine and the campaign fan-out.

Each port is a small ``Protocol``; the SQLAlchemy adapters below open one
short-lived session per call from the injected session factory, which keeps
them safe to call from concurrently running tasks.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from crm_backend.core.db_retry import with_db_retry
from crm_backend.models.crm_campaign import CrmCampaign
from crm_backend.models.crm_communication_log import CrmCommunicationLog
from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_segment import CrmSegment


class CustomerStore(Protocol):
    async def find(self, query: ColumnElement[bool]) -> Sequence[CrmCustomer]: ...

    async def count(self, query: ColumnElement[bool]) -> int: ...


class SegmentStore(Protocol):
    async def get(self, segment_id: int) -> CrmSegment | None: ...


class CampaignStore(Protocol):
    async def get(self, campaign_id: int) -> CrmCampaign | None: ...

    async def update(self, campaign_id: int, **values: Any) -> None: ...

    async def list_by_status(self, status: str) -> Sequence[CrmCampaign]: ...


class CommunicationLogStore(Protocol):
    async def create(self, **values: Any) -> CrmCommunicationLog: ...


class _SqlStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions


class SqlCustomerStore(_SqlStore):
    async def find(self, query: ColumnElement[bool]) -> Sequence[CrmCustomer]:
        async with self._sessions() as session:
            stmt = select(CrmCustomer).where(query).order_by(CrmCustomer.id)
            return (await session.execute(stmt)).scalars().all()

    async def count(self, query: ColumnElement[bool]) -> int:
        async with self._sessions() as session:
            stmt = select(func.count()).select_from(CrmCustomer).where(query)
            return int((await session.execute(stmt)).scalar_one())


class SqlSegmentStore(_SqlStore):
    async def get(self, segment_id: int) -> CrmSegment | None:
        async with self._sessions() as session:
            return await session.get(CrmSegment, segment_id)


class SqlCampaignStore(_SqlStore):
    async def get(self, campaign_id: int) -> CrmCampaign | None:
        async with self._sessions() as session:
            return await session.get(CrmCampaign, campaign_id)

    async def update(self, campaign_id: int, **values: Any) -> None:
        async with self._sessions() as session:

            async def _write() -> None:
                await session.execute(
                    update(CrmCampaign).where(CrmCampaign.id == campaign_id).values(**values)
                )
                await session.commit()

            await with_db_retry(session, _write, label=f"campaign_update:{campaign_id}")

    async def list_by_status(self, status: str) -> Sequence[CrmCampaign]:
        async with self._sessions() as session:
            stmt = select(CrmCampaign).where(CrmCampaign.status == status).order_by(CrmCampaign.id)
            return (await session.execute(stmt)).scalars().all()


class SqlCommunicationLogStore(_SqlStore):
    async def create(self, **values: Any) -> CrmCommunicationLog:
        async with self._sessions() as session:
            log = CrmCommunicationLog(**values)
            session.add(log)
            await session.commit()
            return log
