"""Async database session management helpers."""

import json
from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm_backend.core.config import settings


def json_serializer(value) -> str:
    # Tags are matched as text, so non-ASCII stays literal rather than \uXXXX.
    return json.dumps(value, ensure_ascii=False)


engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    isolation_level=settings.DB_ISOLATION_LEVEL,
    echo=settings.DEBUG,
    json_serializer=json_serializer,
)

SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the session factory stores are built from."""

    return SessionLocal


async def get_session(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""

    async with factory() as session:
        yield session
