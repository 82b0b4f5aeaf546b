from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_backend.core.db import get_session, get_session_factory
from crm_backend.core.logging import user_id_ctx_var
from crm_backend.core.security import decode_token
from crm_backend.models.crm_user import CrmUser
from crm_backend.services.runner import CampaignRunner
from crm_backend.services.stores import CustomerStore, SqlCustomerStore


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> CrmUser:
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    token = auth.split(" ", 1)[1]
    try:
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type"
            )
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )

    user = await session.get(CrmUser, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    request.state.user_id = user.id
    user_id_ctx_var.set(str(user.id))
    session.expunge(user)
    return user


def get_customer_store(
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CustomerStore:
    return SqlCustomerStore(sessions)


def get_campaign_runner(request: Request) -> CampaignRunner:
    return request.app.state.campaign_runner
