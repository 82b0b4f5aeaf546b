from datetime import datetime
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.audit import log_audit
from crm_backend.core.config import settings
from crm_backend.core.db import get_session
from crm_backend.core.deps import get_current_user
from crm_backend.core.logging import user_id_ctx_var
from crm_backend.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
)
from crm_backend.models.crm_user import CrmUser
from crm_backend.schemas.auth import GoogleLoginRequest, LoginResponse
from crm_backend.schemas.common import ApiResponse
from crm_backend.schemas.user import UserOut
from crm_backend.services.google_auth import verify_google_credential

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_PATH = "/api/auth/refresh"


def _set_refresh_cookies(response: Response, refresh_token: str | None, csrf_token: str) -> None:
    max_age = settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600
    if refresh_token is not None:
        response.set_cookie(
            key=settings.REFRESH_COOKIE_NAME,
            value=refresh_token,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite=settings.COOKIE_SAMESITE,
            domain=(settings.COOKIE_DOMAIN or None),  # guard for empty domain
            max_age=max_age,
            path="/",
        )
    response.set_cookie(
        key=settings.REFRESH_CSRF_COOKIE_NAME,
        value=csrf_token,
        httponly=False,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        domain=(settings.COOKIE_DOMAIN or None),
        max_age=max_age,
        path=REFRESH_PATH,
    )


def _remote(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.post("/google-login", response_model=ApiResponse[LoginResponse])
async def google_login(
    payload: GoogleLoginRequest,
    response: Response,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    claims = await verify_google_credential(payload.credential)
    google_id = str(claims["sub"])

    user = (
        await session.execute(select(CrmUser).where(CrmUser.google_id == google_id))
    ).scalar_one_or_none()
    if user is None:
        user = (
            await session.execute(select(CrmUser).where(CrmUser.email == claims["email"]))
        ).scalar_one_or_none()
    if user is None:
        user = CrmUser(google_id=google_id, email=claims["email"], name=claims.get("name") or claims["email"])
        session.add(user)
    user.google_id = google_id
    user.name = claims.get("name") or user.name
    user.avatar = claims.get("picture") or user.avatar
    user.last_login = datetime.utcnow()
    await session.flush()

    request.state.user_id = user.id
    user_id_ctx_var.set(str(user.id))
    csrf_token = secrets.token_urlsafe(32)
    access_token = create_access_token(user.id)
    _set_refresh_cookies(response, create_refresh_token(user.id, csrf_token), csrf_token)

    await log_audit(session, user.id, "auth", None, "LOGIN", remote_addr=_remote(request))
    await session.commit()
    await session.refresh(user)
    return ApiResponse(
        data=LoginResponse(
            access_token=access_token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserOut.model_validate(user),
        ),
        message="Login successful",
    )


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="No refresh token"
        )
    csrf_cookie = request.cookies.get(settings.REFRESH_CSRF_COOKIE_NAME)
    csrf_header = request.headers.get("X-CSRF-Token")
    if not csrf_cookie or not csrf_header or csrf_cookie != csrf_header:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="CSRF token mismatch"
        )
    try:
        payload = decode_token(token)
        if payload.get("type") != "refresh":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
            )
        if payload.get("csrf") != csrf_cookie:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="CSRF token mismatch"
            )
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )

    user = await session.get(CrmUser, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    request.state.user_id = user.id
    user_id_ctx_var.set(str(user.id))

    new_access = create_access_token(user.id)
    _set_refresh_cookies(response, None, csrf_cookie)

    await log_audit(
        session,
        user.id,
        "auth",
        None,
        "REFRESH",
        remote_addr=_remote(request),
    )
    await session.commit()
    return ApiResponse(
        data={
            "access_token": new_access,
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }
    )


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    user: CrmUser = Depends(get_current_user),
):
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path="/", domain=(settings.COOKIE_DOMAIN or None))
    response.delete_cookie(
        settings.REFRESH_CSRF_COOKIE_NAME, path=REFRESH_PATH, domain=(settings.COOKIE_DOMAIN or None)
    )
    await log_audit(session, user.id, "auth", None, "LOGOUT", remote_addr=_remote(request))
    await session.commit()
    return ApiResponse(message="Logged out successfully")


@router.get("/verify", response_model=ApiResponse[UserOut])
async def verify(user: CrmUser = Depends(get_current_user)):
    # from_attributes=True lets the ORM user validate directly
    return ApiResponse(data=UserOut.model_validate(user))
