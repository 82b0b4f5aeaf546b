"""Application entry point for the CRM campaign API service."""

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.api.routes.ai import router as ai_router
from crm_backend.api.routes.auth import router as auth_router
from crm_backend.api.routes.campaigns import router as campaigns_router
from crm_backend.api.routes.customers import router as customers_router
from crm_backend.api.routes.orders import router as orders_router
from crm_backend.api.routes.segments import router as segments_router
from crm_backend.core.config import settings
from crm_backend.core.db import SessionLocal, get_session
from crm_backend.core.errors import register_exception_handlers
from crm_backend.core.logging import setup_logging
from crm_backend.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from crm_backend.core.rate_limit import init_rate_limiter
from crm_backend.services.runner import CampaignRunner, recover_stalled_campaigns
from crm_backend.services.stores import SqlCampaignStore

setup_logging()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)

register_exception_handlers(app)
init_rate_limiter(app)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "X-CSRF-Token",
        "X-Request-ID",
    ],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.state.campaign_runner = CampaignRunner(SessionLocal)


@app.on_event("startup")
async def startup_event():
    """Settle campaigns left unfinished by a previous process."""

    if not settings.CAMPAIGN_RECOVERY_ON_STARTUP:
        return
    try:
        await recover_stalled_campaigns(SqlCampaignStore(SessionLocal), app.state.campaign_runner)
    except SQLAlchemyError as exc:
        # The API still serves reads; the sweep runs again on the next start.
        logger.bind(error=str(exc)).error("campaign_recovery_failed")


@app.on_event("shutdown")
async def shutdown_event():
    """Give running fan-outs a bounded grace period to settle."""

    await app.state.campaign_runner.shutdown()


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    """Simple liveness probe that load balancers and monitors can call."""

    return {"status": "ok"}


@app.get("/api/readyz", tags=["system"], summary="Readiness probe")
async def readyz(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail="Database not reachable")


app.include_router(auth_router, prefix="/api")
app.include_router(customers_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
app.include_router(segments_router, prefix="/api")
app.include_router(campaigns_router, prefix="/api")
app.include_router(ai_router, prefix="/api")
