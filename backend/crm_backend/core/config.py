"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "CRM Campaign API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # JWT
    SECRET_KEY: str  # set via env/.env
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    JWT_ISSUER: str = "crm-api"
    JWT_AUDIENCE: str = "crm-clients"

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # Cookies
    COOKIE_DOMAIN: str | None = None
    COOKIE_SECURE: bool = False
    COOKIE_SAMESITE: str = "strict"  # lax/strict/none
    REFRESH_COOKIE_NAME: str = "crm_refresh"
    REFRESH_CSRF_COOKIE_NAME: str = "crm_refresh_csrf"

    # Google sign-in
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_TOKENINFO_URL: str = "https://oauth2.googleapis.com/tokeninfo"

    # DB (crm)
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "crmadmin"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "crm"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025

    # Maximum declared request body size (JSON payloads only).
    MAX_BODY_BYTES: int = 100 * 1024

    # AI text completion (Cohere generate API)
    COHERE_API_KEY: str | None = Field(default=None, description="Cohere API key")
    COHERE_API_URL: str = "https://api.cohere.ai/v1/generate"
    AI_TIMEOUT_SEC: int = 30
    # Bounds the number of provider calls running in worker threads at once.
    AI_MAX_CONCURRENCY: int = 4
    # See crm_backend.core.rate_limit.limiter for syntax.
    AI_RATE: str = "10/minute"

    # Campaign fan-out
    CAMPAIGN_BATCH_SIZE: int = 100
    CAMPAIGN_DELIVERY_SUCCESS_RATE: float = 0.8
    CAMPAIGN_FAILURE_REASON: str = "Simulated failure"
    CAMPAIGN_DEFAULT_CHANNEL: str = "email"
    CAMPAIGN_RECOVERY_ON_STARTUP: bool = True
    # How long shutdown waits for running fan-outs before abandoning them.
    CAMPAIGN_SHUTDOWN_GRACE_SEC: float = 10.0

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()
