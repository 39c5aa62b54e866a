from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


# Secrets that must never reach a production deployment
WEAK_SECRET_KEYS = {
    "",
    "secret",
    "changeme",
    "development-secret-key-change-in-production",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./crm.db"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Auth
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True
    SENTRY_DSN: str | None = None
    VERSION: str = "1.0.0"

    # Delivery simulator (vendor stand-in)
    DELIVERY_SUCCESS_RATE: float = 0.9
    VENDOR_LATENCY_MIN: float = 0.5
    VENDOR_LATENCY_MAX: float = 1.5
    RECEIPT_DELAY_SENT_MIN: float = 2.0
    RECEIPT_DELAY_SENT_MAX: float = 7.0
    RECEIPT_DELAY_FAILED_MIN: float = 1.0
    RECEIPT_DELAY_FAILED_MAX: float = 4.0
    RECEIPT_MODE: str = "individual"
    RECEIPT_BATCH_SIZE: int = 10
    RECEIPT_FLUSH_INTERVAL_SECONDS: float = 5.0

    # Queue drain loop
    QUEUE_DRAIN_INTERVAL_SECONDS: float = 2.0
    QUEUE_PROCESSING_DELAY_SECONDS: float = 1.0

    # Campaign delivery
    CAMPAIGN_DELIVERY_MODE: str = "queue"
    CAMPAIGN_SEND_DELAY_SECONDS: float = 0.1
    BACKGROUND_WORKERS_ENABLED: bool = True

    # Segments
    SEGMENT_STALE_AFTER_SECONDS: int = 300
    SEGMENT_PREVIEW_LIMIT: int = 5000
    SEGMENT_RULES_STRICT: bool = False

    # AI provider (OpenAI-compatible chat completions)
    AI_API_KEY: str | None = None
    AI_BASE_URL: str = "https://api.openai.com"
    AI_MODEL: str = "gpt-4o-mini"
    AI_TIMEOUT_SECONDS: float = 30.0

    @field_validator('RECEIPT_MODE')
    @classmethod
    def check_receipt_mode(cls, v: str) -> str:
        if v not in ("individual", "batched"):
            raise ValueError("RECEIPT_MODE must be 'individual' or 'batched'")
        return v

    @field_validator('CAMPAIGN_DELIVERY_MODE')
    @classmethod
    def check_delivery_mode(cls, v: str) -> str:
        if v not in ("queue", "direct"):
            raise ValueError("CAMPAIGN_DELIVERY_MODE must be 'queue' or 'direct'")
        return v

    @field_validator('DELIVERY_SUCCESS_RATE')
    @classmethod
    def check_success_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("DELIVERY_SUCCESS_RATE must be between 0 and 1")
        return v

    @model_validator(mode='after')
    def check_production_secrets(self) -> "Settings":
        """Refuse to boot production with a weak signing key."""
        if self.is_production and self.SECRET_KEY in WEAK_SECRET_KEYS:
            raise ValueError("SECRET_KEY must be set to a strong value in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        # Never echo SQL in production, statements may carry PII
        return self.DEBUG and not self.is_production

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
