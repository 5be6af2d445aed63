"""
KitRunner settings loaded from the environment (and ``.env``) with pydantic-settings.

``get_settings()`` builds the singleton once; in production it refuses to
start without the signing secret, the CORS origins and the Mercado Pago token.
"""
import socket
from urllib.parse import quote_plus
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "production")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
EMAIL_PROVIDERS = ("sendgrid", "resend")

# Settings that must be non-empty when ENVIRONMENT=production
PRODUCTION_REQUIRED = ("JWT_SECRET", "ALLOWED_ORIGINS", "MERCADOPAGO_ACCESS_TOKEN")


def _resolve_db_host(host: str) -> str:
    """asyncpg calls getaddrinfo inside the event loop; resolve container hostnames up front."""
    if not host or host in ("localhost", "127.0.0.1"):
        return host
    try:
        return socket.gethostbyname(host)
    except socket.gaierror:
        return host


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PostgreSQL
    DB_USER: str = Field(...)
    DB_PASSWORD: str = Field(...)
    DB_NAME: str = Field(...)
    DB_HOST: str = "localhost"
    DB_PORT: str = "5432"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_RECYCLE: int = Field(default=3600, description="Seconds before a pooled connection is replaced")

    # Redis (event and CEP zone cache)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Tokens and admin accounts
    JWT_SECRET: Optional[str] = Field(default=None, description="Signs customer and admin tokens")
    ADMIN_JWT_EXPIRY_HOURS: int = 24
    CUSTOMER_JWT_EXPIRY_HOURS: int = 72
    BCRYPT_ROUNDS: int = 12
    ADMIN_BOOTSTRAP_USERNAME: Optional[str] = Field(default=None, description="Super admin created on first start")
    ADMIN_BOOTSTRAP_PASSWORD: Optional[str] = None

    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated CORS origins")
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"
    RATE_LIMIT_ENABLED: bool = True

    # Mercado Pago
    MERCADOPAGO_ACCESS_TOKEN: Optional[str] = None
    MERCADOPAGO_PUBLIC_KEY: Optional[str] = Field(default=None, description="Exposed to the checkout for card tokens")
    MERCADOPAGO_WEBHOOK_SECRET: Optional[str] = Field(default=None, description="Key for x-signature HMAC checks")
    MERCADOPAGO_NOTIFICATION_URL: Optional[str] = None

    # Transactional email
    EMAIL_PROVIDER: str = "sendgrid"
    SENDGRID_API_KEY: Optional[str] = None
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "contato@kitrunner.com.br"
    EMAIL_FROM_NAME: str = "KitRunner"

    # WhatsApp gateway and support contact
    WHATSAPP_API_URL: Optional[str] = None
    WHATSAPP_API_TOKEN: Optional[str] = None
    SUPPORT_WHATSAPP_NUMBER: str = Field(default="5583981302961", description="Target of wa.me support links")

    # Payment timeout sweep and reminder emails
    SCHEDULERS_ENABLED: bool = True
    PAYMENT_TIMEOUT_HOURS: int = 24
    PAYMENT_TIMEOUT_CHECK_MINUTES: int = 60
    PAYMENT_REMINDER_DELAY_MINUTES: int = 1

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ENVIRONMENTS:
            raise ValueError(f"ENVIRONMENT must be one of {ENVIRONMENTS}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {LOG_LEVELS}")
        return v.upper()

    @field_validator("EMAIL_PROVIDER")
    @classmethod
    def validate_email_provider(cls, v: str) -> str:
        if v.lower() not in EMAIL_PROVIDERS:
            raise ValueError(f"EMAIL_PROVIDER must be one of {EMAIL_PROVIDERS}")
        return v.lower()

    def validate_production_settings(self) -> list[str]:
        """Names of the production-only requirements that are missing (empty outside production)."""
        if not self.is_production:
            return []
        return [f"{name} is required in production" for name in PRODUCTION_REQUIRED if not getattr(self, name)]

    @property
    def db_url(self) -> str:
        password = quote_plus(self.DB_PASSWORD)
        host = _resolve_db_host(self.DB_HOST)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{host}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def allowed_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def jwt_secret(self) -> str:
        # Development runs without JWT_SECRET get a fixed, clearly non-production key
        return self.JWT_SECRET or "kitrunner-development-secret"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Settings singleton; raises ValueError listing every missing production setting."""
    global _settings
    if _settings is None:
        settings = Settings()
        missing = settings.validate_production_settings()
        if missing:
            raise ValueError("Configuration errors:\n" + "\n".join(f"  - {m}" for m in missing))
        _settings = settings
    return _settings
