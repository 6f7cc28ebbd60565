from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
    return bool(v)


class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'settlement_user'
    POSTGRES_PASSWORD: str = 'settlement_pass'
    POSTGRES_DB: str = 'settlement_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Override completo (ej. sqlite para tests)

    # Redis settings (broker de Celery)
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # JWT settings
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Tenancy
    DEFAULT_STORE_SLUG: str = 'store-default'

    # Mercado Pago
    MERCADOPAGO_ACCESS_TOKEN: Optional[str] = None
    MERCADOPAGO_API_BASE: str = 'https://api.mercadopago.com'
    MERCADOPAGO_TIMEOUT: int = 15
    PUBLIC_BASE_URL: str = 'http://localhost:8000'
    FRONTEND_URL: str = 'http://localhost:3000'

    # QR interoperable (valores por defecto si el tenant no configuró el gateway qr)
    QR_MERCHANT_CBU: Optional[str] = None
    QR_MERCHANT_NAME: str = 'Comercio'
    QR_MERCHANT_CITY: str = 'Argentina'
    QR_MERCHANT_CATEGORY_CODE: str = '5492'
    QR_EXPIRATION_MINUTES: int = 30

    # Conciliación
    MATCHING_WINDOW_HOURS: int = 24
    REQUIRE_OPEN_CASH_PERIOD: bool = True
    REOPEN_SALE_ON_UNDERPAYMENT: bool = False
    SECONDARY_EFFECT_RETRY_ENABLED: bool = True

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        return _parse_bool(v)

    @field_validator(
        "REQUIRE_OPEN_CASH_PERIOD",
        "REOPEN_SALE_ON_UNDERPAYMENT",
        "SECONDARY_EFFECT_RETRY_ENABLED",
        mode="before",
    )
    @classmethod
    def parse_flags(cls, v):
        return _parse_bool(v)


settings = Settings()
