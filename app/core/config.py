from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from decimal import Decimal
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'comprobantes_user'
    POSTGRES_PASSWORD: str = 'comprobantes_pass'
    POSTGRES_DB: str = 'comprobantes_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Override completo (tests, SQLite local)

    # Redis settings (broker de Celery)
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # SUNAT settings
    SUNAT_GATEWAY: str = 'fake'  # "fake" | "http"
    SUNAT_API_URL: str = 'http://sunat-gateway:8080'
    SUNAT_API_TOKEN: str = ''
    SUNAT_TIMEOUT_SECONDS: float = 30.0

    # Emisor
    COMPANY_RUC: str = '20000000001'
    COMPANY_NAME: str = 'EMPRESA DEMO S.A.C.'
    CURRENCY: str = 'PEN'
    IGV_RATE: Decimal = Decimal('0.18')
    TIMEZONE: str = 'America/Lima'

    # Numeración
    ALLOCATION_MAX_ATTEMPTS: int = 5
    ALLOCATION_RETRY_BACKOFF: float = 0.05  # segundos, crece linealmente por intento

    # Envíos
    SUBMISSION_LEASE_SECONDS: int = 120  # Debe superar SUNAT_TIMEOUT_SECONDS
    STALE_SUBMISSION_MINUTES: int = 15
    MAX_SUBMISSION_ATTEMPTS: int = 10  # El barrido deja de reenviar; el reenvío manual sigue permitido

    # Pagination
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    FRONTEND_URL: str = '*'

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
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("SUNAT_GATEWAY", mode="before")
    @classmethod
    def parse_gateway(cls, v):
        if isinstance(v, str):
            v = v.lower().strip('"').strip("'")
        if v not in ("fake", "http"):
            raise ValueError("SUNAT_GATEWAY debe ser 'fake' o 'http'")
        return v

settings = Settings()
