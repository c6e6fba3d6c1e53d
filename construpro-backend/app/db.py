from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite:///./construpro.db", alias="DATABASE_URL")

    auth_secret: str = Field(alias="AUTH_SECRET")
    auth_algorithm: str = Field(default="HS256", alias="AUTH_ALGORITHM")
    auth_audience: str | None = Field(default="authenticated", alias="AUTH_AUDIENCE")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Funcoes serverless da plataforma (validate-coupon, order-processing).
    # Sem URL, os equivalentes em banco sao usados.
    functions_base_url: str | None = Field(default=None, alias="FUNCTIONS_BASE_URL")
    functions_api_key: str | None = Field(default=None, alias="FUNCTIONS_API_KEY")
    functions_timeout_seconds: float = Field(default=15.0, alias="FUNCTIONS_TIMEOUT_SECONDS")

    cep_cache_ttl_hours: int = Field(default=24, alias="CEP_CACHE_TTL_HOURS")
    cep_cross_check: bool = Field(default=False, alias="CEP_CROSS_CHECK")
    cep_lookup_timeout_seconds: float = Field(default=8.0, alias="CEP_LOOKUP_TIMEOUT_SECONDS")
    cep_diagnostic_timeout_seconds: float = Field(default=5.0, alias="CEP_DIAGNOSTIC_TIMEOUT_SECONDS")
    cep_warm_delay_seconds: float = Field(default=1.0, alias="CEP_WARM_DELAY_SECONDS")
    cep_warm_on_startup: bool = Field(default=False, alias="CEP_WARM_ON_STARTUP")

    stock_revalidate_interval_seconds: int = Field(default=30, alias="STOCK_REVALIDATE_INTERVAL_SECONDS")
    points_reconcile_function: str | None = Field(default=None, alias="POINTS_RECONCILE_FUNCTION")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    rate_limit_redis_url: str | None = Field(default=None, alias="RATE_LIMIT_REDIS_URL")
    cors_allowed_origins: str | None = Field(default=None, alias="CORS_ALLOWED_ORIGINS")
    trusted_hosts: str | None = Field(default=None, alias="TRUSTED_HOSTS")

    # Config do pydantic-settings (v2)
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",        # ignora chaves do .env que não tenham campo/alias
        case_sensitive=False,  # tolera caixa; prefira MAIÚSCULO no .env
    )

    @property
    def DATABASE_URL(self) -> str:
        return self.database_url

    @property
    def AUTH_SECRET(self) -> str:
        return self.auth_secret

    @property
    def cep_cache_ttl_seconds(self) -> int:
        return max(0, self.cep_cache_ttl_hours) * 60 * 60

    @field_validator("auth_secret")
    @classmethod
    def validate_auth_secret(cls, value: str) -> str:
        if not value or value == "change-me" or len(value) < 32:
            raise ValueError("AUTH_SECRET must be set and at least 32 chars long")
        return value

    @field_validator("functions_base_url")
    @classmethod
    def validate_functions_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip().rstrip("/")
        return value or None

    @field_validator("points_reconcile_function")
    @classmethod
    def validate_points_reconcile_function(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if value and not value.replace("_", "").isalnum():
            raise ValueError("POINTS_RECONCILE_FUNCTION must be a plain function name")
        return value or None


settings = Settings()

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
