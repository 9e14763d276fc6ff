from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = Field(default="Ticket POS", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    database_url: str = Field(default="sqlite:///./tickets.db", alias="DATABASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    currency: str = Field(default="TRY", alias="CURRENCY")
    # roles that skip the manager credential prompt for discounts and comps
    elevated_roles: list[str] = Field(default=["manager", "admin"], alias="ELEVATED_ROLES")
    idempotency_ttl_seconds: int = Field(default=3600, alias="IDEMPOTENCY_TTL_SECONDS")
    split_sessions_max: int = Field(default=256, alias="SPLIT_SESSIONS_MAX")

    class Config:
        env_file = ".env"
        populate_by_name = True


settings = Settings()
