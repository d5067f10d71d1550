from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STRIPE_DASH_")

    app_name: str = "Stripe Dash"
    database_url: str = Field(
        "sqlite+aiosqlite:///./data/stripe_dash.db", description="SQLAlchemy database URL."
    )
    sqlalchemy_echo: bool = Field(False, description="Enable SQL echo logging.")
    stripe_api_base: str = Field(
        "https://api.stripe.com/v1", description="Base URL of the Stripe REST API."
    )
    request_timeout_seconds: float = Field(
        30.0, description="Timeout applied to every upstream Stripe request."
    )
    page_size: int = Field(
        100, ge=1, le=100, description="Objects requested per page when paginating Stripe lists."
    )
    enabled_metrics: Optional[List[str]] = Field(
        None, description="Restrict the metric catalog to these kinds. All kinds when unset."
    )
    default_datasource_uid: str = Field(
        "stripe", description="Data source used when a query does not name one."
    )
    log_level: str = Field("INFO", description="Root log level for the service.")

    @field_validator("database_url")
    def ensure_sqlite_directory(cls, value: str) -> str:
        if value.startswith("sqlite+aiosqlite:///"):
            path = Path(value.replace("sqlite+aiosqlite:///", "", 1))
            path.parent.mkdir(parents=True, exist_ok=True)
        return value


settings = Settings()
