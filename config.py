import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        token_max_age_days: int = 7,
        frontend_url: str = "http://localhost:5173",
        environment: str = "development",
        log_level: str = "INFO",
        auto_create_schema: bool = True,
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.token_max_age_days = token_max_age_days
        self.frontend_url = frontend_url
        self.environment = environment
        self.log_level = log_level
        self.auto_create_schema = auto_create_schema

    @property
    def token_max_age_secs(self) -> int:
        return self.token_max_age_days * 24 * 3600

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.frontend_url.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def _default_database_url() -> str:
    root = Path(os.getenv("DASHBOARD_DATA_DIR", "./data")).resolve()
    return f"sqlite:///{root / 'dashboard.db'}"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url: Optional[str] = os.getenv("DASHBOARD_DATABASE_URL")
    if not database_url:
        database_url = _default_database_url()
    secret_key = os.getenv(
        "DASHBOARD_SECRET_KEY",
        "5f0c2b6e9d4a41c8a7e3b1f2d6c9e8a4b7d1f3e5c2a9b8d7e6f4a3c1b2d5e7f9",
    )
    token_max_age_days = int(os.getenv("DASHBOARD_TOKEN_MAX_AGE_DAYS", "7"))
    frontend_url = os.getenv("DASHBOARD_FRONTEND_URL", "http://localhost:5173")
    environment = os.getenv("DASHBOARD_ENVIRONMENT", "development")
    log_level = os.getenv("DASHBOARD_LOG_LEVEL", "INFO").upper()
    auto_create_schema = _env_flag("DASHBOARD_AUTO_CREATE_SCHEMA", "1")
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        token_max_age_days=token_max_age_days,
        frontend_url=frontend_url,
        environment=environment,
        log_level=log_level,
        auto_create_schema=auto_create_schema,
    )
