import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: str,
        token_max_age_secs: int = 86400,
        cors_origins: Optional[list[str]] = None,
        db_pool_size: int = 5,
        budget_warning_percent: int = 70,
        budget_critical_percent: int = 90,
        log_level: str = "INFO",
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_max_age_secs = token_max_age_secs
        self.cors_origins = cors_origins or []
        self.db_pool_size = db_pool_size
        self.budget_warning_percent = budget_warning_percent
        self.budget_critical_percent = budget_critical_percent
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    token_secret = os.getenv(
        "FINANCE_TOKEN_SECRET",
        "5b0c1e9a7f3d4e2b8a6c9d1f0e3b7a2c4d6e8f0a1b3c5d7e9f1a3b5c7d9e1f3a",
    )
    token_max_age_secs = int(os.getenv("FINANCE_TOKEN_MAX_AGE_SECS", "86400"))
    cors_origins = _split_csv(
        os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:3001")
    )
    db_pool_size = int(os.getenv("FINANCE_DB_POOL_SIZE", "5"))
    warning = int(os.getenv("FINANCE_BUDGET_WARNING_PERCENT", "70"))
    critical = int(os.getenv("FINANCE_BUDGET_CRITICAL_PERCENT", "90"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        token_secret=token_secret,
        token_max_age_secs=token_max_age_secs,
        cors_origins=cors_origins,
        db_pool_size=db_pool_size,
        budget_warning_percent=warning,
        budget_critical_percent=critical,
        log_level=log_level,
    )
